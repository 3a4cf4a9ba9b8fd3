"""消费者侧去重

调度器对投递只保证 "至少一次"：启动回放会重新投递最近窗口内的事件，
崩溃重启时检查点之后的事件也可能再次出现。DedupConsumer 包在下游处理器外面，
按 (stream_id, id) 丢弃重复事件。

只有下游处理器成功返回（或返回的协程成功完成）后事件才记为已处理；
处理器抛错时不做记录，之后的重复投递（例如下次启动回放）会再交给处理器。
"""

from __future__ import annotations

import inspect
import logging
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Set, Tuple

from ..events.models import StreamEvent
from .store import ProcessedEventStore

logger = logging.getLogger("sentx.consumer.dedup")

DedupKey = Tuple[str, str]


class DedupConsumer:
    """带 LRU 缓存的去重消费者

    - 内存 LRU 缓存最近见过的 (stream_id, id)，超过 max_size 时淘汰最久未使用的
    - 可选 ProcessedEventStore 作为持久化后备，跨重启去重
    - 可选 stream_ids 过滤，只处理指定流的事件

    实例本身可直接作为 EventBus 处理器订阅。下游处理器返回协程时包装后返回，
    由事件总线调度，协程成功完成后才记录。处理中的事件再次到达时按重复丢弃。
    """

    def __init__(
        self,
        handler: Callable[[StreamEvent], Any],
        *,
        store: Optional[ProcessedEventStore] = None,
        stream_ids: Optional[Iterable[str]] = None,
        max_size: int = 1000,
        name: Optional[str] = None,
    ):
        self.handler = handler
        self.store = store
        self.stream_ids = frozenset(stream_ids) if stream_ids is not None else None
        self.max_size = max_size
        self.name = name or getattr(handler, "__qualname__", type(handler).__name__)

        # 使用OrderedDict实现LRU缓存
        self._seen_cache: OrderedDict[DedupKey, bool] = OrderedDict()
        self._in_flight: Set[DedupKey] = set()

        self._stats = {
            "total_input": 0,
            "filtered_out": 0,
            "duplicates_found": 0,
            "replay_duplicates": 0,
            "delivered": 0,
            "failed": 0,
            "cache_hits": 0,
            "store_hits": 0,
        }

    def __repr__(self) -> str:
        return f"DedupConsumer[{self.name}]"

    def __call__(self, event: StreamEvent) -> Any:
        self._stats["total_input"] += 1

        if self.stream_ids is not None and event.stream_id not in self.stream_ids:
            self._stats["filtered_out"] += 1
            return None

        key = event.dedup_key
        if self._is_duplicate(key):
            self._stats["duplicates_found"] += 1
            if event.is_replay:
                self._stats["replay_duplicates"] += 1
            logger.debug(
                "跳过重复事件: stream=%s id=%s replay=%s",
                event.stream_id,
                event.id,
                event.is_replay,
            )
            return None

        # 处理中的事件先占位，处理成功后才记为已处理
        self._in_flight.add(key)
        try:
            result = self.handler(event)
        except Exception:
            self._in_flight.discard(key)
            self._stats["failed"] += 1
            raise

        if inspect.isawaitable(result):
            return self._finish(event, result)

        self._in_flight.discard(key)
        self._mark_delivered(event)
        return None

    async def _finish(self, event: StreamEvent, awaitable: Awaitable[Any]) -> None:
        try:
            await awaitable
        except Exception:
            self._stats["failed"] += 1
            raise
        else:
            self._mark_delivered(event)
        finally:
            self._in_flight.discard(event.dedup_key)

    def _mark_delivered(self, event: StreamEvent) -> None:
        self._remember(event.dedup_key)
        if self.store is not None:
            self.store.mark_processed(event.stream_id, event.id, event.is_replay)
        self._stats["delivered"] += 1

    def _is_duplicate(self, key: DedupKey) -> bool:
        if key in self._in_flight:
            return True

        if key in self._seen_cache:
            # 命中缓存，移动到末尾（最近使用）
            self._seen_cache.move_to_end(key)
            self._stats["cache_hits"] += 1
            return True

        if self.store is not None and self.store.is_processed(*key):
            self._stats["store_hits"] += 1
            self._remember(key)
            return True

        return False

    def _remember(self, key: DedupKey) -> None:
        self._seen_cache[key] = True
        self._seen_cache.move_to_end(key)
        while len(self._seen_cache) > self.max_size:
            self._seen_cache.popitem(last=False)  # 移除最旧的项

    def has_seen(self, stream_id: str, event_id: str) -> bool:
        return (stream_id, event_id) in self._seen_cache

    def get_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = dict(self._stats)
        stats["name"] = self.name
        stats["cache_size"] = len(self._seen_cache)
        stats["max_cache_size"] = self.max_size
        if self._stats["total_input"] > 0:
            stats["dedup_rate"] = (
                self._stats["duplicates_found"] / self._stats["total_input"]
            )
        else:
            stats["dedup_rate"] = 0.0
        return stats

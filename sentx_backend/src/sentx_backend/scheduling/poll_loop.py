"""单个流的轮询逻辑

两个阶段：
- baseline（可选，仅第一次成功抓取）：记录这一批的 ID 并推进检查点，但不投递，
  避免首次启动时把历史数据当作新事件刷屏
- steady：ID 不在最近结果缓存中、且未被检查点覆盖的事件才是新事件

最近结果缓存每次被替换为最新一批的 ID，大小不超过单次抓取量。
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from ..collectors.base import CollectorError, Fetcher, RawEvent
from ..config.settings import StreamConfig
from ..events.bus import EventBus
from ..events.models import StreamEvent, Topic
from .checkpoint_store import CheckpointStore
from .request_queue import QueueClosedError, RequestQueue
from .types import fetch_batch

logger = logging.getLogger("sentx.poll")


class PollPhase(str, Enum):
    Baseline = "baseline"
    Steady = "steady"


class PollLoop:
    """单个流的轮询器

    tick() 由 PollScheduler 周期调用，也可以在测试中直接调用。
    stop_event 被设置后 tick() 不再抓取或投递。
    """

    def __init__(
        self,
        stream: StreamConfig,
        fetcher: Fetcher,
        queue: RequestQueue,
        checkpoints: CheckpointStore,
        bus: EventBus,
        *,
        stop_event: Optional[asyncio.Event] = None,
    ):
        self.stream = stream
        self.stream_id = stream.stream_id
        self.topic = Topic.for_kind(stream.kind)
        self.fetcher = fetcher
        self.queue = queue
        self.checkpoints = checkpoints
        self.bus = bus
        self.stop_event = stop_event or asyncio.Event()

        self.phase = PollPhase.Baseline if stream.baseline else PollPhase.Steady
        self._recent_ids: Set[str] = set()
        self._stats: Dict[str, Any] = {
            "ticks": 0,
            "emitted": 0,
            "failures": 0,
            "last_tick_at": None,
            "last_error": None,
        }

    @property
    def interval_seconds(self) -> int:
        return self.stream.interval_seconds

    @property
    def recent_ids(self) -> Set[str]:
        return set(self._recent_ids)

    async def tick(self) -> List[StreamEvent]:
        """执行一次轮询，返回本次投递的事件"""
        if self.stop_event.is_set():
            return []

        baseline = self.phase == PollPhase.Baseline
        limit = self.stream.baseline_batch_size if baseline else self.stream.limit
        self._stats["ticks"] += 1
        self._stats["last_tick_at"] = time.time()

        try:
            batch = await fetch_batch(self.queue, self.fetcher, limit)
        except QueueClosedError:
            logger.debug("请求队列已停止，放弃本次轮询: stream=%s", self.stream_id)
            return []
        except CollectorError as e:
            self._record_failure(e)
            logger.warning("轮询失败，等待下一轮: stream=%s error=%s", self.stream_id, e)
            return []
        except Exception as e:
            self._record_failure(e)
            logger.exception("轮询异常，等待下一轮: stream=%s error=%s", self.stream_id, e)
            return []

        if self.stop_event.is_set():
            return []

        if baseline:
            self._complete_baseline(batch)
            return []

        fresh = self.select_new(batch)
        if batch:
            self._remember(batch)

        events = [
            StreamEvent.from_raw(self.stream_id, self.topic, raw)
            for raw in sorted(fresh, key=lambda e: e.timestamp)
        ]
        for event in events:
            self.bus.publish(self.topic, event)

        if events:
            self._stats["emitted"] += len(events)
            logger.info("发现 %d 个新事件: stream=%s", len(events), self.stream_id)

        self._advance_checkpoint(batch)
        return events

    def select_new(self, batch: List[RawEvent]) -> List[RawEvent]:
        """筛出真正的新事件：不在最近缓存中，且未被检查点覆盖"""
        fresh: List[RawEvent] = []
        seen: Set[str] = set()
        for raw in batch:
            if raw.id in self._recent_ids or raw.id in seen:
                continue
            if self.checkpoints.is_dominated(self.stream_id, raw):
                continue
            seen.add(raw.id)
            fresh.append(raw)
        return fresh

    def _complete_baseline(self, batch: List[RawEvent]) -> None:
        self._remember(batch)
        self._advance_checkpoint(batch)
        self.phase = PollPhase.Steady
        if batch:
            logger.info(
                "Baseline established: stream=%s 记录 %d 个已有事件（不通知）",
                self.stream_id,
                len(batch),
            )
        else:
            logger.info("Baseline established: stream=%s 无近期事件", self.stream_id)

    def _remember(self, batch: List[RawEvent]) -> None:
        self._recent_ids = {raw.id for raw in batch}

    def _advance_checkpoint(self, batch: List[RawEvent]) -> None:
        if not batch:
            return
        newest = max(batch, key=lambda e: e.timestamp)
        self.checkpoints.advance(self.stream_id, newest)

    def _record_failure(self, error: Exception) -> None:
        self._stats["failures"] += 1
        self._stats["last_error"] = str(error)

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "stream_id": self.stream_id,
            "topic": self.topic.value,
            "phase": self.phase.value,
            "interval_seconds": self.interval_seconds,
            "recent_cache_size": len(self._recent_ids),
        }

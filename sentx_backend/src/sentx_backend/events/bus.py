"""主题式发布/订阅

publish() 同步地按订阅顺序调用该主题的所有处理器；单个处理器失败只记录日志，
不影响其他处理器。处理器返回协程时会被调度到当前事件循环，失败同样只记日志。
订阅在进程生命周期内有效，不提供取消订阅。
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Set

from .models import StreamEvent, Topic

logger = logging.getLogger("sentx.event_bus")

Handler = Callable[[StreamEvent], Any]


class EventBus:
    def __init__(self):
        self._handlers: Dict[Topic, List[Handler]] = defaultdict(list)
        self._background: Set[asyncio.Task] = set()
        self._stats = {"published": 0, "handler_errors": 0}

    def subscribe(self, topic: Topic, handler: Handler) -> None:
        """订阅主题；每次调用都会新增一个处理器（同一函数订阅两次会被调用两次）"""
        topic = Topic(topic)
        self._handlers[topic].append(handler)
        logger.info(
            "New subscriber for %s: %s",
            topic.value,
            getattr(handler, "__qualname__", repr(handler)),
        )

    def publish(self, topic: Topic, event: StreamEvent) -> int:
        """同步投递事件，返回成功调用的处理器数量"""
        topic = Topic(topic)
        self._stats["published"] += 1
        delivered = 0

        for handler in list(self._handlers.get(topic, ())):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    self._track(result, handler, event)
                delivered += 1
            except Exception as exc:
                self._stats["handler_errors"] += 1
                logger.exception(
                    "事件处理器失败: topic=%s stream=%s id=%s handler=%s error=%s",
                    topic.value,
                    event.stream_id,
                    event.id,
                    getattr(handler, "__qualname__", repr(handler)),
                    exc,
                )

        return delivered

    def _track(self, awaitable: Any, handler: Handler, event: StreamEvent) -> None:
        task = asyncio.ensure_future(awaitable)
        self._background.add(task)

        def _done(t: asyncio.Task) -> None:
            self._background.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                self._stats["handler_errors"] += 1
                logger.error(
                    "异步事件处理器失败: stream=%s id=%s handler=%s error=%s",
                    event.stream_id,
                    event.id,
                    getattr(handler, "__qualname__", repr(handler)),
                    exc,
                )

        task.add_done_callback(_done)

    async def drain(self) -> None:
        """等待所有异步处理器完成（关闭前调用）"""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def subscriber_count(self, topic: Topic) -> int:
        return len(self._handlers.get(Topic(topic), ()))

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "subscribers": {t.value: len(h) for t, h in self._handlers.items()},
            "pending_async_handlers": len(self._background),
        }

"""启动回放

在轮询开始前执行一次：对每个开启回放的流抓取一个较大的批次，把时间落在
[now - window, now] 内的事件以 is_replay=True 投递。

回放不读也不写检查点。它覆盖的是 "最后一个检查点" 到 "进程重启" 之间的空档，
该空档可能比检查点本身的粒度更大；最终去重由消费者按 (stream_id, id) 完成，
因为只有消费者知道自己实际投递过什么。
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Tuple

from ..collectors.base import Fetcher, RawEvent, format_timestamp
from ..config.settings import StreamConfig
from ..events.bus import EventBus
from ..events.models import StreamEvent, Topic
from .request_queue import RequestQueue
from .types import fetch_batch

logger = logging.getLogger("sentx.replay")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ReplayReport:
    window_start: datetime
    window_end: datetime
    emitted: Dict[str, int] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def total_emitted(self) -> int:
        return sum(self.emitted.values())


def filter_in_window(
    events: Iterable[RawEvent], start: datetime, end: datetime
) -> List[RawEvent]:
    """保留 start <= timestamp <= end 的事件（两端都包含）"""
    return [e for e in events if start <= e.timestamp <= end]


class ReplayEngine:
    """启动回放引擎"""

    def __init__(
        self,
        streams: Iterable[Tuple[StreamConfig, Fetcher]],
        queue: RequestQueue,
        bus: EventBus,
        *,
        window: timedelta = timedelta(minutes=10),
        limit: int = 50,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._streams = [(s, f) for s, f in streams if s.replay]
        self.queue = queue
        self.bus = bus
        self.window = window
        self.limit = limit
        self._clock = clock

    async def run(self) -> ReplayReport:
        """执行一次回放。单个流抓取失败只记录日志，不影响其他流"""
        now = self._clock()
        start = now - self.window
        report = ReplayReport(window_start=start, window_end=now)

        logger.info(
            "开始启动回放: window=%s ~ %s streams=%d",
            format_timestamp(start),
            format_timestamp(now),
            len(self._streams),
        )
        if not self._streams:
            return report

        # 并发发起，实际请求仍在队列中按顺序串行
        results = await asyncio.gather(
            *(fetch_batch(self.queue, fetcher, self.limit) for _, fetcher in self._streams),
            return_exceptions=True,
        )

        for (stream, _), result in zip(self._streams, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                report.failed[stream.stream_id] = str(result)
                logger.warning(
                    "回放抓取失败: stream=%s error=%s", stream.stream_id, result
                )
                continue

            report.emitted[stream.stream_id] = self._emit(
                stream, filter_in_window(result, start, now)
            )

        logger.info(
            "启动回放完成: 投递 %d 个事件 %s, 失败流 %s",
            report.total_emitted,
            report.emitted,
            list(report.failed),
        )
        return report

    def _emit(self, stream: StreamConfig, events: List[RawEvent]) -> int:
        topic = Topic.for_kind(stream.kind)
        for raw in sorted(events, key=lambda e: e.timestamp):
            self.bus.publish(
                topic,
                StreamEvent.from_raw(stream.stream_id, topic, raw, is_replay=True),
            )
        if events:
            logger.info("回放窗口内事件: stream=%s count=%d", stream.stream_id, len(events))
        return len(events)

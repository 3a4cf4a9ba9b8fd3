"""调度运行时

SchedulerRuntime 是整个子系统的组装点：根据配置创建令牌桶、请求队列、
检查点存储、事件总线、每个流的 PollLoop、启动回放引擎和周期调度器。
每个进程构造一次，HTTP transport 与检查点路径都可以注入，测试无需真实网络。

启动顺序：加载检查点 → 启动请求队列 → 执行启动回放（等待完成）→ 开始周期轮询。
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .collectors.base import Fetcher, RequestSpec, format_timestamp
from .collectors.sentx import SentxClient, build_fetcher
from .config.settings import Settings, StreamConfig
from .events.bus import EventBus, Handler
from .events.models import Topic
from .scheduling.checkpoint_store import CheckpointStore
from .scheduling.poll_loop import PollLoop
from .scheduling.replay import ReplayEngine, ReplayReport
from .scheduling.request_queue import GlobalCooldownPolicy, RequestQueue
from .scheduling.scheduler import PollScheduler
from .scheduling.token_bucket import TokenBucket

logger = logging.getLogger("sentx.runtime")

Transport = Callable[[RequestSpec], Awaitable[Any]]


class SchedulerRuntime:
    """调度子系统的运行时上下文"""

    def __init__(
        self,
        settings: Settings,
        *,
        transport: Optional[Transport] = None,
        checkpoint_path: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings

        # 未注入 transport 时使用真实的 SentX 客户端，关闭时由运行时释放
        self.client: Optional[SentxClient] = None
        if transport is None:
            self.client = SentxClient(settings.api)
            transport = self.client.send

        rl = settings.rate_limit
        self.bucket = TokenBucket(rl.max_tokens, rl.refill_rate, clock=clock)
        self.queue = RequestQueue(
            transport,
            self.bucket,
            policy=GlobalCooldownPolicy(cooldown_seconds=rl.cooldown_seconds),
            token_poll_seconds=rl.token_poll_seconds,
            sleep=sleep,
        )
        self.bus = EventBus()

        self.streams: List[Tuple[StreamConfig, Fetcher]] = []
        for stream in settings.streams:
            try:
                self.streams.append((stream, build_fetcher(stream)))
            except ValueError as e:
                logger.error("跳过无效的流配置: %s error=%s", stream.stream_id, e)

        self.checkpoints = CheckpointStore(
            checkpoint_path or settings.checkpoint.path,
            [stream.stream_id for stream, _ in self.streams],
            settings.checkpoint.dominance,
        )

        self.stop_event = asyncio.Event()
        self.loops: List[PollLoop] = [
            PollLoop(
                stream,
                fetcher,
                self.queue,
                self.checkpoints,
                self.bus,
                stop_event=self.stop_event,
            )
            for stream, fetcher in self.streams
        ]
        self.replay = ReplayEngine(
            self.streams,
            self.queue,
            self.bus,
            window=timedelta(seconds=settings.replay.window_seconds),
            limit=settings.replay.limit,
        )
        self.scheduler = PollScheduler(
            self.loops,
            timezone_name=settings.scheduler_timezone,
            stop_event=self.stop_event,
        )

        self.last_replay: Optional[ReplayReport] = None
        self.started_at: Optional[datetime] = None
        self._running = False

    def subscribe(self, topic: Topic, handler: Handler) -> None:
        self.bus.subscribe(topic, handler)

    def subscribe_all(self, handler: Handler) -> None:
        """为已配置流涉及的每个主题订阅同一个处理器"""
        for topic in self.topics():
            self.bus.subscribe(topic, handler)

    def topics(self) -> List[Topic]:
        seen: List[Topic] = []
        for stream, _ in self.streams:
            topic = Topic.for_kind(stream.kind)
            if topic not in seen:
                seen.append(topic)
        return seen

    async def start(self, *, run_polls_immediately: bool = True) -> None:
        """启动运行时。回放完成之前不会开始任何周期轮询"""
        if self._running:
            logger.warning("Scheduler runtime already running")
            return

        logger.info("Scheduler runtime starting with %d streams", len(self.streams))
        self.checkpoints.load()
        self.queue.start()
        self._running = True
        self.started_at = datetime.now(timezone.utc)

        if self.settings.replay.enabled:
            self.last_replay = await self.replay.run()
        else:
            logger.info("启动回放已禁用")

        self.scheduler.start(run_immediately=run_polls_immediately)
        logger.info("Scheduler runtime started")

    async def stop(self) -> None:
        """停止轮询、关闭请求队列、等待异步处理器并释放 HTTP 会话"""
        if not self._running:
            return
        self._running = False

        await self.scheduler.stop()
        await self.queue.stop()
        await self.bus.drain()
        self.checkpoints.save()
        if self.client is not None:
            await self.client.close()
        logger.info("Scheduler runtime stopped")

    def is_running(self) -> bool:
        return self._running

    def status(self) -> Dict[str, Any]:
        next_runs = self.scheduler.get_next_run_times()
        streams = []
        for loop in self.loops:
            stats = loop.get_stats()
            next_run = next_runs.get(loop.stream_id)
            stats["next_run_at"] = next_run.isoformat() if next_run else None
            streams.append(stats)

        replay: Optional[Dict[str, Any]] = None
        if self.last_replay is not None:
            replay = {
                "window_start": format_timestamp(self.last_replay.window_start),
                "window_end": format_timestamp(self.last_replay.window_end),
                "emitted": dict(self.last_replay.emitted),
                "failed": dict(self.last_replay.failed),
            }

        return {
            "running": self.is_running(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "queue": self.queue.get_stats(),
            "bucket": self.bucket.snapshot(),
            "in_cooldown": self.queue.in_cooldown,
            "streams": streams,
            "replay": replay,
            "event_bus": self.bus.get_stats(),
            "checkpoints": self.checkpoints.get_stats(),
        }

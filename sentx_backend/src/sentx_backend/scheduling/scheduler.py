from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .poll_loop import PollLoop
from .types import JobKind, make_job_id

logger = logging.getLogger("sentx.scheduler")


class PollScheduler:
    """周期轮询调度器

    - 封装 APScheduler（异步），每个流一个 interval job
    - 同一流的 tick 不会重叠（max_instances=1），积压的触发合并为一次（coalesce）
    - 所有 PollLoop 共享一个 stop_event 作为取消令牌，stop() 先设置令牌再关闭调度器，
      正在执行中的 tick 在下一个检查点直接返回，不再投递

    Attributes:
        scheduler: APScheduler 异步调度器实例
        stop_event: 共享的取消令牌
    """

    def __init__(
        self,
        loops: Iterable[PollLoop],
        *,
        timezone_name: str = "UTC",
        stop_event: Optional[asyncio.Event] = None,
    ):
        self.scheduler = AsyncIOScheduler(
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 30,
            },
            timezone=timezone_name,
        )
        self.stop_event = stop_event or asyncio.Event()
        self.loops: List[PollLoop] = list(loops)
        for loop in self.loops:
            loop.stop_event = self.stop_event
        self._job_ids: Dict[str, str] = {}

    def start(self, *, run_immediately: bool = True) -> None:
        """添加所有轮询任务并启动调度器（需在事件循环中调用）"""
        if self.scheduler.running:
            logger.warning("Poll scheduler already running")
            return

        self.stop_event.clear()
        first_run = datetime.now(timezone.utc) if run_immediately else None
        for loop in self.loops:
            job_id = make_job_id(loop.stream_id, JobKind.Poll)
            kwargs: Dict[str, Any] = {}
            if first_run is not None:
                kwargs["next_run_time"] = first_run
            self.scheduler.add_job(
                loop.tick,
                IntervalTrigger(
                    seconds=loop.interval_seconds, timezone=self.scheduler.timezone
                ),
                id=job_id,
                name=f"poll {loop.stream_id}",
                replace_existing=True,
                **kwargs,
            )
            self._job_ids[loop.stream_id] = job_id
            logger.info(
                "轮询任务已添加: %s interval=%ss phase=%s",
                job_id,
                loop.interval_seconds,
                loop.phase.value,
            )

        self.scheduler.start()
        logger.info("Poll scheduler started with %d streams", len(self.loops))

    async def stop(self) -> None:
        """设置取消令牌并关闭调度器（不等待在途 tick）"""
        self.stop_event.set()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Poll scheduler stopped")
        self._job_ids.clear()

    def is_running(self) -> bool:
        return bool(self.scheduler.running) and not self.stop_event.is_set()

    def get_next_run_times(self) -> Dict[str, Optional[datetime]]:
        result: Dict[str, Optional[datetime]] = {}
        for stream_id, job_id in self._job_ids.items():
            job = self.scheduler.get_job(job_id)
            result[stream_id] = job.next_run_time if job else None
        return result

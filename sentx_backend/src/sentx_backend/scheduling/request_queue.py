"""请求队列：所有 SentX 请求的唯一串行化点

- FIFO，单个 worker 协程逐个发出请求，同一时刻只有一个请求在途
- 发请求前等待令牌桶放行（短睡眠轮询，不忙等）
- 收到 429 时请求放回队首，整个队列按 GlobalCooldownPolicy 冷却
- 其他失败只拒绝该请求的 future，不重试，worker 继续处理下一个
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, Optional

from ..collectors.base import CollectorError, RateLimitedError, RequestSpec
from .token_bucket import TokenBucket

logger = logging.getLogger("sentx.request_queue")

Transport = Callable[[RequestSpec], Awaitable[Any]]
Sleep = Callable[[float], Awaitable[Any]]


class QueueClosedError(CollectorError):
    """队列已停止，请求不会再被发出"""

    pass


@dataclass(frozen=True)
class GlobalCooldownPolicy:
    """429 全局退避策略

    所有流共享同一个 SentX 配额，因此任意一个流的请求被限流时，整个队列
    （而不只是这一个请求）暂停 cooldown_seconds，再从被放回队首的请求继续。

    Attributes:
        cooldown_seconds: 固定冷却时长
        honor_retry_after: 服务器给出更长的 Retry-After 时是否采用
    """

    cooldown_seconds: float = 2.0
    honor_retry_after: bool = True

    def cooldown_for(self, error: RateLimitedError) -> float:
        delay = self.cooldown_seconds
        if self.honor_retry_after and error.retry_after is not None:
            delay = max(delay, error.retry_after)
        return delay


@dataclass
class QueuedRequest:
    spec: RequestSpec
    future: asyncio.Future
    enqueued_at: float = field(default_factory=time.time)
    attempts: int = 0


class RequestQueue:
    """限速请求队列"""

    def __init__(
        self,
        transport: Transport,
        bucket: TokenBucket,
        *,
        policy: Optional[GlobalCooldownPolicy] = None,
        token_poll_seconds: float = 0.1,
        sleep: Sleep = asyncio.sleep,
    ):
        """
        Args:
            transport: 真正发请求的协程函数，429 时须抛出 RateLimitedError
            bucket: 令牌桶
            policy: 429 退避策略，默认冷却 2 秒
            token_poll_seconds: 等待令牌时的轮询间隔
            sleep: 睡眠函数，测试时可注入假实现
        """
        self._transport = transport
        self._bucket = bucket
        self.policy = policy or GlobalCooldownPolicy()
        self._token_poll_seconds = token_poll_seconds
        self._sleep = sleep

        self._pending: Deque[QueuedRequest] = deque()
        self._wakeup = asyncio.Event()
        self._worker: Optional[asyncio.Task] = None
        self._closed = False
        self._in_cooldown = False

        self._stats = {
            "enqueued": 0,
            "dispatched": 0,
            "succeeded": 0,
            "failed": 0,
            "rate_limited": 0,
            "dropped": 0,
        }

    def enqueue(self, spec: RequestSpec) -> asyncio.Future:
        """加入队尾，返回在请求完成时被设置结果/异常的 future"""
        if self._closed:
            raise QueueClosedError("request queue is stopped")

        future = asyncio.get_running_loop().create_future()
        self._pending.append(QueuedRequest(spec=spec, future=future))
        self._stats["enqueued"] += 1
        self._wakeup.set()
        logger.debug("请求入队: %s depth=%d", spec.describe(), len(self._pending))
        return future

    async def request(self, spec: RequestSpec) -> Any:
        """入队并等待响应"""
        return await self.enqueue(spec)

    def start(self) -> None:
        """启动 worker（幂等）"""
        if self._worker is not None and not self._worker.done():
            logger.warning("Request queue already running")
            return
        self._closed = False
        self._worker = asyncio.create_task(self._run(), name="sentx-request-queue")
        logger.info("Request queue started")

    async def stop(self) -> None:
        """停止 worker，并以 QueueClosedError 拒绝所有未完成的请求"""
        self._closed = True
        if self._worker is not None:
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None

        rejected = 0
        while self._pending:
            request = self._pending.popleft()
            if not request.future.done():
                request.future.set_exception(QueueClosedError("request queue stopped"))
                rejected += 1
        logger.info("Request queue stopped, rejected %d pending requests", rejected)

    async def _run(self) -> None:
        try:
            while True:
                if not self._pending:
                    self._wakeup.clear()
                    await self._wakeup.wait()
                    continue
                await self.process_next()
        except asyncio.CancelledError:
            logger.debug("Request queue worker cancelled")
            raise
        except Exception as exc:  # pragma: no cover - 兜底保护
            logger.exception("Request queue worker error: %s", exc)

    async def process_next(self) -> bool:
        """处理队首请求：等令牌、发送、按结果处理。队列为空时返回 False"""
        self._drop_cancelled_head()
        if not self._pending:
            return False

        await self._wait_for_token()

        request = self._pending.popleft()
        if request.future.done():
            # 等令牌期间调用方已放弃
            self._stats["dropped"] += 1
            return True

        await self._dispatch(request)
        return True

    def _drop_cancelled_head(self) -> None:
        while self._pending and self._pending[0].future.done():
            self._pending.popleft()
            self._stats["dropped"] += 1

    async def _wait_for_token(self) -> None:
        while not self._bucket.try_consume():
            await self._sleep(self._token_poll_seconds)

    async def _dispatch(self, request: QueuedRequest) -> None:
        request.attempts += 1
        self._stats["dispatched"] += 1
        try:
            result = await self._transport(request.spec)
        except RateLimitedError as exc:
            self._stats["rate_limited"] += 1
            self._pending.appendleft(request)
            delay = self.policy.cooldown_for(exc)
            logger.warning(
                "Rate limited, 请求放回队首并暂停整个队列 %.1fs: %s attempts=%d",
                delay,
                request.spec.describe(),
                request.attempts,
            )
            self._in_cooldown = True
            try:
                await self._sleep(delay)
            finally:
                self._in_cooldown = False
        except asyncio.CancelledError:
            # worker 被停止时请求仍在途，放回队列由 stop() 统一拒绝
            self._pending.appendleft(request)
            raise
        except Exception as exc:
            self._stats["failed"] += 1
            logger.warning("请求失败，不重试: %s error=%s", request.spec.describe(), exc)
            if not request.future.done():
                request.future.set_exception(exc)
        else:
            self._stats["succeeded"] += 1
            if not request.future.done():
                request.future.set_result(result)

    def qsize(self) -> int:
        return len(self._pending)

    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def in_cooldown(self) -> bool:
        return self._in_cooldown

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "depth": len(self._pending),
            "in_cooldown": self._in_cooldown,
            "running": self.is_running(),
            "cooldown_seconds": self.policy.cooldown_seconds,
        }

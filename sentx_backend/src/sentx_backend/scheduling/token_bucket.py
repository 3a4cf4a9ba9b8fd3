"""令牌桶限流

对外请求的准入控制：每次请求消耗 1 个令牌，令牌按固定速率补充，上限 max_tokens。
补充是惰性计算的，每次 try_consume() 前按流逝时间结算；也可以由定时 tick
调用 refill()，两种方式得到的令牌轨迹完全一致，因为 last_refill 只前移
"已经兑换成整数令牌的那部分时间"，不足一个令牌的余量会保留到下次结算。
"""

from __future__ import annotations

import math
import time
from typing import Any, Callable, Dict, Optional


class TokenBucket:
    """令牌桶（单线程使用，不加锁）

    Attributes:
        max_tokens: 桶容量，即允许的突发请求数
        refill_rate: 每秒补充的令牌数
    """

    def __init__(
        self,
        max_tokens: int = 3,
        refill_rate: float = 1.0,
        initial_tokens: Optional[int] = 1,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            max_tokens: 桶容量
            refill_rate: 每秒补充令牌数
            initial_tokens: 初始令牌数，None 表示满桶。默认 1，冷启动不给满额突发
            clock: 单调时钟，测试时可注入假时钟
        """
        if max_tokens < 1:
            raise ValueError("max_tokens must be >= 1")
        if refill_rate <= 0:
            raise ValueError("refill_rate must be > 0")

        self.max_tokens = int(max_tokens)
        self.refill_rate = float(refill_rate)
        self._clock = clock

        if initial_tokens is None:
            initial_tokens = self.max_tokens
        self._tokens = max(0, min(self.max_tokens, int(initial_tokens)))
        self._last_refill = clock()

    @property
    def tokens(self) -> int:
        """当前令牌数（不触发补充）"""
        return self._tokens

    @property
    def last_refill(self) -> float:
        return self._last_refill

    def refill(self) -> int:
        """按流逝时间结算令牌，返回本次新增（含被上限截掉的部分）的整数令牌数"""
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed <= 0:
            return 0

        earned = math.floor(elapsed * self.refill_rate)
        if earned <= 0:
            return 0

        self._tokens = min(self.max_tokens, self._tokens + earned)
        self._last_refill += earned / self.refill_rate
        return earned

    def try_consume(self) -> bool:
        """尝试取 1 个令牌；没有令牌时返回 False，状态保持不变"""
        self.refill()
        if self._tokens >= 1:
            self._tokens -= 1
            return True
        return False

    def seconds_until_available(self) -> float:
        """距离下一个令牌可用的秒数，已有令牌时为 0"""
        self.refill()
        if self._tokens >= 1:
            return 0.0
        elapsed = self._clock() - self._last_refill
        return max(0.0, 1.0 / self.refill_rate - elapsed)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "tokens": self._tokens,
            "max_tokens": self.max_tokens,
            "refill_rate": self.refill_rate,
        }

    def __repr__(self) -> str:
        return (
            f"TokenBucket(tokens={self._tokens}, max_tokens={self.max_tokens}, "
            f"refill_rate={self.refill_rate})"
        )

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol
import time


@dataclass(slots=True)
class RawEvent:

    # 事件在数据源中的唯一标识（通常为交易 ID）
    id: str

    # 事件发生时间（UTC，时区感知）
    timestamp: datetime

    # 平台原始/半结构化数据，不做“过早清洗”
    payload: dict

    # 抓取发生的时间（Unix 秒）
    fetched_at: float = field(default_factory=time.time)


@dataclass(frozen=True, slots=True)
class RequestSpec:
    """一次对外 GET 请求的描述，由请求队列串行发出"""

    path: str
    params: Dict[str, Any] = field(default_factory=dict)
    # 仅用于日志，标记请求归属的流
    stream_id: Optional[str] = None

    def describe(self) -> str:
        return f"{self.stream_id or '-'} GET {self.path}"


class CollectorError(Exception):
    """采集器基础异常类"""

    pass


class SentxApiError(CollectorError):
    """SentX 请求失败（网络错误、超时、非 2xx、响应体非 JSON）

    这类错误不会自动重试，当前轮询/回放直接放弃，下一轮正常进行。
    """

    def __init__(self, message: str, status: int | None = None):
        self.status = status
        super().__init__(message)


class RateLimitedError(SentxApiError):
    """SentX 返回 429

    由请求队列捕获：请求重新放回队首，并对整个队列执行冷却。

    Attributes:
        retry_after: 服务器通过 Retry-After 建议的等待时间（秒），可能为 None
    """

    def __init__(self, message: str = "rate limited", retry_after: float | None = None):
        self.retry_after = retry_after
        super().__init__(message, status=429)


class Transport(Protocol):
    """发送一个 RequestSpec 并返回解析后的 JSON"""

    async def __call__(self, spec: RequestSpec) -> Any: ...


class Fetcher(Protocol):
    """把一次抓取描述为 RequestSpec，并把响应解析成 RawEvent 列表"""

    def build_request(self, limit: int) -> RequestSpec: ...

    def parse(self, body: Any) -> List[RawEvent]: ...


def parse_timestamp(value: Any) -> Optional[datetime]:
    """把 SentX 的时间字段解析为 UTC datetime，无法解析时返回 None"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, (int, float)):
        # 毫秒时间戳
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            ts = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601（UTC，Z 结尾），保留原始精度以保证检查点往返不失真"""
    if value is None:
        return None
    value = value.astimezone(timezone.utc)
    return value.isoformat().replace("+00:00", "Z")

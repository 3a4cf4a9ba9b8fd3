"""SentX 数据源适配层

- base: RawEvent / RequestSpec / 异常层级
- sentx.client: aiohttp 客户端（单次 GET，无重试）
- sentx.activity: 铸造与市场活动的请求构造和响应解析
"""

from .base import (
    CollectorError,
    RateLimitedError,
    RawEvent,
    RequestSpec,
    SentxApiError,
)

__all__ = [
    "CollectorError",
    "RateLimitedError",
    "RawEvent",
    "RequestSpec",
    "SentxApiError",
]

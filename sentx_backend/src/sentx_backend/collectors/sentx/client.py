"""SentX HTTP 客户端

请求队列串行调用 `send()`，这里不做任何重试与限速：
429 转换为 RateLimitedError 交给队列处理，其他失败统一转换为 SentxApiError。
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import aiohttp

from ...config.settings import ApiConfig
from ..base import RateLimitedError, RequestSpec, SentxApiError

logger = logging.getLogger("sentx.collector.sentx.client")


class SentxClient:
    """SentX 公共 API 的异步客户端

    会话懒创建，由 `close()` 释放；也可以作为异步上下文管理器使用。
    """

    def __init__(
        self,
        config: ApiConfig,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = config.base_url.rstrip("/")
        self.api_key = config.api_key
        self.timeout = aiohttp.ClientTimeout(total=config.timeout_seconds)
        self.headers = {
            "User-Agent": config.user_agent,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "SentxClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self.timeout, headers=self.headers
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def build_params(self, spec: RequestSpec) -> Dict[str, str]:
        """合并 apikey 并丢弃值为 None 的参数（aiohttp 不接受 None）"""
        params: Dict[str, Any] = {"apikey": self.api_key}
        params.update(spec.params)
        return {key: str(value) for key, value in params.items() if value is not None}

    async def send(self, spec: RequestSpec) -> Any:
        """发出一次 GET 请求并返回解析后的 JSON

        Raises:
            RateLimitedError: HTTP 429
            SentxApiError: 网络错误、超时、其他非 2xx 状态或响应体不是 JSON
        """
        url = f"{self.base_url}{spec.path}"
        session = self._get_session()
        logger.debug("请求 SentX: %s", spec.describe())

        try:
            async with session.get(url, params=self.build_params(spec)) as resp:
                if resp.status == 429:
                    raise RateLimitedError(
                        f"SentX rate limited: {spec.describe()}",
                        retry_after=_parse_retry_after(resp.headers.get("Retry-After")),
                    )
                if resp.status >= 400:
                    raise SentxApiError(
                        f"SentX HTTP {resp.status}: {spec.describe()}",
                        status=resp.status,
                    )
                text = await resp.text()
        except asyncio.TimeoutError as e:
            raise SentxApiError(f"SentX request timed out: {spec.describe()}") from e
        except aiohttp.ClientError as e:
            raise SentxApiError(f"SentX request failed: {spec.describe()}: {e}") from e

        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise SentxApiError(
                f"SentX returned non-JSON body: {spec.describe()}", status=resp.status
            ) from e

    __call__ = send


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None

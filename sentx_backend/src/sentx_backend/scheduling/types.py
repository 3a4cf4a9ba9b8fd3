from __future__ import annotations

from enum import Enum
from typing import List, Optional, TYPE_CHECKING

from ..collectors.base import Fetcher, RawEvent

if TYPE_CHECKING:
    from .request_queue import RequestQueue


class JobKind(str, Enum):
    """Job 类型枚举，用于统一生成任务 ID。

    - poll: 周期性轮询
    - replay: 启动时的一次性回放
    """

    Poll = "poll"
    Replay = "replay"


def make_job_id(stream_id: str, kind: JobKind, *, suffix: Optional[str] = None) -> str:
    """生成统一格式的 APScheduler job id："<kind>:<stream_id>[:<suffix>]" """
    parts: list[str] = [kind.value, stream_id]
    if suffix:
        parts.append(suffix)
    return ":".join(parts)


async def fetch_batch(queue: "RequestQueue", fetcher: Fetcher, limit: int) -> List[RawEvent]:
    """经请求队列抓取一批事件

    网络/HTTP 错误以异常形式抛出；响应结构不符合预期时返回空列表。
    """
    body = await queue.request(fetcher.build_request(limit))
    return fetcher.parse(body)

"""API v1 路由定义。

只读的调度状态查询接口：流状态、检查点、最近投递的事件。
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from ...consumers.notifier import LogNotifier
from ...runtime import SchedulerRuntime
from ..schemas import (
    CheckpointResponse,
    CheckpointsResponse,
    RecentEventsResponse,
    StreamsResponse,
    StreamStatus,
)

router = APIRouter(prefix="/api/v1", tags=["scheduler"])


def get_runtime(request: Request) -> SchedulerRuntime:
    """依赖注入：获取当前应用的调度运行时"""

    runtime: Optional[SchedulerRuntime] = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="调度器尚未启动")
    return runtime


def get_notifier(request: Request) -> Optional[LogNotifier]:
    return getattr(request.app.state, "notifier", None)


@router.get("/streams", response_model=StreamsResponse, summary="列出所有流的轮询状态")
async def list_streams(runtime: SchedulerRuntime = Depends(get_runtime)):
    streams = runtime.status()["streams"]
    return StreamsResponse(data=[StreamStatus(**item) for item in streams])


@router.get(
    "/streams/{stream_id}",
    response_model=StreamStatus,
    summary="获取单个流的轮询状态",
)
async def get_stream(stream_id: str, runtime: SchedulerRuntime = Depends(get_runtime)):
    for item in runtime.status()["streams"]:
        if item["stream_id"] == stream_id:
            return StreamStatus(**item)
    raise HTTPException(status_code=404, detail=f"流 {stream_id} 不存在")


@router.get(
    "/checkpoints",
    response_model=CheckpointsResponse,
    summary="获取所有流的检查点",
)
async def list_checkpoints(runtime: SchedulerRuntime = Depends(get_runtime)):
    data = [
        CheckpointResponse(
            stream_id=stream_id,
            last_timestamp=entry.get("lastTimestamp"),
            last_transaction_id=entry.get("lastTransactionId"),
        )
        for stream_id, entry in runtime.checkpoints.snapshot().items()
    ]
    return CheckpointsResponse(data=data, path=str(runtime.checkpoints.path))


@router.get(
    "/events/recent",
    response_model=RecentEventsResponse,
    summary="最近投递的事件",
    description="返回去重之后交给下游的最近事件，可按流筛选",
)
async def recent_events(
    stream_id: Optional[str] = Query(None, description="流 ID 筛选"),
    limit: int = Query(20, ge=1, le=100, description="最多返回条数"),
    notifier: Optional[LogNotifier] = Depends(get_notifier),
):
    events = notifier.recent() if notifier is not None else []
    if stream_id:
        events = [e for e in events if e["streamId"] == stream_id]
    events = events[-limit:]
    return RecentEventsResponse(data=events, total=len(events))

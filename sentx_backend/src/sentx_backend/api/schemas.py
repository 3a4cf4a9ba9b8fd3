"""API 响应模型定义

本模块定义了状态接口的响应模型，使用 Pydantic 实现数据验证和序列化。
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class CheckpointResponse(BaseModel):
    """单个流的检查点"""

    stream_id: str = Field(..., description="流 ID")
    last_timestamp: Optional[str] = Field(None, description="最后处理事件的时间（ISO-8601）")
    last_transaction_id: Optional[str] = Field(None, description="最后处理事件的交易 ID")


class CheckpointsResponse(BaseModel):
    data: List[CheckpointResponse] = Field(..., description="检查点列表")
    path: str = Field(..., description="检查点文件路径")


class StreamStatus(BaseModel):
    """流的轮询状态"""

    stream_id: str = Field(..., description="流 ID")
    topic: str = Field(..., description="事件主题")
    phase: str = Field(..., description="轮询阶段：baseline / steady")
    interval_seconds: int = Field(..., description="轮询间隔（秒）")
    ticks: int = Field(0, description="已执行的轮询次数")
    emitted: int = Field(0, description="已投递的事件数")
    failures: int = Field(0, description="失败次数")
    last_error: Optional[str] = Field(None, description="最近一次错误")
    recent_cache_size: int = Field(0, description="最近结果缓存大小")
    next_run_at: Optional[str] = Field(None, description="下次轮询时间")


class StreamsResponse(BaseModel):
    data: List[StreamStatus] = Field(..., description="流状态列表")


class RecentEventsResponse(BaseModel):
    """最近投递的事件（经过去重之后）"""

    data: List[Dict[str, Any]] = Field(..., description="事件列表，从旧到新")
    total: int = Field(..., description="返回条数")


class ErrorResponse(BaseModel):
    """错误响应模型"""

    error: str = Field(..., description="错误类型")
    message: str = Field(..., description="错误信息")

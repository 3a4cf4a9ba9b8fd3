from __future__ import annotations

from enum import Enum
from typing import List, Optional
import logging

from pydantic import BaseModel, Field

logger = logging.getLogger("sentx.config")


class StreamKind(str, Enum):
    """流的数据类型，决定使用哪个 SentX 接口与结果解析方式"""

    Mints = "mints"
    Sales = "sales"
    Listings = "listings"


class DominanceRule(str, Enum):
    """检查点压制规则

    - timestamp: 时间早于检查点，或与检查点同一时刻且交易 ID 相同，视为已处理
    - lexical: 与 SentX 原有行为一致，时间 <= 检查点且交易 ID 字典序 <= 检查点
    """

    Timestamp = "timestamp"
    Lexical = "lexical"


class ApiConfig(BaseModel):
    api_key: str = Field(default="")
    base_url: str = Field(default="https://api.sentx.io")
    timeout_seconds: float = Field(default=15.0, gt=0)
    user_agent: str = Field(default="SentX-Scheduler/1.0")


class RateLimitConfig(BaseModel):
    max_tokens: int = Field(default=3, ge=1)
    refill_rate: float = Field(default=1.0, gt=0)
    token_poll_seconds: float = Field(default=0.1, gt=0)
    cooldown_seconds: float = Field(default=2.0, ge=0)


class ReplayConfig(BaseModel):
    enabled: bool = Field(default=True)
    window_seconds: int = Field(default=600, ge=1)
    limit: int = Field(default=50, ge=1)


class CheckpointConfig(BaseModel):
    path: str = Field(default="./data/sentx-checkpoints.json")
    dominance: DominanceRule = Field(default=DominanceRule.Timestamp)


class StreamConfig(BaseModel):
    stream_id: str
    kind: StreamKind = Field(default=StreamKind.Mints)
    token: Optional[str] = Field(default=None)
    collection_name: Optional[str] = Field(default=None)
    interval_seconds: int = Field(default=15, ge=1)
    limit: int = Field(default=20, ge=1)
    baseline: bool = Field(default=True)
    # 为空时与 limit 相同
    baseline_limit: Optional[int] = Field(default=None, ge=1)
    replay: bool = Field(default=True)
    include_hts: bool = Field(default=False)

    @property
    def baseline_batch_size(self) -> int:
        return self.baseline_limit or self.limit


class StorageConfig(BaseModel):
    db_path: str = Field(default="./data/sentx.db")
    retention_days: int = Field(default=3, ge=1, le=365)


class Settings(BaseModel):
    scheduler_timezone: str = Field(default="UTC")
    log_level: str = Field(default="INFO")
    api: ApiConfig = Field(default_factory=ApiConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    replay: ReplayConfig = Field(default_factory=ReplayConfig)
    checkpoint: CheckpointConfig = Field(default_factory=CheckpointConfig)
    streams: List[StreamConfig] = Field(default_factory=list)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    def stream(self, stream_id: str) -> StreamConfig:
        for item in self.streams:
            if item.stream_id == stream_id:
                return item
        raise KeyError(stream_id)


_settings: Settings | None = None


def get_settings() -> Settings:
    """获取全局配置实例

    按 默认值 < YAML < 环境变量 的优先级合并，首次调用时加载。
    """
    global _settings
    if _settings is None:
        from .loaders import load_settings

        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """清除缓存的配置（主要用于测试）"""
    global _settings
    _settings = None

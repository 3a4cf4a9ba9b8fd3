"""配置验证器模块

对 Settings 的各部分做专门校验，返回错误与警告列表。
验证失败只记录日志，由调用方决定是否继续使用该配置。
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, List

from .settings import RateLimitConfig, Settings, StreamConfig, StreamKind

logger = logging.getLogger("sentx.config.validators")

# 低于该值容易触发 SentX 限流
MIN_RECOMMENDED_INTERVAL = 10


@dataclass
class ValidationResult:
    """验证结果"""

    is_valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def add_error(self, message: str):
        self.errors.append(message)
        self.is_valid = False

    def add_warning(self, message: str):
        self.warnings.append(message)

    def merge(self, other: "ValidationResult"):
        if not other.is_valid:
            self.is_valid = False
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)


class ConfigValidator(ABC):
    @abstractmethod
    def validate(self, config: Any) -> ValidationResult:
        raise NotImplementedError


class StreamConfigValidator(ConfigValidator):
    """流配置验证器"""

    def validate(self, config: List[StreamConfig]) -> ValidationResult:
        result = ValidationResult()

        if len(config) == 0:
            result.add_warning("未配置任何流，调度器不会轮询任何数据")
            return result

        seen_ids: set[str] = set()
        for i, item in enumerate(config):
            result.merge(self._validate_stream(item, i))

            if item.stream_id in seen_ids:
                result.add_error(f"流 ID 重复: '{item.stream_id}'")
            seen_ids.add(item.stream_id)

        return result

    def _validate_stream(self, item: StreamConfig, index: int) -> ValidationResult:
        result = ValidationResult()
        prefix = f"流配置项 [{index}] {item.stream_id}"

        if not item.stream_id.strip():
            result.add_error(f"{prefix}: stream_id 不能为空")

        if item.kind == StreamKind.Mints and not item.token:
            result.add_error(f"{prefix}: mints 类型的流必须配置 token")

        if item.interval_seconds < MIN_RECOMMENDED_INTERVAL:
            result.add_warning(
                f"{prefix}: 轮询间隔 {item.interval_seconds}s 低于 "
                f"{MIN_RECOMMENDED_INTERVAL}s，可能触发限流"
            )

        if item.baseline and item.baseline_limit is not None:
            if item.baseline_limit > item.limit:
                result.add_warning(f"{prefix}: baseline_limit 大于 limit")
            elif item.baseline_limit < item.limit:
                result.add_warning(
                    f"{prefix}: baseline_limit 小于 limit，与检查点同一时间戳的较旧事件"
                    "可能在第一轮轮询时被当作新事件"
                )

        return result


class RateLimitConfigValidator(ConfigValidator):
    def validate(self, config: RateLimitConfig) -> ValidationResult:
        result = ValidationResult()

        if config.refill_rate > config.max_tokens:
            result.add_warning("refill_rate 大于 max_tokens，突发容量小于每秒补充量")
        if config.cooldown_seconds == 0:
            result.add_warning("cooldown_seconds 为 0，收到 429 后会立即重试")

        return result


class CompositeConfigValidator(ConfigValidator):
    """组合配置验证器"""

    def __init__(self):
        self.stream_validator = StreamConfigValidator()
        self.rate_limit_validator = RateLimitConfigValidator()

    def validate(self, config: Settings) -> ValidationResult:
        result = ValidationResult()

        result.merge(self.stream_validator.validate(config.streams))
        result.merge(self.rate_limit_validator.validate(config.rate_limit))

        if not config.api.api_key:
            result.add_warning("未配置 SentX API key (SENTX_API_KEY)")

        if config.replay.enabled and config.replay.limit < max(
            (s.limit for s in config.streams), default=0
        ):
            result.add_warning("回放批量小于常规轮询批量，回放召回率会下降")

        if result.errors:
            logger.error("配置验证发现 %d 个错误", len(result.errors))
            for error in result.errors:
                logger.error("  - %s", error)

        if result.warnings:
            logger.warning("配置验证发现 %d 个警告", len(result.warnings))
            for warning in result.warnings:
                logger.warning("  - %s", warning)

        if result.is_valid and not result.warnings:
            logger.info("配置验证通过")

        return result


def validate_settings(settings: Settings) -> ValidationResult:
    validator = CompositeConfigValidator()
    return validator.validate(settings)

"""配置加载器模块

按配置源拆分加载逻辑：默认值、YAML 文件、环境变量。
CompositeConfigLoader 按优先级深度合并，ConfigParser 负责转换为 Settings 并做校验。
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List

import yaml
from pydantic import ValidationError

from .settings import (
    ApiConfig,
    CheckpointConfig,
    RateLimitConfig,
    ReplayConfig,
    Settings,
    StorageConfig,
    StreamConfig,
)

logger = logging.getLogger("sentx.config.loaders")

CONFIG_FILE_NAME = "sentx.yaml"


class ConfigLoader(ABC):
    """配置加载器抽象基类"""

    @abstractmethod
    def load(self) -> Dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def is_available(self) -> bool:
        raise NotImplementedError


class YamlConfigLoader(ConfigLoader):
    """YAML 配置文件加载器

    未显式指定路径时，优先读取 SENTX_CONFIG，其次从包目录向上查找 sentx.yaml。
    """

    def __init__(self, file_path: Path | str | None = None):
        if file_path is None and os.environ.get("SENTX_CONFIG"):
            file_path = os.environ["SENTX_CONFIG"]
        self.file_path = Path(file_path) if file_path else self._discover_config_path()
        logger.debug("YAML 配置文件路径: %s", self.file_path)

    def _discover_config_path(self) -> Path:
        for start in (Path.cwd(), Path(__file__).resolve()):
            for parent in (start, *start.parents):
                candidate = parent / CONFIG_FILE_NAME
                if candidate.exists():
                    logger.info("发现配置文件: %s", candidate)
                    return candidate
        return Path.cwd() / CONFIG_FILE_NAME

    def is_available(self) -> bool:
        return self.file_path.exists()

    def load(self) -> Dict[str, Any]:
        if not self.is_available():
            logger.warning("配置文件不存在: %s", self.file_path)
            return {}

        try:
            content = self.file_path.read_text(encoding="utf-8")
            data = yaml.safe_load(content) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error("加载配置文件失败: %s", e)
            return {}

        if not isinstance(data, dict):
            logger.error("配置文件顶层必须是映射: %s", self.file_path)
            return {}
        logger.info("成功加载配置文件: %s", self.file_path)
        return data


class EnvironmentConfigLoader(ConfigLoader):
    """环境变量配置加载器

    只识别下表中列出的变量，值保持字符串，由 pydantic 负责类型转换。
    SENTX_POLL_INTERVAL 会覆盖所有流的轮询间隔。
    """

    # 变量名（去掉前缀） -> 配置路径
    KNOWN_KEYS: Dict[str, tuple[str, ...]] = {
        "API_KEY": ("api", "api_key"),
        "BASE_URL": ("api", "base_url"),
        "REQUEST_TIMEOUT": ("api", "timeout_seconds"),
        "MAX_TOKENS": ("rate_limit", "max_tokens"),
        "REFILL_RATE": ("rate_limit", "refill_rate"),
        "COOLDOWN_SECONDS": ("rate_limit", "cooldown_seconds"),
        "REPLAY_WINDOW_SECONDS": ("replay", "window_seconds"),
        "REPLAY_LIMIT": ("replay", "limit"),
        "CHECKPOINT_PATH": ("checkpoint", "path"),
        "DB_PATH": ("storage", "db_path"),
        "TIMEZONE": ("scheduler_timezone",),
        "LOG_LEVEL": ("log_level",),
    }

    def __init__(self, prefix: str = "SENTX_"):
        self.prefix = prefix

    def is_available(self) -> bool:
        return any(key.startswith(self.prefix) for key in os.environ)

    def load(self) -> Dict[str, Any]:
        config: Dict[str, Any] = {}

        for name, path in self.KNOWN_KEYS.items():
            value = os.environ.get(self.prefix + name)
            if value is None or value == "":
                continue
            node = config
            for part in path[:-1]:
                node = node.setdefault(part, {})
            node[path[-1]] = value

        interval = os.environ.get(self.prefix + "POLL_INTERVAL")
        if interval:
            config["poll_interval_override"] = interval

        if config:
            logger.info("从环境变量加载了 %d 个配置项", len(config))
        return config


class DefaultConfigLoader(ConfigLoader):
    """默认配置加载器"""

    def is_available(self) -> bool:
        return True

    def load(self) -> Dict[str, Any]:
        return Settings().model_dump(mode="json")


class CompositeConfigLoader(ConfigLoader):
    """组合配置加载器

    按优先级顺序合并多个配置源的数据，loaders 从低到高排列。
    """

    def __init__(self, loaders: List[ConfigLoader]):
        self.loaders = loaders

    def is_available(self) -> bool:
        return any(loader.is_available() for loader in self.loaders)

    def load(self) -> Dict[str, Any]:
        merged_config: Dict[str, Any] = {}

        for loader in self.loaders:
            if loader.is_available():
                config = loader.load()
                merged_config = self._deep_merge(merged_config, config)
                logger.debug("合并配置: %s", type(loader).__name__)

        return merged_config

    def _deep_merge(
        self, base: Dict[str, Any], override: Dict[str, Any]
    ) -> Dict[str, Any]:
        result = base.copy()

        for key, value in override.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result


class ConfigParser:
    """配置解析器

    把合并后的原始字典转换为 Settings。单个流或子配置无效时跳过/回退默认值，
    不让配置问题阻止进程启动。
    """

    @staticmethod
    def parse(config_data: Dict[str, Any]) -> Settings:
        streams = ConfigParser._parse_streams(config_data.get("streams", []))

        override = config_data.get("poll_interval_override")
        if override is not None:
            try:
                interval = int(override)
            except (TypeError, ValueError):
                logger.warning("忽略无效的 SENTX_POLL_INTERVAL: %s", override)
            else:
                streams = [
                    s.model_copy(update={"interval_seconds": interval}) for s in streams
                ]

        settings = Settings(
            scheduler_timezone=config_data.get("scheduler_timezone", "UTC"),
            log_level=str(config_data.get("log_level", "INFO")),
            api=ConfigParser._parse_section(ApiConfig, config_data.get("api")),
            rate_limit=ConfigParser._parse_section(
                RateLimitConfig, config_data.get("rate_limit")
            ),
            replay=ConfigParser._parse_section(ReplayConfig, config_data.get("replay")),
            checkpoint=ConfigParser._parse_section(
                CheckpointConfig, config_data.get("checkpoint")
            ),
            streams=streams,
            storage=ConfigParser._parse_section(
                StorageConfig, config_data.get("storage")
            ),
        )

        from .validators import validate_settings

        validation_result = validate_settings(settings)
        if not validation_result.is_valid:
            # 即使验证失败仍返回配置，避免因配置问题导致系统完全无法启动
            logger.error("配置验证失败，但仍将使用该配置")

        logger.info("配置解析完成，流数量: %d", len(streams))
        return settings

    @staticmethod
    def _parse_section(model: type, data: Any):
        if not isinstance(data, dict):
            return model()
        try:
            return model(**data)
        except ValidationError as e:
            logger.warning("%s 解析失败，使用默认配置: %s", model.__name__, e)
            return model()

    @staticmethod
    def _parse_streams(streams_data: Any) -> List[StreamConfig]:
        items: List[StreamConfig] = []

        if isinstance(streams_data, list):
            for item_data in streams_data:
                if not isinstance(item_data, dict):
                    continue
                try:
                    items.append(StreamConfig(**item_data))
                except ValidationError as e:
                    logger.warning("跳过无效的流配置项: %s, 错误: %s", item_data, e)

        return items


def create_default_config_loader(
    yaml_path: Path | str | None = None,
) -> CompositeConfigLoader:
    """创建默认的配置加载器

    按优先级顺序：默认配置 < YAML文件 < 环境变量
    """
    loaders = [
        DefaultConfigLoader(),
        YamlConfigLoader(yaml_path),
        EnvironmentConfigLoader(),
    ]

    return CompositeConfigLoader(loaders)


def load_settings(yaml_path: Path | str | None = None) -> Settings:
    return ConfigParser.parse(create_default_config_loader(yaml_path).load())

"""检查点存储

每个流一条 "最后看到的位置"，持久化为一个 JSON 文件：

    {"<stream_id>": {"lastTimestamp": "<ISO-8601>" | null,
                     "lastTransactionId": "<id>" | null}}

更新策略：只有观测到严格更新的时间戳时才替换（检查点永不回退），每次替换后
立即整体重写文件。写失败只记日志，内存中的检查点继续用于后续去重判断；丢失
最后一次写入只会导致重启后的重复投递，而不会丢事件。
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from ..collectors.base import RawEvent, format_timestamp, parse_timestamp
from ..config.settings import DominanceRule

logger = logging.getLogger("sentx.checkpoints")


@dataclass
class Checkpoint:
    stream_id: str
    last_timestamp: Optional[datetime] = None
    last_transaction_id: Optional[str] = None

    @property
    def is_set(self) -> bool:
        return self.last_timestamp is not None

    def is_older_than(self, event: RawEvent) -> bool:
        """事件是否严格新于检查点（未设置的检查点视为最旧）"""
        return self.last_timestamp is None or event.timestamp > self.last_timestamp

    def dominates(
        self, event: RawEvent, rule: DominanceRule = DominanceRule.Timestamp
    ) -> bool:
        """事件是否已被检查点覆盖（即不应作为新事件投递）"""
        if self.last_timestamp is None:
            return False

        if rule == DominanceRule.Lexical:
            if self.last_transaction_id is None:
                return False
            return (
                event.timestamp <= self.last_timestamp
                and event.id <= self.last_transaction_id
            )

        if event.timestamp < self.last_timestamp:
            return True
        return (
            event.timestamp == self.last_timestamp
            and event.id == self.last_transaction_id
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lastTimestamp": format_timestamp(self.last_timestamp),
            "lastTransactionId": self.last_transaction_id,
        }

    @classmethod
    def from_dict(cls, stream_id: str, data: Any) -> "Checkpoint":
        if not isinstance(data, dict):
            return cls(stream_id=stream_id)
        transaction_id = data.get("lastTransactionId")
        return cls(
            stream_id=stream_id,
            last_timestamp=parse_timestamp(data.get("lastTimestamp")),
            last_transaction_id=str(transaction_id) if transaction_id is not None else None,
        )


class CheckpointStore:
    """按流管理检查点的 JSON 文件存储"""

    def __init__(
        self,
        path: Path | str,
        stream_ids: Iterable[str] = (),
        dominance: DominanceRule = DominanceRule.Timestamp,
    ):
        self.path = Path(path)
        self.dominance = dominance
        self._stream_ids = list(stream_ids)
        self._checkpoints: Dict[str, Checkpoint] = {
            sid: Checkpoint(stream_id=sid) for sid in self._stream_ids
        }
        self._stats = {"advances": 0, "save_failures": 0}

    def load(self) -> Dict[str, Checkpoint]:
        """加载检查点

        文件不存在时所有流为空检查点（首次启动）；文件损坏时记录错误并同样从空开始。
        文件中未配置的流会保留，下次保存时原样写回。
        """
        checkpoints = {sid: Checkpoint(stream_id=sid) for sid in self._stream_ids}

        if not self.path.exists():
            logger.info("未找到检查点文件，从空检查点开始: %s", self.path)
            self._checkpoints = checkpoints
            return dict(checkpoints)

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error("读取检查点文件失败，从空检查点开始: %s error=%s", self.path, e)
            self._checkpoints = checkpoints
            return dict(checkpoints)

        if not isinstance(data, dict):
            logger.error("检查点文件格式不正确，从空检查点开始: %s", self.path)
            data = {}

        for stream_id, entry in data.items():
            checkpoints[stream_id] = Checkpoint.from_dict(stream_id, entry)

        self._checkpoints = checkpoints
        logger.info(
            "已加载检查点: %s",
            {sid: cp.to_dict() for sid, cp in checkpoints.items()},
        )
        return dict(checkpoints)

    def save(self, checkpoints: Optional[Dict[str, Checkpoint]] = None) -> bool:
        """整体重写检查点文件（临时文件 + rename），失败时返回 False"""
        if checkpoints is not None:
            self._checkpoints = dict(checkpoints)

        payload = {sid: cp.to_dict() for sid, cp in self._checkpoints.items()}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", dir=str(self.path.parent)
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(payload, f, indent=2)
                os.replace(tmp_name, self.path)
            except BaseException:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            self._stats["save_failures"] += 1
            logger.error("保存检查点失败，保留内存状态: %s error=%s", self.path, e)
            return False
        return True

    def get(self, stream_id: str) -> Checkpoint:
        checkpoint = self._checkpoints.get(stream_id)
        if checkpoint is None:
            checkpoint = Checkpoint(stream_id=stream_id)
            self._checkpoints[stream_id] = checkpoint
        return checkpoint

    def is_dominated(self, stream_id: str, event: RawEvent) -> bool:
        return self.get(stream_id).dominates(event, self.dominance)

    def advance(self, stream_id: str, newest: RawEvent) -> bool:
        """用一批中最新的事件推进检查点

        只有事件时间严格晚于当前检查点（或检查点未设置）时才更新并写盘。

        Returns:
            是否发生了推进
        """
        current = self.get(stream_id)
        if not current.is_older_than(newest):
            return False

        self._checkpoints[stream_id] = Checkpoint(
            stream_id=stream_id,
            last_timestamp=newest.timestamp,
            last_transaction_id=newest.id,
        )
        self._stats["advances"] += 1
        self.save()
        logger.info(
            "检查点已推进: stream=%s timestamp=%s id=%s",
            stream_id,
            format_timestamp(newest.timestamp),
            newest.id,
        )
        return True

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {sid: cp.to_dict() for sid, cp in self._checkpoints.items()}

    def get_stats(self) -> Dict[str, Any]:
        return {**self._stats, "path": str(self.path)}

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict

from ..collectors.base import RawEvent, format_timestamp
from ..config.settings import StreamKind


class Topic(str, Enum):
    """事件总线主题"""

    Mints = "mints"
    Sales = "sales"
    Listings = "listings"

    @classmethod
    def for_kind(cls, kind: StreamKind) -> "Topic":
        return cls(kind.value)


@dataclass(frozen=True, slots=True)
class StreamEvent:
    """投递给下游消费者的事件

    消费者必须按 (stream_id, id) 去重：回放事件 (is_replay=True) 以及在崩溃
    重启等情况下的任何事件都可能是重复投递。
    """

    stream_id: str
    topic: Topic
    id: str
    timestamp: datetime
    payload: Dict[str, Any] = field(default_factory=dict)
    is_replay: bool = False

    @property
    def dedup_key(self) -> tuple[str, str]:
        return (self.stream_id, self.id)

    @classmethod
    def from_raw(
        cls, stream_id: str, topic: Topic, raw: RawEvent, *, is_replay: bool = False
    ) -> "StreamEvent":
        return cls(
            stream_id=stream_id,
            topic=topic,
            id=raw.id,
            timestamp=raw.timestamp,
            payload=raw.payload,
            is_replay=is_replay,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "streamId": self.stream_id,
            "topic": self.topic.value,
            "id": self.id,
            "timestamp": format_timestamp(self.timestamp),
            "sourcePayload": self.payload,
            "isReplay": self.is_replay,
        }

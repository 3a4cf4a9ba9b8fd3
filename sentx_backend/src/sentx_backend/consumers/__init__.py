"""下游消费者

- DedupConsumer: 按 (stream_id, id) 去重的处理器包装
- ProcessedEventStore: SQLite 持久化的已处理事件记录
- LogNotifier: 默认处理器，把事件写入日志
"""

from .dedup import DedupConsumer
from .notifier import LogNotifier, describe_event
from .store import ProcessedEventStore

__all__ = [
    "DedupConsumer",
    "LogNotifier",
    "ProcessedEventStore",
    "describe_event",
]

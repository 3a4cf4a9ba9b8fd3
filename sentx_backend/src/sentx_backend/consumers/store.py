"""已处理事件存储

按 (stream_id, event_id) 记录已经投递过的事件，进程重启后仍然有效。
过期记录按保留天数清理，避免表无限增长。
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

from ..models.processed_event import DatabaseManager, ProcessedEvent

logger = logging.getLogger("sentx.consumer.store")

SECONDS_PER_DAY = 24 * 60 * 60


class ProcessedEventStore:
    """SQLite 已处理事件存储"""

    def __init__(
        self,
        db_path: str = "./data/sentx.db",
        *,
        db_manager: Optional[DatabaseManager] = None,
    ):
        self.db_path = db_path
        self.db_manager = db_manager or DatabaseManager(db_path)
        self._stats = {"marked": 0, "cleaned": 0, "errors": 0}
        logger.info("已处理事件存储初始化完成，数据库路径: %s", db_path)

    def is_processed(self, stream_id: str, event_id: str) -> bool:
        session = self.db_manager.get_session()
        try:
            return session.get(ProcessedEvent, (stream_id, event_id)) is not None
        finally:
            session.close()

    def mark_processed(
        self, stream_id: str, event_id: str, is_replay: bool = False
    ) -> bool:
        """记录事件已处理（幂等）。

        Returns:
            True 表示新写入，False 表示已存在
        """
        session = self.db_manager.get_session()
        try:
            if session.get(ProcessedEvent, (stream_id, event_id)) is not None:
                return False
            session.add(
                ProcessedEvent(
                    stream_id=stream_id,
                    event_id=event_id,
                    processed_at=time.time(),
                    was_replay=is_replay,
                )
            )
            session.commit()
            self._stats["marked"] += 1
            return True
        except Exception as e:
            session.rollback()
            self._stats["errors"] += 1
            logger.error(
                "记录已处理事件失败，已回滚: stream=%s id=%s error=%s",
                stream_id,
                event_id,
                e,
            )
            raise
        finally:
            session.close()

    def cleanup_older_than(self, days: float) -> int:
        """删除处理时间早于 days 天前的记录，返回删除条数"""
        cutoff = time.time() - days * SECONDS_PER_DAY
        session = self.db_manager.get_session()
        try:
            deleted = (
                session.query(ProcessedEvent)
                .filter(ProcessedEvent.processed_at < cutoff)
                .delete(synchronize_session=False)
            )
            session.commit()
        except Exception as e:
            session.rollback()
            self._stats["errors"] += 1
            logger.error("清理过期记录失败，已回滚: %s", e)
            raise
        finally:
            session.close()

        self._stats["cleaned"] += deleted
        if deleted:
            logger.info("清理了 %d 条超过 %s 天的已处理记录", deleted, days)
        return deleted

    def count(self, stream_id: Optional[str] = None) -> int:
        session = self.db_manager.get_session()
        try:
            query = session.query(ProcessedEvent)
            if stream_id is not None:
                query = query.filter(ProcessedEvent.stream_id == stream_id)
            return query.count()
        finally:
            session.close()

    def close(self) -> None:
        self.db_manager.dispose()

    def get_stats(self) -> Dict[str, Any]:
        return {**self._stats, "db_path": self.db_path}

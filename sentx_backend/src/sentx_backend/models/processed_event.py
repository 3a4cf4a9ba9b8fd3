"""已处理事件数据模型

消费者侧的投递记录，用于跨重启按 (stream_id, event_id) 去重，使用 SQLAlchemy ORM 实现。
"""

from __future__ import annotations

import time
from pathlib import Path

from sqlalchemy import Boolean, Float, String, create_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker


class Base(DeclarativeBase):
    pass


class ProcessedEvent(Base):
    """已处理事件表

    字段说明：
    - stream_id: 流 ID（如 bored_ape_mints）
    - event_id: 事件在数据源中的 ID（交易 ID）
    - processed_at: 处理时间戳（Unix 时间戳），用于过期清理
    - was_replay: 首次处理时是否为回放事件
    """

    __tablename__ = "processed_events"

    # 复合主键：流 ID + 事件 ID
    stream_id: Mapped[str] = mapped_column(String, primary_key=True, comment="流 ID")
    event_id: Mapped[str] = mapped_column(String, primary_key=True, comment="事件 ID")

    processed_at: Mapped[float] = mapped_column(
        Float, nullable=False, index=True, default=time.time, comment="处理时间戳"
    )
    was_replay: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, comment="首次处理时是否为回放事件"
    )

    def __repr__(self) -> str:
        return (
            f"<ProcessedEvent(stream_id={self.stream_id}, "
            f"event_id={self.event_id}, was_replay={self.was_replay})>"
        )


class DatabaseManager:
    """数据库管理器

    提供 SQLite 连接和会话管理，首次创建时自动建表。由运行时上下文持有，
    不再是全局单例，测试可以为每个用例创建独立实例。
    """

    def __init__(self, db_path: str = "./data/sentx.db"):
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.engine = create_engine(
            f"sqlite:///{db_path}",
            connect_args={"check_same_thread": False},
            echo=False,
        )
        Base.metadata.create_all(self.engine, checkfirst=True)
        self.Session = sessionmaker(bind=self.engine)

    def get_session(self):
        """获取数据库会话"""
        return self.Session()

    def dispose(self) -> None:
        self.engine.dispose()

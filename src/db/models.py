from typing import Any, Optional
from sqlalchemy import String, ForeignKey, JSON, Boolean, Integer, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from .base import Base
from datetime import datetime

class SessionRecord(Base):
    """协作会话文档"""

    # 会话码
    code: Mapped[str] = mapped_column(String(16), unique=True, index=True)
    owner: Mapped[str] = mapped_column(String(255))
    # 有序用例列表(完整JSON数组，整表替换)
    test_cases: Mapped[Any] = mapped_column(JSON, default=list)
    # 每次写入递增，仅用于观察
    revision: Mapped[int] = mapped_column(Integer, default=0)

    # 关联关系
    participants: Mapped[list["ParticipantRecord"]] = relationship(
        back_populates="session", cascade="all, delete-orphan"
    )

class ParticipantRecord(Base):
    """会话参与者(每次加入一条记录)"""

    session_code: Mapped[str] = mapped_column(ForeignKey("sessionrecord.code", ondelete="CASCADE"))
    identity: Mapped[str] = mapped_column(String(255))
    role: Mapped[str] = mapped_column(String(20))  # editor/viewer
    online: Mapped[bool] = mapped_column(Boolean, default=True)
    # 自增序号保证按加入顺序排列
    seq: Mapped[int] = mapped_column(Integer, default=0)
    last_seen: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    session: Mapped["SessionRecord"] = relationship(back_populates="participants")

    __table_args__ = (
        Index("ix_participant_session_online", "session_code", "online"),
    )

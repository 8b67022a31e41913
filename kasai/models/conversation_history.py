"""
models/conversation_history.py — SQLAlchemy ORM model for supportive-mode chat history.

Table: conversation_history
One row per message. Scoped by (user_id, session_id) where session_id is the
day-scoped id "{user_id}_{YYYY-MM-DD}". Rows older than the retention horizon are
purged by the maintenance sweep.
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from kasai.database import Base


class ConversationHistoryORM(Base):
    """
    ORM model for a single supportive-mode message.

    role: "user" or "assistant"; String(16) leaves room for "system".
    created_at is indexed for the retention sweep.
    """
    __tablename__ = "conversation_history"
    __table_args__ = (
        Index("ix_conversation_history_user_session", "user_id", "session_id"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="UUID row identifier",
    )
    user_id: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        comment="Owning user (phone-equivalent id)",
    )
    session_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Day-scoped session id — {user_id}_{YYYY-MM-DD}",
    )
    role: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="'user' or 'assistant'",
    )
    content: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )

"""
models/user.py — SQLAlchemy ORM model for chat users.

Table: users
Created on first contact; never deleted by the session core.
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from kasai.database import Base


class UserORM(Base):
    """
    ORM model for a user identified by a stable external id (phone number).

    name is optional, used only to personalize supportive-mode greetings.
    """
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(32),
        primary_key=True,
        comment="Stable external identifier (phone-equivalent)",
    )
    name: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    locale: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default="id-ID",
    )
    timezone: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="Asia/Jakarta",
    )
    is_admin: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    last_activity: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

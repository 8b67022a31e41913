"""
models/session_record.py — SQLAlchemy ORM models for the durable session tier.

Tables:
  session_records        generic per-user records (pending flows, mode state)
  registration_sessions  multi-step registration, absolute 24h expiry
  transport_sessions     opaque chat-transport credentials, refreshing TTL

Dual-store pattern:
  - Redis (fast tier):      TTL-enforced copies keyed 'kasai:{kind}:{key}'
  - PostgreSQL (here):      system of record, survives Redis restarts

Every read filters rows whose deadline passed; the maintenance sweep deletes them.
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from kasai.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionRecordORM(Base):
    """
    ORM model for a keyed session record.

    kind:       SessionKind value: pending_transaction, edit_session, ...
    key:        owning user id
    expires_at: NULL for records that never expire (mode_state)
    """
    __tablename__ = "session_records"

    kind: Mapped[str] = mapped_column(
        String(32),
        primary_key=True,
        comment="SessionKind value",
    )
    key: Mapped[str] = mapped_column(
        String(100),
        primary_key=True,
        comment="Record key — the owning user id",
    )
    data: Mapped[dict] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False,
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
        comment="Wall-clock deadline; NULL = no expiry",
    )


class RegistrationSessionORM(Base):
    """Registration progress: current step plus collected fields."""
    __tablename__ = "registration_sessions"

    user_id: Mapped[str] = mapped_column(
        String(32),
        primary_key=True,
    )
    step: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="name",
    )
    data: Mapped[dict] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        comment="Fields collected so far",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )


class TransportSessionORM(Base):
    """Opaque connection-credential blob for the chat transport client."""
    __tablename__ = "transport_sessions"

    client_id: Mapped[str] = mapped_column(
        String(100),
        primary_key=True,
    )
    data: Mapped[dict] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False,
        index=True,
        comment="Liveness marker — rows idle past the transport TTL are expired",
    )

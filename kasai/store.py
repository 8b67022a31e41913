"""
store.py — Data access facade for the KasAI durable tier.

Provides a consistent, high-level API for persisting and retrieving session rows,
users and conversation history. PostgresDurableTier and the maintenance sweep use
these functions; nothing else touches SQLAlchemy session tables directly.

Design principles:
  - All functions are async and accept an AsyncSession parameter
  - No raw SQL: ORM / Core expressions only
  - Upserts use INSERT ... ON CONFLICT DO UPDATE (PostgreSQL dialect)
  - Every read takes `now` and filters rows whose deadline has passed
  - Logs only user ids / kinds, never record payloads or message content
  - flush() only; the caller owns the transaction and commits
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from kasai.models.conversation_history import ConversationHistoryORM
from kasai.models.session_record import (
    RegistrationSessionORM,
    SessionRecordORM,
    TransportSessionORM,
)
from kasai.models.user import UserORM

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Generic session records (pending flows, mode state)
# ---------------------------------------------------------------------------

async def upsert_record(
    db: AsyncSession,
    kind: str,
    key: str,
    data: dict,
    now: datetime,
    expires_at: Optional[datetime],
) -> None:
    """
    Insert or replace the (kind, key) record.
    created_at is reset on replace: a new write is a new record as far as expiry goes.
    """
    stmt = insert(SessionRecordORM).values(
        kind=kind,
        key=key,
        data=data,
        created_at=now,
        updated_at=now,
        expires_at=expires_at,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[SessionRecordORM.kind, SessionRecordORM.key],
        set_={
            "data": stmt.excluded.data,
            "created_at": stmt.excluded.created_at,
            "updated_at": stmt.excluded.updated_at,
            "expires_at": stmt.excluded.expires_at,
        },
    )
    await db.execute(stmt)
    await db.flush()
    logger.debug("Upserted session record kind=%s key=%s", kind, key)


async def get_record(
    db: AsyncSession,
    kind: str,
    key: str,
    now: datetime,
) -> Optional[SessionRecordORM]:
    """
    Retrieve a live (kind, key) record.
    Returns None if absent or if its expires_at has passed.
    """
    result = await db.execute(
        select(SessionRecordORM).where(
            SessionRecordORM.kind == kind,
            SessionRecordORM.key == key,
            or_(SessionRecordORM.expires_at.is_(None), SessionRecordORM.expires_at > now),
        )
    )
    return result.scalar_one_or_none()


async def delete_record(db: AsyncSession, kind: str, key: str) -> int:
    result = await db.execute(
        delete(SessionRecordORM).where(
            SessionRecordORM.kind == kind,
            SessionRecordORM.key == key,
        )
    )
    return result.rowcount or 0


async def touch_record(db: AsyncSession, kind: str, key: str, now: datetime, expires_at: datetime) -> None:
    await db.execute(
        update(SessionRecordORM)
        .where(SessionRecordORM.kind == kind, SessionRecordORM.key == key)
        .values(updated_at=now, expires_at=expires_at)
    )


# ---------------------------------------------------------------------------
# Registration sessions — absolute expiry
# ---------------------------------------------------------------------------

async def upsert_registration(
    db: AsyncSession,
    user_id: str,
    step: str,
    data: dict,
    now: datetime,
    expires_at: datetime,
) -> None:
    """Insert or replace a registration row; every update re-extends expires_at."""
    stmt = insert(RegistrationSessionORM).values(
        user_id=user_id,
        step=step,
        data=data,
        created_at=now,
        expires_at=expires_at,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[RegistrationSessionORM.user_id],
        set_={
            "step": stmt.excluded.step,
            "data": stmt.excluded.data,
            "created_at": stmt.excluded.created_at,
            "expires_at": stmt.excluded.expires_at,
        },
    )
    await db.execute(stmt)
    await db.flush()
    logger.info("Upserted registration session user_id=%s step=%s", user_id, step)


async def get_registration(
    db: AsyncSession,
    user_id: str,
    now: datetime,
) -> Optional[RegistrationSessionORM]:
    result = await db.execute(
        select(RegistrationSessionORM).where(
            RegistrationSessionORM.user_id == user_id,
            RegistrationSessionORM.expires_at > now,
        )
    )
    return result.scalar_one_or_none()


async def delete_registration(db: AsyncSession, user_id: str) -> int:
    result = await db.execute(
        delete(RegistrationSessionORM).where(RegistrationSessionORM.user_id == user_id)
    )
    return result.rowcount or 0


# ---------------------------------------------------------------------------
# Transport sessions — refreshing expiry keyed on updated_at
# ---------------------------------------------------------------------------

async def upsert_transport(
    db: AsyncSession,
    client_id: str,
    data: dict,
    now: datetime,
) -> None:
    stmt = insert(TransportSessionORM).values(client_id=client_id, data=data, updated_at=now)
    stmt = stmt.on_conflict_do_update(
        index_elements=[TransportSessionORM.client_id],
        set_={"data": stmt.excluded.data, "updated_at": stmt.excluded.updated_at},
    )
    await db.execute(stmt)
    await db.flush()
    logger.debug("Upserted transport session client_id=%s", client_id)


async def get_transport(
    db: AsyncSession,
    client_id: str,
    now: datetime,
    ttl_seconds: int,
) -> Optional[TransportSessionORM]:
    """Returns None if the session has been idle longer than ttl_seconds."""
    cutoff = now - timedelta(seconds=ttl_seconds)
    result = await db.execute(
        select(TransportSessionORM).where(
            TransportSessionORM.client_id == client_id,
            TransportSessionORM.updated_at > cutoff,
        )
    )
    return result.scalar_one_or_none()


async def touch_transport(db: AsyncSession, client_id: str, now: datetime) -> None:
    await db.execute(
        update(TransportSessionORM)
        .where(TransportSessionORM.client_id == client_id)
        .values(updated_at=now)
    )


async def delete_transport(db: AsyncSession, client_id: str) -> int:
    result = await db.execute(
        delete(TransportSessionORM).where(TransportSessionORM.client_id == client_id)
    )
    return result.rowcount or 0


# ---------------------------------------------------------------------------
# Sweep / stats
# ---------------------------------------------------------------------------

async def delete_expired_sessions(
    db: AsyncSession,
    now: datetime,
    transport_ttl_seconds: int,
) -> dict[str, int]:
    """
    Delete every durable session row whose deadline has passed.
    Returns per-table deleted row counts.
    """
    cutoff = now - timedelta(seconds=transport_ttl_seconds)
    records = await db.execute(
        delete(SessionRecordORM).where(
            and_(SessionRecordORM.expires_at.is_not(None), SessionRecordORM.expires_at <= now)
        )
    )
    registrations = await db.execute(
        delete(RegistrationSessionORM).where(RegistrationSessionORM.expires_at <= now)
    )
    transports = await db.execute(
        delete(TransportSessionORM).where(TransportSessionORM.updated_at <= cutoff)
    )
    counts = {
        "session_records": records.rowcount or 0,
        "registration_sessions": registrations.rowcount or 0,
        "transport_sessions": transports.rowcount or 0,
    }
    logger.info("Deleted expired session rows %s", counts)
    return counts


async def count_live_records(db: AsyncSession, now: datetime) -> dict[str, int]:
    """Live generic records grouped by kind."""
    result = await db.execute(
        select(SessionRecordORM.kind, func.count())
        .where(or_(SessionRecordORM.expires_at.is_(None), SessionRecordORM.expires_at > now))
        .group_by(SessionRecordORM.kind)
    )
    return {kind: count for kind, count in result.all()}


async def count_live_registrations(db: AsyncSession, now: datetime) -> int:
    result = await db.execute(
        select(func.count()).select_from(RegistrationSessionORM).where(
            RegistrationSessionORM.expires_at > now
        )
    )
    return result.scalar_one()


async def count_live_transports(db: AsyncSession, now: datetime, ttl_seconds: int) -> int:
    cutoff = now - timedelta(seconds=ttl_seconds)
    result = await db.execute(
        select(func.count()).select_from(TransportSessionORM).where(
            TransportSessionORM.updated_at > cutoff
        )
    )
    return result.scalar_one()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

async def get_user(db: AsyncSession, user_id: str) -> Optional[UserORM]:
    result = await db.execute(select(UserORM).where(UserORM.id == user_id))
    return result.scalar_one_or_none()


async def ensure_user(
    db: AsyncSession,
    user_id: str,
    now: datetime,
    name: Optional[str] = None,
) -> UserORM:
    """
    Create the user on first contact, otherwise bump last_activity.
    A supplied name only fills an empty one, it never overwrites.
    """
    orm = await get_user(db, user_id)
    if orm is None:
        orm = UserORM(id=user_id, name=name, created_at=now, last_activity=now)
        db.add(orm)
        logger.info("Created user user_id=%s", user_id)
    else:
        orm.last_activity = now
        if name and not orm.name:
            orm.name = name
    await db.flush()
    return orm


# ---------------------------------------------------------------------------
# Conversation history
# ---------------------------------------------------------------------------

async def add_history_message(
    db: AsyncSession,
    user_id: str,
    session_id: str,
    role: str,
    content: str,
    created_at: datetime,
) -> None:
    """Persist one message. Logs only user_id/session_id, never content."""
    db.add(
        ConversationHistoryORM(
            user_id=user_id,
            session_id=session_id,
            role=role,
            content=content,
            created_at=created_at,
        )
    )
    await db.flush()
    logger.debug("Saved history message user_id=%s session_id=%s role=%s", user_id, session_id, role)


async def get_history_messages(
    db: AsyncSession,
    user_id: str,
    session_id: str,
    limit: int,
) -> list[ConversationHistoryORM]:
    """
    Retrieve the most recent `limit` messages for a day session, oldest first
    (chronological order for the interpreter prompt).
    """
    result = await db.execute(
        select(ConversationHistoryORM)
        .where(
            ConversationHistoryORM.user_id == user_id,
            ConversationHistoryORM.session_id == session_id,
        )
        .order_by(ConversationHistoryORM.created_at.desc())
        .limit(limit)
    )
    rows = list(result.scalars().all())
    rows.reverse()
    return rows


async def delete_history(db: AsyncSession, user_id: str, session_id: Optional[str] = None) -> int:
    """Delete one day session, or every session of the user when session_id is None."""
    stmt = delete(ConversationHistoryORM).where(ConversationHistoryORM.user_id == user_id)
    if session_id is not None:
        stmt = stmt.where(ConversationHistoryORM.session_id == session_id)
    result = await db.execute(stmt)
    return result.rowcount or 0


async def delete_history_before(db: AsyncSession, cutoff: datetime) -> int:
    result = await db.execute(
        delete(ConversationHistoryORM).where(ConversationHistoryORM.created_at < cutoff)
    )
    deleted = result.rowcount or 0
    logger.info("Purged %d history rows older than %s", deleted, cutoff.isoformat())
    return deleted

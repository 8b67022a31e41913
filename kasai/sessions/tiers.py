"""
tiers.py — Storage tier contracts and the PostgreSQL durable tier.

SessionManager talks only to these two protocols:
  CacheTier    volatile key/value store with native TTL (RedisCacheTier in kasai/cache.py)
  DurableTier  system of record, kind-aware, filters expired rows on every read

Tests substitute in-memory implementations of both (kasai/tests/fakes.py).
"""
import time
from datetime import datetime, timedelta
from typing import Dict, List, NamedTuple, Optional, Protocol

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kasai import store
from kasai.database import session_scope
from kasai.sessions.kinds import SessionKind
from kasai.sessions.schemas import HistoryEntry, UserProfile


class StoredRecord(NamedTuple):
    value: dict
    expires_at: Optional[datetime]


class CacheTier(Protocol):
    async def set(self, key: str, value: str, ttl: int) -> None: ...

    async def get(self, key: str) -> Optional[str]: ...

    async def delete(self, *keys: str) -> int: ...

    async def expire(self, key: str, ttl: int) -> bool: ...

    async def keys(self, pattern: str) -> List[str]: ...

    async def ping(self) -> float: ...


class DurableTier(Protocol):
    async def put(
        self,
        kind: SessionKind,
        key: str,
        value: dict,
        now: datetime,
        expires_at: Optional[datetime],
    ) -> None: ...

    async def fetch(self, kind: SessionKind, key: str, now: datetime) -> Optional[StoredRecord]: ...

    async def touch(self, kind: SessionKind, key: str, now: datetime, expires_at: datetime) -> None: ...

    async def remove(self, kind: SessionKind, key: str) -> None: ...

    async def sweep_expired(self, now: datetime) -> Dict[str, int]: ...

    async def count_live(self, now: datetime) -> Dict[str, int]: ...

    async def ping(self) -> float: ...

    async def get_user(self, user_id: str) -> Optional[UserProfile]: ...

    async def ensure_user(self, user_id: str, now: datetime, name: Optional[str] = None) -> UserProfile: ...

    async def append_history(self, user_id: str, session_id: str, entry: HistoryEntry) -> None: ...

    async def fetch_history(self, user_id: str, session_id: str, limit: int) -> List[HistoryEntry]: ...

    async def clear_history(self, user_id: str, session_id: Optional[str] = None) -> int: ...

    async def purge_history(self, cutoff: datetime) -> int: ...


class PostgresDurableTier:
    """
    DurableTier over the SQLAlchemy async session factory.

    Routing by kind:
      registration   -> registration_sessions (step, data=fields, expires_at)
      transport      -> transport_sessions    (liveness = updated_at + transport_ttl)
      everything else-> session_records       (kind, key) composite key

    One AsyncSession per operation, committed before returning. Any SQLAlchemy or
    connection error is re-raised as DurableStoreFailure.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], transport_ttl: int) -> None:
        self._session_factory = session_factory
        self._transport_ttl = transport_ttl

    def _session(self, operation: str):
        return session_scope(self._session_factory, operation)

    # ------------------------------------------------------------------
    # Session records
    # ------------------------------------------------------------------

    async def put(self, kind, key, value, now, expires_at):
        async with self._session("put") as db:
            if kind is SessionKind.REGISTRATION:
                await store.upsert_registration(
                    db,
                    key,
                    value.get("step", "name"),
                    value.get("fields", {}),
                    now,
                    expires_at,
                )
            elif kind is SessionKind.TRANSPORT:
                await store.upsert_transport(db, key, value, now)
            else:
                await store.upsert_record(db, kind.value, key, value, now, expires_at)

    async def fetch(self, kind, key, now):
        async with self._session("fetch") as db:
            if kind is SessionKind.REGISTRATION:
                orm = await store.get_registration(db, key, now)
                if orm is None:
                    return None
                value = {
                    "step": orm.step,
                    "fields": orm.data,
                    "expires_at": orm.expires_at.isoformat(),
                }
                return StoredRecord(value, orm.expires_at)
            if kind is SessionKind.TRANSPORT:
                orm = await store.get_transport(db, key, now, self._transport_ttl)
                if orm is None:
                    return None
                return StoredRecord(orm.data, orm.updated_at + timedelta(seconds=self._transport_ttl))
            orm = await store.get_record(db, kind.value, key, now)
            if orm is None:
                return None
            return StoredRecord(orm.data, orm.expires_at)

    async def touch(self, kind, key, now, expires_at):
        async with self._session("touch") as db:
            if kind is SessionKind.TRANSPORT:
                await store.touch_transport(db, key, now)
            elif kind is not SessionKind.REGISTRATION:
                await store.touch_record(db, kind.value, key, now, expires_at)

    async def remove(self, kind, key):
        async with self._session("remove") as db:
            if kind is SessionKind.REGISTRATION:
                await store.delete_registration(db, key)
            elif kind is SessionKind.TRANSPORT:
                await store.delete_transport(db, key)
            else:
                await store.delete_record(db, kind.value, key)

    async def sweep_expired(self, now):
        async with self._session("sweep_expired") as db:
            return await store.delete_expired_sessions(db, now, self._transport_ttl)

    async def count_live(self, now):
        async with self._session("count_live") as db:
            counts = {kind.value: 0 for kind in SessionKind}
            counts.update(await store.count_live_records(db, now))
            counts[SessionKind.REGISTRATION.value] = await store.count_live_registrations(db, now)
            counts[SessionKind.TRANSPORT.value] = await store.count_live_transports(
                db, now, self._transport_ttl
            )
            return counts

    async def ping(self) -> float:
        started = time.perf_counter()
        async with self._session("ping") as db:
            await db.execute(text("SELECT 1"))
        return round((time.perf_counter() - started) * 1000, 2)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def get_user(self, user_id):
        async with self._session("get_user") as db:
            orm = await store.get_user(db, user_id)
            return UserProfile.model_validate(orm) if orm is not None else None

    async def ensure_user(self, user_id, now, name=None):
        async with self._session("ensure_user") as db:
            orm = await store.ensure_user(db, user_id, now, name)
            return UserProfile.model_validate(orm)

    # ------------------------------------------------------------------
    # Conversation history
    # ------------------------------------------------------------------

    async def append_history(self, user_id, session_id, entry):
        async with self._session("append_history") as db:
            await store.add_history_message(
                db, user_id, session_id, entry.role, entry.content, entry.timestamp
            )

    async def fetch_history(self, user_id, session_id, limit):
        async with self._session("fetch_history") as db:
            rows = await store.get_history_messages(db, user_id, session_id, limit)
            return [
                HistoryEntry(role=row.role, content=row.content, timestamp=row.created_at)
                for row in rows
            ]

    async def clear_history(self, user_id, session_id=None):
        async with self._session("clear_history") as db:
            return await store.delete_history(db, user_id, session_id)

    async def purge_history(self, cutoff):
        async with self._session("purge_history") as db:
            return await store.delete_history_before(db, cutoff)

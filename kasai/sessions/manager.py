"""
manager.py — SessionManager: the dual-tier session store.

Write path:   durable first (authoritative), then best-effort SETEX into the cache.
Read path:    cache first while usable; miss/error falls through to durable, and a
              durable hit after a clean miss is written back with its remaining TTL.
Delete path:  both tiers, always. Cache best-effort, durable authoritative.

Cache health is a sticky breaker (CacheHealth): the first cache error marks it
unhealthy and every later call bypasses the cache until check_cache_health()
succeeds. On that recovery the whole kasai:* namespace is purged, because
writes made while the cache was bypassed never reached it.

CacheTierFailure never leaves this module. DurableStoreFailure always does.
"""
import json
import logging
import math
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from kasai.cache import kind_pattern, make_history_key, make_record_key, namespace_pattern
from kasai.config import Settings, settings as default_settings
from kasai.sessions.errors import CacheTierFailure, DurableStoreFailure
from kasai.sessions.kinds import (
    Clock,
    ExpiryStyle,
    KindPolicy,
    SessionKind,
    build_policies,
    utcnow,
)
from kasai.sessions.schemas import HistoryEntry, RegistrationSession, UserProfile
from kasai.sessions.tiers import CacheTier, DurableTier

logger = logging.getLogger(__name__)


class CacheHealth:
    """Sticky health flag. Callable, so any zero-arg predicate can replace it."""

    def __init__(self, healthy: bool = True) -> None:
        self._healthy = healthy
        self.last_error: Optional[str] = None

    def __call__(self) -> bool:
        return self._healthy

    @property
    def healthy(self) -> bool:
        return self._healthy

    def mark_unhealthy(self, reason: str) -> None:
        if self._healthy:
            logger.warning("Cache tier marked unhealthy: %s", reason)
        self._healthy = False
        self.last_error = reason

    def mark_healthy(self) -> bool:
        """Returns True when this call is an unhealthy -> healthy transition."""
        recovered = not self._healthy
        self._healthy = True
        self.last_error = None
        if recovered:
            logger.info("Cache tier health restored")
        return recovered


class SessionManager:
    def __init__(
        self,
        durable: DurableTier,
        cache: Optional[CacheTier] = None,
        *,
        health: Optional[CacheHealth] = None,
        cache_enabled: bool = True,
        clock: Clock = utcnow,
        config: Settings = default_settings,
        policies: Optional[Dict[SessionKind, KindPolicy]] = None,
    ) -> None:
        self._durable = durable
        self._cache = cache
        self._health = health if health is not None else CacheHealth()
        self._cache_enabled = cache_enabled and cache is not None
        self._clock = clock
        self._policies = policies if policies is not None else build_policies(config)
        self._history_ttl = config.history_cache_ttl
        self._history_limit = config.history_limit
        self._retention_days = config.history_retention_days
        self._tz = ZoneInfo(config.default_timezone)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    @property
    def clock(self) -> Clock:
        return self._clock

    def policy(self, kind: SessionKind) -> KindPolicy:
        return self._policies[kind]

    def is_cache_healthy(self) -> bool:
        return self._cache is not None and self._cache_enabled and self._health()

    def _cache_failed(self, exc: CacheTierFailure) -> None:
        self._health.mark_unhealthy(exc.message)

    async def check_cache_health(self) -> bool:
        """
        PING the cache. Success after an outage purges the namespace before the
        cache is trusted again; a failed purge leaves it unhealthy.
        """
        if self._cache is None:
            return False
        try:
            await self._cache.ping()
            if not self._health():
                await self._purge_namespace()
        except CacheTierFailure as exc:
            self._cache_failed(exc)
            return False
        self._health.mark_healthy()
        return self._cache_enabled

    async def set_cache_enabled(self, enabled: bool) -> None:
        """Runtime toggle. Re-enabling purges the namespace for the same reason recovery does."""
        if self._cache is None:
            return
        if enabled and not self._cache_enabled:
            try:
                await self._purge_namespace()
            except CacheTierFailure as exc:
                self._cache_failed(exc)
        self._cache_enabled = enabled
        logger.info("Cache tier %s", "enabled" if enabled else "disabled")

    async def _purge_namespace(self) -> int:
        keys = await self._cache.keys(namespace_pattern())
        deleted = await self._cache.delete(*keys) if keys else 0
        logger.info("Purged %d cache keys before trusting the cache again", deleted)
        return deleted

    # ------------------------------------------------------------------
    # Core contract
    # ------------------------------------------------------------------

    def _deadline(self, policy: KindPolicy, now: datetime, ttl: int) -> Optional[datetime]:
        if not policy.expires:
            return None
        return now + timedelta(seconds=ttl)

    async def save(self, kind: SessionKind, key: str, value: dict, ttl: Optional[int] = None) -> None:
        await self._write(kind, key, value, self._clock(), ttl)

    async def _write(
        self,
        kind: SessionKind,
        key: str,
        value: dict,
        now: datetime,
        ttl: Optional[int] = None,
    ) -> None:
        policy = self._policies[kind]
        ttl = ttl or policy.ttl_seconds
        await self._durable.put(kind, key, value, now, self._deadline(policy, now, ttl))
        if self.is_cache_healthy():
            try:
                await self._cache.set(make_record_key(kind.value, key), json.dumps(value), ttl)
            except CacheTierFailure as exc:
                self._cache_failed(exc)
        logger.debug("Saved kind=%s key=%s", kind.value, key)

    async def get(self, kind: SessionKind, key: str) -> Optional[dict]:
        policy = self._policies[kind]
        now = self._clock()
        cache_key = make_record_key(kind.value, key)
        cache_missed = False

        if self.is_cache_healthy():
            try:
                raw = await self._cache.get(cache_key)
            except CacheTierFailure as exc:
                self._cache_failed(exc)
            else:
                if raw is not None:
                    try:
                        value = json.loads(raw)
                    except ValueError:
                        logger.warning("Undecodable cache entry kind=%s key=%s", kind.value, key)
                    else:
                        if policy.style is ExpiryStyle.REFRESHING:
                            await self._refresh(policy, key, cache_key, now)
                        return value
                cache_missed = True

        record = await self._durable.fetch(kind, key, now)
        if record is None:
            return None
        expires_at = record.expires_at
        if policy.style is ExpiryStyle.REFRESHING:
            expires_at = now + timedelta(seconds=policy.ttl_seconds)
            await self._durable.touch(kind, key, now, expires_at)

        if cache_missed and self.is_cache_healthy():
            if expires_at is None:
                remaining = policy.ttl_seconds
            else:
                remaining = math.ceil((expires_at - now).total_seconds())
            if remaining > 0:
                try:
                    await self._cache.set(cache_key, json.dumps(record.value), remaining)
                except CacheTierFailure as exc:
                    self._cache_failed(exc)
        return record.value

    async def _refresh(self, policy: KindPolicy, key: str, cache_key: str, now: datetime) -> None:
        expires_at = now + timedelta(seconds=policy.ttl_seconds)
        try:
            await self._cache.expire(cache_key, policy.ttl_seconds)
        except CacheTierFailure as exc:
            self._cache_failed(exc)
        await self._durable.touch(policy.kind, key, now, expires_at)

    async def delete(self, kind: SessionKind, key: str) -> None:
        if self._cache is not None:
            try:
                await self._cache.delete(make_record_key(kind.value, key))
            except CacheTierFailure as exc:
                self._cache_failed(exc)
        await self._durable.remove(kind, key)
        logger.debug("Deleted kind=%s key=%s", kind.value, key)

    # ------------------------------------------------------------------
    # Registration sessions
    # ------------------------------------------------------------------

    async def start_registration(self, user_id: str, fields: Optional[Dict[str, Any]] = None) -> RegistrationSession:
        return await self._write_registration(user_id, "name", dict(fields or {}))

    async def update_registration(self, user_id: str, step: str, fields: Dict[str, Any]) -> RegistrationSession:
        """Advance to `step`, merging `fields` into what was collected; re-extends expiry."""
        current = await self.get_registration(user_id)
        merged = dict(current.fields) if current else {}
        merged.update(fields)
        return await self._write_registration(user_id, step, merged)

    async def _write_registration(self, user_id: str, step: str, fields: Dict[str, Any]) -> RegistrationSession:
        policy = self._policies[SessionKind.REGISTRATION]
        now = self._clock()
        session = RegistrationSession(
            step=step,
            fields=fields,
            expires_at=now + timedelta(seconds=policy.ttl_seconds),
        )
        await self._write(SessionKind.REGISTRATION, user_id, session.model_dump(mode="json"), now)
        return session

    async def get_registration(self, user_id: str) -> Optional[RegistrationSession]:
        raw = await self.get(SessionKind.REGISTRATION, user_id)
        if raw is None:
            return None
        session = RegistrationSession.model_validate(raw)
        if session.expires_at <= self._clock():
            return None
        return session

    async def delete_registration(self, user_id: str) -> None:
        await self.delete(SessionKind.REGISTRATION, user_id)

    # ------------------------------------------------------------------
    # Transport sessions
    # ------------------------------------------------------------------

    async def save_transport_session(self, client_id: str, data: dict) -> None:
        await self.save(SessionKind.TRANSPORT, client_id, data)

    async def get_transport_session(self, client_id: str) -> Optional[dict]:
        return await self.get(SessionKind.TRANSPORT, client_id)

    async def delete_transport_session(self, client_id: str) -> None:
        await self.delete(SessionKind.TRANSPORT, client_id)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        return await self._durable.get_user(user_id)

    async def ensure_user(self, user_id: str, name: Optional[str] = None) -> UserProfile:
        return await self._durable.ensure_user(user_id, self._clock(), name)

    # ------------------------------------------------------------------
    # Conversation history (day-scoped)
    # ------------------------------------------------------------------

    def history_session_id(self, user_id: str, now: Optional[datetime] = None) -> str:
        """Day-scoped session id: {user_id}_{YYYY-MM-DD} in the configured timezone."""
        local_day = (now or self._clock()).astimezone(self._tz).date()
        return f"{user_id}_{local_day.isoformat()}"

    def local_today(self) -> date:
        return self._clock().astimezone(self._tz).date()

    async def append_history(self, user_id: str, role: str, content: str) -> HistoryEntry:
        now = self._clock()
        session_id = self.history_session_id(user_id, now)
        entry = HistoryEntry(role=role, content=content, timestamp=now)
        await self._durable.append_history(user_id, session_id, entry)
        await self._invalidate_history(user_id, session_id)
        return entry

    async def get_history(self, user_id: str, limit: Optional[int] = None) -> List[HistoryEntry]:
        limit = limit or self._history_limit
        session_id = self.history_session_id(user_id)
        cache_key = make_history_key(user_id, session_id)
        cache_missed = False

        # The cached list holds at most history_limit entries.
        if limit <= self._history_limit and self.is_cache_healthy():
            try:
                raw = await self._cache.get(cache_key)
            except CacheTierFailure as exc:
                self._cache_failed(exc)
            else:
                if raw is not None:
                    try:
                        entries = [HistoryEntry.model_validate(item) for item in json.loads(raw)]
                    except (TypeError, ValueError):
                        logger.warning("Undecodable history cache entry user_id=%s session_id=%s", user_id, session_id)
                    else:
                        return entries[-limit:]
                cache_missed = True

        entries = await self._durable.fetch_history(user_id, session_id, max(limit, self._history_limit))
        if cache_missed and self.is_cache_healthy():
            payload = json.dumps([entry.model_dump(mode="json") for entry in entries])
            try:
                await self._cache.set(cache_key, payload, self._history_ttl)
            except CacheTierFailure as exc:
                self._cache_failed(exc)
        return entries[-limit:]

    async def clear_history(self, user_id: str, session_id: Optional[str] = None) -> int:
        """Delete today's history (or a given day session) from both tiers."""
        session_id = session_id or self.history_session_id(user_id)
        await self._invalidate_history(user_id, session_id)
        deleted = await self._durable.clear_history(user_id, session_id)
        logger.info("Cleared %d history rows user_id=%s", deleted, user_id)
        return deleted

    async def purge_history(self, older_than_days: Optional[int] = None) -> int:
        """Retention sweep. Cached history lists age out on their own short TTL."""
        days = older_than_days if older_than_days is not None else self._retention_days
        cutoff = self._clock() - timedelta(days=days)
        return await self._durable.purge_history(cutoff)

    async def _invalidate_history(self, user_id: str, session_id: str) -> None:
        if self._cache is None:
            return
        try:
            await self._cache.delete(make_history_key(user_id, session_id))
        except CacheTierFailure as exc:
            self._cache_failed(exc)

    # ------------------------------------------------------------------
    # Maintenance / observability
    # ------------------------------------------------------------------

    async def sweep_expired(self) -> Dict[str, int]:
        return await self._durable.sweep_expired(self._clock())

    async def health_check(self) -> Dict[str, Any]:
        """
        Status and latency of both tiers. Never raises: a durable failure is
        reported in the payload, a cache failure also trips the breaker.
        """
        report: Dict[str, Any] = {}
        try:
            report["durable"] = {"status": "ok", "latency_ms": await self._durable.ping()}
        except DurableStoreFailure as exc:
            report["durable"] = {"status": "error", "error": exc.message}

        if self._cache is None:
            report["cache"] = {"status": "not_configured", "enabled": False, "healthy": False}
        elif not self._cache_enabled:
            report["cache"] = {"status": "disabled", "enabled": False, "healthy": self._health()}
        else:
            cache_report: Dict[str, Any] = {"enabled": True}
            try:
                cache_report["latency_ms"] = await self._cache.ping()
            except CacheTierFailure as exc:
                self._cache_failed(exc)
                cache_report["error"] = exc.message
            cache_report["healthy"] = self._health()
            cache_report["status"] = "ok" if self._health() else "unhealthy"
            report["cache"] = cache_report

        report["status"] = "ok" if report["durable"]["status"] == "ok" else "degraded"
        return report

    async def session_stats(self) -> Dict[str, Any]:
        """Live record counts per kind in each tier. Uses KEYS, admin paths only."""
        durable_counts = await self._durable.count_live(self._clock())
        cache_counts: Optional[Dict[str, int]] = None
        if self.is_cache_healthy():
            try:
                cache_counts = {
                    kind.value: len(await self._cache.keys(kind_pattern(kind.value)))
                    for kind in SessionKind
                }
            except CacheTierFailure as exc:
                self._cache_failed(exc)
                cache_counts = None
        return {
            "durable": durable_counts,
            "cache": cache_counts,
            "cache_healthy": self.is_cache_healthy(),
        }

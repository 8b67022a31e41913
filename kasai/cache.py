"""
cache.py — Redis volatile tier for the KasAI session store.

Namespace conventions:
  kasai:{kind}:{key}                    session record (JSON)      TTL per kind
  kasai:history:{user_id}:{session_id}  day-scoped chat history    TTL 1h

Design:
  - Uses redis.asyncio (async client, part of redis-py 5.x; do NOT use aioredis separately)
  - Pool created once in lifespan, stored on app.state.redis
  - RedisCacheTier wraps every redis error in CacheTierFailure; it never decides
    about health; SessionManager does
  - Logs only keys (user ids), never record contents
"""
import logging
import time
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from kasai.config import settings
from kasai.sessions.errors import CacheTierFailure

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Key prefix constants
# ---------------------------------------------------------------------------
NAMESPACE = "kasai"
HISTORY_PREFIX = "history"


# ---------------------------------------------------------------------------
# Key builders
# ---------------------------------------------------------------------------

def make_record_key(kind: str, key: str) -> str:
    """Build Redis key for a session record: kasai:{kind}:{key}"""
    return f"{NAMESPACE}:{kind}:{key}"


def make_history_key(user_id: str, session_id: str) -> str:
    """Build Redis key for a day-scoped history list: kasai:history:{user_id}:{session_id}"""
    return f"{NAMESPACE}:{HISTORY_PREFIX}:{user_id}:{session_id}"


def kind_pattern(kind: str) -> str:
    """KEYS pattern matching every record of one kind, for maintenance/stats only."""
    return f"{NAMESPACE}:{kind}:*"


def namespace_pattern() -> str:
    return f"{NAMESPACE}:*"


# ---------------------------------------------------------------------------
# Pool factory — called once in lifespan
# ---------------------------------------------------------------------------

async def create_redis_pool() -> aioredis.Redis:
    """
    Create and return an async Redis connection pool.
    Called once in FastAPI lifespan startup, stored on app.state.redis.
    Does not connect: the first SessionManager.check_cache_health() PINGs it,
    so a Redis outage at boot only starts the service with the cache bypassed.
    """
    client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=settings.redis_max_connections,
    )
    logger.info("Redis connection pool created for %s", settings.redis_url)
    return client


# ---------------------------------------------------------------------------
# Cache tier adapter
# ---------------------------------------------------------------------------

class RedisCacheTier:
    """
    Thin adapter over a redis.asyncio client exposing exactly the commands the
    session store needs: SETEX, GET, DEL, EXPIRE, KEYS and PING.
    """

    def __init__(self, client: aioredis.Redis) -> None:
        self._client = client

    async def set(self, key: str, value: str, ttl: int) -> None:
        try:
            await self._client.setex(key, max(int(ttl), 1), value)
        except RedisError as exc:
            raise CacheTierFailure(f"SETEX {key} failed: {exc}", operation="set") from exc

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._client.get(key)
        except RedisError as exc:
            raise CacheTierFailure(f"GET {key} failed: {exc}", operation="get") from exc

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return await self._client.delete(*keys)
        except RedisError as exc:
            raise CacheTierFailure(f"DEL failed: {exc}", operation="delete") from exc

    async def expire(self, key: str, ttl: int) -> bool:
        try:
            return bool(await self._client.expire(key, max(int(ttl), 1)))
        except RedisError as exc:
            raise CacheTierFailure(f"EXPIRE {key} failed: {exc}", operation="expire") from exc

    async def keys(self, pattern: str) -> list[str]:
        """KEYS scan: O(N) on the server, never call on the message path."""
        try:
            return list(await self._client.keys(pattern))
        except RedisError as exc:
            raise CacheTierFailure(f"KEYS {pattern} failed: {exc}", operation="keys") from exc

    async def ping(self) -> float:
        """PING the server and return the round-trip time in milliseconds."""
        started = time.perf_counter()
        try:
            await self._client.ping()
        except RedisError as exc:
            raise CacheTierFailure(f"PING failed: {exc}", operation="ping") from exc
        return round((time.perf_counter() - started) * 1000, 2)

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("Redis connection pool closed")

"""
maintenance.py — Periodic housekeeping for the session store.

run_sweep():        delete expired durable rows, purge history past retention,
                    probe cache health (restores the breaker if Redis is back)
MaintenanceLoop:    runs run_sweep() every `interval` seconds as an independent
                    asyncio task, started/stopped by the FastAPI lifespan
"""
import asyncio
import logging
from typing import Any, Dict, Optional

from kasai.sessions.errors import DurableStoreFailure
from kasai.sessions.manager import SessionManager

logger = logging.getLogger(__name__)


async def run_sweep(manager: SessionManager) -> Dict[str, Any]:
    """One maintenance pass. Raises DurableStoreFailure if the durable tier is down."""
    expired = await manager.sweep_expired()
    purged = await manager.purge_history()
    cache_healthy = await manager.check_cache_health()
    summary = {
        "expired": expired,
        "history_purged": purged,
        "cache_healthy": cache_healthy,
    }
    logger.info("Maintenance sweep finished: %s", summary)
    return summary


class MaintenanceLoop:
    def __init__(self, manager: SessionManager, interval_seconds: float) -> None:
        self._manager = manager
        self._interval = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="kasai-maintenance")
        logger.info("Maintenance loop started (interval=%ss)", self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Maintenance loop stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await run_sweep(self._manager)
            except DurableStoreFailure as exc:
                # Next tick retries; in-flight message handling is unaffected.
                logger.error("Maintenance sweep failed: %s", exc.message)
            self.runs += 1

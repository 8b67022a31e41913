"""
errors.py — Failure taxonomy for the dual-tier session store.

DurableStoreFailure is the only store error callers ever see.
CacheTierFailure is raised by the cache adapter and absorbed by SessionManager.
"""
from typing import Optional


class SessionStoreError(Exception):
    """Base class for session-store failures."""

    def __init__(self, message: str, operation: Optional[str] = None) -> None:
        self.message = message
        self.operation = operation
        super().__init__(message)


class DurableStoreFailure(SessionStoreError):
    """The system-of-record tier failed; fatal to the current operation."""


class CacheTierFailure(SessionStoreError):
    """The volatile tier failed: logged, flips cache health, never surfaced."""

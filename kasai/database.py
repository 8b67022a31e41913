"""
database.py — SQLAlchemy 2.0 async engine and session factory.

This module owns ALL database connection infrastructure.
Nothing else in the codebase creates engines or sessions directly.

Usage in the durable tier and the ledger (one committed unit of work per call):
    from kasai.database import AsyncSessionLocal, session_scope
    async with session_scope(AsyncSessionLocal, "fetch") as db: ...
"""
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from kasai.config import settings
from kasai.sessions.errors import DurableStoreFailure

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Declarative base — ALL ORM models inherit from this
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """
    SQLAlchemy declarative base.
    All ORM models in kasai/models/ inherit from Base.
    Defined here (not in models/) to prevent circular imports in alembic/env.py.
    """
    pass


# ---------------------------------------------------------------------------
# Async engine — one per application lifetime
# ---------------------------------------------------------------------------
async_engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=5,              # Core connection pool size
    max_overflow=10,          # Extra connections under peak load
    pool_pre_ping=True,       # Detect and discard stale connections before each use
)

# ---------------------------------------------------------------------------
# Session factory — produces AsyncSession instances
# ---------------------------------------------------------------------------
AsyncSessionLocal = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,   # Keep objects usable after commit without re-querying
)


# ---------------------------------------------------------------------------
# Session scope — one committed unit of work, errors mapped to DurableStoreFailure
# ---------------------------------------------------------------------------
@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
    operation: str,
) -> AsyncIterator[AsyncSession]:
    """
    Yield an AsyncSession and commit when the block exits cleanly.

    Any SQLAlchemy or connection error (raised inside the block or by commit)
    rolls back and is re-raised as DurableStoreFailure, the only store error
    the conversation layer handles.
    """
    try:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
    except (SQLAlchemyError, OSError) as exc:
        logger.error("Durable %s failed: %s", operation, exc)
        raise DurableStoreFailure(f"{operation} failed: {exc}", operation=operation) from exc

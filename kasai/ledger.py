"""
ledger.py — SqlLedger: the transaction ledger the conversation flows commit to.

Every operation is scoped to the owning user_id: a transaction id belonging to
someone else behaves exactly like a missing one. Categories are global rows
seeded by migration 001.

Logs only user ids and transaction ids, never amounts or descriptions.
"""
import logging
from datetime import date as date_type, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kasai.config import Settings, settings as default_settings
from kasai.database import session_scope
from kasai.models.ledger import CategoryORM, TransactionORM
from kasai.sessions.schemas import Category, TransactionSnapshot, TransactionType

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = ("amount", "description", "category_id", "date")


async def _snapshot(db: AsyncSession, orm: TransactionORM) -> TransactionSnapshot:
    category_name: Optional[str] = None
    if orm.category_id is not None:
        category = await db.get(CategoryORM, orm.category_id)
        category_name = category.name if category is not None else None
    return TransactionSnapshot(
        id=orm.id,
        type=TransactionType(orm.type),
        amount=float(orm.amount),
        description=orm.description,
        category_id=orm.category_id,
        category_name=category_name,
        date=orm.date,
    )


async def _owned(db: AsyncSession, user_id: str, transaction_id: int) -> Optional[TransactionORM]:
    result = await db.execute(
        select(TransactionORM).where(
            TransactionORM.id == transaction_id,
            TransactionORM.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


class SqlLedger:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: Settings = default_settings,
    ) -> None:
        self._session_factory = session_factory
        self._tz = ZoneInfo(config.default_timezone)

    async def get_categories(self, user_id: str, type: TransactionType) -> List[Category]:
        async with session_scope(self._session_factory, "get_categories") as db:
            result = await db.execute(
                select(CategoryORM).where(CategoryORM.type == type.value).order_by(CategoryORM.id)
            )
            return [
                Category(id=row.id, name=row.name, type=TransactionType(row.type))
                for row in result.scalars().all()
            ]

    async def add_transaction(
        self,
        user_id: str,
        type: TransactionType,
        amount: float,
        description: str,
        category_id: Optional[int],
        date: Optional[date_type] = None,
    ) -> TransactionSnapshot:
        async with session_scope(self._session_factory, "add_transaction") as db:
            orm = TransactionORM(
                user_id=user_id,
                type=type.value,
                amount=Decimal(str(amount)),
                description=description,
                category_id=category_id,
                date=date or datetime.now(self._tz).date(),
            )
            db.add(orm)
            await db.flush()
            logger.info("Added transaction user_id=%s transaction_id=%s", user_id, orm.id)
            return await _snapshot(db, orm)

    async def get_transaction(self, user_id: str, transaction_id: int) -> Optional[TransactionSnapshot]:
        async with session_scope(self._session_factory, "get_transaction") as db:
            orm = await _owned(db, user_id, transaction_id)
            return await _snapshot(db, orm) if orm is not None else None

    async def update_transaction(
        self,
        user_id: str,
        transaction_id: int,
        updates: Dict[str, Any],
    ) -> Optional[TransactionSnapshot]:
        """Apply all updates in one unit of work. Unknown keys raise ValueError."""
        unknown = set(updates) - set(_EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")
        async with session_scope(self._session_factory, "update_transaction") as db:
            orm = await _owned(db, user_id, transaction_id)
            if orm is None:
                return None
            for field, value in updates.items():
                if field == "amount":
                    value = Decimal(str(value))
                setattr(orm, field, value)
            await db.flush()
            logger.info(
                "Updated transaction user_id=%s transaction_id=%s fields=%s",
                user_id, transaction_id, sorted(updates),
            )
            return await _snapshot(db, orm)

    async def delete_transaction(self, user_id: str, transaction_id: int) -> bool:
        async with session_scope(self._session_factory, "delete_transaction") as db:
            orm = await _owned(db, user_id, transaction_id)
            if orm is None:
                return False
            await db.delete(orm)
            logger.info("Deleted transaction user_id=%s transaction_id=%s", user_id, transaction_id)
            return True

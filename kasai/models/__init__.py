"""
models/__init__.py — imports all ORM models so Alembic's env.py
sees them via Base.metadata when generating migrations.

Import order matters for FK dependencies: users before transactions.
"""
from kasai.models.user import UserORM
from kasai.models.session_record import (
    RegistrationSessionORM,
    SessionRecordORM,
    TransportSessionORM,
)
from kasai.models.conversation_history import ConversationHistoryORM
from kasai.models.ledger import CategoryORM, TransactionORM

__all__ = [
    "UserORM",
    "SessionRecordORM",
    "RegistrationSessionORM",
    "TransportSessionORM",
    "ConversationHistoryORM",
    "CategoryORM",
    "TransactionORM",
]

"""
schemas.py — Pydantic v2 shapes for everything the session store holds.

Defines:
  - Category / TransactionSnapshot   (ledger views carried inside pending flows)
  - PendingTransaction / EditSession / DeleteConfirmation
  - PendingFlow                      (discriminated union over the three flows, tag = "flow")
  - ModeState                        (financial|supportive + voice preference)
  - UserProfile, RegistrationSession, HistoryEntry

Records are stored as model_dump(mode="json") dicts and rebuilt with model_validate,
so both tiers only ever see plain JSON.
"""
from __future__ import annotations

from datetime import date as date_type, datetime
from enum import Enum, IntEnum
from typing import Annotated, Any, ClassVar, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from kasai.sessions.kinds import SessionKind


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class Category(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    type: TransactionType


class TransactionSnapshot(BaseModel):
    """Ledger row as it looked when a flow was opened."""

    id: int
    type: TransactionType
    amount: float
    description: str = ""
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    date: date_type


# ---------------------------------------------------------------------------
# Pending flows
# ---------------------------------------------------------------------------

class EditStep(str, Enum):
    SELECT_FIELD = "select_field"
    EDIT_FIELD = "edit_field"
    AI_EDIT = "ai_edit"


class EditField(IntEnum):
    AMOUNT = 1
    DESCRIPTION = 2
    CATEGORY = 3
    DATE = 4
    AI = 5


class PendingTransaction(BaseModel):
    """Interpreted transaction waiting for the user to pick a category."""
    kind: ClassVar[SessionKind] = SessionKind.PENDING_TRANSACTION

    flow: Literal["transaction"] = "transaction"
    type: TransactionType
    amount: float
    description: str
    candidate_categories: List[Category]
    created_at: datetime


class EditSession(BaseModel):
    kind: ClassVar[SessionKind] = SessionKind.EDIT_SESSION

    flow: Literal["edit"] = "edit"
    transaction_id: int
    snapshot: TransactionSnapshot
    step: EditStep = EditStep.SELECT_FIELD
    selected_field: Optional[EditField] = None
    candidate_categories: List[Category] = []
    created_at: datetime


class DeleteConfirmation(BaseModel):
    kind: ClassVar[SessionKind] = SessionKind.DELETE_CONFIRMATION

    flow: Literal["delete"] = "delete"
    transaction_id: int
    snapshot: TransactionSnapshot
    created_at: datetime


PendingFlow = Annotated[
    Union[PendingTransaction, EditSession, DeleteConfirmation],
    Field(discriminator="flow"),
]

pending_flow_adapter: TypeAdapter = TypeAdapter(PendingFlow)


# ---------------------------------------------------------------------------
# Mode state
# ---------------------------------------------------------------------------

class ConversationMode(str, Enum):
    FINANCIAL = "financial"
    SUPPORTIVE = "supportive"


class VoicePreference(str, Enum):
    ALWAYS = "always"
    NEVER = "never"
    ASK = "ask"


class ModeState(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: ConversationMode = ConversationMode.FINANCIAL
    voice_preference: VoicePreference = VoicePreference.ASK


# ---------------------------------------------------------------------------
# Users / registration / history
# ---------------------------------------------------------------------------

class UserProfile(BaseModel):
    """Read-only user view; the ORM row never leaves the durable tier."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: Optional[str] = None
    locale: str = "id-ID"
    timezone: str = "Asia/Jakarta"
    is_admin: bool = False


class RegistrationSession(BaseModel):
    step: str = "name"
    fields: Dict[str, Any] = {}
    expires_at: datetime


class HistoryEntry(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime


__all__ = [
    "TransactionType",
    "Category",
    "TransactionSnapshot",
    "EditStep",
    "EditField",
    "PendingTransaction",
    "EditSession",
    "DeleteConfirmation",
    "PendingFlow",
    "pending_flow_adapter",
    "ConversationMode",
    "VoicePreference",
    "ModeState",
    "UserProfile",
    "RegistrationSession",
    "HistoryEntry",
]

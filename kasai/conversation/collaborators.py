"""
collaborators.py — Contracts for everything the conversation core calls out to.

  Interpreter   natural-language understanding (MistralInterpreter in kasai/interpreter/)
  Ledger        transaction storage (SqlLedger in kasai/ledger.py)
  ReplySink     outbound channel; receives plain text or an AudioReply
  Synthesizer   text-to-speech; optional, voice replies fall back to text without it
"""
from dataclasses import dataclass
from datetime import date as date_type
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Union

from pydantic import BaseModel, Field

from kasai.sessions.schemas import (
    Category,
    HistoryEntry,
    TransactionSnapshot,
    TransactionType,
)


class ReplyVariant(str, Enum):
    """Phrasing instruction for supportive replies: optimized for audio vs. for text."""
    LISTENING = "listening"
    READING = "reading"


class Interpretation(BaseModel):
    type: Optional[TransactionType] = None
    amount: Optional[float] = None
    description: Optional[str] = None
    category: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    @property
    def is_transaction(self) -> bool:
        return self.type is not None and self.amount is not None and self.amount > 0


class EditInterpretation(BaseModel):
    updates: Dict[str, Any] = {}
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    summary: str = ""


@dataclass(frozen=True)
class AudioReply:
    audio: bytes
    caption: str = ""
    mime_type: str = "audio/mpeg"


ReplyContent = Union[str, AudioReply]


class SynthesisError(Exception):
    """Text-to-speech failed; the reply is sent as text instead."""


class Interpreter(Protocol):
    async def interpret(self, text: str, context: Optional[Dict[str, Any]] = None) -> Interpretation: ...

    async def interpret_edit(self, text: str, snapshot: TransactionSnapshot) -> EditInterpretation: ...

    async def supportive_reply(
        self,
        history: List[HistoryEntry],
        variant: ReplyVariant,
        display_name: Optional[str] = None,
    ) -> str: ...


class Ledger(Protocol):
    async def get_categories(self, user_id: str, type: TransactionType) -> List[Category]: ...

    async def add_transaction(
        self,
        user_id: str,
        type: TransactionType,
        amount: float,
        description: str,
        category_id: Optional[int],
        date: Optional[date_type] = None,
    ) -> TransactionSnapshot: ...

    async def get_transaction(self, user_id: str, transaction_id: int) -> Optional[TransactionSnapshot]: ...

    async def update_transaction(
        self,
        user_id: str,
        transaction_id: int,
        updates: Dict[str, Any],
    ) -> Optional[TransactionSnapshot]: ...

    async def delete_transaction(self, user_id: str, transaction_id: int) -> bool: ...


class ReplySink(Protocol):
    async def reply(self, content: ReplyContent) -> None: ...


class Synthesizer(Protocol):
    async def synthesize(self, text: str) -> bytes: ...

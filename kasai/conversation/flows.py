"""
flows.py — Per-user pending-flow state machine.

  Idle -> PendingCategorySelection -> Idle
  Idle -> PendingEdit(select_field) -> PendingEdit(edit_field | ai_edit) -> Idle
  Idle -> PendingDeleteConfirmation -> Idle

Flows live in the session store under their own SessionKind, keyed by user id,
and are mutually exclusive: opening one deletes the other two. Expiry is checked
lazily against created_at; a stale flow is deleted and the message falls through
to normal dispatch as if nothing was pending.

Ledger commits happen before the pending record is deleted, so a durable failure
leaves the flow in place for the user to retry.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

from kasai.config import Settings, settings as default_settings
from kasai.conversation import messages
from kasai.conversation.collaborators import Interpreter, Ledger
from kasai.conversation.parsing import (
    AFFIRMATIVE_TOKENS,
    NEGATIVE_TOKENS,
    find_category_by_name,
    is_cancel,
    match_category,
    normalize,
    parse_amount,
    parse_date,
    parse_description,
    parse_field_choice,
)
from kasai.sessions.kinds import PENDING_FLOW_KINDS, SessionKind
from kasai.sessions.manager import SessionManager
from kasai.sessions.schemas import (
    Category,
    DeleteConfirmation,
    EditField,
    EditSession,
    EditStep,
    PendingFlow,
    PendingTransaction,
    TransactionType,
    pending_flow_adapter,
)

logger = logging.getLogger(__name__)


class ConversationStateMachine:
    def __init__(
        self,
        manager: SessionManager,
        ledger: Ledger,
        interpreter: Interpreter,
        config: Settings = default_settings,
    ) -> None:
        self._manager = manager
        self._ledger = ledger
        self._interpreter = interpreter
        self._edit_confidence = config.edit_confidence
        self._tz = ZoneInfo(config.default_timezone)

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    def _now(self) -> datetime:
        return self._manager.clock()

    def _is_expired(self, flow: PendingFlow, now: datetime) -> bool:
        ttl = self._manager.policy(flow.kind).ttl_seconds
        return now >= flow.created_at + timedelta(seconds=ttl)

    async def load(self, user_id: str, kind: SessionKind) -> Optional[PendingFlow]:
        """Live flow of one kind, or None. Expired records are deleted on sight."""
        raw = await self._manager.get(kind, user_id)
        if raw is None:
            return None
        flow = pending_flow_adapter.validate_python(raw)
        if self._is_expired(flow, self._now()):
            logger.info("Discarding expired %s user_id=%s", kind.value, user_id)
            await self._manager.delete(kind, user_id)
            return None
        return flow

    async def active_flow(self, user_id: str) -> Optional[PendingFlow]:
        for kind in PENDING_FLOW_KINDS:
            flow = await self.load(user_id, kind)
            if flow is not None:
                return flow
        return None

    async def _store(self, user_id: str, flow: PendingFlow) -> None:
        await self._manager.save(flow.kind, user_id, flow.model_dump(mode="json"))

    async def _open(self, user_id: str, flow: PendingFlow) -> None:
        for kind in PENDING_FLOW_KINDS:
            if kind is not flow.kind:
                await self._manager.delete(kind, user_id)
        await self._store(user_id, flow)
        logger.info("Opened %s user_id=%s", flow.kind.value, user_id)

    async def _close(self, user_id: str, flow: PendingFlow) -> None:
        await self._manager.delete(flow.kind, user_id)

    async def clear_all(self, user_id: str) -> None:
        for kind in PENDING_FLOW_KINDS:
            await self._manager.delete(kind, user_id)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def begin_category_selection(
        self,
        user_id: str,
        type: TransactionType,
        amount: float,
        description: str,
    ) -> str:
        categories = await self._ledger.get_categories(user_id, type)
        if not categories:
            snapshot = await self._ledger.add_transaction(
                user_id, type, amount, description, None, date=self._manager.local_today()
            )
            return messages.transaction_saved(snapshot)
        flow = PendingTransaction(
            type=type,
            amount=amount,
            description=description,
            candidate_categories=categories,
            created_at=self._now(),
        )
        await self._open(user_id, flow)
        return messages.category_prompt(flow)

    async def begin_edit(self, user_id: str, transaction_id: int) -> str:
        snapshot = await self._ledger.get_transaction(user_id, transaction_id)
        if snapshot is None:
            return messages.transaction_not_found(transaction_id)
        flow = EditSession(transaction_id=transaction_id, snapshot=snapshot, created_at=self._now())
        await self._open(user_id, flow)
        return messages.edit_menu(snapshot)

    async def begin_delete(self, user_id: str, transaction_id: int) -> str:
        snapshot = await self._ledger.get_transaction(user_id, transaction_id)
        if snapshot is None:
            return messages.transaction_not_found(transaction_id)
        flow = DeleteConfirmation(transaction_id=transaction_id, snapshot=snapshot, created_at=self._now())
        await self._open(user_id, flow)
        return messages.delete_prompt(snapshot)

    # ------------------------------------------------------------------
    # Inbound message
    # ------------------------------------------------------------------

    async def handle(self, user_id: str, text: str) -> Optional[List[str]]:
        """
        Feed a message to the user's active flow.
        Returns the replies if a flow consumed it, None if no flow is active.
        """
        flow = await self.active_flow(user_id)
        if flow is None:
            return None
        if isinstance(flow, PendingTransaction):
            return [await self._on_category_selection(user_id, flow, text)]
        if isinstance(flow, EditSession):
            return [await self._on_edit(user_id, flow, text)]
        return [await self._on_delete_confirmation(user_id, flow, text)]

    async def _on_category_selection(self, user_id: str, flow: PendingTransaction, text: str) -> str:
        if is_cancel(text):
            await self._close(user_id, flow)
            return messages.CANCELLED
        category = match_category(text, flow.candidate_categories)
        if category is None:
            return messages.category_retry(flow)
        snapshot = await self._ledger.add_transaction(
            user_id, flow.type, flow.amount, flow.description, category.id, date=self._manager.local_today()
        )
        await self._close(user_id, flow)
        logger.info("Committed pending transaction user_id=%s transaction_id=%s", user_id, snapshot.id)
        return messages.transaction_saved(snapshot)

    async def _on_delete_confirmation(self, user_id: str, flow: DeleteConfirmation, text: str) -> str:
        answer = normalize(text)
        if answer in AFFIRMATIVE_TOKENS:
            deleted = await self._ledger.delete_transaction(user_id, flow.transaction_id)
            await self._close(user_id, flow)
            if not deleted:
                return messages.transaction_not_found(flow.transaction_id)
            logger.info("Deleted transaction user_id=%s transaction_id=%s", user_id, flow.transaction_id)
            return messages.transaction_deleted(flow.snapshot)
        if answer in NEGATIVE_TOKENS:
            await self._close(user_id, flow)
            return messages.DELETE_ABORTED
        return messages.delete_retry(flow.snapshot)

    # ------------------------------------------------------------------
    # Edit flow
    # ------------------------------------------------------------------

    async def _on_edit(self, user_id: str, flow: EditSession, text: str) -> str:
        if is_cancel(text):
            await self._close(user_id, flow)
            return messages.CANCELLED
        if flow.step is EditStep.SELECT_FIELD:
            return await self._select_field(user_id, flow, text)
        if flow.step is EditStep.AI_EDIT:
            return await self._apply_ai_edit(user_id, flow, text)
        return await self._apply_field_edit(user_id, flow, text)

    async def _select_field(self, user_id: str, flow: EditSession, text: str) -> str:
        field = parse_field_choice(text)
        if field is None:
            return messages.edit_menu_retry(flow.snapshot)
        candidates: List[Category] = []
        if field is EditField.CATEGORY:
            candidates = await self._ledger.get_categories(user_id, flow.snapshot.type)
        step = EditStep.AI_EDIT if field is EditField.AI else EditStep.EDIT_FIELD
        # A step change re-arms the edit session deadline.
        updated = flow.model_copy(
            update={
                "step": step,
                "selected_field": field,
                "candidate_categories": candidates,
                "created_at": self._now(),
            }
        )
        await self._store(user_id, updated)
        return messages.field_prompt(field, flow.snapshot, candidates)

    async def _apply_field_edit(self, user_id: str, flow: EditSession, text: str) -> str:
        field = flow.selected_field
        updates: Dict[str, Any] = {}
        if field is EditField.AMOUNT:
            amount = parse_amount(text)
            if amount is None:
                return messages.INVALID_AMOUNT
            updates["amount"] = amount
        elif field is EditField.DESCRIPTION:
            description = parse_description(text)
            if description is None:
                return messages.INVALID_DESCRIPTION
            updates["description"] = description
        elif field is EditField.CATEGORY:
            category = match_category(text, flow.candidate_categories)
            if category is None:
                return messages.field_prompt(field, flow.snapshot, flow.candidate_categories)
            updates["category_id"] = category.id
        else:
            parsed = parse_date(text, self._now().astimezone(self._tz).date())
            if parsed is None:
                return messages.INVALID_DATE
            updates["date"] = parsed
        return await self._commit_edit(user_id, flow, updates)

    async def _apply_ai_edit(self, user_id: str, flow: EditSession, text: str) -> str:
        result = await self._interpreter.interpret_edit(text, flow.snapshot)
        if result.confidence < self._edit_confidence:
            logger.info("AI edit below threshold user_id=%s confidence=%.2f", user_id, result.confidence)
            return messages.AI_EDIT_UNCLEAR
        updates = await self._sanitize_ai_updates(user_id, flow, result.updates)
        if not updates:
            return messages.AI_EDIT_UNCLEAR
        return await self._commit_edit(user_id, flow, updates, summary=result.summary)

    async def _sanitize_ai_updates(self, user_id: str, flow: EditSession, raw: Dict[str, Any]) -> Dict[str, Any]:
        """Keep only interpreter updates that pass the same grammars as manual edits."""
        updates: Dict[str, Any] = {}
        if raw.get("amount") is not None:
            amount = parse_amount(str(raw["amount"]))
            if amount is not None:
                updates["amount"] = amount
        if raw.get("description"):
            description = parse_description(str(raw["description"]))
            if description is not None:
                updates["description"] = description
        if raw.get("category"):
            categories: Sequence[Category] = await self._ledger.get_categories(user_id, flow.snapshot.type)
            category = find_category_by_name(str(raw["category"]), categories)
            if category is not None:
                updates["category_id"] = category.id
        if raw.get("date"):
            parsed = parse_date(str(raw["date"]), self._now().astimezone(self._tz).date())
            if parsed is not None:
                updates["date"] = parsed
        return updates

    async def _commit_edit(
        self,
        user_id: str,
        flow: EditSession,
        updates: Dict[str, Any],
        summary: str = "",
    ) -> str:
        snapshot = await self._ledger.update_transaction(user_id, flow.transaction_id, updates)
        await self._close(user_id, flow)
        if snapshot is None:
            return messages.transaction_not_found(flow.transaction_id)
        logger.info(
            "Edited transaction user_id=%s transaction_id=%s fields=%s",
            user_id, flow.transaction_id, sorted(updates),
        )
        return messages.transaction_updated(snapshot, summary)

"""
ConversationStateMachine tests — pending category selection, edit and delete flows.

Groups:
  1. Category selection (commit, retry, cancel, no categories)
  2. Mutual exclusion, check order and lazy expiry
  3. Edit flow (manual fields, AI edit, step re-arm)
  4. Delete confirmation
  5. Ledger failures leave the flow in place
  6. Walkthroughs (lifetime in minutes, second option, negative amount)
"""
from __future__ import annotations

from datetime import date, timedelta

import pytest

from kasai.conversation import messages
from kasai.conversation.collaborators import EditInterpretation
from kasai.sessions.errors import DurableStoreFailure
from kasai.sessions.kinds import SessionKind
from kasai.sessions.schemas import (
    Category,
    DeleteConfirmation,
    EditField,
    EditSession,
    EditStep,
    PendingTransaction,
    TransactionType,
)

USER = "62811"


async def _open_pending(flows, amount: float = 50000, description: str = "makan siang") -> str:
    return await flows.begin_category_selection(USER, TransactionType.EXPENSE, amount, description)


# ===========================================================================
# TEST GROUP 1: Category selection
# ===========================================================================

@pytest.mark.asyncio
async def test_category_selection_by_index_commits(flows, ledger) -> None:
    prompt = await _open_pending(flows)
    assert "1. Makanan" in prompt

    replies = await flows.handle(USER, "1")
    assert len(replies) == 1
    assert replies[0].startswith("✅ Transaksi tersimpan!")

    (saved,) = ledger.transactions.values()
    assert saved.category_id == 1
    assert saved.amount == 50000
    assert saved.description == "makan siang"
    assert await flows.active_flow(USER) is None


@pytest.mark.asyncio
async def test_category_selection_by_name_commits(flows, ledger) -> None:
    await _open_pending(flows, description="ojek ke kantor")
    await flows.handle(USER, "transport")

    (saved,) = ledger.transactions.values()
    assert saved.category_name == "Transportasi"


@pytest.mark.asyncio
async def test_unknown_category_reprompts_and_keeps_flow(flows, ledger) -> None:
    await _open_pending(flows)
    flow = await flows.active_flow(USER)

    replies = await flows.handle(USER, "hiburan")
    assert replies == [messages.category_retry(flow)]
    assert ledger.transactions == {}
    assert isinstance(await flows.active_flow(USER), PendingTransaction)


@pytest.mark.asyncio
@pytest.mark.parametrize("token", ["batal", "Cancel", "stop", "/batal"])
async def test_cancel_discards_pending_transaction(flows, ledger, token: str) -> None:
    await _open_pending(flows)
    assert await flows.handle(USER, token) == [messages.CANCELLED]
    assert ledger.transactions == {}
    assert await flows.active_flow(USER) is None


@pytest.mark.asyncio
async def test_no_categories_commits_immediately(flows, ledger) -> None:
    ledger.categories[TransactionType.INCOME] = []
    reply = await flows.begin_category_selection(USER, TransactionType.INCOME, 5_000_000, "gaji")

    assert reply.startswith("✅ Transaksi tersimpan!")
    (saved,) = ledger.transactions.values()
    assert saved.category_id is None
    assert await flows.active_flow(USER) is None


@pytest.mark.asyncio
async def test_handle_without_flow_returns_none(flows) -> None:
    assert await flows.handle(USER, "1") is None


# ===========================================================================
# TEST GROUP 2: Mutual exclusion, order, expiry
# ===========================================================================

@pytest.mark.asyncio
async def test_opening_a_flow_replaces_the_others(flows, ledger, manager) -> None:
    ledger.seed(USER, 7)
    await _open_pending(flows)
    await flows.begin_edit(USER, 7)
    await flows.begin_delete(USER, 7)

    assert await manager.get(SessionKind.PENDING_TRANSACTION, USER) is None
    assert await manager.get(SessionKind.EDIT_SESSION, USER) is None
    assert isinstance(await flows.active_flow(USER), DeleteConfirmation)


@pytest.mark.asyncio
async def test_transaction_flow_is_checked_before_edit(flows, ledger, manager, clock) -> None:
    snapshot = ledger.seed(USER, 7)
    edit = EditSession(transaction_id=7, snapshot=snapshot, created_at=clock())
    pending = PendingTransaction(
        type=TransactionType.EXPENSE,
        amount=10000,
        description="parkir",
        candidate_categories=[Category(id=2, name="Transportasi", type=TransactionType.EXPENSE)],
        created_at=clock(),
    )
    await manager.save(SessionKind.EDIT_SESSION, USER, edit.model_dump(mode="json"))
    await manager.save(SessionKind.PENDING_TRANSACTION, USER, pending.model_dump(mode="json"))

    assert isinstance(await flows.active_flow(USER), PendingTransaction)


@pytest.mark.asyncio
async def test_expired_flow_is_deleted_and_ignored(flows, manager, durable, clock, config) -> None:
    stale = PendingTransaction(
        type=TransactionType.EXPENSE,
        amount=10000,
        description="parkir",
        candidate_categories=[],
        created_at=clock() - timedelta(seconds=config.pending_transaction_ttl + 1),
    )
    await manager.save(SessionKind.PENDING_TRANSACTION, USER, stale.model_dump(mode="json"))

    assert await flows.handle(USER, "1") is None
    assert ("pending_transaction", USER) not in durable.records


@pytest.mark.asyncio
async def test_flow_expires_with_the_clock(flows, clock, config) -> None:
    await _open_pending(flows)
    clock.advance(seconds=config.pending_transaction_ttl)
    assert await flows.active_flow(USER) is None


@pytest.mark.asyncio
async def test_clear_all(flows, ledger) -> None:
    ledger.seed(USER, 7)
    await flows.begin_edit(USER, 7)
    await flows.clear_all(USER)
    assert await flows.active_flow(USER) is None


# ===========================================================================
# TEST GROUP 3: Edit flow
# ===========================================================================

@pytest.mark.asyncio
async def test_edit_unknown_transaction(flows) -> None:
    assert await flows.begin_edit(USER, 999) == messages.transaction_not_found(999)
    assert await flows.active_flow(USER) is None


@pytest.mark.asyncio
async def test_edit_amount_with_invalid_then_valid_input(flows, ledger) -> None:
    ledger.seed(USER, 7, amount=25000)
    menu = await flows.begin_edit(USER, 7)
    assert "Apa yang mau diubah?" in menu

    replies = await flows.handle(USER, "1")
    assert replies[0].startswith("💰 Jumlah saat ini Rp25.000")
    flow = await flows.active_flow(USER)
    assert flow.step is EditStep.EDIT_FIELD
    assert flow.selected_field is EditField.AMOUNT

    assert await flows.handle(USER, "dua puluh") == [messages.INVALID_AMOUNT]
    assert await flows.handle(USER, "0") == [messages.INVALID_AMOUNT]

    replies = await flows.handle(USER, "75rb")
    assert replies[0].startswith("✅ Transaksi diperbarui!")
    assert ledger.transactions[(USER, 7)].amount == 75000
    assert ledger.updates == [(7, {"amount": 75000})]
    assert await flows.active_flow(USER) is None


@pytest.mark.asyncio
async def test_edit_menu_rejects_invalid_choice(flows, ledger) -> None:
    snapshot = ledger.seed(USER, 7)
    await flows.begin_edit(USER, 7)
    assert await flows.handle(USER, "9") == [messages.edit_menu_retry(snapshot)]
    assert (await flows.active_flow(USER)).step is EditStep.SELECT_FIELD


@pytest.mark.asyncio
async def test_edit_description(flows, ledger) -> None:
    ledger.seed(USER, 7)
    await flows.begin_edit(USER, 7)
    await flows.handle(USER, "2")

    assert await flows.handle(USER, "   ") == [messages.INVALID_DESCRIPTION]
    await flows.handle(USER, "bensin motor")
    assert ledger.transactions[(USER, 7)].description == "bensin motor"


@pytest.mark.asyncio
async def test_edit_category_offers_same_type_categories(flows, ledger) -> None:
    ledger.seed(USER, 7, category_id=2)
    await flows.begin_edit(USER, 7)
    replies = await flows.handle(USER, "3")
    assert "1. Makanan" in replies[0]
    assert "Gaji" not in replies[0]

    await flows.handle(USER, "makanan")
    assert ledger.transactions[(USER, 7)].category_name == "Makanan"


@pytest.mark.asyncio
async def test_edit_date(flows, ledger) -> None:
    ledger.seed(USER, 7)
    await flows.begin_edit(USER, 7)
    await flows.handle(USER, "4")

    assert await flows.handle(USER, "besok lusa") == [messages.INVALID_DATE]
    await flows.handle(USER, "01/03/2026")
    assert ledger.transactions[(USER, 7)].date == date(2026, 3, 1)


@pytest.mark.asyncio
async def test_edit_date_relative_words_use_local_day(flows, ledger) -> None:
    ledger.seed(USER, 7)
    await flows.begin_edit(USER, 7)
    await flows.handle(USER, "4")
    await flows.handle(USER, "hari ini")
    assert ledger.transactions[(USER, 7)].date == date(2026, 3, 10)


@pytest.mark.asyncio
async def test_edit_cancel(flows, ledger) -> None:
    ledger.seed(USER, 7)
    await flows.begin_edit(USER, 7)
    await flows.handle(USER, "1")
    assert await flows.handle(USER, "batal") == [messages.CANCELLED]
    assert ledger.updates == []
    assert await flows.active_flow(USER) is None


@pytest.mark.asyncio
async def test_step_change_rearms_edit_deadline(flows, ledger, clock, config) -> None:
    ledger.seed(USER, 7)
    await flows.begin_edit(USER, 7)

    clock.advance(seconds=config.edit_session_ttl - 100)
    await flows.handle(USER, "2")
    clock.advance(seconds=config.edit_session_ttl - 100)

    replies = await flows.handle(USER, "kopi susu")
    assert replies is not None
    assert ledger.transactions[(USER, 7)].description == "kopi susu"


@pytest.mark.asyncio
async def test_ai_edit_applies_sanitized_updates(flows, ledger, interpreter) -> None:
    ledger.seed(USER, 7, amount=25000, category_id=2)
    interpreter.edit_interpretation = EditInterpretation(
        updates={"amount": 75000.0, "category": "makanan", "unknown": "x"},
        confidence=0.9,
        summary="jumlah dan kategori",
    )
    await flows.begin_edit(USER, 7)
    replies = await flows.handle(USER, "5")
    assert (await flows.active_flow(USER)).step is EditStep.AI_EDIT
    assert replies[0].startswith("🤖")

    replies = await flows.handle(USER, "jadi 75rb, kategorinya makanan")
    assert "(jumlah dan kategori)" in replies[0]
    assert ledger.updates == [(7, {"amount": 75000, "category_id": 1})]
    text, snapshot = interpreter.edit_calls[0]
    assert text == "jadi 75rb, kategorinya makanan"
    assert snapshot.id == 7


@pytest.mark.asyncio
async def test_ai_edit_below_threshold_keeps_flow(flows, ledger, interpreter) -> None:
    ledger.seed(USER, 7)
    interpreter.edit_interpretation = EditInterpretation(updates={"amount": 1}, confidence=0.3)
    await flows.begin_edit(USER, 7)
    await flows.handle(USER, "5")

    assert await flows.handle(USER, "ubah aja") == [messages.AI_EDIT_UNCLEAR]
    assert ledger.updates == []
    assert (await flows.active_flow(USER)).step is EditStep.AI_EDIT


@pytest.mark.asyncio
async def test_ai_edit_with_only_invalid_updates_is_unclear(flows, ledger, interpreter) -> None:
    ledger.seed(USER, 7)
    interpreter.edit_interpretation = EditInterpretation(
        updates={"amount": -5, "category": "tidak ada"}, confidence=0.95
    )
    await flows.begin_edit(USER, 7)
    await flows.handle(USER, "5")

    assert await flows.handle(USER, "minus lima") == [messages.AI_EDIT_UNCLEAR]
    assert ledger.updates == []


# ===========================================================================
# TEST GROUP 4: Delete confirmation
# ===========================================================================

@pytest.mark.asyncio
@pytest.mark.parametrize("answer", ["ya", "YA", "hapus", "yes", "delete"])
async def test_delete_confirmed(flows, ledger, answer: str) -> None:
    snapshot = ledger.seed(USER, 7)
    prompt = await flows.begin_delete(USER, 7)
    assert prompt.startswith("⚠️ Hapus transaksi ini?")

    assert await flows.handle(USER, answer) == [messages.transaction_deleted(snapshot)]
    assert (USER, 7) not in ledger.transactions
    assert await flows.active_flow(USER) is None


@pytest.mark.asyncio
@pytest.mark.parametrize("answer", ["batal", "tidak", "no", "cancel", "stop", "/batal"])
async def test_delete_declined(flows, ledger, answer: str) -> None:
    ledger.seed(USER, 7)
    await flows.begin_delete(USER, 7)

    assert await flows.handle(USER, answer) == [messages.DELETE_ABORTED]
    assert (USER, 7) in ledger.transactions
    assert await flows.active_flow(USER) is None


@pytest.mark.asyncio
async def test_delete_unclear_answer_reprompts(flows, ledger) -> None:
    snapshot = ledger.seed(USER, 7)
    await flows.begin_delete(USER, 7)

    assert await flows.handle(USER, "hmm") == [messages.delete_retry(snapshot)]
    assert isinstance(await flows.active_flow(USER), DeleteConfirmation)


@pytest.mark.asyncio
async def test_delete_of_already_removed_transaction(flows, ledger) -> None:
    ledger.seed(USER, 7)
    await flows.begin_delete(USER, 7)
    ledger.transactions.clear()

    assert await flows.handle(USER, "ya") == [messages.transaction_not_found(7)]
    assert await flows.active_flow(USER) is None


@pytest.mark.asyncio
async def test_flows_are_scoped_per_user(flows, ledger) -> None:
    ledger.seed(USER, 7)
    await flows.begin_delete(USER, 7)
    assert await flows.handle("62899", "ya") is None
    assert (USER, 7) in ledger.transactions


# ===========================================================================
# TEST GROUP 5: Ledger failures
# ===========================================================================

@pytest.mark.asyncio
async def test_ledger_failure_keeps_pending_transaction(flows, ledger) -> None:
    await _open_pending(flows)
    ledger.fail = True
    with pytest.raises(DurableStoreFailure):
        await flows.handle(USER, "1")

    ledger.fail = False
    assert isinstance(await flows.active_flow(USER), PendingTransaction)
    await flows.handle(USER, "1")
    assert len(ledger.transactions) == 1


@pytest.mark.asyncio
async def test_ledger_failure_keeps_delete_confirmation(flows, ledger) -> None:
    ledger.seed(USER, 7)
    await flows.begin_delete(USER, 7)
    ledger.fail = True
    with pytest.raises(DurableStoreFailure):
        await flows.handle(USER, "ya")

    ledger.fail = False
    assert isinstance(await flows.active_flow(USER), DeleteConfirmation)


# ===========================================================================
# TEST GROUP 6: Walkthroughs
# ===========================================================================

@pytest.mark.asyncio
async def test_pending_transaction_lifetime_minutes(flows, clock) -> None:
    await _open_pending(flows)
    clock.advance(minutes=4)
    assert isinstance(await flows.active_flow(USER), PendingTransaction)
    clock.advance(minutes=2)
    assert await flows.active_flow(USER) is None


@pytest.mark.asyncio
async def test_category_selection_second_option(flows, ledger) -> None:
    await flows.begin_category_selection(USER, TransactionType.EXPENSE, 25000, "ojek")
    replies = await flows.handle(USER, "2")

    (saved,) = ledger.transactions.values()
    assert saved.category_name == "Transportasi"
    assert "Transportasi" in replies[0]
    assert await flows.active_flow(USER) is None


@pytest.mark.asyncio
async def test_negative_amount_edit_stays_in_edit_field(flows, ledger) -> None:
    ledger.seed(USER, 7)
    await flows.begin_edit(USER, 7)
    await flows.handle(USER, "1")

    assert await flows.handle(USER, "-50") == [messages.INVALID_AMOUNT]
    flow = await flows.active_flow(USER)
    assert flow.step is EditStep.EDIT_FIELD
    assert flow.selected_field is EditField.AMOUNT
    assert ledger.updates == []

"""
MistralInterpreter tests — the Mistral client is mocked, no network calls.
"""
from __future__ import annotations

import asyncio
import json
from datetime import date
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from kasai.conversation.collaborators import ReplyVariant
from kasai.interpreter.mistral_interpreter import MistralInterpreter, build_supportive_prompt
from kasai.sessions.schemas import HistoryEntry, TransactionSnapshot, TransactionType


def _client(content=None, side_effect=None) -> MagicMock:
    response = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])
    client = MagicMock()
    client.chat.complete_async = AsyncMock(return_value=response, side_effect=side_effect)
    return client


def _interpreter(client: MagicMock) -> MistralInterpreter:
    return MistralInterpreter(client, asyncio.Semaphore(2), model="mistral-small-latest", bot_name="KasAI")


# ===========================================================================
# interpret()
# ===========================================================================

@pytest.mark.asyncio
async def test_interpret_parses_json_mode_output() -> None:
    payload = {"type": "expense", "amount": 50000, "description": "makan siang", "category": "Makanan", "confidence": 0.92}
    client = _client(json.dumps(payload))

    result = await _interpreter(client).interpret("makan siang 50rb")
    assert result.type is TransactionType.EXPENSE
    assert result.amount == 50000
    assert result.category == "Makanan"
    assert result.is_transaction is True

    kwargs = client.chat.complete_async.await_args.kwargs
    assert kwargs["model"] == "mistral-small-latest"
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["messages"][-1] == {"role": "user", "content": "makan siang 50rb"}


@pytest.mark.asyncio
async def test_interpret_accepts_fenced_json() -> None:
    client = _client('```json\n{"type": "income", "amount": 5000000, "confidence": 0.8}\n```')
    result = await _interpreter(client).interpret("gaji 5jt")
    assert result.type is TransactionType.INCOME
    assert result.confidence == 0.8


@pytest.mark.asyncio
async def test_interpret_includes_category_context() -> None:
    client = _client('{"type": null, "confidence": 0}')
    await _interpreter(client).interpret("halo", {"categories": ["Makanan", "Transportasi"]})

    user_prompt = client.chat.complete_async.await_args.kwargs["messages"][-1]["content"]
    assert user_prompt.startswith("Kategori tersedia: Makanan, Transportasi")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "content",
    [
        "bukan json",
        "[1, 2, 3]",
        '{"type": "expense", "amount": 1000, "confidence": 5}',
        '{"type": "gift", "amount": 1000, "confidence": 0.9}',
        None,
    ],
)
async def test_interpret_malformed_output_is_zero_confidence(content) -> None:
    result = await _interpreter(_client(content)).interpret("apa saja")
    assert result.confidence == 0.0
    assert result.is_transaction is False


@pytest.mark.asyncio
async def test_interpret_provider_error_is_zero_confidence() -> None:
    client = _client(side_effect=httpx.ConnectError("connection refused"))
    result = await _interpreter(client).interpret("makan 50rb")
    assert result.confidence == 0.0


# ===========================================================================
# interpret_edit()
# ===========================================================================

@pytest.mark.asyncio
async def test_interpret_edit_sends_snapshot_and_parses_updates() -> None:
    snapshot = TransactionSnapshot(
        id=7,
        type=TransactionType.EXPENSE,
        amount=25000,
        description="bensin",
        category_id=2,
        category_name="Transportasi",
        date=date(2026, 3, 9),
    )
    client = _client('{"updates": {"amount": 30000}, "confidence": 0.85, "summary": "jumlah jadi 30rb"}')

    result = await _interpreter(client).interpret_edit("jadi 30rb", snapshot)
    assert result.updates == {"amount": 30000}
    assert result.summary == "jumlah jadi 30rb"

    user_prompt = client.chat.complete_async.await_args.kwargs["messages"][-1]["content"]
    assert '"category": "Transportasi"' in user_prompt
    assert '"date": "2026-03-09"' in user_prompt
    assert user_prompt.endswith("Instruksi: jadi 30rb")


@pytest.mark.asyncio
async def test_interpret_edit_error_is_zero_confidence() -> None:
    snapshot = TransactionSnapshot(id=7, type=TransactionType.INCOME, amount=1, date=date(2026, 3, 9))
    client = _client(side_effect=httpx.ReadTimeout("timed out"))
    result = await _interpreter(client).interpret_edit("ubah", snapshot)
    assert result.confidence == 0.0
    assert result.updates == {}


# ===========================================================================
# supportive_reply()
# ===========================================================================

@pytest.mark.asyncio
async def test_supportive_reply_sends_history_with_variant_prompt() -> None:
    history = [
        HistoryEntry(role="user", content="aku capek", timestamp="2026-03-10T03:00:00Z"),
        HistoryEntry(role="assistant", content="cerita yuk", timestamp="2026-03-10T03:00:05Z"),
        HistoryEntry(role="user", content="kerjaan numpuk", timestamp="2026-03-10T03:01:00Z"),
    ]
    client = _client("Aku dengar kamu.")

    reply = await _interpreter(client).supportive_reply(history, ReplyVariant.LISTENING, "Budi")
    assert reply == "Aku dengar kamu."

    kwargs = client.chat.complete_async.await_args.kwargs
    assert "response_format" not in kwargs
    system, *rest = kwargs["messages"]
    assert system["role"] == "system"
    assert system["content"] == build_supportive_prompt("KasAI", ReplyVariant.LISTENING, "Budi")
    assert [m["content"] for m in rest] == ["aku capek", "cerita yuk", "kerjaan numpuk"]


def test_supportive_prompt_variants_differ() -> None:
    listening = build_supportive_prompt("KasAI", ReplyVariant.LISTENING, None)
    reading = build_supportive_prompt("KasAI", ReplyVariant.READING, "Budi")
    assert "tanpa emoji" in listening
    assert "emoji secukupnya" in reading
    assert "Budi" in reading
    assert "Nama user" not in listening


@pytest.mark.asyncio
async def test_supportive_reply_error_returns_empty() -> None:
    client = _client(side_effect=httpx.ConnectError("connection refused"))
    assert await _interpreter(client).supportive_reply([], ReplyVariant.READING) == ""

"""
mistral_interpreter.py — Mistral-backed Interpreter for KasAI.

Three calls, all via client.chat.complete_async():
  interpret()          free text -> Interpretation (JSON mode)
  interpret_edit()     edit instruction + snapshot -> EditInterpretation (JSON mode)
  supportive_reply()   curhat history -> reply text, phrased for listening or reading

No module-level asyncio.Semaphore: it is created in main.py lifespan and passed in.
Provider failures and unparseable output become zero-confidence results (or an
empty reply), which the conversation layer already treats as "not understood".
Logs only lengths and confidences, never message text.
"""
import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import httpx
from mistralai import Mistral
from mistralai.models import SDKError
from pydantic import ValidationError

from kasai.conversation.collaborators import EditInterpretation, Interpretation, ReplyVariant
from kasai.sessions.schemas import HistoryEntry, TransactionSnapshot

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Mistral API constants
# ---------------------------------------------------------------------------

PARSE_TEMPERATURE = 0.0
CHAT_TEMPERATURE = 0.7
PARSE_MAX_TOKENS = 256
CHAT_MAX_TOKENS = 400


# ---------------------------------------------------------------------------
# System prompts
# ---------------------------------------------------------------------------

SYSTEM_PROMPT_INTERPRET = """Kamu adalah parser transaksi keuangan berbahasa Indonesia.
Baca pesan user dan balas HANYA dengan objek JSON:
{"type": "income" | "expense" | null, "amount": number | null, "description": string | null,
 "category": string | null, "confidence": number}

Aturan:
1. amount dalam Rupiah tanpa pemisah ribuan ("50rb" = 50000, "1,5jt" = 1500000).
2. type null jika pesan bukan transaksi.
3. category hanya jika user menyebut atau jelas tersirat (contoh: "makan siang" -> "Makanan").
4. confidence 0 sampai 1: seberapa yakin kamu bahwa ini transaksi dan nilainya benar."""

SYSTEM_PROMPT_EDIT = """Kamu membantu mengubah satu transaksi keuangan.
Diberikan transaksi saat ini dan instruksi user, balas HANYA dengan objek JSON:
{"updates": {"amount"?: number, "description"?: string, "category"?: string, "date"?: "YYYY-MM-DD"},
 "confidence": number, "summary": string}

Hanya sertakan field yang ingin diubah user. summary adalah ringkasan singkat perubahan
dalam bahasa Indonesia. confidence 0 sampai 1."""

_SUPPORTIVE_BASE = """Kamu adalah {bot_name}, teman curhat yang hangat, empatik, dan tidak menghakimi.
Gunakan bahasa Indonesia santai. Dengarkan, validasi perasaan user, dan beri perspektif
yang membantu tanpa menggurui. Jangan memberi diagnosis medis.
Jika user bertanya cara keluar, beritahu mereka bisa mengetik "selesai", "/quit", atau "/keluar".
{name_instruction}"""

_VARIANT_INSTRUCTIONS = {
    ReplyVariant.LISTENING: (
        "Balasanmu akan diubah menjadi suara. Tulis seperti berbicara langsung: kalimat pendek, "
        "tanpa emoji, tanpa simbol, tanpa daftar berpoin, maksimal 4 kalimat."
    ),
    ReplyVariant.READING: (
        "Balasanmu akan dibaca sebagai teks chat. Boleh memakai emoji secukupnya dan paragraf "
        "pendek, maksimal 6 kalimat."
    ),
}


def build_supportive_prompt(bot_name: str, variant: ReplyVariant, display_name: Optional[str]) -> str:
    name_instruction = (
        f"Nama user adalah {display_name}; sapa dengan namanya sesekali." if display_name else ""
    )
    base = _SUPPORTIVE_BASE.format(bot_name=bot_name, name_instruction=name_instruction).strip()
    return f"{base}\n\n{_VARIANT_INSTRUCTIONS[variant]}"


def _parse_json_object(raw: str) -> Optional[Dict[str, Any]]:
    """Mistral JSON mode still occasionally wraps output in a code fence."""
    text = raw.strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
    try:
        parsed = json.loads(text)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


class MistralInterpreter:
    def __init__(
        self,
        client: Mistral,
        semaphore: asyncio.Semaphore,
        model: str,
        bot_name: str = "KasAI",
    ) -> None:
        self._client = client
        self._semaphore = semaphore
        self._model = model
        self._bot_name = bot_name

    async def _complete(
        self,
        messages: List[Dict[str, str]],
        temperature: float,
        max_tokens: int,
        json_mode: bool,
    ) -> Optional[str]:
        kwargs: Dict[str, Any] = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            async with self._semaphore:
                response = await self._client.chat.complete_async(
                    model=self._model,
                    messages=messages,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    **kwargs,
                )
        except (SDKError, httpx.HTTPError) as exc:
            logger.error("Mistral call failed model=%s: %s", self._model, exc)
            return None
        if not response or not response.choices:
            return None
        content = response.choices[0].message.content
        return content if isinstance(content, str) else None

    async def interpret(self, text: str, context: Optional[Dict[str, Any]] = None) -> Interpretation:
        prompt = text
        if context and context.get("categories"):
            prompt = f"Kategori tersedia: {', '.join(context['categories'])}\n\nPesan: {text}"
        raw = await self._complete(
            [
                {"role": "system", "content": SYSTEM_PROMPT_INTERPRET},
                {"role": "user", "content": prompt},
            ],
            PARSE_TEMPERATURE,
            PARSE_MAX_TOKENS,
            json_mode=True,
        )
        payload = _parse_json_object(raw) if raw else None
        if payload is None:
            return Interpretation()
        try:
            result = Interpretation.model_validate(payload)
        except ValidationError as exc:
            logger.warning("Discarding malformed interpretation: %d errors", exc.error_count())
            return Interpretation()
        logger.info("Interpreted message confidence=%.2f is_transaction=%s", result.confidence, result.is_transaction)
        return result

    async def interpret_edit(self, text: str, snapshot: TransactionSnapshot) -> EditInterpretation:
        current = json.dumps(
            {
                "type": snapshot.type.value,
                "amount": snapshot.amount,
                "description": snapshot.description,
                "category": snapshot.category_name,
                "date": snapshot.date.isoformat(),
            },
            ensure_ascii=False,
        )
        raw = await self._complete(
            [
                {"role": "system", "content": SYSTEM_PROMPT_EDIT},
                {"role": "user", "content": f"Transaksi saat ini: {current}\n\nInstruksi: {text}"},
            ],
            PARSE_TEMPERATURE,
            PARSE_MAX_TOKENS,
            json_mode=True,
        )
        payload = _parse_json_object(raw) if raw else None
        if payload is None:
            return EditInterpretation()
        try:
            return EditInterpretation.model_validate(payload)
        except ValidationError as exc:
            logger.warning("Discarding malformed edit interpretation: %d errors", exc.error_count())
            return EditInterpretation()

    async def supportive_reply(
        self,
        history: List[HistoryEntry],
        variant: ReplyVariant,
        display_name: Optional[str] = None,
    ) -> str:
        messages = [{"role": "system", "content": build_supportive_prompt(self._bot_name, variant, display_name)}]
        messages.extend({"role": entry.role, "content": entry.content} for entry in history)
        logger.info("Calling Mistral for supportive reply history=%d variant=%s", len(history), variant.value)
        raw = await self._complete(messages, CHAT_TEMPERATURE, CHAT_MAX_TOKENS, json_mode=False)
        return raw or ""

"""
voice.py — Voice reply detection for supportive mode.

is_voice_requested()           does this message ask for a spoken reply?
parse_voice_preference_command() is this message a standing-preference command?
wants_voice()                  per-message decision combining both

Preference commands are checked before conversation content, so
"jangan pakai suara lagi" changes the preference instead of being chatted about.
"""
import re
from typing import Optional

from kasai.sessions.schemas import VoicePreference

# Direct requests — any substring match is enough.
_PRIMARY_KEYWORDS = (
    "balas dengan suara",
    "bales dengan suara",
    "bales pake suara",
    "pakai suara",
    "pake suara",
    "gunakan suara",
    "dengan voice",
    "pakai voice",
    "pake voice",
    "suarakan",
    "jawab pake suara",
    "jawab dengan suara",
    "minta suara",
    "mau suara",
    "kirim suara",
    "send voice",
    "voice dong",
    "suara dong",
    "audio dong",
    "mau dengar",
    "pengen dengar",
)

# Only count together with an emotional context word.
_SECONDARY_KEYWORDS = ("voice note", "voice message", "pesan suara", "audio", "rekam", "tts")
_EMOTIONAL_CONTEXT = (
    "sedih",
    "senang",
    "bahagia",
    "kecewa",
    "marah",
    "takut",
    "galau",
    "bingung",
    "stress",
    "lelah",
    "capek",
)

_NATURAL_PATTERNS = tuple(
    re.compile(pattern)
    for pattern in (
        r"bisa.*suara",
        r"tolong.*suara",
        r"coba.*suara",
        r"pake.*audio",
        r"dengan.*audio",
        r"(gimana|bagaimana).*kalau.*suara",
        r"suara.*(ya|aja)$",
        r"voice.*(ya|aja)$",
    )
)

_PREFERENCE_PATTERNS = (
    (
        VoicePreference.NEVER,
        re.compile(
            r"(^/suara\s+(off|mati|never)$)"
            r"|(\b(jangan|gak|nggak|ga|tidak)\s+(usah\s+)?(pakai|pake|pakek)?\s*(suara|voice|audio)\b)"
            r"|(\b(teks|text)\s+(aja|saja|only)\b)"
            r"|(\bnever\s+(use\s+)?voice\b)"
        ),
    ),
    (
        VoicePreference.ALWAYS,
        re.compile(
            r"(^/suara\s+(on|selalu|always)$)"
            r"|(\b(selalu|always)\s+(balas\s+|jawab\s+)?(pakai\s+|pake\s+|dengan\s+|use\s+|with\s+)?(suara|voice|audio)\b)"
        ),
    ),
    (
        VoicePreference.ASK,
        re.compile(
            r"(^/suara\s+(tanya|ask|auto)$)"
            r"|(\b(tanya|ask)\s+(dulu|tiap|setiap|each)\b)"
            r"|(\bsuara\s+kalau\s+(diminta|aku\s+minta)\b)"
        ),
    ),
)


def _clean(message: str) -> str:
    return " ".join(message.lower().split())


def is_voice_requested(message: str) -> bool:
    text = _clean(message)
    if not text:
        return False
    if any(keyword in text for keyword in _PRIMARY_KEYWORDS):
        return True
    if any(keyword in text for keyword in _SECONDARY_KEYWORDS) and any(
        word in text for word in _EMOTIONAL_CONTEXT
    ):
        return True
    return any(pattern.search(text) for pattern in _NATURAL_PATTERNS)


def parse_voice_preference_command(message: str) -> Optional[VoicePreference]:
    text = _clean(message)
    for preference, pattern in _PREFERENCE_PATTERNS:
        if pattern.search(text):
            return preference
    return None


def wants_voice(message: str, preference: VoicePreference) -> bool:
    return is_voice_requested(message) or preference is VoicePreference.ALWAYS

"""
parsing.py — Input grammars for the pending-flow steps.

All parsers return None on rejection; a None drives a re-prompt, never an exception.

Amounts follow Indonesian conventions:
  '50000', '50.000', '1.250.000', '50,000'   thousands separators
  '12,5' / '12.50'                           up to two decimals
  '50k', '50rb', '50 ribu', '1,5jt', '2 juta' suffix multipliers
  'Rp 50.000', 'rp50000'                     optional currency prefix
Zero and negative values are rejected.
"""
import re
from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Sequence

from kasai.sessions.schemas import Category, EditField

AFFIRMATIVE_TOKENS = frozenset({"ya", "hapus", "yes", "delete"})
NEGATIVE_TOKENS = frozenset({"batal", "cancel", "tidak", "no", "stop", "/batal"})
CANCEL_TOKENS = frozenset({"batal", "cancel", "stop", "/batal"})

_AMOUNT_RE = re.compile(
    r"^(?:rp\.?\s*)?"
    r"(?P<number>\d{1,3}(?:[.,]\d{3})+|\d+(?:[.,]\d{1,2})?)"
    r"\s*(?P<suffix>k|rb|ribu|jt|juta)?$"
)
_GROUPED_RE = re.compile(r"^\d{1,3}(?:[.,]\d{3})+$")

_SUFFIX_MULTIPLIERS = {
    "k": 1_000,
    "rb": 1_000,
    "ribu": 1_000,
    "jt": 1_000_000,
    "juta": 1_000_000,
}

DATE_FORMATS = ("%d/%m/%Y", "%d-%m-%Y", "%Y-%m-%d")
_TODAY_WORDS = frozenset({"today", "hari ini", "sekarang"})
_YESTERDAY_WORDS = frozenset({"yesterday", "kemarin"})


def normalize(text: str) -> str:
    return " ".join(text.strip().lower().split())


def is_cancel(text: str) -> bool:
    return normalize(text) in CANCEL_TOKENS


def parse_amount(text: str) -> Optional[float]:
    match = _AMOUNT_RE.match(normalize(text))
    if match is None:
        return None
    number = match.group("number")
    if _GROUPED_RE.match(number):
        value = float(re.sub(r"[.,]", "", number))
    else:
        value = float(number.replace(",", "."))
    suffix = match.group("suffix")
    if suffix:
        value *= _SUFFIX_MULTIPLIERS[suffix]
    if value <= 0:
        return None
    return round(value, 2)


def parse_date(text: str, today: date) -> Optional[date]:
    cleaned = normalize(text)
    if cleaned in _TODAY_WORDS:
        return today
    if cleaned in _YESTERDAY_WORDS:
        return today - timedelta(days=1)
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date()
        except ValueError:
            continue
    return None


def parse_description(text: str) -> Optional[str]:
    cleaned = text.strip()
    return cleaned or None


def parse_field_choice(text: str) -> Optional[EditField]:
    cleaned = normalize(text)
    if not cleaned.isdigit():
        return None
    number = int(cleaned)
    if number < EditField.AMOUNT or number > EditField.AI:
        return None
    return EditField(number)


def parse_transaction_id(text: str) -> Optional[int]:
    cleaned = normalize(text).lstrip("#")
    if not cleaned.isdigit():
        return None
    return int(cleaned)


def match_category(text: str, categories: Sequence[Category]) -> Optional[Category]:
    """
    Resolve a category from a 1-based index into `categories` or a name.

    Name matching is case-insensitive: an exact name wins, otherwise the first
    category whose name contains the input or is contained in it.
    """
    cleaned = normalize(text)
    if not cleaned or not categories:
        return None
    if cleaned.isdigit():
        index = int(cleaned)
        if 1 <= index <= len(categories):
            return categories[index - 1]
        return None
    for category in categories:
        if category.name.lower() == cleaned:
            return category
    for category in categories:
        name = category.name.lower()
        if cleaned in name or name in cleaned:
            return category
    return None


def find_category_by_name(name: Optional[str], categories: Iterable[Category]) -> Optional[Category]:
    """Name-only resolution for interpreter output; digits are not indexes here."""
    if not name:
        return None
    cleaned = normalize(name)
    if not cleaned or cleaned.isdigit():
        return None
    return match_category(cleaned, list(categories))


def format_rupiah(amount: float) -> str:
    whole = int(round(amount))
    return "Rp" + f"{whole:,}".replace(",", ".")

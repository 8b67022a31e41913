"""
In-memory stand-ins for the storage tiers and collaborators.

Every fake shares a FrozenClock so TTL behaviour is deterministic, and every
storage fake JSON-round-trips values so tests see exactly what a real tier
would hand back.
"""
import fnmatch
import json
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from kasai.conversation.collaborators import (
    EditInterpretation,
    Interpretation,
    ReplyContent,
    ReplyVariant,
    SynthesisError,
)
from kasai.sessions.errors import CacheTierFailure, DurableStoreFailure
from kasai.sessions.kinds import SessionKind
from kasai.sessions.schemas import (
    Category,
    HistoryEntry,
    TransactionSnapshot,
    TransactionType,
    UserProfile,
)
from kasai.sessions.tiers import StoredRecord


class FrozenClock:
    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2026, 3, 10, 3, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, minutes: float = 0, hours: float = 0, days: float = 0) -> None:
        self.now += timedelta(seconds=seconds, minutes=minutes, hours=hours, days=days)


def _roundtrip(value: Any) -> Any:
    return json.loads(json.dumps(value))


# ---------------------------------------------------------------------------
# Cache tier
# ---------------------------------------------------------------------------

class FakeCacheTier:
    """Redis-like SETEX/GET/DEL/EXPIRE/KEYS/PING with clock-driven expiry."""

    def __init__(self, clock: FrozenClock) -> None:
        self._clock = clock
        self._data: Dict[str, Tuple[str, datetime]] = {}
        self.fail = False
        self.calls: List[str] = []
        self.hits = 0

    def _check(self, operation: str) -> None:
        self.calls.append(operation)
        if self.fail:
            raise CacheTierFailure(f"{operation} failed: connection refused", operation=operation)

    def _live(self, key: str) -> Optional[str]:
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    def ttl(self, key: str) -> Optional[float]:
        if self._live(key) is None:
            return None
        return (self._data[key][1] - self._clock()).total_seconds()

    def raw(self, key: str) -> Optional[str]:
        return self._live(key)

    def plant(self, key: str, value: str, ttl: int = 3600) -> None:
        self._data[key] = (value, self._clock() + timedelta(seconds=ttl))

    async def set(self, key: str, value: str, ttl: int) -> None:
        self._check("set")
        self._data[key] = (value, self._clock() + timedelta(seconds=max(int(ttl), 1)))

    async def get(self, key: str) -> Optional[str]:
        self._check("get")
        value = self._live(key)
        if value is not None:
            self.hits += 1
        return value

    async def delete(self, *keys: str) -> int:
        self._check("delete")
        deleted = 0
        for key in keys:
            if self._data.pop(key, None) is not None:
                deleted += 1
        return deleted

    async def expire(self, key: str, ttl: int) -> bool:
        self._check("expire")
        value = self._live(key)
        if value is None:
            return False
        self._data[key] = (value, self._clock() + timedelta(seconds=ttl))
        return True

    async def keys(self, pattern: str) -> List[str]:
        self._check("keys")
        return [key for key in list(self._data) if self._live(key) is not None and fnmatch.fnmatchcase(key, pattern)]

    async def ping(self) -> float:
        self._check("ping")
        return 0.1


# ---------------------------------------------------------------------------
# Durable tier
# ---------------------------------------------------------------------------

class InMemoryDurableTier:
    def __init__(self, transport_ttl: int = 86400) -> None:
        self.records: Dict[Tuple[str, str], Tuple[dict, Optional[datetime]]] = {}
        self.users: Dict[str, UserProfile] = {}
        self.history: List[Tuple[str, str, HistoryEntry]] = []
        self.transport_ttl = transport_ttl
        self.fail = False
        self.fetches = 0

    def _check(self, operation: str) -> None:
        if self.fail:
            raise DurableStoreFailure(f"{operation} failed: database unavailable", operation=operation)

    async def put(self, kind, key, value, now, expires_at):
        self._check("put")
        if kind is SessionKind.TRANSPORT:
            expires_at = now + timedelta(seconds=self.transport_ttl)
        self.records[(kind.value, key)] = (_roundtrip(value), expires_at)

    async def fetch(self, kind, key, now):
        self._check("fetch")
        self.fetches += 1
        item = self.records.get((kind.value, key))
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and expires_at <= now:
            return None
        return StoredRecord(_roundtrip(value), expires_at)

    async def touch(self, kind, key, now, expires_at):
        self._check("touch")
        item = self.records.get((kind.value, key))
        if item is not None:
            self.records[(kind.value, key)] = (item[0], expires_at)

    async def remove(self, kind, key):
        self._check("remove")
        self.records.pop((kind.value, key), None)

    async def sweep_expired(self, now):
        self._check("sweep_expired")
        expired = [
            record_key
            for record_key, (_, expires_at) in self.records.items()
            if expires_at is not None and expires_at <= now
        ]
        for record_key in expired:
            del self.records[record_key]
        return {"session_records": len(expired)}

    async def count_live(self, now):
        self._check("count_live")
        counts = {kind.value: 0 for kind in SessionKind}
        for (kind, _), (_, expires_at) in self.records.items():
            if expires_at is None or expires_at > now:
                counts[kind] += 1
        return counts

    async def ping(self):
        self._check("ping")
        return 0.5

    async def get_user(self, user_id):
        self._check("get_user")
        return self.users.get(user_id)

    async def ensure_user(self, user_id, now, name=None):
        self._check("ensure_user")
        user = self.users.get(user_id)
        if user is None:
            user = UserProfile(id=user_id, name=name)
        elif name and not user.name:
            user = user.model_copy(update={"name": name})
        self.users[user_id] = user
        return user

    async def append_history(self, user_id, session_id, entry):
        self._check("append_history")
        self.history.append((user_id, session_id, entry))

    async def fetch_history(self, user_id, session_id, limit):
        self._check("fetch_history")
        entries = [e for u, s, e in self.history if u == user_id and s == session_id]
        return entries[-limit:]

    async def clear_history(self, user_id, session_id=None):
        self._check("clear_history")
        before = len(self.history)
        self.history = [
            (u, s, e)
            for u, s, e in self.history
            if not (u == user_id and (session_id is None or s == session_id))
        ]
        return before - len(self.history)

    async def purge_history(self, cutoff):
        self._check("purge_history")
        before = len(self.history)
        self.history = [(u, s, e) for u, s, e in self.history if e.timestamp >= cutoff]
        return before - len(self.history)


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

EXPENSE_CATEGORIES = [
    Category(id=1, name="Makanan", type=TransactionType.EXPENSE),
    Category(id=2, name="Transportasi", type=TransactionType.EXPENSE),
    Category(id=3, name="Belanja", type=TransactionType.EXPENSE),
]
INCOME_CATEGORIES = [
    Category(id=10, name="Gaji", type=TransactionType.INCOME),
    Category(id=11, name="Bonus", type=TransactionType.INCOME),
]


class FakeLedger:
    def __init__(self) -> None:
        self.categories = {
            TransactionType.EXPENSE: list(EXPENSE_CATEGORIES),
            TransactionType.INCOME: list(INCOME_CATEGORIES),
        }
        self.transactions: Dict[Tuple[str, int], TransactionSnapshot] = {}
        self.updates: List[Tuple[int, Dict[str, Any]]] = []
        self.fail = False
        self._next_id = 100

    def _check(self, operation: str) -> None:
        if self.fail:
            raise DurableStoreFailure(f"{operation} failed", operation=operation)

    def _category_name(self, category_id: Optional[int]) -> Optional[str]:
        for categories in self.categories.values():
            for category in categories:
                if category.id == category_id:
                    return category.name
        return None

    def seed(
        self,
        user_id: str,
        transaction_id: int,
        amount: float = 25000,
        description: str = "bensin",
        category_id: Optional[int] = 2,
        type: TransactionType = TransactionType.EXPENSE,
    ) -> TransactionSnapshot:
        snapshot = TransactionSnapshot(
            id=transaction_id,
            type=type,
            amount=amount,
            description=description,
            category_id=category_id,
            category_name=self._category_name(category_id),
            date=date(2026, 3, 9),
        )
        self.transactions[(user_id, transaction_id)] = snapshot
        return snapshot

    async def get_categories(self, user_id, type):
        self._check("get_categories")
        return list(self.categories[type])

    async def add_transaction(self, user_id, type, amount, description, category_id, date=None):
        self._check("add_transaction")
        self._next_id += 1
        snapshot = TransactionSnapshot(
            id=self._next_id,
            type=type,
            amount=amount,
            description=description,
            category_id=category_id,
            category_name=self._category_name(category_id),
            date=date or datetime(2026, 3, 10).date(),
        )
        self.transactions[(user_id, snapshot.id)] = snapshot
        return snapshot

    async def get_transaction(self, user_id, transaction_id):
        self._check("get_transaction")
        return self.transactions.get((user_id, transaction_id))

    async def update_transaction(self, user_id, transaction_id, updates):
        self._check("update_transaction")
        current = self.transactions.get((user_id, transaction_id))
        if current is None:
            return None
        self.updates.append((transaction_id, dict(updates)))
        changes = dict(updates)
        if "category_id" in changes:
            changes["category_name"] = self._category_name(changes["category_id"])
        updated = current.model_copy(update=changes)
        self.transactions[(user_id, transaction_id)] = updated
        return updated

    async def delete_transaction(self, user_id, transaction_id):
        self._check("delete_transaction")
        return self.transactions.pop((user_id, transaction_id), None) is not None


class FakeInterpreter:
    def __init__(self) -> None:
        self.interpretation = Interpretation()
        self.edit_interpretation = EditInterpretation()
        self.reply_text = "Aku di sini untuk mendengarkan."
        self.interpret_calls: List[str] = []
        self.interpret_contexts: List[Optional[Dict[str, Any]]] = []
        self.edit_calls: List[Tuple[str, TransactionSnapshot]] = []
        self.reply_calls: List[Tuple[List[HistoryEntry], ReplyVariant, Optional[str]]] = []

    async def interpret(self, text, context=None):
        self.interpret_calls.append(text)
        self.interpret_contexts.append(context)
        return self.interpretation

    async def interpret_edit(self, text, snapshot):
        self.edit_calls.append((text, snapshot))
        return self.edit_interpretation

    async def supportive_reply(self, history, variant, display_name=None):
        self.reply_calls.append((list(history), variant, display_name))
        return self.reply_text


class FakeSynthesizer:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: List[str] = []

    async def synthesize(self, text):
        self.calls.append(text)
        if self.fail:
            raise SynthesisError("tts provider unavailable")
        return b"ID3-fake-audio"


@dataclass
class RecordingSink:
    replies: List[ReplyContent] = field(default_factory=list)

    async def reply(self, content: ReplyContent) -> None:
        self.replies.append(content)

    @property
    def last(self) -> ReplyContent:
        return self.replies[-1]

    def texts(self) -> List[str]:
        return [r if isinstance(r, str) else r.caption for r in self.replies]

"""
kinds.py — Session record kinds and their expiry policies.

Expiry styles:
  RELATIVE    deadline = save time + ttl (pending flows)
  ABSOLUTE    deadline fixed when written, re-extended only by an explicit update (registration)
  REFRESHING  deadline re-armed on every read hit and write (transport credentials)
  NONE        record lives until explicitly deleted (mode state); ttl is cache lifetime only
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict

from kasai.config import Settings, settings as default_settings


Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionKind(str, Enum):
    TRANSPORT = "transport"
    REGISTRATION = "registration"
    PENDING_TRANSACTION = "pending_transaction"
    EDIT_SESSION = "edit_session"
    DELETE_CONFIRMATION = "delete_confirmation"
    MODE_STATE = "mode_state"


class ExpiryStyle(str, Enum):
    RELATIVE = "relative"
    ABSOLUTE = "absolute"
    REFRESHING = "refreshing"
    NONE = "none"


# Pending flows are mutually exclusive per user.
PENDING_FLOW_KINDS = (
    SessionKind.PENDING_TRANSACTION,
    SessionKind.EDIT_SESSION,
    SessionKind.DELETE_CONFIRMATION,
)


@dataclass(frozen=True)
class KindPolicy:
    kind: SessionKind
    style: ExpiryStyle
    ttl_seconds: int

    @property
    def expires(self) -> bool:
        return self.style is not ExpiryStyle.NONE


def build_policies(cfg: Settings = default_settings) -> Dict[SessionKind, KindPolicy]:
    """Map every SessionKind to its expiry policy using the configured TTLs."""
    return {
        SessionKind.TRANSPORT: KindPolicy(
            SessionKind.TRANSPORT, ExpiryStyle.REFRESHING, cfg.transport_session_ttl
        ),
        SessionKind.REGISTRATION: KindPolicy(
            SessionKind.REGISTRATION, ExpiryStyle.ABSOLUTE, cfg.registration_session_ttl
        ),
        SessionKind.PENDING_TRANSACTION: KindPolicy(
            SessionKind.PENDING_TRANSACTION, ExpiryStyle.RELATIVE, cfg.pending_transaction_ttl
        ),
        SessionKind.EDIT_SESSION: KindPolicy(
            SessionKind.EDIT_SESSION, ExpiryStyle.RELATIVE, cfg.edit_session_ttl
        ),
        SessionKind.DELETE_CONFIRMATION: KindPolicy(
            SessionKind.DELETE_CONFIRMATION, ExpiryStyle.RELATIVE, cfg.delete_confirmation_ttl
        ),
        SessionKind.MODE_STATE: KindPolicy(
            SessionKind.MODE_STATE, ExpiryStyle.NONE, cfg.mode_state_cache_ttl
        ),
    }

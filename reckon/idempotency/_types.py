"""
Idempotency types — records, results and errors.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum, auto
from typing import Generic, TypeVar

E = TypeVar("E")


# ═══════════════════════════════════════════════════════════════════════════════
# Record State
# ═══════════════════════════════════════════════════════════════════════════════

class RecordState(Enum):
    """
    Lifecycle:
        PENDING → COMPLETED (value stored until expiry)
                → (deleted on failure, so the caller may retry)
    """

    PENDING = auto()
    COMPLETED = auto()


@dataclass(frozen=True, slots=True)
class IdempotencyRecord:
    """
    A stored key.

    fingerprint: hash of the request body. Same key with a different body
    is a client bug, not a retry.
    """

    key: str
    state: RecordState
    fingerprint: str
    value: str | None
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


# ═══════════════════════════════════════════════════════════════════════════════
# Result Types
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class IdempotencyResult:
    value: str
    from_cache: bool
    key: str


class IdempotencyErrorKind(Enum):
    CONFLICT = auto()  # same key in flight, on_pending=FAIL
    TIMEOUT = auto()  # waited for the in-flight request too long
    STORE_ERROR = auto()
    EXECUTION = auto()  # the wrapped operation failed
    INPUT_MISMATCH = auto()  # same key, different request body


@dataclass(frozen=True, slots=True)
class IdempotencyError(Generic[E]):
    """
    Note: original_error carries the wrapped operation's error when kind is EXECUTION.
    """

    kind: IdempotencyErrorKind
    message: str
    original_error: E | None = None


__all__ = (
    "RecordState",
    "IdempotencyRecord",
    "IdempotencyResult",
    "IdempotencyErrorKind",
    "IdempotencyError",
)

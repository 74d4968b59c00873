"""
Idempotency policy — how long keys live and what to do with in-flight duplicates.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import timedelta
from enum import Enum, auto


class OnPending(Enum):
    """
    A request arrives while another with the same key is still running.

    WAIT: poll until the first finishes, then return its result.
    FAIL: return CONFLICT immediately.
    """

    WAIT = auto()
    FAIL = auto()


WAIT = OnPending.WAIT
FAIL = OnPending.FAIL


@dataclass(frozen=True, slots=True)
class Policy:
    """
    Example:
        policy = (
            Policy()
            .with_ttl(seconds=600)
            .with_on_pending(WAIT)
            .with_wait_timeout(seconds=10)
        )

    pending_ttl bounds how long a crashed request can hold a key.
    """

    result_ttl: timedelta = timedelta(minutes=10)
    on_pending: OnPending = OnPending.WAIT
    pending_wait_timeout: timedelta = timedelta(seconds=10)
    poll_interval: float = 0.05
    pending_ttl: timedelta = timedelta(seconds=60)

    def with_ttl(self, *, seconds: float | None = None, delta: timedelta | None = None) -> Policy:
        return replace(self, result_ttl=delta if delta is not None else timedelta(seconds=seconds or 0))

    def with_on_pending(self, strategy: OnPending) -> Policy:
        return replace(self, on_pending=strategy)

    def with_wait_timeout(self, *, seconds: float | None = None, delta: timedelta | None = None) -> Policy:
        return replace(self, pending_wait_timeout=delta if delta is not None else timedelta(seconds=seconds or 10))

    def with_pending_ttl(self, *, seconds: float) -> Policy:
        return replace(self, pending_ttl=timedelta(seconds=seconds))


__all__ = ("OnPending", "WAIT", "FAIL", "Policy")

"""Clock — naive UTC timestamps, injectable for tests."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

type Clock = Callable[[], datetime]


def utcnow() -> datetime:
    # Stored naive: SQLite drops tzinfo, so both sides of every comparison stay naive.
    return datetime.now(timezone.utc).replace(tzinfo=None)


__all__ = ("Clock", "utcnow")

"""
Rate limit types — typed keys, limits, tiers and decisions.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum, StrEnum, auto


# ═══════════════════════════════════════════════════════════════════════════════
# Keys
# ═══════════════════════════════════════════════════════════════════════════════

class Operation(StrEnum):
    CREATE_ORDER = "create_order"
    VERIFY_PAYMENT = "verify_payment"
    WEBHOOK = "webhook"
    PROMOTION_CODE = "promotion_code"


class IdentifierType(StrEnum):
    IP = "ip"
    CUSTOMER = "customer"
    EMAIL = "email"
    SESSION = "session"


@dataclass(frozen=True, slots=True)
class RateLimitKey:
    identifier: str
    identifier_type: IdentifierType
    operation: Operation

    def __str__(self) -> str:
        return f"{self.operation}:{self.identifier_type}:{self.identifier}"


# ═══════════════════════════════════════════════════════════════════════════════
# Reputation
# ═══════════════════════════════════════════════════════════════════════════════

class Tier(StrEnum):
    TRUSTED = "trusted"
    NORMAL = "normal"
    SUSPICIOUS = "suspicious"
    BLOCKED = "blocked"


@dataclass(frozen=True, slots=True)
class Thresholds:
    """Cumulative violation counts at which an identifier is demoted."""

    suspicious_after: int = 5
    blocked_after: int = 25

    def tier_for(self, violations: int, flagged: Tier | None = None) -> Tier:
        if flagged is not None:
            return flagged
        if violations >= self.blocked_after:
            return Tier.BLOCKED
        if violations >= self.suspicious_after:
            return Tier.SUSPICIOUS
        return Tier.NORMAL


# ═══════════════════════════════════════════════════════════════════════════════
# Limits
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class Limits:
    """
    Requests allowed per fixed window.

    Example:
        Limits.per_hour(10)
        Limits.per_day(100)
    """

    max_requests: int
    window: timedelta

    @classmethod
    def per_hour(cls, max_requests: int) -> Limits:
        return cls(max_requests, timedelta(hours=1))

    @classmethod
    def per_day(cls, max_requests: int) -> Limits:
        return cls(max_requests, timedelta(days=1))

    def for_tier(self, tier: Tier) -> int:
        """Effective cap: trusted doubles, suspicious quarters (at least 1), blocked is zero."""
        match tier:
            case Tier.TRUSTED:
                return self.max_requests * 2
            case Tier.NORMAL:
                return self.max_requests
            case Tier.SUSPICIOUS:
                return max(1, self.max_requests // 4)
            case Tier.BLOCKED:
                return 0


_EPOCH = datetime(1970, 1, 1)


def window_bounds(now: datetime, window: timedelta) -> tuple[datetime, datetime]:
    """Fixed window containing `now`, aligned to the epoch."""
    period = int(window.total_seconds())
    elapsed = int((now - _EPOCH).total_seconds())
    start = _EPOCH + timedelta(seconds=elapsed - elapsed % period)
    return start, start + window


# ═══════════════════════════════════════════════════════════════════════════════
# Decisions
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class Allowed:
    key: RateLimitKey
    tier: Tier
    count: int
    limit: int
    reset_at: datetime

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)


class DenialReason(Enum):
    LIMIT_EXCEEDED = auto()
    BLOCKED = auto()
    STORE_UNAVAILABLE = auto()  # fail closed


@dataclass(frozen=True, slots=True)
class Denied:
    key: RateLimitKey
    reason: DenialReason
    tier: Tier
    limit: int
    reset_at: datetime
    retry_after: int
    violations: int = 0

    @property
    def message(self) -> str:
        match self.reason:
            case DenialReason.BLOCKED:
                return "requests from this identifier are blocked"
            case DenialReason.STORE_UNAVAILABLE:
                return "rate limiter unavailable, try again shortly"
            case _:
                return f"rate limit of {self.limit} exceeded, retry in {self.retry_after}s"


__all__ = (
    "Operation",
    "IdentifierType",
    "RateLimitKey",
    "Tier",
    "Thresholds",
    "Limits",
    "window_bounds",
    "Allowed",
    "DenialReason",
    "Denied",
)

"""
Rate limiting — fixed windows, reputation tiers, fail-closed decisions.

Usage:
    limiter = RateLimiter(session_factory)
    key = RateLimitKey("10.0.0.7", IdentifierType.IP, Operation.CREATE_ORDER)

    match await limiter.check_and_increment(key, Limits.per_hour(10)):
        case Ok(allowed):
            ...  # allowed.remaining, allowed.reset_at
        case Error(denied):
            ...  # denied.retry_after, denied.reason
"""

from reckon.ratelimit._limiter import RateLimiter
from reckon.ratelimit._types import (
    Allowed,
    DenialReason,
    Denied,
    IdentifierType,
    Limits,
    Operation,
    RateLimitKey,
    Thresholds,
    Tier,
    window_bounds,
)

__all__ = (
    "RateLimiter",
    "Allowed",
    "DenialReason",
    "Denied",
    "IdentifierType",
    "Limits",
    "Operation",
    "RateLimitKey",
    "Thresholds",
    "Tier",
    "window_bounds",
)

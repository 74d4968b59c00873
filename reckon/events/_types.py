"""
Event types — domain events and security/integrity incidents.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from reckon._clock import utcnow


# ═══════════════════════════════════════════════════════════════════════════════
# Domain Events — emitted after commit, at most once per transition
# ═══════════════════════════════════════════════════════════════════════════════

class EventType(StrEnum):
    ORDER_PAID = "order_paid"
    ORDER_FAILED = "order_failed"


@dataclass(frozen=True, slots=True)
class DomainEvent:
    type: EventType
    order_id: str
    order_number: str
    amount: int
    currency: str
    customer_contact: str | None = None
    occurred_at: datetime = field(default_factory=utcnow)


# ═══════════════════════════════════════════════════════════════════════════════
# Incidents — persisted, then forwarded to the audit sink
# ═══════════════════════════════════════════════════════════════════════════════

class IncidentKind(StrEnum):
    INVALID_SIGNATURE = "invalid_signature"
    MALFORMED_PAYLOAD = "malformed_payload"
    ORDER_NOT_FOUND = "order_not_found"
    AMOUNT_MISMATCH = "amount_mismatch"
    PRICE_INTEGRITY = "price_integrity"
    STATE_CONFLICT = "state_conflict"
    PROMOTION_OVERRUN = "promotion_overrun"
    REFUND_OVERRUN = "refund_overrun"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True, slots=True)
class Incident:
    kind: IncidentKind
    severity: Severity
    message: str
    reference: str | None = None
    order_id: str | None = None
    detail: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)

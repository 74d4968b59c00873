"""
Payment types — provider-neutral charges and events, acks and verification results.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, StrEnum, auto
from typing import Any, Protocol

from kungfu import Result


# ═══════════════════════════════════════════════════════════════════════════════
# Provider-Neutral Charges and Events
# ═══════════════════════════════════════════════════════════════════════════════

class ChargeStatus(StrEnum):
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"
    ABANDONED = "abandoned"


@dataclass(frozen=True, slots=True)
class ProviderCharge:
    reference: str
    amount: int
    currency: str
    status: ChargeStatus
    provider_transaction_id: str | None = None
    channel: str | None = None
    paid_at: datetime | None = None
    # Provider body as received; kept for audit, never read for decisions
    raw: dict[str, Any] | None = field(default=None, compare=False, repr=False)


@dataclass(frozen=True, slots=True)
class ProviderRefund:
    refund_id: str
    transaction_reference: str
    amount: int
    currency: str
    raw: dict[str, Any] | None = field(default=None, compare=False, repr=False)


class EventKind(StrEnum):
    CHARGE_SUCCESS = "charge.success"
    CHARGE_FAILED = "charge.failed"
    REFUND_PROCESSED = "refund.processed"
    IGNORED = "ignored"


@dataclass(frozen=True, slots=True)
class InboundEvent:
    event_id: str
    kind: EventKind
    name: str
    charge: ProviderCharge | None = None
    refund: ProviderRefund | None = None


class ProviderErrorKind(Enum):
    TRANSIENT = auto()  # timeout, connection, 5xx, 429
    NOT_FOUND = auto()
    REJECTED = auto()
    MALFORMED = auto()


@dataclass(frozen=True, slots=True)
class ProviderError:
    kind: ProviderErrorKind
    message: str
    status_code: int | None = None

    @property
    def transient(self) -> bool:
        return self.kind is ProviderErrorKind.TRANSIENT


class PaymentProvider(Protocol):
    name: str

    def verify_signature(self, raw_payload: bytes, signature: str | None) -> bool: ...

    def parse_event(self, raw_payload: bytes) -> Result[InboundEvent, ProviderError]: ...

    async def fetch_charge(self, reference: str) -> Result[ProviderCharge, ProviderError]: ...


# ═══════════════════════════════════════════════════════════════════════════════
# Outcomes
# ═══════════════════════════════════════════════════════════════════════════════

class Outcome(StrEnum):
    PAID = "paid"
    ALREADY_PAID = "already_paid"
    AMOUNT_MISMATCH = "amount_mismatch"
    ORDER_NOT_FOUND = "order_not_found"
    INTEGRITY_ERROR = "integrity_error"
    INVALID_STATE = "invalid_state"
    FAILED = "failed"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    REJECTED = "rejected"  # bad signature or unparseable body
    RATE_LIMITED = "rate_limited"
    RETRY = "retry"


@dataclass(frozen=True, slots=True)
class Ack:
    """
    Webhook response.

    The body is identical for every 200, so a caller cannot tell a bad
    signature from a processed event.
    """

    status_code: int
    outcome: Outcome

    @property
    def body(self) -> dict[str, bool]:
        return {"received": self.status_code < 300}


class VerificationStatus(StrEnum):
    PAID = "paid"
    ALREADY_PAID = "already_paid"
    PENDING = "pending"
    FAILED = "failed"
    AMOUNT_MISMATCH = "amount_mismatch"
    NOT_FOUND = "not_found"
    INTEGRITY_ERROR = "integrity_error"
    INVALID_STATE = "invalid_state"
    RATE_LIMITED = "rate_limited"
    RETRYABLE = "retryable"


@dataclass(frozen=True, slots=True)
class VerificationResult:
    status: VerificationStatus
    reference: str
    message: str = ""
    order_id: str | None = None
    retry_after: int | None = None

    @property
    def retryable(self) -> bool:
        return self.status in (
            VerificationStatus.PENDING,
            VerificationStatus.RATE_LIMITED,
            VerificationStatus.RETRYABLE,
        )


@dataclass(frozen=True, slots=True)
class PaymentInit:
    order_id: str
    reference: str
    amount: int
    currency: str


class PaymentErrorKind(Enum):
    NOT_FOUND = auto()
    INVALID_STATE = auto()
    INTEGRITY = auto()


@dataclass(frozen=True, slots=True)
class PaymentError:
    kind: PaymentErrorKind
    message: str


__all__ = (
    "ChargeStatus",
    "ProviderCharge",
    "ProviderRefund",
    "EventKind",
    "InboundEvent",
    "ProviderErrorKind",
    "ProviderError",
    "PaymentProvider",
    "Outcome",
    "Ack",
    "VerificationStatus",
    "VerificationResult",
    "PaymentInit",
    "PaymentErrorKind",
    "PaymentError",
)

"""
Order types — lifecycle enums, requests, the order view and errors.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum, StrEnum, auto
from typing import Any

from reckon.pricing import (
    CartLine,
    Customer,
    Fulfillment,
    FulfillmentType,
    PriceLine,
    PricingError,
    StoredOrder,
)


# ═══════════════════════════════════════════════════════════════════════════════
# Lifecycle
# ═══════════════════════════════════════════════════════════════════════════════

class OrderStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PAYMENT_FAILED = "payment_failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(StrEnum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"


# ═══════════════════════════════════════════════════════════════════════════════
# Request
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class CreateOrderRequest:
    customer: Customer
    items: tuple[CartLine, ...]
    fulfillment: Fulfillment
    idempotency_key: str
    promotion_code: str | None = None
    client_ip: str | None = None

    def fingerprint_payload(self) -> dict[str, Any]:
        """Everything that changes what gets created. client_ip is deliberately absent."""
        return {
            "customer": [
                self.customer.customer_id,
                self.customer.guest_session_id,
                self.customer.email,
                self.customer.phone,
                self.customer.name,
            ],
            "items": [[i.product_id, i.quantity, i.unit_price_snapshot] for i in self.items],
            "fulfillment": [self.fulfillment.type.value, self.fulfillment.zone_id, self.fulfillment.address],
            "promotion_code": self.promotion_code,
        }


# ═══════════════════════════════════════════════════════════════════════════════
# Order View
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class Order:
    id: str
    order_number: str
    status: OrderStatus
    payment_status: PaymentStatus
    customer: Customer
    fulfillment_type: FulfillmentType
    delivery_zone_id: str | None
    lines: tuple[PriceLine, ...]
    subtotal: int
    tax_amount: int
    delivery_fee: int
    discount_amount: int
    total_amount: int
    currency: str
    promotion_id: str | None
    promotion_code: str | None
    version: int
    created_at: datetime
    paid_at: datetime | None = None

    def stored(self) -> StoredOrder:
        return StoredOrder(
            lines=self.lines,
            subtotal=self.subtotal,
            tax_amount=self.tax_amount,
            delivery_fee=self.delivery_fee,
            discount_amount=self.discount_amount,
            total_amount=self.total_amount,
            currency=self.currency,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Errors
# ═══════════════════════════════════════════════════════════════════════════════

class OrderErrorKind(Enum):
    INVALID_REQUEST = auto()
    RATE_LIMITED = auto()
    PRICING = auto()  # "fix your cart"
    IDEMPOTENCY_CONFLICT = auto()  # key reused with a different body
    IN_PROGRESS = auto()
    TRANSIENT = auto()
    NOT_FOUND = auto()
    INVALID_STATE = auto()


@dataclass(frozen=True, slots=True)
class OrderError:
    kind: OrderErrorKind
    message: str
    pricing: PricingError | None = None
    retry_after: int | None = None

    @property
    def retryable(self) -> bool:
        if self.kind is OrderErrorKind.PRICING and self.pricing is not None:
            return self.pricing.retryable
        return self.kind in (OrderErrorKind.RATE_LIMITED, OrderErrorKind.IN_PROGRESS, OrderErrorKind.TRANSIENT)


__all__ = (
    "OrderStatus",
    "PaymentStatus",
    "CreateOrderRequest",
    "Order",
    "OrderErrorKind",
    "OrderError",
)

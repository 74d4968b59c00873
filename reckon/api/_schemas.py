"""
HTTP request/response models. Each converts to or from the domain at one seam.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from reckon.orders import CreateOrderRequest, Order, OrderError, OrderErrorKind
from reckon.payments import PaymentInit, VerificationResult
from reckon.pricing import CartLine, Customer, Fulfillment, FulfillmentType


# ═══════════════════════════════════════════════════════════════════════════════
# Orders
# ═══════════════════════════════════════════════════════════════════════════════

class CustomerIn(BaseModel):
    customer_id: str | None = None
    guest_session_id: str | None = None
    email: str | None = None
    phone: str | None = None
    name: str | None = None


class LineIn(BaseModel):
    product_id: str
    quantity: int
    unit_price: int | None = None  # what the client displayed; drift is rejected


class FulfillmentIn(BaseModel):
    type: FulfillmentType
    zone_id: str | None = None
    address: str | None = None


class CreateOrderIn(BaseModel):
    idempotency_key: str = Field(min_length=1)
    customer: CustomerIn
    items: list[LineIn] = Field(min_length=1)
    fulfillment: FulfillmentIn
    promotion_code: str | None = None

    def to_domain(self, client_ip: str | None) -> CreateOrderRequest:
        return CreateOrderRequest(
            customer=Customer(**self.customer.model_dump()),
            items=tuple(CartLine(i.product_id, i.quantity, i.unit_price) for i in self.items),
            fulfillment=Fulfillment(self.fulfillment.type, self.fulfillment.zone_id, self.fulfillment.address),
            idempotency_key=self.idempotency_key,
            promotion_code=self.promotion_code or None,
            client_ip=client_ip,
        )


class LineOut(BaseModel):
    product_id: str
    product_name: str
    quantity: int
    paid_quantity: int
    free_quantity: int
    unit_price: int
    vat_amount: int
    discount_amount: int
    total_price: int


class OrderOut(BaseModel):
    id: str
    order_number: str
    status: str
    payment_status: str
    fulfillment_type: str
    items: list[LineOut]
    subtotal: int
    tax_amount: int
    delivery_fee: int
    discount_amount: int
    total_amount: int
    currency: str
    promotion_code: str | None
    created_at: datetime
    paid_at: datetime | None

    @classmethod
    def from_domain(cls, order: Order) -> OrderOut:
        return cls(
            id=order.id,
            order_number=order.order_number,
            status=order.status.value,
            payment_status=order.payment_status.value,
            fulfillment_type=order.fulfillment_type.value,
            items=[
                LineOut(
                    product_id=line.product_id,
                    product_name=line.product_name,
                    quantity=line.quantity,
                    paid_quantity=line.paid_quantity,
                    free_quantity=line.free_quantity,
                    unit_price=line.unit_price,
                    vat_amount=line.vat_amount,
                    discount_amount=line.discount_amount,
                    total_price=line.total_price,
                )
                for line in order.lines
            ],
            subtotal=order.subtotal,
            tax_amount=order.tax_amount,
            delivery_fee=order.delivery_fee,
            discount_amount=order.discount_amount,
            total_amount=order.total_amount,
            currency=order.currency,
            promotion_code=order.promotion_code,
            created_at=order.created_at,
            paid_at=order.paid_at,
        )


class ErrorOut(BaseModel):
    code: str
    message: str
    retryable: bool
    retry_after: int | None = None

    @classmethod
    def from_domain(cls, error: OrderError) -> ErrorOut:
        code = error.pricing.kind.name if error.kind is OrderErrorKind.PRICING and error.pricing else error.kind.name
        return cls(code=code.lower(), message=error.message, retryable=error.retryable, retry_after=error.retry_after)


# ═══════════════════════════════════════════════════════════════════════════════
# Payments
# ═══════════════════════════════════════════════════════════════════════════════

class PaymentInitOut(BaseModel):
    order_id: str
    reference: str
    amount: int
    currency: str

    @classmethod
    def from_domain(cls, init: PaymentInit) -> PaymentInitOut:
        return cls(order_id=init.order_id, reference=init.reference, amount=init.amount, currency=init.currency)


class VerificationOut(BaseModel):
    status: str
    reference: str
    message: str
    order_id: str | None
    retryable: bool
    retry_after: int | None = None

    @classmethod
    def from_domain(cls, result: VerificationResult) -> VerificationOut:
        return cls(
            status=result.status.value,
            reference=result.reference,
            message=result.message,
            order_id=result.order_id,
            retryable=result.retryable,
            retry_after=result.retry_after,
        )


__all__ = (
    "CustomerIn",
    "LineIn",
    "FulfillmentIn",
    "CreateOrderIn",
    "LineOut",
    "OrderOut",
    "ErrorOut",
    "PaymentInitOut",
    "VerificationOut",
)

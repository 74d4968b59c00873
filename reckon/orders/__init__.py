"""
Orders — creation, lifecycle and the status compare-and-swap.

Usage:
    service = OrderService(session_factory, pricing, limiter, I.SQLAlchemyStore(session_factory))

    match await service.create_order(CreateOrderRequest(
        customer=Customer(email="ada@example.com", guest_session_id="sess-1"),
        items=(CartLine("jollof", 2),),
        fulfillment=Fulfillment(FulfillmentType.PICKUP),
        idempotency_key="checkout-7f3a",
    )):
        case Ok(order):
            order.order_number, order.total_amount
        case Error(e):
            e.kind, e.retryable
"""

from reckon.orders._numbers import order_number
from reckon.orders._repo import to_order
from reckon.orders._service import OrderService, caller_identity
from reckon.orders._state import (
    ORDER_TRANSITIONS,
    PAYMENT_TRANSITIONS,
    Conflict,
    InvalidTransition,
    check_transition,
    compare_and_swap,
)
from reckon.orders._types import (
    CreateOrderRequest,
    Order,
    OrderError,
    OrderErrorKind,
    OrderStatus,
    PaymentStatus,
)

__all__ = (
    "order_number",
    "to_order",
    "OrderService",
    "caller_identity",
    "ORDER_TRANSITIONS",
    "PAYMENT_TRANSITIONS",
    "Conflict",
    "InvalidTransition",
    "check_transition",
    "compare_and_swap",
    "CreateOrderRequest",
    "Order",
    "OrderError",
    "OrderErrorKind",
    "OrderStatus",
    "PaymentStatus",
)

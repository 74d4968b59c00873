"""
Order state machine — legal transitions and the one compare-and-swap that applies them.

Payment:
    pending ──▶ paid ──▶ partially_refunded ──▶ refunded
       └──────▶ failed                 └──┘ (further partial refunds)

Every writer (reconciliation, verification, refunds, admin cancel) goes
through `compare_and_swap`, so "check current state, then transition" is
always one UPDATE ... WHERE statement.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from kungfu import Error, Ok, Result
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from reckon._clock import utcnow
from reckon.db import OrderTable
from reckon.orders._types import OrderStatus, PaymentStatus

logger = logging.getLogger(__name__)

PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.PAID: frozenset({PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED}),
    PaymentStatus.PARTIALLY_REFUNDED: frozenset({PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.PAYMENT_FAILED, OrderStatus.CANCELLED}),
    OrderStatus.PAYMENT_FAILED: frozenset({OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}


class InvalidTransition(Exception):
    """Code asked for a transition the state machine forbids."""


@dataclass(frozen=True, slots=True)
class Conflict:
    """The row was not in the expected state when the UPDATE ran."""

    order_id: str
    expected: tuple[OrderStatus, PaymentStatus]
    actual: tuple[OrderStatus, PaymentStatus] | None  # None: order does not exist


def check_transition(
    expect_status: OrderStatus,
    expect_payment: PaymentStatus,
    status: OrderStatus | None,
    payment_status: PaymentStatus | None,
) -> None:
    if status is not None and status != expect_status and status not in ORDER_TRANSITIONS[expect_status]:
        raise InvalidTransition(f"order {expect_status} -> {status}")
    if payment_status is not None and payment_status not in PAYMENT_TRANSITIONS[expect_payment]:
        raise InvalidTransition(f"payment {expect_payment} -> {payment_status}")


async def compare_and_swap(
    session: AsyncSession,
    order_id: str,
    *,
    expect_status: OrderStatus,
    expect_payment: PaymentStatus,
    status: OrderStatus | None = None,
    payment_status: PaymentStatus | None = None,
    values: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> Result[None, Conflict]:
    """
    Apply a transition iff the order is still in (expect_status, expect_payment).

    Raises InvalidTransition for transitions the tables forbid; those are bugs,
    not races. Runs inside the caller's transaction.
    """
    check_transition(expect_status, expect_payment, status, payment_status)

    changes: dict[str, Any] = dict(values or {})
    if status is not None:
        changes["status"] = status.value
    if payment_status is not None:
        changes["payment_status"] = payment_status.value
    changes["version"] = OrderTable.version + 1
    changes["updated_at"] = now or utcnow()

    result = await session.execute(
        update(OrderTable)
        .where(
            OrderTable.id == order_id,
            OrderTable.status == expect_status.value,
            OrderTable.payment_status == expect_payment.value,
        )
        .values(**changes)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return Ok(None)

    current = (await session.execute(
        select(OrderTable.status, OrderTable.payment_status).where(OrderTable.id == order_id)
    )).one_or_none()
    actual = (OrderStatus(current.status), PaymentStatus(current.payment_status)) if current else None
    logger.info("order %s CAS lost: expected %s/%s, found %s", order_id, expect_status, expect_payment, actual)
    return Error(Conflict(order_id=order_id, expected=(expect_status, expect_payment), actual=actual))


__all__ = (
    "PAYMENT_TRANSITIONS",
    "ORDER_TRANSITIONS",
    "InvalidTransition",
    "Conflict",
    "check_transition",
    "compare_and_swap",
)

"""
Row mapping — OrderTable rows to Order views and back.
"""

from __future__ import annotations

from datetime import datetime

from reckon.db import OrderItemTable, OrderTable
from reckon.orders._types import CreateOrderRequest, Order, OrderStatus, PaymentStatus
from reckon.pricing import Customer, FulfillmentType, PriceBreakdown, PriceLine


def to_order(row: OrderTable) -> Order:
    return Order(
        id=row.id,
        order_number=row.order_number,
        status=OrderStatus(row.status),
        payment_status=PaymentStatus(row.payment_status),
        customer=Customer(
            customer_id=row.customer_id,
            guest_session_id=row.guest_session_id,
            email=row.customer_email,
            phone=row.customer_phone,
            name=row.customer_name,
        ),
        fulfillment_type=FulfillmentType(row.fulfillment_type),
        delivery_zone_id=row.delivery_zone_id,
        lines=tuple(
            PriceLine(
                product_id=item.product_id,
                product_name=item.product_name,
                quantity=item.quantity,
                paid_quantity=item.paid_quantity,
                free_quantity=item.free_quantity,
                unit_price=item.unit_price,
                vat_rate_bp=item.vat_rate_bp,
                vat_amount=item.vat_amount,
                discount_amount=item.discount_amount,
                total_price=item.total_price,
            )
            for item in row.items
        ),
        subtotal=row.subtotal,
        tax_amount=row.tax_amount,
        delivery_fee=row.delivery_fee,
        discount_amount=row.discount_amount,
        total_amount=row.total_amount,
        currency=row.currency,
        promotion_id=row.promotion_id,
        promotion_code=row.promotion_code,
        version=row.version,
        created_at=row.created_at,
        paid_at=row.paid_at,
    )


def new_order_row(
    order_id: str,
    number: str,
    request: CreateOrderRequest,
    price: PriceBreakdown,
    now: datetime,
) -> OrderTable:
    customer = request.customer
    fulfillment = request.fulfillment
    return OrderTable(
        id=order_id,
        order_number=number,
        idempotency_key=request.idempotency_key,
        customer_id=customer.customer_id,
        guest_session_id=customer.guest_session_id,
        customer_email=customer.email,
        customer_phone=customer.phone,
        customer_name=customer.name,
        fulfillment_type=fulfillment.type.value,
        delivery_zone_id=fulfillment.zone_id if fulfillment.type is FulfillmentType.DELIVERY else None,
        delivery_address=fulfillment.address,
        promotion_id=price.promotion.promotion_id if price.promotion else None,
        promotion_code=price.promotion.code if price.promotion else None,
        subtotal=price.subtotal,
        tax_amount=price.tax_amount,
        delivery_fee=price.delivery_fee,
        discount_amount=price.discount_amount,
        total_amount=price.total_amount,
        currency=price.currency,
        status=OrderStatus.PENDING.value,
        payment_status=PaymentStatus.PENDING.value,
        version=0,
        created_at=now,
        updated_at=now,
        items=[
            OrderItemTable(
                product_id=line.product_id,
                product_name=line.product_name,
                quantity=line.quantity,
                paid_quantity=line.paid_quantity,
                free_quantity=line.free_quantity,
                unit_price=line.unit_price,
                vat_rate_bp=line.vat_rate_bp,
                vat_amount=line.vat_amount,
                discount_amount=line.discount_amount,
                total_price=line.total_price,
            )
            for line in price.lines
        ],
    )


__all__ = ("to_order", "new_order_row")

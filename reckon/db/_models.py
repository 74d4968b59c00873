"""
Database layer — SQLAlchemy models for catalog, orders, payments and guards.

Amounts are integer minor units. Timestamps are naive UTC (see reckon._clock).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from reckon._clock import utcnow


# ═══════════════════════════════════════════════════════════════════════════════
# Base
# ═══════════════════════════════════════════════════════════════════════════════

class Base(DeclarativeBase):
    pass


# ═══════════════════════════════════════════════════════════════════════════════
# Catalog
# ═══════════════════════════════════════════════════════════════════════════════

class ProductTable(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    unit_price: Mapped[int] = mapped_column(Integer, nullable=False)
    vat_rate_bp: Mapped[int] = mapped_column(Integer, nullable=False, default=750)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # None means stock is not tracked
    stock_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)


class DeliveryZoneTable(Base):
    __tablename__ = "delivery_zones"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    base_fee: Mapped[int] = mapped_column(Integer, nullable=False)
    fee_per_km: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    min_order_for_free_delivery: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class PromotionTable(Base):
    """
    Promotion definitions.

    `value` is a whole percent for percentage promotions and minor units for
    fixed-amount ones. `usage_count` is only ever moved by the capped atomic
    increment in reckon.ledger.
    """
    __tablename__ = "promotions"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    code: Mapped[str | None] = mapped_column(String(50), nullable=True, unique=True)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    min_order_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_discount_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    buy_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    get_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    applicable_products: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    applicable_categories: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    # ISO weekday numbers, 1 = Monday
    applicable_days: Mapped[list[int] | None] = mapped_column(JSON, nullable=True)
    valid_from: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    valid_until: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    usage_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    per_customer_limit: Mapped[int | None] = mapped_column(Integer, nullable=True, default=1)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")


# ═══════════════════════════════════════════════════════════════════════════════
# Orders
# ═══════════════════════════════════════════════════════════════════════════════

class OrderTable(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    order_number: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)

    # Customer (registered or guest)
    customer_id: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    guest_session_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    customer_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # Fulfillment
    fulfillment_type: Mapped[str] = mapped_column(String(20), nullable=False)
    delivery_zone_id: Mapped[str | None] = mapped_column(ForeignKey("delivery_zones.id"), nullable=True)
    delivery_address: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Pricing snapshot
    promotion_id: Mapped[str | None] = mapped_column(ForeignKey("promotions.id"), nullable=True)
    promotion_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    subtotal: Mapped[int] = mapped_column(Integer, nullable=False)
    tax_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    delivery_fee: Mapped[int] = mapped_column(Integer, nullable=False)
    discount_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    # Lifecycle
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")
    payment_status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    items: Mapped[list[OrderItemTable]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItemTable.id",
    )


class OrderItemTable(Base):
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(String(50), nullable=False)
    product_name: Mapped[str] = mapped_column(String(200), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    paid_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    free_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unit_price: Mapped[int] = mapped_column(Integer, nullable=False)
    vat_rate_bp: Mapped[int] = mapped_column(Integer, nullable=False)
    vat_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    discount_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_price: Mapped[int] = mapped_column(Integer, nullable=False)

    order: Mapped[OrderTable] = relationship(back_populates="items")


# ═══════════════════════════════════════════════════════════════════════════════
# Payments
# ═══════════════════════════════════════════════════════════════════════════════

class PaymentTransactionTable(Base):
    """One row per provider reference: charges and refunds alike."""
    __tablename__ = "payment_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id"), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(30), nullable=False)
    provider_reference: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False, default="charge")
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    provider_transaction_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    channel: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reported_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    settled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    # Provider body for audit and disputes, never read back for logic
    raw_response: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)


class WebhookEventTable(Base):
    """Dedup ledger of provider events, keyed by provider-assigned event id."""
    __tablename__ = "webhook_events"

    event_id: Mapped[str] = mapped_column(String(150), primary_key=True)
    provider: Mapped[str] = mapped_column(String(30), nullable=False)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="processing")
    result: Mapped[str | None] = mapped_column(String(50), nullable=True)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    signature: Mapped[str | None] = mapped_column(String(256), nullable=True)
    claimed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


# ═══════════════════════════════════════════════════════════════════════════════
# Promotion Usage Ledger
# ═══════════════════════════════════════════════════════════════════════════════

class PromotionUsageTable(Base):
    __tablename__ = "promotion_usage"
    __table_args__ = (UniqueConstraint("promotion_id", "order_id", name="uq_promotion_usage_order"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    promotion_id: Mapped[str] = mapped_column(ForeignKey("promotions.id"), nullable=False, index=True)
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id"), nullable=False)
    customer_key: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    discount_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class PromotionCustomerUsageTable(Base):
    """Per-customer use counter; the row a per-customer cap is enforced against."""
    __tablename__ = "promotion_customer_usage"

    promotion_id: Mapped[str] = mapped_column(ForeignKey("promotions.id"), primary_key=True)
    customer_key: Mapped[str] = mapped_column(String(255), primary_key=True)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


# ═══════════════════════════════════════════════════════════════════════════════
# Rate Limiting
# ═══════════════════════════════════════════════════════════════════════════════

class RateLimitWindowTable(Base):
    __tablename__ = "rate_limit_windows"
    __table_args__ = (
        UniqueConstraint(
            "identifier", "identifier_type", "operation", "window_start",
            name="uq_rate_limit_window",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    identifier: Mapped[str] = mapped_column(String(255), nullable=False)
    identifier_type: Mapped[str] = mapped_column(String(20), nullable=False)
    operation: Mapped[str] = mapped_column(String(50), nullable=False)
    window_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    window_end: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    request_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    violation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tier: Mapped[str] = mapped_column(String(20), nullable=False, default="normal")


class RateLimitReputationTable(Base):
    __tablename__ = "rate_limit_reputation"

    identifier: Mapped[str] = mapped_column(String(255), primary_key=True)
    identifier_type: Mapped[str] = mapped_column(String(20), primary_key=True)
    violation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Operator override; wins over the violation-derived tier
    flagged_tier: Mapped[str | None] = mapped_column(String(20), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


# ═══════════════════════════════════════════════════════════════════════════════
# Idempotency Keys
# ═══════════════════════════════════════════════════════════════════════════════

class IdempotencyKeyTable(Base):
    __tablename__ = "idempotency_keys"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    value: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)


# ═══════════════════════════════════════════════════════════════════════════════
# Incidents
# ═══════════════════════════════════════════════════════════════════════════════

class IncidentTable(Base):
    __tablename__ = "incidents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(150), nullable=True, index=True)
    order_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    detail: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

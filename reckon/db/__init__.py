"""
Database — tables, engine setup and dialect-aware upserts.

Usage:
    from reckon.db import create_database, OrderTable

    session_factory, engine = await create_database("sqlite+aiosqlite:///./reckon.db")
    async with session_factory() as session:
        order = await session.get(OrderTable, order_id)
"""

from reckon.db._models import (
    Base,
    DeliveryZoneTable,
    IdempotencyKeyTable,
    IncidentTable,
    OrderItemTable,
    OrderTable,
    PaymentTransactionTable,
    ProductTable,
    PromotionTable,
    PromotionCustomerUsageTable,
    PromotionUsageTable,
    RateLimitReputationTable,
    RateLimitWindowTable,
    WebhookEventTable,
)
from reckon.db._session import SessionFactory, create_database, upsert

__all__ = (
    "Base",
    "DeliveryZoneTable",
    "IdempotencyKeyTable",
    "IncidentTable",
    "OrderItemTable",
    "OrderTable",
    "PaymentTransactionTable",
    "ProductTable",
    "PromotionTable",
    "PromotionCustomerUsageTable",
    "PromotionUsageTable",
    "RateLimitReputationTable",
    "RateLimitWindowTable",
    "WebhookEventTable",
    "SessionFactory",
    "create_database",
    "upsert",
)

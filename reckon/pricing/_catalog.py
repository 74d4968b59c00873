"""
Catalog — read-only collaborators the pricing engine depends on.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from typing import Protocol

from sqlalchemy import func, select

from reckon.db import DeliveryZoneTable, ProductTable, PromotionTable, SessionFactory
from reckon.pricing._types import CatalogProduct, DeliveryZone, Promotion, PromotionType


# ═══════════════════════════════════════════════════════════════════════════════
# Protocols
# ═══════════════════════════════════════════════════════════════════════════════

class Catalog(Protocol):
    async def products(self, product_ids: Sequence[str]) -> dict[str, CatalogProduct]: ...

    async def zone(self, zone_id: str) -> DeliveryZone | None: ...

    async def promotion_by_code(self, code: str) -> Promotion | None: ...

    async def automatic_promotions(self) -> list[Promotion]: ...


class Geocoder(Protocol):
    async def distance_km(self, zone: DeliveryZone, address: str | None) -> Decimal: ...


class FixedDistance:
    """Geocoder stand-in returning one distance for every address."""

    def __init__(self, km: Decimal = Decimal(0)) -> None:
        self._km = km

    async def distance_km(self, zone: DeliveryZone, address: str | None) -> Decimal:
        return self._km


# ═══════════════════════════════════════════════════════════════════════════════
# SQLAlchemy Catalog
# ═══════════════════════════════════════════════════════════════════════════════

class SQLAlchemyCatalog:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def products(self, product_ids: Sequence[str]) -> dict[str, CatalogProduct]:
        async with self._session_factory() as session:
            rows = await session.scalars(select(ProductTable).where(ProductTable.id.in_(product_ids)))
            return {row.id: _product(row) for row in rows}

    async def zone(self, zone_id: str) -> DeliveryZone | None:
        async with self._session_factory() as session:
            row = await session.get(DeliveryZoneTable, zone_id)
            if row is None:
                return None
            return DeliveryZone(
                id=row.id,
                name=row.name,
                base_fee=row.base_fee,
                fee_per_km=row.fee_per_km,
                min_order_for_free_delivery=row.min_order_for_free_delivery,
                is_active=row.is_active,
            )

    async def promotion_by_code(self, code: str) -> Promotion | None:
        async with self._session_factory() as session:
            row = await session.scalar(
                select(PromotionTable).where(func.upper(PromotionTable.code) == code.strip().upper())
            )
            return _promotion(row) if row is not None else None

    async def automatic_promotions(self) -> list[Promotion]:
        async with self._session_factory() as session:
            rows = await session.scalars(
                select(PromotionTable)
                .where(PromotionTable.code.is_(None), PromotionTable.status == "active")
                .order_by(PromotionTable.id)
            )
            return [_promotion(row) for row in rows]


def _product(row: ProductTable) -> CatalogProduct:
    return CatalogProduct(
        id=row.id,
        name=row.name,
        unit_price=row.unit_price,
        vat_rate_bp=row.vat_rate_bp,
        is_available=row.is_available,
        category=row.category,
        stock_quantity=row.stock_quantity,
    )


def _promotion(row: PromotionTable) -> Promotion:
    return Promotion(
        id=row.id,
        name=row.name,
        type=PromotionType(row.type),
        valid_from=row.valid_from,
        value=row.value,
        code=row.code,
        min_order_amount=row.min_order_amount,
        max_discount_amount=row.max_discount_amount,
        buy_quantity=row.buy_quantity or 1,
        get_quantity=row.get_quantity or 1,
        applicable_products=frozenset(row.applicable_products) if row.applicable_products else None,
        applicable_categories=frozenset(row.applicable_categories) if row.applicable_categories else None,
        applicable_days=frozenset(row.applicable_days) if row.applicable_days else None,
        valid_until=row.valid_until,
        usage_limit=row.usage_limit,
        per_customer_limit=row.per_customer_limit,
        active=row.status == "active",
    )


__all__ = ("Catalog", "Geocoder", "FixedDistance", "SQLAlchemyCatalog")

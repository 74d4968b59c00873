"""
Pricing engine — authoritative price for a cart.

Order of evaluation:
    catalog lookup → availability / drift checks → promotion resolution
    → BOGO split → line VAT → delivery fee → order-level discount → total

Nothing the client sends is used as a price. Every failure is a
PricingError value; none of them degrade into a cheaper or dearer price.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from decimal import Decimal

from combinators import lift as L
from kungfu import Error, Ok, Result

from reckon._clock import Clock, utcnow
from reckon.ledger import PromotionLedger, UsageCount
from reckon.money import per_km
from reckon.pricing._catalog import Catalog, Geocoder
from reckon.pricing._promotions import check_eligibility, free_quantities, order_discount, price_line
from reckon.pricing._types import (
    AppliedPromotion,
    CartLine,
    CatalogProduct,
    Customer,
    DeliveryZone,
    Fulfillment,
    FulfillmentType,
    PriceBreakdown,
    PriceLine,
    PricingError,
    PricingErrorKind,
    Promotion,
    PromotionType,
    StoredOrder,
)

logger = logging.getLogger(__name__)

type Lines = list[tuple[CatalogProduct, int]]


def _unavailable(what: str):
    def on_error(exc: Exception) -> PricingError:
        logger.warning("%s lookup failed: %r", what, exc)
        return PricingError(PricingErrorKind.UNAVAILABLE, f"{what} is unavailable, try again")
    return on_error


class PricingEngine:
    def __init__(
        self,
        catalog: Catalog,
        ledger: PromotionLedger,
        geocoder: Geocoder | None = None,
        currency: str = "NGN",
        clock: Clock = utcnow,
    ) -> None:
        self._catalog = catalog
        self._ledger = ledger
        self._geocoder = geocoder
        self._currency = currency
        self._clock = clock

    # ═══════════════════════════════════════════════════════════════════════════
    # Compute
    # ═══════════════════════════════════════════════════════════════════════════

    async def compute_price(
        self,
        items: Sequence[CartLine],
        fulfillment: Fulfillment,
        promotion_code: str | None = None,
        customer: Customer | None = None,
    ) -> Result[PriceBreakdown, PricingError]:
        match _merge(items):
            case Ok(merged):
                pass
            case Error(e):
                return Error(e)

        product_ids = [line.product_id for line in merged]
        match await L.catching_async(lambda: self._catalog.products(product_ids), on_error=_unavailable("catalog")):
            case Ok(products):
                pass
            case Error(e):
                return Error(e)

        match _resolve(merged, products):
            case Ok(lines):
                pass
            case Error(e):
                return Error(e)

        match await self._delivery(fulfillment):
            case Ok((zone, distance)):
                pass
            case Error(e):
                return Error(e)

        customer_key = customer.key if customer else None
        if promotion_code:
            return await self._with_code(promotion_code, lines, fulfillment, zone, distance, customer_key)
        return await self._best_automatic(lines, fulfillment, zone, distance, customer_key)

    # ═══════════════════════════════════════════════════════════════════════════
    # Reprice — expected amount from what was persisted
    # ═══════════════════════════════════════════════════════════════════════════

    def reprice(self, stored: StoredOrder) -> Result[PriceBreakdown, PricingError]:
        """
        Recompute every line and aggregate from the stored unit prices and quantities.

        The catalog is not consulted: the customer owes what was quoted. Any
        stored figure that does not follow from its inputs is PRICE_DRIFT.
        """
        lines: list[PriceLine] = []
        for stored_line in stored.lines:
            product = CatalogProduct(
                id=stored_line.product_id,
                name=stored_line.product_name,
                unit_price=stored_line.unit_price,
                vat_rate_bp=stored_line.vat_rate_bp,
            )
            fresh = price_line(product, stored_line.quantity, stored_line.free_quantity)
            if fresh != stored_line:
                return Error(PricingError(
                    PricingErrorKind.PRICE_DRIFT,
                    "stored line does not match its own unit price and quantity",
                    product_id=stored_line.product_id,
                ))
            lines.append(fresh)

        subtotal = sum(line.total_price for line in lines)
        tax = sum(line.vat_amount for line in lines)
        total = subtotal + tax + stored.delivery_fee - stored.discount_amount
        if (subtotal, tax, total) != (stored.subtotal, stored.tax_amount, stored.total_amount):
            return Error(PricingError(PricingErrorKind.PRICE_DRIFT, "stored totals do not match stored lines"))

        return Ok(PriceBreakdown(
            lines=tuple(lines),
            subtotal=subtotal,
            tax_amount=tax,
            delivery_fee=stored.delivery_fee,
            discount_amount=stored.discount_amount,
            total_amount=total,
            currency=stored.currency,
        ))

    # ═══════════════════════════════════════════════════════════════════════════
    # Promotion Resolution
    # ═══════════════════════════════════════════════════════════════════════════

    async def _with_code(
        self,
        code: str,
        lines: Lines,
        fulfillment: Fulfillment,
        zone: DeliveryZone | None,
        distance: Decimal,
        customer_key: str | None,
    ) -> Result[PriceBreakdown, PricingError]:
        match await L.catching_async(lambda: self._catalog.promotion_by_code(code), on_error=_unavailable("catalog")):
            case Ok(None):
                return Error(PricingError(PricingErrorKind.PROMOTION_INELIGIBLE, "unknown promotion code", promotion_code=code))
            case Ok(promotion):
                pass
            case Error(e):
                return Error(e)

        match await self._usage(promotion, customer_key):
            case Ok(usage):
                pass
            case Error(e):
                return Error(e)

        match check_eligibility(promotion, lines, usage, self._clock()):
            case Error(e):
                logger.info("promotion %s rejected: %s", promotion.id, e.kind.name)
                return Error(e)
            case Ok(_):
                return self._build(lines, fulfillment, zone, distance, promotion)

    async def _best_automatic(
        self,
        lines: Lines,
        fulfillment: Fulfillment,
        zone: DeliveryZone | None,
        distance: Decimal,
        customer_key: str | None,
    ) -> Result[PriceBreakdown, PricingError]:
        match await L.catching_async(lambda: self._catalog.automatic_promotions(), on_error=_unavailable("catalog")):
            case Ok(candidates):
                pass
            case Error(e):
                return Error(e)

        now = self._clock()
        best: PriceBreakdown | None = None
        # candidates arrive ordered by id, so the strict comparison keeps the lowest id on ties
        for promotion in candidates:
            match await self._usage(promotion, customer_key):
                case Ok(usage):
                    pass
                case Error(e):
                    return Error(e)
            match check_eligibility(promotion, lines, usage, now):
                case Error(_):
                    continue
                case Ok(_):
                    pass
            match self._build(lines, fulfillment, zone, distance, promotion):
                case Ok(quote) if quote.promotion is not None and quote.promotion.savings > 0:
                    if best is None or quote.total_amount < best.total_amount:
                        best = quote
                case _:
                    continue

        if best is not None:
            return Ok(best)
        return self._build(lines, fulfillment, zone, distance, None)

    async def _usage(self, promotion: Promotion, customer_key: str | None) -> Result[UsageCount, PricingError]:
        return await L.catching_async(
            lambda: self._ledger.usage(promotion.id, customer_key),
            on_error=_unavailable("promotion ledger"),
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # Assembly
    # ═══════════════════════════════════════════════════════════════════════════

    def _build(
        self,
        lines: Lines,
        fulfillment: Fulfillment,
        zone: DeliveryZone | None,
        distance: Decimal,
        promotion: Promotion | None,
    ) -> Result[PriceBreakdown, PricingError]:
        free = free_quantities(promotion, lines) if promotion else {}
        if promotion is not None:
            if promotion.type is PromotionType.BUY_ONE_GET_ONE and not any(free.values()):
                return Error(PricingError(
                    PricingErrorKind.PROMOTION_INELIGIBLE,
                    f"buy {promotion.buy_quantity} get {promotion.get_quantity} needs more qualifying items",
                    promotion_code=promotion.code,
                ))
            if promotion.type is PromotionType.FREE_DELIVERY and fulfillment.type is not FulfillmentType.DELIVERY:
                return Error(PricingError(
                    PricingErrorKind.PROMOTION_INELIGIBLE,
                    "free delivery only applies to delivery orders",
                    promotion_code=promotion.code,
                ))

        priced = [price_line(product, quantity, free.get(product.id, 0)) for product, quantity in lines]
        subtotal = sum(line.total_price for line in priced)
        tax = sum(line.vat_amount for line in priced)
        fee = _delivery_fee(zone, distance, subtotal) if zone is not None else 0

        discount = 0
        applied = None
        if promotion is not None:
            eligible = {product.id for product, _ in lines if promotion.applies_to(product)}
            discount = order_discount(promotion, priced, eligible, fee)
            applied = AppliedPromotion(
                promotion_id=promotion.id,
                code=promotion.code,
                type=promotion.type,
                savings=discount + sum(line.discount_amount for line in priced),
            )

        return Ok(PriceBreakdown(
            lines=tuple(priced),
            subtotal=subtotal,
            tax_amount=tax,
            delivery_fee=fee,
            discount_amount=discount,
            total_amount=subtotal + tax + fee - discount,
            currency=self._currency,
            promotion=applied,
        ).check())

    async def _delivery(self, fulfillment: Fulfillment) -> Result[tuple[DeliveryZone | None, Decimal], PricingError]:
        if fulfillment.type is not FulfillmentType.DELIVERY:
            return Ok((None, Decimal(0)))
        if not fulfillment.zone_id:
            return Error(PricingError(PricingErrorKind.INVALID_INPUT, "delivery orders need a delivery zone"))

        zone_id = fulfillment.zone_id
        match await L.catching_async(lambda: self._catalog.zone(zone_id), on_error=_unavailable("catalog")):
            case Ok(zone) if zone is not None and zone.is_active:
                pass
            case Ok(_):
                return Error(PricingError(PricingErrorKind.INVALID_INPUT, "we do not deliver to this zone"))
            case Error(e):
                return Error(e)

        if self._geocoder is None:
            return Ok((zone, Decimal(0)))
        geocoder = self._geocoder
        match await L.catching_async(
            lambda: geocoder.distance_km(zone, fulfillment.address),
            on_error=_unavailable("geocoder"),
        ):
            case Ok(distance):
                return Ok((zone, distance))
            case Error(e):
                return Error(e)


# ═══════════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════════

def _delivery_fee(zone: DeliveryZone, distance_km: Decimal, subtotal: int) -> int:
    threshold = zone.min_order_for_free_delivery
    if threshold is not None and subtotal >= threshold:
        return 0
    return zone.base_fee + per_km(zone.fee_per_km, distance_km)


def _merge(items: Sequence[CartLine]) -> Result[list[CartLine], PricingError]:
    """Validate quantities and fold repeated products into one line."""
    if not items:
        return Error(PricingError(PricingErrorKind.INVALID_INPUT, "cart is empty"))

    merged: dict[str, CartLine] = {}
    for item in items:
        if isinstance(item.quantity, bool) or not isinstance(item.quantity, int) or item.quantity <= 0:
            return Error(PricingError(
                PricingErrorKind.INVALID_INPUT,
                "quantity must be a positive whole number",
                product_id=item.product_id,
            ))
        seen = merged.get(item.product_id)
        if seen is None:
            merged[item.product_id] = item
            continue
        snapshots = {s for s in (seen.unit_price_snapshot, item.unit_price_snapshot) if s is not None}
        if len(snapshots) > 1:
            return Error(PricingError(
                PricingErrorKind.INVALID_INPUT,
                "same product submitted with different prices",
                product_id=item.product_id,
            ))
        merged[item.product_id] = CartLine(
            product_id=item.product_id,
            quantity=seen.quantity + item.quantity,
            unit_price_snapshot=next(iter(snapshots), None),
        )
    return Ok(list(merged.values()))


def _resolve(items: list[CartLine], products: dict[str, CatalogProduct]) -> Result[Lines, PricingError]:
    lines: Lines = []
    for item in items:
        product = products.get(item.product_id)
        if product is None or not product.is_available:
            return Error(PricingError(
                PricingErrorKind.PRODUCT_UNAVAILABLE,
                "product is not available",
                product_id=item.product_id,
            ))
        if product.stock_quantity is not None and item.quantity > product.stock_quantity:
            return Error(PricingError(
                PricingErrorKind.PRODUCT_UNAVAILABLE,
                f"only {product.stock_quantity} left in stock",
                product_id=item.product_id,
            ))
        if item.unit_price_snapshot is not None and item.unit_price_snapshot != product.unit_price:
            return Error(PricingError(
                PricingErrorKind.PRICE_DRIFT,
                "price changed since the cart was loaded",
                product_id=item.product_id,
            ))
        lines.append((product, item.quantity))
    return Ok(lines)


__all__ = ("PricingEngine",)

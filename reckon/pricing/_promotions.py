"""
Promotions — eligibility, BOGO split and discount arithmetic.

Pure functions; the engine feeds them catalog snapshots and ledger counts.
"""

from __future__ import annotations

from datetime import datetime

from kungfu import Error, Ok, Result

from reckon.ledger import UsageCount
from reckon.money import percent_of, vat_amount
from reckon.pricing._types import (
    CatalogProduct,
    PriceLine,
    PricingError,
    PricingErrorKind,
    Promotion,
    PromotionType,
)


def bogo_split(quantity: int, buy: int, get: int) -> tuple[int, int]:
    """
    (paid, free) for `quantity` applicable units of a buy-`buy`-get-`get` offer.

    Example:
        bogo_split(7, 2, 1) == (5, 2)
    """
    free = (quantity // (buy + get)) * get
    return quantity - free, free


def price_line(product: CatalogProduct, quantity: int, free_quantity: int = 0) -> PriceLine:
    discount = product.unit_price * free_quantity
    total = product.unit_price * quantity - discount
    return PriceLine(
        product_id=product.id,
        product_name=product.name,
        quantity=quantity,
        paid_quantity=quantity - free_quantity,
        free_quantity=free_quantity,
        unit_price=product.unit_price,
        vat_rate_bp=product.vat_rate_bp,
        vat_amount=vat_amount(total, product.vat_rate_bp),
        discount_amount=discount,
        total_price=total,
    )


def check_eligibility(
    promotion: Promotion,
    lines: list[tuple[CatalogProduct, int]],
    usage: UsageCount,
    now: datetime,
) -> Result[None, PricingError]:
    code = promotion.code

    def ineligible(message: str, kind: PricingErrorKind = PricingErrorKind.PROMOTION_INELIGIBLE) -> Result[None, PricingError]:
        return Error(PricingError(kind, message, promotion_code=code))

    if not promotion.active:
        return ineligible("promotion is not active")
    if promotion.valid_from > now:
        return ineligible("promotion has not started yet")
    if promotion.valid_until is not None and promotion.valid_until < now:
        return ineligible("promotion has expired", PricingErrorKind.PROMOTION_EXPIRED)
    if promotion.usage_limit is not None and usage.total >= promotion.usage_limit:
        return ineligible("promotion usage limit reached", PricingErrorKind.PROMOTION_LIMIT_REACHED)
    if promotion.per_customer_limit is not None and usage.by_customer >= promotion.per_customer_limit:
        return ineligible("promotion already used by this customer", PricingErrorKind.PROMOTION_LIMIT_REACHED)
    if promotion.applicable_days is not None and now.isoweekday() not in promotion.applicable_days:
        return ineligible("promotion is not valid today")

    gross = sum(product.unit_price * quantity for product, quantity in lines)
    if promotion.min_order_amount is not None and gross < promotion.min_order_amount:
        return ineligible(f"order must be at least {promotion.min_order_amount} to use this promotion")
    if not any(promotion.applies_to(product) for product, _ in lines):
        return ineligible("promotion does not apply to any item in the cart")
    return Ok(None)


def free_quantities(promotion: Promotion, lines: list[tuple[CatalogProduct, int]]) -> dict[str, int]:
    """Free units per product. Empty unless the promotion is BOGO."""
    if promotion.type is not PromotionType.BUY_ONE_GET_ONE:
        return {}
    free: dict[str, int] = {}
    for product, quantity in lines:
        if promotion.applies_to(product):
            _, free[product.id] = bogo_split(quantity, promotion.buy_quantity, promotion.get_quantity)
    return free


def order_discount(promotion: Promotion, lines: list[PriceLine], eligible: set[str], delivery_fee: int) -> int:
    """Order-level discount for non-BOGO promotions."""
    base = sum(line.total_price for line in lines if line.product_id in eligible)
    match promotion.type:
        case PromotionType.PERCENTAGE:
            discount = percent_of(base, promotion.value)
            if promotion.max_discount_amount is not None:
                discount = min(discount, promotion.max_discount_amount)
            return min(discount, base)
        case PromotionType.FIXED_AMOUNT:
            return min(promotion.value, base)
        case PromotionType.FREE_DELIVERY:
            return delivery_fee
        case PromotionType.BUY_ONE_GET_ONE:
            return 0


__all__ = ("bogo_split", "price_line", "check_eligibility", "free_quantities", "order_discount")

"""
Pricing types — cart input, catalog snapshots, breakdown and errors.

All amounts are integer minor units.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum, StrEnum, auto


# ═══════════════════════════════════════════════════════════════════════════════
# Input
# ═══════════════════════════════════════════════════════════════════════════════

class FulfillmentType(StrEnum):
    DELIVERY = "delivery"
    PICKUP = "pickup"
    DINE_IN = "dine_in"


@dataclass(frozen=True, slots=True)
class Fulfillment:
    type: FulfillmentType
    zone_id: str | None = None
    address: str | None = None


@dataclass(frozen=True, slots=True)
class CartLine:
    """
    One requested product.

    unit_price_snapshot: what the client displayed. Only used as a tamper
    cross-check, never as the price.
    """

    product_id: str
    quantity: int
    unit_price_snapshot: int | None = None


@dataclass(frozen=True, slots=True)
class Customer:
    customer_id: str | None = None
    guest_session_id: str | None = None
    email: str | None = None
    phone: str | None = None
    name: str | None = None

    @property
    def key(self) -> str | None:
        """Identity used for per-customer promotion caps."""
        if self.customer_id:
            return self.customer_id
        if self.email:
            return self.email.strip().lower()
        return self.guest_session_id


# ═══════════════════════════════════════════════════════════════════════════════
# Catalog Snapshots
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class CatalogProduct:
    id: str
    name: str
    unit_price: int
    vat_rate_bp: int
    is_available: bool = True
    category: str | None = None
    stock_quantity: int | None = None


@dataclass(frozen=True, slots=True)
class DeliveryZone:
    id: str
    name: str
    base_fee: int
    fee_per_km: int = 0
    min_order_for_free_delivery: int | None = None
    is_active: bool = True


class PromotionType(StrEnum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"
    BUY_ONE_GET_ONE = "buy_one_get_one"
    FREE_DELIVERY = "free_delivery"


@dataclass(frozen=True, slots=True)
class Promotion:
    id: str
    name: str
    type: PromotionType
    valid_from: datetime
    value: int = 0
    code: str | None = None
    min_order_amount: int | None = None
    max_discount_amount: int | None = None
    buy_quantity: int = 1
    get_quantity: int = 1
    applicable_products: frozenset[str] | None = None
    applicable_categories: frozenset[str] | None = None
    applicable_days: frozenset[int] | None = None
    valid_until: datetime | None = None
    usage_limit: int | None = None
    per_customer_limit: int | None = None
    active: bool = True

    def applies_to(self, product: CatalogProduct) -> bool:
        if self.applicable_products is None and self.applicable_categories is None:
            return True
        if self.applicable_products and product.id in self.applicable_products:
            return True
        return bool(self.applicable_categories and product.category in self.applicable_categories)


# ═══════════════════════════════════════════════════════════════════════════════
# Output
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class PriceLine:
    """One order line, persisted verbatim as an OrderItem."""

    product_id: str
    product_name: str
    quantity: int
    paid_quantity: int
    free_quantity: int
    unit_price: int
    vat_rate_bp: int
    vat_amount: int
    discount_amount: int
    total_price: int


@dataclass(frozen=True, slots=True)
class AppliedPromotion:
    promotion_id: str
    code: str | None
    type: PromotionType
    savings: int


class PriceIntegrityError(Exception):
    """A computed breakdown violates its own arithmetic. Always a bug."""


@dataclass(frozen=True, slots=True)
class PriceBreakdown:
    lines: tuple[PriceLine, ...]
    subtotal: int
    tax_amount: int
    delivery_fee: int
    discount_amount: int
    total_amount: int
    currency: str
    promotion: AppliedPromotion | None = None

    def check(self) -> PriceBreakdown:
        """Raise PriceIntegrityError unless every aggregate matches its parts."""
        for line in self.lines:
            if line.quantity <= 0 or line.paid_quantity + line.free_quantity != line.quantity:
                raise PriceIntegrityError(f"{line.product_id}: quantities do not add up")
            if line.total_price != line.unit_price * line.quantity - line.discount_amount:
                raise PriceIntegrityError(f"{line.product_id}: total_price != unit_price * quantity - discount")
        if sum(line.total_price for line in self.lines) != self.subtotal:
            raise PriceIntegrityError("line totals do not sum to subtotal")
        if sum(line.vat_amount for line in self.lines) != self.tax_amount:
            raise PriceIntegrityError("line VAT does not sum to tax_amount")
        if self.total_amount != self.subtotal + self.tax_amount + self.delivery_fee - self.discount_amount:
            raise PriceIntegrityError("total != subtotal + tax + delivery - discount")
        if self.total_amount < 0:
            raise PriceIntegrityError("negative total")
        return self


@dataclass(frozen=True, slots=True)
class StoredOrder:
    """What was persisted at creation; input to reprice."""

    lines: tuple[PriceLine, ...]
    subtotal: int
    tax_amount: int
    delivery_fee: int
    discount_amount: int
    total_amount: int
    currency: str


# ═══════════════════════════════════════════════════════════════════════════════
# Errors
# ═══════════════════════════════════════════════════════════════════════════════

class PricingErrorKind(Enum):
    INVALID_INPUT = auto()
    PRODUCT_UNAVAILABLE = auto()
    PRICE_DRIFT = auto()
    PROMOTION_INELIGIBLE = auto()
    PROMOTION_EXPIRED = auto()
    PROMOTION_LIMIT_REACHED = auto()
    UNAVAILABLE = auto()  # catalog or geocoder could not be reached


@dataclass(frozen=True, slots=True)
class PricingError:
    kind: PricingErrorKind
    message: str
    product_id: str | None = None
    promotion_code: str | None = None

    @property
    def retryable(self) -> bool:
        return self.kind is PricingErrorKind.UNAVAILABLE


__all__ = (
    "FulfillmentType",
    "Fulfillment",
    "CartLine",
    "Customer",
    "CatalogProduct",
    "DeliveryZone",
    "PromotionType",
    "Promotion",
    "PriceLine",
    "AppliedPromotion",
    "PriceIntegrityError",
    "PriceBreakdown",
    "StoredOrder",
    "PricingErrorKind",
    "PricingError",
)

"""
Pricing — authoritative order pricing.

Usage:
    engine = PricingEngine(SQLAlchemyCatalog(session_factory), PromotionLedger(session_factory))

    match await engine.compute_price(
        [CartLine("jollof", 2)],
        Fulfillment(FulfillmentType.DELIVERY, zone_id="ikeja"),
        promotion_code="WELCOME10",
    ):
        case Ok(breakdown):
            breakdown.total_amount   # minor units
        case Error(e):
            e.kind                   # PRODUCT_UNAVAILABLE, PRICE_DRIFT, PROMOTION_*, ...
"""

from reckon.pricing._catalog import Catalog, FixedDistance, Geocoder, SQLAlchemyCatalog
from reckon.pricing._engine import PricingEngine
from reckon.pricing._promotions import bogo_split
from reckon.pricing._types import (
    AppliedPromotion,
    CartLine,
    CatalogProduct,
    Customer,
    DeliveryZone,
    Fulfillment,
    FulfillmentType,
    PriceBreakdown,
    PriceIntegrityError,
    PriceLine,
    PricingError,
    PricingErrorKind,
    Promotion,
    PromotionType,
    StoredOrder,
)

__all__ = (
    "Catalog",
    "FixedDistance",
    "Geocoder",
    "SQLAlchemyCatalog",
    "PricingEngine",
    "bogo_split",
    "AppliedPromotion",
    "CartLine",
    "CatalogProduct",
    "Customer",
    "DeliveryZone",
    "Fulfillment",
    "FulfillmentType",
    "PriceBreakdown",
    "PriceIntegrityError",
    "PriceLine",
    "PricingError",
    "PricingErrorKind",
    "Promotion",
    "PromotionType",
    "StoredOrder",
)

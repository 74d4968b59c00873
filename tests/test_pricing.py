import asyncio
from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

from kungfu import Error, Ok

from reckon.pricing import (
    CartLine,
    Customer,
    FixedDistance,
    Fulfillment,
    FulfillmentType,
    PricingEngine,
    PricingErrorKind,
    StoredOrder,
    bogo_split,
)
from tests._support import NOW, FakeClock, MemoryCatalog, MemoryLedger, promotion

PICKUP = Fulfillment(FulfillmentType.PICKUP)
DELIVERY = Fulfillment(FulfillmentType.DELIVERY, zone_id="ikeja", address="12 Allen Avenue")


def engine(*promotions, ledger=None, fail=False, km="2.5"):
    return PricingEngine(
        MemoryCatalog(promotions=promotions, fail=fail),
        ledger or MemoryLedger(),
        geocoder=FixedDistance(Decimal(km)),
        clock=FakeClock(),
    )


def price(eng, items, fulfillment=PICKUP, code=None, customer=None):
    return asyncio.run(eng.compute_price(items, fulfillment, promotion_code=code, customer=customer))


def ok(result):
    match result:
        case Ok(value):
            return value
        case Error(e):
            raise AssertionError(f"expected Ok, got {e}")


def err(result):
    match result:
        case Error(e):
            return e
        case Ok(value):
            raise AssertionError(f"expected Error, got {value}")


# ═══════════════════════════════════════════════════════════════════════════════
# Lines and VAT
# ═══════════════════════════════════════════════════════════════════════════════

def test_pickup_order_totals():
    quote = ok(price(engine(), [CartLine("jollof", 2), CartLine("chapman", 1)]))

    jollof, chapman = quote.lines
    assert (jollof.total_price, jollof.vat_amount) == (500_000, 37_500)
    assert (chapman.total_price, chapman.vat_amount) == (120_000, 9_000)
    assert quote.subtotal == 620_000
    assert quote.tax_amount == 46_500
    assert quote.delivery_fee == 0
    assert quote.total_amount == 666_500
    assert quote.currency == "NGN"
    assert quote.promotion is None


def test_repeated_products_are_merged():
    quote = ok(price(engine(), [CartLine("jollof", 1), CartLine("jollof", 2, 250_000)]))

    assert len(quote.lines) == 1
    assert quote.lines[0].quantity == 3
    assert quote.subtotal == 750_000


def test_client_price_snapshot_must_match_catalog():
    e = err(price(engine(), [CartLine("jollof", 1, 240_000)]))

    assert e.kind is PricingErrorKind.PRICE_DRIFT
    assert e.product_id == "jollof"


def test_unavailable_unknown_and_out_of_stock_products():
    assert err(price(engine(), [CartLine("suya", 1)])).kind is PricingErrorKind.PRODUCT_UNAVAILABLE
    assert err(price(engine(), [CartLine("ghost", 1)])).kind is PricingErrorKind.PRODUCT_UNAVAILABLE

    e = err(price(engine(), [CartLine("puff", 4)]))
    assert e.kind is PricingErrorKind.PRODUCT_UNAVAILABLE
    assert "3 left" in e.message


def test_invalid_quantities_and_empty_cart():
    assert err(price(engine(), [])).kind is PricingErrorKind.INVALID_INPUT
    assert err(price(engine(), [CartLine("jollof", 0)])).kind is PricingErrorKind.INVALID_INPUT
    assert err(price(engine(), [CartLine("jollof", -1)])).kind is PricingErrorKind.INVALID_INPUT


def test_catalog_outage_is_retryable():
    e = err(price(engine(fail=True), [CartLine("jollof", 1)]))

    assert e.kind is PricingErrorKind.UNAVAILABLE
    assert e.retryable


# ═══════════════════════════════════════════════════════════════════════════════
# Delivery
# ═══════════════════════════════════════════════════════════════════════════════

def test_delivery_fee_is_base_plus_distance():
    quote = ok(price(engine(), [CartLine("jollof", 1)], DELIVERY))

    assert quote.delivery_fee == 150_000 + 25_000
    assert quote.total_amount == 250_000 + 18_750 + 175_000


def test_delivery_is_free_above_zone_threshold():
    quote = ok(price(engine(), [CartLine("jollof", 8)], DELIVERY))

    assert quote.subtotal == 2_000_000
    assert quote.delivery_fee == 0


def test_delivery_needs_an_active_zone():
    no_zone = Fulfillment(FulfillmentType.DELIVERY)
    closed = Fulfillment(FulfillmentType.DELIVERY, zone_id="lekki")
    unknown = Fulfillment(FulfillmentType.DELIVERY, zone_id="mars")

    for fulfillment in (no_zone, closed, unknown):
        assert err(price(engine(), [CartLine("jollof", 1)], fulfillment)).kind is PricingErrorKind.INVALID_INPUT


# ═══════════════════════════════════════════════════════════════════════════════
# Promotions
# ═══════════════════════════════════════════════════════════════════════════════

def test_bogo_split():
    assert bogo_split(7, 2, 1) == (5, 2)
    assert bogo_split(2, 2, 1) == (2, 0)
    assert bogo_split(6, 1, 1) == (3, 3)


def test_buy_two_get_one_on_seven_items():
    b2g1 = promotion("b2g1", "buy_one_get_one", code="B2G1", buy_quantity=2, get_quantity=1,
                     applicable_products=frozenset({"jollof"}))
    eng = engine(b2g1)

    first = ok(price(eng, [CartLine("jollof", 7), CartLine("chapman", 1)], code="b2g1"))
    again = ok(price(eng, [CartLine("jollof", 7), CartLine("chapman", 1)], code="b2g1"))

    jollof = first.lines[0]
    assert (jollof.paid_quantity, jollof.free_quantity) == (5, 2)
    assert jollof.discount_amount == 500_000
    assert jollof.total_price == 1_250_000
    assert jollof.vat_amount == 93_750
    assert first.lines[1].free_quantity == 0
    assert first.discount_amount == 0
    assert first.promotion.savings == 500_000
    assert first == again


def test_bogo_without_enough_items_is_ineligible():
    b2g1 = promotion("b2g1", "buy_one_get_one", code="B2G1", buy_quantity=2, get_quantity=1)

    e = err(price(engine(b2g1), [CartLine("jollof", 2)], code="B2G1"))

    assert e.kind is PricingErrorKind.PROMOTION_INELIGIBLE
    assert e.promotion_code == "B2G1"


def test_percentage_discount_is_capped():
    tenoff = promotion("tenoff", "percentage", code="TENOFF", value=10, max_discount_amount=20_000)

    quote = ok(price(engine(tenoff), [CartLine("jollof", 2)], code="TENOFF"))

    assert quote.discount_amount == 20_000
    assert quote.total_amount == 500_000 + 37_500 - 20_000
    assert quote.promotion.promotion_id == "tenoff"


def test_fixed_discount_never_exceeds_eligible_items():
    big = promotion("big", "fixed_amount", code="BIG", value=900_000, applicable_categories=frozenset({"drinks"}))

    quote = ok(price(engine(big), [CartLine("jollof", 1), CartLine("chapman", 1)], code="BIG"))

    assert quote.discount_amount == 120_000


def test_free_delivery_promotion():
    ship = promotion("ship", "free_delivery", code="SHIP")

    quote = ok(price(engine(ship), [CartLine("jollof", 1)], DELIVERY, code="SHIP"))
    assert quote.discount_amount == quote.delivery_fee == 175_000
    assert quote.total_amount == 250_000 + 18_750

    assert err(price(engine(ship), [CartLine("jollof", 1)], code="SHIP")).kind is PricingErrorKind.PROMOTION_INELIGIBLE


def test_promotion_rejections():
    expired = promotion("old", "percentage", code="OLD", value=10, valid_until=NOW - timedelta(hours=1))
    future = promotion("soon", "percentage", code="SOON", value=10, valid_from=NOW + timedelta(days=1))
    capped = promotion("cap", "percentage", code="CAP", value=10, usage_limit=5)
    minimum = promotion("min", "percentage", code="MIN", value=10, min_order_amount=1_000_000)
    weekend = promotion("wkd", "percentage", code="WKD", value=10, applicable_days=frozenset({6, 7}))
    once = promotion("once", "percentage", code="ONCE", value=10, per_customer_limit=1)
    ledger = MemoryLedger(totals={"cap": 5}, by_customer={("once", "ada@example.com"): 1})
    eng = engine(expired, future, capped, minimum, weekend, once, ledger=ledger)
    cart = [CartLine("jollof", 1)]
    ada = Customer(email="Ada@Example.com")

    assert err(price(eng, cart, code="OLD")).kind is PricingErrorKind.PROMOTION_EXPIRED
    assert err(price(eng, cart, code="SOON")).kind is PricingErrorKind.PROMOTION_INELIGIBLE
    assert err(price(eng, cart, code="CAP")).kind is PricingErrorKind.PROMOTION_LIMIT_REACHED
    assert err(price(eng, cart, code="MIN")).kind is PricingErrorKind.PROMOTION_INELIGIBLE
    assert err(price(eng, cart, code="WKD")).kind is PricingErrorKind.PROMOTION_INELIGIBLE
    assert err(price(eng, cart, code="ONCE", customer=ada)).kind is PricingErrorKind.PROMOTION_LIMIT_REACHED
    assert err(price(eng, cart, code="NOPE")).kind is PricingErrorKind.PROMOTION_INELIGIBLE


def test_best_automatic_promotion_applies_without_a_code():
    five = promotion("auto-a", "percentage", value=5)
    flat = promotion("auto-b", "fixed_amount", value=30_000)

    quote = ok(price(engine(five, flat), [CartLine("jollof", 2)]))

    assert quote.promotion.promotion_id == "auto-b"
    assert quote.discount_amount == 30_000


def test_automatic_promotion_ties_go_to_lowest_id():
    second = promotion("p2", "fixed_amount", value=10_000)
    first = promotion("p1", "fixed_amount", value=10_000)

    quote = ok(price(engine(second, first), [CartLine("jollof", 1)]))

    assert quote.promotion.promotion_id == "p1"


def test_explicit_code_does_not_fall_back_to_automatic():
    auto = promotion("auto", "fixed_amount", value=10_000)
    expired = promotion("old", "percentage", code="OLD", value=10, valid_until=NOW - timedelta(hours=1))

    e = err(price(engine(auto, expired), [CartLine("jollof", 1)], code="OLD"))

    assert e.kind is PricingErrorKind.PROMOTION_EXPIRED


# ═══════════════════════════════════════════════════════════════════════════════
# Reprice
# ═══════════════════════════════════════════════════════════════════════════════

def _stored(quote):
    return StoredOrder(
        lines=quote.lines,
        subtotal=quote.subtotal,
        tax_amount=quote.tax_amount,
        delivery_fee=quote.delivery_fee,
        discount_amount=quote.discount_amount,
        total_amount=quote.total_amount,
        currency=quote.currency,
    )


def test_reprice_reproduces_stored_totals():
    tenoff = promotion("tenoff", "percentage", code="TENOFF", value=10)
    eng = engine(tenoff)
    quote = ok(price(eng, [CartLine("jollof", 3), CartLine("chapman", 2)], DELIVERY, code="TENOFF"))

    again = ok(eng.reprice(_stored(quote)))

    assert again.total_amount == quote.total_amount
    assert again.lines == quote.lines


def test_reprice_detects_tampered_rows():
    eng = engine()
    quote = ok(price(eng, [CartLine("jollof", 2)]))
    stored = _stored(quote)

    assert err(eng.reprice(replace(stored, total_amount=stored.total_amount + 1))).kind is PricingErrorKind.PRICE_DRIFT

    cheap = replace(stored.lines[0], unit_price=1)
    assert err(eng.reprice(replace(stored, lines=(cheap,)))).kind is PricingErrorKind.PRICE_DRIFT

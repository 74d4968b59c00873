import asyncio
from decimal import Decimal

from fastapi.testclient import TestClient

from reckon.api import create_app
from reckon.db import create_database
from reckon.events import Dispatcher, EventType, MemorySink
from reckon.payments import SIGNATURE_HEADER
from reckon.pricing import FixedDistance
from tests._support import (
    FakeClock,
    ProviderStub,
    charge_data,
    paystack,
    seed_catalog,
    settings_for,
    webhook_body,
)

ORDER = {
    "idempotency_key": "api-1",
    "customer": {"email": "ada@example.com", "guest_session_id": "sess-1"},
    "items": [{"product_id": "jollof", "quantity": 2, "unit_price": 250_000}],
    "fulfillment": {"type": "pickup"},
}


def _seeded(url):
    async def go():
        session_factory, engine = await create_database(url)
        await seed_catalog(session_factory)
        await engine.dispose()
    asyncio.run(go())


def _app(url, stub, sink, **overrides):
    _seeded(url)
    provider = paystack(stub)
    app = create_app(
        settings_for(url, **overrides),
        provider=provider,
        geocoder=FixedDistance(Decimal("2.5")),
        dispatcher=Dispatcher(notifications=sink, audit=sink),
        clock=FakeClock(),
    )
    return app, provider


def test_checkout_to_paid_over_http(db_url):
    stub, sink = ProviderStub(), MemorySink()
    app, provider = _app(db_url, stub, sink)

    with TestClient(app) as client:
        created = client.post("/orders", json=ORDER)
        assert created.status_code == 201
        order = created.json()
        assert order["total_amount"] == 537_500
        assert order["items"][0]["vat_amount"] == 37_500
        assert (order["status"], order["payment_status"]) == ("pending", "pending")

        assert client.post("/orders", json=ORDER).json()["id"] == order["id"]

        init = client.post(f"/payments/{order['id']}/initialize")
        assert init.status_code == 200
        reference = init.json()["reference"]
        assert init.json()["amount"] == 537_500

        raw = webhook_body("charge.success", charge_data(reference, 537_500))
        hook = client.post("/webhooks/paystack", content=raw, headers={SIGNATURE_HEADER: provider.sign(raw)})
        assert (hook.status_code, hook.json()) == (200, {"received": True})

        fetched = client.get(f"/orders/{order['id']}").json()
        assert (fetched["status"], fetched["payment_status"]) == ("confirmed", "paid")

        verified = client.post(f"/payments/{reference}/verify")
        assert verified.status_code == 200
        assert verified.json()["status"] == "already_paid"

    assert [e.type for e in sink.events] == [EventType.ORDER_PAID]
    assert stub.calls == 0


def test_error_responses(db_url):
    stub, sink = ProviderStub(), MemorySink()
    app, _ = _app(db_url, stub, sink)

    with TestClient(app) as client:
        drift = client.post("/orders", json={**ORDER, "items": [{"product_id": "jollof", "quantity": 1, "unit_price": 1}]})
        assert drift.status_code == 422
        assert drift.json()["code"] == "price_drift"
        assert drift.json()["retryable"] is False

        assert client.post("/orders", json={**ORDER, "items": []}).status_code == 422
        assert client.get("/orders/ord_missing").status_code == 404
        assert client.post("/orders/ord_missing/cancel").json()["code"] == "not_found"
        assert client.post("/payments/ord_missing/initialize").status_code == 404
        assert client.post("/payments/ORD-nope/verify").json()["status"] == "not_found"

        forged = client.post("/webhooks/paystack", content=b'{"event": "charge.success"}', headers={SIGNATURE_HEADER: "00"})
        assert (forged.status_code, forged.json()) == (200, {"received": True})


def test_rate_limited_create_returns_retry_after(db_url):
    stub, sink = ProviderStub(), MemorySink()
    app, _ = _app(db_url, stub, sink, create_order_limit_per_hour=1)

    with TestClient(app) as client:
        assert client.post("/orders", json=ORDER).status_code == 201
        limited = client.post("/orders", json={**ORDER, "idempotency_key": "api-2"})

    assert limited.status_code == 429
    assert limited.headers["Retry-After"] == str(50 * 60)
    assert limited.json()["code"] == "rate_limited"
    assert limited.json()["retryable"] is True

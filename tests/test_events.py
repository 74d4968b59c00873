import asyncio

from reckon.events import Dispatcher, DomainEvent, EventType, Incident, IncidentKind, MemorySink, Severity
from tests._support import NOW


class FlakyNotifier:
    """Fails on one order, is slow on another."""

    def __init__(self) -> None:
        self.published: list[str] = []

    async def publish(self, event: DomainEvent) -> None:
        if event.order_id == "ord_broken":
            raise ConnectionError("smtp down")
        if event.order_id == "ord_slow":
            await asyncio.sleep(0.01)
        self.published.append(event.order_id)


def _paid(order_id):
    return DomainEvent(EventType.ORDER_PAID, order_id, f"ORD-{order_id}", 537_500, "NGN", occurred_at=NOW)


def test_drain_waits_for_every_delivery_despite_failures():
    async def scenario():
        notifier, audit = FlakyNotifier(), MemorySink()
        dispatcher = Dispatcher(notifications=notifier, audit=audit)
        for order_id in ("ord_broken", "ord_slow", "ord_fine"):
            dispatcher.emit(_paid(order_id))
        dispatcher.report(Incident(IncidentKind.AMOUNT_MISMATCH, Severity.HIGH, "short payment"))
        await dispatcher.drain()
        return notifier.published, audit.incidents

    published, incidents = asyncio.run(scenario())

    assert sorted(published) == ["ord_fine", "ord_slow"]
    assert [i.kind for i in incidents] == [IncidentKind.AMOUNT_MISMATCH]


def test_drain_without_pending_deliveries_returns():
    async def scenario():
        dispatcher = Dispatcher()
        dispatcher.emit(_paid("ord_quiet"))
        await dispatcher.drain()
        await dispatcher.drain()

    asyncio.run(scenario())

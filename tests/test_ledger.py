import asyncio

from kungfu import Error, Ok
from sqlalchemy import func, select

from reckon.db import PromotionTable, PromotionUsageTable, create_database
from reckon.ledger import LedgerErrorKind, PromotionLedger
from tests._support import bare_order, promotion_row, seed


def _record(ledger, session_factory, promotion_id, order_id, customer_key="ada@example.com"):
    async def go():
        async with session_factory() as session, session.begin():
            return await ledger.record(
                session,
                promotion_id=promotion_id,
                order_id=order_id,
                customer_key=customer_key,
                discount_amount=20_000,
            )
    return go()


def test_usage_limit_caps_recording(db_url):
    async def scenario():
        session_factory, engine = await create_database(db_url)
        await seed(
            session_factory,
            promotion_row("launch", "percentage", code="LAUNCH", value=10, usage_limit=1),
            bare_order("ord_000001"),
            bare_order("ord_000002"),
        )
        ledger = PromotionLedger(session_factory)

        first = await _record(ledger, session_factory, "launch", "ord_000001", "ada@example.com")
        second = await _record(ledger, session_factory, "launch", "ord_000002", "bola@example.com")
        usage = await ledger.usage("launch", "ada@example.com")
        async with session_factory() as session:
            rows = await session.scalar(select(func.count(PromotionUsageTable.id)))
            count = await session.scalar(select(PromotionTable.usage_count))
        await engine.dispose()
        return first, second, usage, rows, count

    first, second, usage, rows, count = asyncio.run(scenario())

    assert isinstance(first, Ok)
    match second:
        case Error(e):
            assert e.kind is LedgerErrorKind.LIMIT_REACHED
            assert e.promotion_id == "launch"
        case Ok(_):
            raise AssertionError("usage limit was exceeded")
    assert (usage.total, usage.by_customer) == (1, 1)
    assert rows == 1
    assert count == 1


def test_per_customer_limit(db_url):
    async def scenario():
        session_factory, engine = await create_database(db_url)
        await seed(
            session_factory,
            promotion_row("welcome", "fixed_amount", code="WELCOME", value=10_000, per_customer_limit=1),
            bare_order("ord_000001"),
            bare_order("ord_000002"),
            bare_order("ord_000003"),
        )
        ledger = PromotionLedger(session_factory)

        results = [
            await _record(ledger, session_factory, "welcome", "ord_000001", "ada@example.com"),
            await _record(ledger, session_factory, "welcome", "ord_000002", "ada@example.com"),
            await _record(ledger, session_factory, "welcome", "ord_000003", "bola@example.com"),
        ]
        ada = await ledger.usage("welcome", "ada@example.com")
        async with session_factory() as session:
            rows = await session.scalar(select(func.count(PromotionUsageTable.id)))
        await engine.dispose()
        return results, ada, rows

    (first, repeat, other), ada, rows = asyncio.run(scenario())

    assert isinstance(first, Ok)
    assert isinstance(other, Ok)
    match repeat:
        case Error(e):
            assert e.kind is LedgerErrorKind.CUSTOMER_LIMIT_REACHED
        case Ok(_):
            raise AssertionError("customer used the promotion twice")
    # The rejected use gave back its global slot
    assert (ada.total, ada.by_customer) == (2, 1)
    assert rows == 2


def test_unknown_promotion(db_url):
    async def scenario():
        session_factory, engine = await create_database(db_url)
        result = await _record(PromotionLedger(session_factory), session_factory, "ghost", "ord_000001")
        await engine.dispose()
        return result

    match asyncio.run(scenario()):
        case Error(e):
            assert e.kind is LedgerErrorKind.UNKNOWN_PROMOTION
        case Ok(_):
            raise AssertionError("recorded usage of a missing promotion")

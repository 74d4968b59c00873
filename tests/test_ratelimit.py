import asyncio
from datetime import datetime, timedelta

from kungfu import Error, Ok
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from reckon.db import IncidentTable, create_database
from reckon.ratelimit import (
    DenialReason,
    IdentifierType,
    Limits,
    Operation,
    RateLimiter,
    RateLimitKey,
    Thresholds,
    Tier,
    window_bounds,
)
from tests._support import FakeClock

KEY = RateLimitKey("10.0.0.7", IdentifierType.IP, Operation.CREATE_ORDER)


def test_window_bounds_align_to_the_hour():
    start, end = window_bounds(datetime(2026, 3, 2, 12, 10, 42), timedelta(hours=1))

    assert start == datetime(2026, 3, 2, 12, 0)
    assert end == datetime(2026, 3, 2, 13, 0)


def test_tier_caps():
    limits = Limits.per_hour(10)

    assert limits.for_tier(Tier.TRUSTED) == 20
    assert limits.for_tier(Tier.NORMAL) == 10
    assert limits.for_tier(Tier.SUSPICIOUS) == 2
    assert limits.for_tier(Tier.BLOCKED) == 0
    assert Limits.per_hour(2).for_tier(Tier.SUSPICIOUS) == 1


def test_requests_up_to_the_cap_then_denied(db_url):
    async def scenario():
        session_factory, engine = await create_database(db_url)
        limiter = RateLimiter(session_factory, clock=FakeClock())
        limits = Limits.per_hour(3)

        decisions = [await limiter.check_and_increment(KEY, limits) for _ in range(4)]
        async with session_factory() as session:
            incidents = await session.scalar(
                select(func.count(IncidentTable.id)).where(IncidentTable.kind == "rate_limit_exceeded")
            )
        await engine.dispose()
        return decisions, incidents

    decisions, incidents = asyncio.run(scenario())

    remaining = []
    for decision in decisions[:3]:
        match decision:
            case Ok(allowed):
                remaining.append(allowed.remaining)
            case Error(denied):
                raise AssertionError(denied.message)
    assert remaining == [2, 1, 0]

    match decisions[3]:
        case Error(denied):
            assert denied.reason is DenialReason.LIMIT_EXCEEDED
            assert denied.retry_after == 50 * 60
            assert denied.violations == 1
        case Ok(_):
            raise AssertionError("fourth request should be denied")
    assert incidents == 1


def test_window_rollover_resets_the_count(db_url):
    async def scenario():
        session_factory, engine = await create_database(db_url)
        clock = FakeClock()
        limiter = RateLimiter(session_factory, clock=clock)
        limits = Limits.per_hour(1)

        first = await limiter.check_and_increment(KEY, limits)
        second = await limiter.check_and_increment(KEY, limits)
        clock.advance(minutes=50)
        third = await limiter.check_and_increment(KEY, limits)
        await engine.dispose()
        return first, second, third

    first, second, third = asyncio.run(scenario())

    assert isinstance(first, Ok)
    assert isinstance(second, Error)
    match third:
        case Ok(allowed):
            assert allowed.count == 1
            assert allowed.reset_at == datetime(2026, 3, 2, 14, 0)
        case Error(denied):
            raise AssertionError(denied.message)


def test_keys_are_independent_per_operation_and_identifier(db_url):
    async def scenario():
        session_factory, engine = await create_database(db_url)
        limiter = RateLimiter(session_factory, clock=FakeClock())
        limits = Limits.per_hour(1)

        results = [
            await limiter.check_and_increment(KEY, limits),
            await limiter.check_and_increment(RateLimitKey("10.0.0.7", IdentifierType.IP, Operation.VERIFY_PAYMENT), limits),
            await limiter.check_and_increment(RateLimitKey("10.0.0.8", IdentifierType.IP, Operation.CREATE_ORDER), limits),
            await limiter.check_and_increment(RateLimitKey("10.0.0.7", IdentifierType.SESSION, Operation.CREATE_ORDER), limits),
        ]
        await engine.dispose()
        return results

    assert all(isinstance(r, Ok) for r in asyncio.run(scenario()))


def test_repeat_violations_demote_the_identifier(db_url):
    async def scenario():
        session_factory, engine = await create_database(db_url)
        clock = FakeClock()
        limiter = RateLimiter(session_factory, Thresholds(suspicious_after=2, blocked_after=4), clock=clock)
        limits = Limits.per_hour(8)

        tiers = [await limiter.tier_of(KEY.identifier, KEY.identifier_type)]
        for _ in range(10):  # 8 allowed, 2 violations
            await limiter.check_and_increment(KEY, limits)
        tiers.append(await limiter.tier_of(KEY.identifier, KEY.identifier_type))

        clock.advance(hours=1)
        allowed = 0
        for _ in range(4):  # suspicious: cap 2, then 2 more violations
            if isinstance(await limiter.check_and_increment(KEY, limits), Ok):
                allowed += 1
        tiers.append(await limiter.tier_of(KEY.identifier, KEY.identifier_type))

        clock.advance(hours=1)
        blocked = await limiter.check_and_increment(KEY, limits)
        await engine.dispose()
        return tiers, allowed, blocked

    tiers, allowed, blocked = asyncio.run(scenario())

    assert tiers == [Tier.NORMAL, Tier.SUSPICIOUS, Tier.BLOCKED]
    assert allowed == 2
    match blocked:
        case Error(denied):
            assert denied.reason is DenialReason.BLOCKED
            assert denied.limit == 0
        case Ok(_):
            raise AssertionError("blocked identifier was allowed")


def test_flagging_overrides_reputation(db_url):
    async def scenario():
        session_factory, engine = await create_database(db_url)
        limiter = RateLimiter(session_factory, clock=FakeClock())
        limits = Limits.per_hour(1)

        await limiter.flag_identifier(KEY.identifier, KEY.identifier_type, Tier.TRUSTED)
        trusted = [await limiter.check_and_increment(KEY, limits) for _ in range(3)]

        await limiter.flag_identifier(KEY.identifier, KEY.identifier_type, Tier.BLOCKED)
        blocked = await limiter.check_and_increment(KEY, limits)

        await limiter.flag_identifier(KEY.identifier, KEY.identifier_type, None)
        cleared = await limiter.tier_of(KEY.identifier, KEY.identifier_type)
        await engine.dispose()
        return trusted, blocked, cleared

    trusted, blocked, cleared = asyncio.run(scenario())

    assert [isinstance(r, Ok) for r in trusted] == [True, True, False]
    match blocked:
        case Error(denied):
            assert denied.reason is DenialReason.BLOCKED
        case Ok(_):
            raise AssertionError("flagged identifier was allowed")
    # two violations stay below the default thresholds
    assert cleared is Tier.NORMAL


def test_cleanup_removes_only_finished_windows(db_url):
    async def scenario():
        session_factory, engine = await create_database(db_url)
        clock = FakeClock()
        limiter = RateLimiter(session_factory, clock=clock)

        await limiter.check_and_increment(KEY, Limits.per_hour(5))
        await limiter.check_and_increment(KEY, Limits.per_day(5))
        clock.advance(hours=2)
        removed = await limiter.cleanup_expired_windows()
        await engine.dispose()
        return removed

    assert asyncio.run(scenario()) == 1


def test_store_failure_fails_closed(tmp_path):
    async def scenario():
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'nowhere.db'}")
        limiter = RateLimiter(async_sessionmaker(engine), clock=FakeClock())
        decision = await limiter.check_and_increment(KEY, Limits.per_hour(5))
        await engine.dispose()
        return decision

    match asyncio.run(scenario()):
        case Error(denied):
            assert denied.reason is DenialReason.STORE_UNAVAILABLE
            assert denied.retry_after == 1
        case Ok(_):
            raise AssertionError("limiter allowed a request without its store")

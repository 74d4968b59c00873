import asyncio
from datetime import timedelta

from kungfu import Error, LazyCoroResult, Ok

from reckon import idempotency as I
from reckon import saga as S
from reckon.db import create_database
from tests._support import FakeClock


# ═══════════════════════════════════════════════════════════════════════════════
# Saga
# ═══════════════════════════════════════════════════════════════════════════════

def test_saga_compensates_in_reverse_order():
    log: list[str] = []

    async def ok(value):
        log.append(f"do {value}")
        return Ok(value)

    async def boom():
        log.append("do charge")
        return Error("card declined")

    def undo(name):
        async def compensate(value):
            log.append(f"undo {name}")
        return compensate

    saga = (
        S.step(LazyCoroResult(lambda: ok("reserve")), compensate=undo("reserve"), name="reserve")
        .then(lambda _: S.from_result(lambda: ok("persist"), compensate=undo("persist"), name="persist"))
        .then(lambda _: S.from_result(boom, name="charge"))
    )

    match asyncio.run(S.run(saga)):
        case Error(e):
            assert e.error == "card declined"
            assert e.step_failed == "charge"
            assert e.compensators_run == 2
            assert e.rollback_complete
        case Ok(r):
            raise AssertionError(f"saga should fail, got {r}")

    assert log == ["do reserve", "do persist", "do charge", "undo persist", "undo reserve"]


def test_saga_counts_failed_compensators_and_keeps_going():
    undone: list[str] = []

    async def broken(_):
        raise RuntimeError("undo failed")

    async def undo_first(_):
        undone.append("first")

    async def value(v):
        return v

    saga = (
        S.from_async(lambda: value(1), on_error=str, compensate=undo_first, name="first")
        .then(lambda _: S.from_async(lambda: value(2), on_error=str, compensate=broken, name="second"))
        .then(lambda _: S.from_result(lambda: value(Error("nope")), name="third"))
    )

    match asyncio.run(S.run(saga)):
        case Error(e):
            assert e.compensators_run == 1
            assert e.compensators_failed == 1
            assert not e.rollback_complete
        case Ok(r):
            raise AssertionError(f"saga should fail, got {r}")
    assert undone == ["first"]


def test_saga_success_reports_steps():
    async def double(x):
        return Ok(x * 2)

    saga = S.from_result(lambda: double(1)).then(lambda x: S.from_result(lambda: double(x)))

    match asyncio.run(S.run(saga)):
        case Ok(r):
            assert r.value == 4
            assert r.steps_executed == 2
        case Error(e):
            raise AssertionError(e)


# ═══════════════════════════════════════════════════════════════════════════════
# Idempotent Execution
# ═══════════════════════════════════════════════════════════════════════════════

class Counter:
    def __init__(self, result=None):
        self.calls = 0
        self.result = result

    async def __call__(self):
        self.calls += 1
        return self.result if self.result is not None else Ok(f"ord_{self.calls}")


class LosingStore:
    """Claims and reads work; recording the result never does."""

    def __init__(self, inner):
        self.inner = inner
        self.released = []

    async def claim(self, key, fingerprint, expires_at):
        return await self.inner.claim(key, fingerprint, expires_at)

    async def get(self, key):
        return await self.inner.get(key)

    async def complete(self, key, value, expires_at):
        return Error(I.StoreError("disk full"))

    async def release(self, key):
        self.released.append(key)
        return await self.inner.release(key)


def test_second_call_replays_the_first_result(db_url):
    async def scenario():
        session_factory, engine = await create_database(db_url)
        store = I.SQLAlchemyStore(session_factory)
        action = Counter()
        hash_ = I.fingerprint({"items": [["jollof", 2]]})

        first = await I.run_idempotent("create_order:k1", hash_, action, store=store)
        second = await I.run_idempotent("create_order:k1", hash_, action, store=store)
        await engine.dispose()
        return first, second, action.calls

    first, second, calls = asyncio.run(scenario())

    assert calls == 1
    match first, second:
        case Ok(a), Ok(b):
            assert (a.value, a.from_cache) == ("ord_1", False)
            assert (b.value, b.from_cache) == ("ord_1", True)
        case _:
            raise AssertionError((first, second))


def test_key_reuse_with_different_body_is_rejected(db_url):
    async def scenario():
        session_factory, engine = await create_database(db_url)
        store = I.SQLAlchemyStore(session_factory)
        action = Counter()

        await I.run_idempotent("k", I.fingerprint({"q": 1}), action, store=store)
        other = await I.run_idempotent("k", I.fingerprint({"q": 2}), action, store=store)
        await engine.dispose()
        return other, action.calls

    other, calls = asyncio.run(scenario())

    assert calls == 1
    match other:
        case Error(e):
            assert e.kind is I.IdempotencyErrorKind.INPUT_MISMATCH
        case Ok(r):
            raise AssertionError(r)


def test_failed_action_releases_the_key(db_url):
    async def scenario():
        session_factory, engine = await create_database(db_url)
        store = I.SQLAlchemyStore(session_factory)
        failing = Counter(Error("price changed"))
        hash_ = I.fingerprint("body")

        failed = await I.run_idempotent("k", hash_, failing, store=store)
        retried = await I.run_idempotent("k", hash_, Counter(), store=store)
        await engine.dispose()
        return failed, retried

    failed, retried = asyncio.run(scenario())

    match failed:
        case Error(e):
            assert e.kind is I.IdempotencyErrorKind.EXECUTION
            assert e.original_error == "price changed"
        case Ok(r):
            raise AssertionError(r)
    match retried:
        case Ok(r):
            assert r.from_cache is False
        case Error(e):
            raise AssertionError(e)


def test_in_flight_key_conflicts_or_times_out(db_url):
    async def scenario():
        session_factory, engine = await create_database(db_url)
        clock = FakeClock()
        store = I.SQLAlchemyStore(session_factory, clock=clock)
        hash_ = I.fingerprint("body")
        await store.claim("k", hash_, clock() + timedelta(minutes=5))

        fail_fast = await I.run_idempotent(
            "k", hash_, Counter(), store=store, clock=clock,
            policy=I.Policy().with_on_pending(I.FAIL),
        )
        waited = await I.run_idempotent(
            "k", hash_, Counter(), store=store, clock=clock,
            policy=I.Policy().with_on_pending(I.WAIT).with_wait_timeout(seconds=0.1),
        )
        await engine.dispose()
        return fail_fast, waited

    fail_fast, waited = asyncio.run(scenario())

    match fail_fast, waited:
        case Error(conflict), Error(timeout):
            assert conflict.kind is I.IdempotencyErrorKind.CONFLICT
            assert timeout.kind is I.IdempotencyErrorKind.TIMEOUT
        case _:
            raise AssertionError((fail_fast, waited))


def test_expired_pending_claim_is_taken_over(db_url):
    async def scenario():
        session_factory, engine = await create_database(db_url)
        clock = FakeClock()
        store = I.SQLAlchemyStore(session_factory, clock=clock)
        hash_ = I.fingerprint("body")
        await store.claim("k", hash_, clock() + timedelta(seconds=60))

        clock.advance(minutes=2)
        result = await I.run_idempotent("k", hash_, Counter(), store=store, clock=clock)
        await engine.dispose()
        return result

    match asyncio.run(scenario()):
        case Ok(r):
            assert r.from_cache is False
        case Error(e):
            raise AssertionError(e)


def test_unrecorded_result_is_discarded(db_url):
    async def scenario():
        session_factory, engine = await create_database(db_url)
        store = LosingStore(I.SQLAlchemyStore(session_factory))
        discarded = []

        async def discard(value):
            discarded.append(value)

        result = await I.run_idempotent("k", I.fingerprint("body"), Counter(), store=store, discard=discard)
        await engine.dispose()
        return result, discarded, store.released

    result, discarded, released = asyncio.run(scenario())

    match result:
        case Error(e):
            assert e.kind is I.IdempotencyErrorKind.STORE_ERROR
        case Ok(r):
            raise AssertionError(r)
    assert discarded == ["ord_1"]
    assert released == ["k"]

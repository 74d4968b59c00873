"""
Idempotent execution — claim, run, record; or replay what was recorded.

    claim(key) ──taken──▶ get(key) ── completed, same body ──▶ cached value
        │                     ├────── different body ───────▶ INPUT_MISMATCH
        │                     └────── pending ──▶ WAIT: poll / FAIL: CONFLICT
        ▼
    saga: action ──▶ complete(key)
          (if complete fails, `discard` undoes the action)
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from kungfu import Error, Ok, Result

from reckon import saga as S
from reckon._clock import Clock, utcnow
from reckon.idempotency._policy import OnPending, Policy
from reckon.idempotency._store import Store
from reckon.idempotency._types import (
    IdempotencyError,
    IdempotencyErrorKind,
    IdempotencyResult,
    RecordState,
)

logger = logging.getLogger(__name__)


def fingerprint(payload: Any) -> str:
    """sha256 of the canonical JSON form."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


async def run_idempotent[E](
    key: str,
    input_hash: str,
    action: Callable[[], Awaitable[Result[str, E]]],
    *,
    store: Store,
    policy: Policy = Policy(),
    discard: S.Compensator[str] | None = None,
    clock: Clock = utcnow,
) -> Result[IdempotencyResult, IdempotencyError[E]]:
    loop = asyncio.get_running_loop()
    deadline: float | None = None

    while True:
        match await store.claim(key, input_hash, clock() + policy.pending_ttl):
            case Ok(True):
                return await _execute(key, action, store, policy, discard, clock)
            case Ok(False):
                pass
            case Error(e):
                return Error(IdempotencyError(IdempotencyErrorKind.STORE_ERROR, e.message))

        match await store.get(key):
            case Ok(None):
                # released or expired since the claim attempt
                continue
            case Ok(record):
                pass
            case Error(e):
                return Error(IdempotencyError(IdempotencyErrorKind.STORE_ERROR, e.message))

        if record.fingerprint != input_hash:
            return Error(IdempotencyError(
                IdempotencyErrorKind.INPUT_MISMATCH,
                "idempotency key was already used with a different request",
            ))
        if record.state is RecordState.COMPLETED and record.value is not None:
            logger.info("idempotent replay for %s", key)
            return Ok(IdempotencyResult(value=record.value, from_cache=True, key=key))

        if policy.on_pending is OnPending.FAIL:
            return Error(IdempotencyError(IdempotencyErrorKind.CONFLICT, "request with this key is in progress"))
        if deadline is None:
            deadline = loop.time() + policy.pending_wait_timeout.total_seconds()
        if loop.time() >= deadline:
            return Error(IdempotencyError(IdempotencyErrorKind.TIMEOUT, "timed out waiting for in-flight request"))
        await asyncio.sleep(policy.poll_interval)


async def _execute[E](
    key: str,
    action: Callable[[], Awaitable[Result[str, E]]],
    store: Store,
    policy: Policy,
    discard: S.Compensator[str] | None,
    clock: Clock,
) -> Result[IdempotencyResult, IdempotencyError[E]]:
    async def perform() -> Result[str, IdempotencyError[E]]:
        match await action():
            case Ok(value):
                return Ok(value)
            case Error(e):
                return Error(IdempotencyError(IdempotencyErrorKind.EXECUTION, "operation failed", e))

    async def record(value: str) -> Result[str, IdempotencyError[E]]:
        match await store.complete(key, value, clock() + policy.result_ttl):
            case Ok(_):
                return Ok(value)
            case Error(e):
                return Error(IdempotencyError(IdempotencyErrorKind.STORE_ERROR, e.message))

    saga = S.from_result(perform, compensate=discard, name="execute").then(
        lambda value: S.from_result(lambda: record(value), name="record_result")
    )

    try:
        outcome = await S.run(saga)
    except Exception:
        await store.release(key)
        raise

    match outcome:
        case Ok(done):
            return Ok(IdempotencyResult(value=done.value, from_cache=False, key=key))
        case Error(failure):
            match await store.release(key):
                case Error(e):
                    logger.error("could not release idempotency key %s: %s", key, e.message)
                case Ok(_):
                    pass
            return Error(failure.error)


__all__ = ("fingerprint", "run_idempotent")

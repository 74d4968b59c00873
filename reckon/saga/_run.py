"""
Saga execution — run steps in order, undo completed ones in reverse on failure.
"""

from __future__ import annotations

import logging
from typing import Any

from kungfu import Error, Ok, Result

from reckon.saga._types import Compensator, Saga, SagaError, SagaResult, SagaStep, Then

logger = logging.getLogger(__name__)

type Recorded = tuple[str, Any, Compensator[Any]]


async def run[T, E](saga: Saga[T, E]) -> Result[SagaResult[T], SagaError[E]]:
    """
    Execute a step or a `.then` chain.

    Example:
        saga = S.step(persist, delete).then(lambda order_id: S.step(publish(order_id)))

        match await S.run(saga):
            case Ok(r):
                r.value
            case Error(e):
                e.step_failed, e.rollback_complete
    """
    recorded: list[Recorded] = []
    steps = 0

    async def execute(node: SagaStep[Any, E] | Then[Any, Any, E]) -> Result[Any, tuple[str, E]]:
        nonlocal steps
        match node:
            case Then(inner=inner, f=f):
                match await execute(inner):
                    case Ok(value):
                        return await execute(f(value))
                    case Error(failure):
                        return Error(failure)
            case SagaStep(action=action, compensate=compensate, name=name):
                steps += 1
                match await action:
                    case Ok(value):
                        if compensate is not None:
                            recorded.append((name, value, compensate))
                        return Ok(value)
                    case Error(e):
                        return Error((name, e))

    match await execute(saga):
        case Ok(value):
            return Ok(SagaResult(value=value, steps_executed=steps))
        case Error((failed, error)):
            logger.warning("saga step %s failed, compensating %d step(s)", failed, len(recorded))
            ran, failures = await run_compensators(recorded)
            return Error(SagaError(
                error=error,
                step_failed=failed,
                compensators_run=ran,
                compensators_failed=failures,
            ))


async def run_compensators(recorded: list[Recorded]) -> tuple[int, int]:
    """Run in reverse; one failing compensator does not stop the rest. Returns (run, failed)."""
    ran = 0
    failed = 0
    for name, value, compensate in reversed(recorded):
        try:
            await compensate(value)
            ran += 1
        except Exception:
            logger.exception("compensator for %s failed", name)
            failed += 1
    return ran, failed


__all__ = ("run", "run_compensators")

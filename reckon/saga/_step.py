"""
Saga step constructors.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from combinators import lift as L
from kungfu import LazyCoroResult, Result

from reckon.saga._types import Compensator, SagaStep


def step[T, E](
    action: LazyCoroResult[T, E],
    compensate: Compensator[T] | None = None,
    name: str = "step",
) -> SagaStep[T, E]:
    """
    Example:
        persist = S.step(
            LazyCoroResult(lambda: repo.insert(order)),
            compensate=lambda order_id: repo.delete(order_id),
            name="persist_order",
        )
    """
    return SagaStep(action=action, compensate=compensate, name=name)


def from_result[T, E](
    action: Callable[[], Awaitable[Result[T, E]]],
    compensate: Compensator[T] | None = None,
    name: str = "step",
) -> SagaStep[T, E]:
    """Step from a coroutine function that already returns a Result."""
    return SagaStep(action=LazyCoroResult(action), compensate=compensate, name=name)


def from_async[T, E](
    action: Callable[[], Awaitable[T]],
    on_error: Callable[[Exception], E],
    compensate: Compensator[T] | None = None,
    name: str = "step",
) -> SagaStep[T, E]:
    """Step from a plain coroutine function; exceptions become `on_error(exc)`."""
    return SagaStep(
        action=L.catching_async(action, on_error=on_error),
        compensate=compensate,
        name=name,
    )


__all__ = ("step", "from_result", "from_async")

"""
Saga types — steps, chains and outcomes.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from kungfu import LazyCoroResult

type Compensator[T] = Callable[[T], Awaitable[None]]
"""Undo action; receives the value the step produced."""


@dataclass(frozen=True, slots=True)
class SagaStep[T, E]:
    """
    One action plus the compensator that undoes it.

    The compensator is recorded only when the action succeeds and runs only
    if a later step fails.
    """

    action: LazyCoroResult[T, E]
    compensate: Compensator[T] | None
    name: str = "step"

    def then[U](self, f: Callable[[T], SagaStep[U, E]]) -> Then[T, U, E]:
        return Then(self, f)


@dataclass(frozen=True, slots=True)
class Then[T, U, E]:
    """Sequential composition. `f` builds the next step from this step's value."""

    inner: SagaStep[T, E] | Then[object, T, E]
    f: Callable[[T], SagaStep[U, E]]

    def then[V](self, g: Callable[[U], SagaStep[V, E]]) -> Then[U, V, E]:
        return Then(self, g)


type Saga[T, E] = SagaStep[T, E] | Then[object, T, E]


@dataclass(frozen=True, slots=True)
class SagaResult[T]:
    value: T
    steps_executed: int


@dataclass(frozen=True, slots=True)
class SagaError[E]:
    """Failure plus what the rollback managed to undo."""

    error: E
    step_failed: str
    compensators_run: int
    compensators_failed: int

    @property
    def rollback_complete(self) -> bool:
        return self.compensators_failed == 0


__all__ = ("Compensator", "SagaStep", "Then", "Saga", "SagaResult", "SagaError")

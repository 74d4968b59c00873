"""
Retry — bounded exponential backoff for Result-returning calls.

Settings map onto `combinators.flow(...).retry(...)`; only errors accepted
by `retry_on` are retried, anything else returns on the first attempt.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from combinators import RetryPolicy, flow
from kungfu import LazyCoroResult, Result

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Retry:
    """
    times: total attempts, including the first.

    Delay before attempt n+1 is min(backoff_max, backoff_initial * backoff_factor**(n-1)),
    jittered when `jitter` is on.
    """

    times: int = 3
    backoff_initial: float = 0.2
    backoff_factor: float = 2.0
    backoff_max: float = 2.0
    jitter: bool = True

    def policy[E](self, retry_on: Callable[[E], bool]) -> RetryPolicy[E]:
        build = RetryPolicy.exponential_jitter if self.jitter else RetryPolicy.exponential
        return build(
            times=self.times,
            initial=self.backoff_initial,
            multiplier=self.backoff_factor,
            max_delay=self.backoff_max,
            retry_on=retry_on,
        )


async def retrying[T, E](
    call: Callable[[], Awaitable[Result[T, E]]],
    policy: Retry,
    retry_on: Callable[[E], bool],
) -> Result[T, E]:
    """Re-run `call` while it fails with an error `retry_on` accepts."""
    attempts = 0

    async def attempt() -> Result[T, E]:
        nonlocal attempts
        attempts += 1
        if attempts > 1:
            logger.info("retrying, attempt %d/%d", attempts, policy.times)
        return await call()

    return await flow(LazyCoroResult(attempt)).retry(policy=policy.policy(retry_on)).compile()


__all__ = ("Retry", "retrying")

"""
Saga — multi-step writes with compensation.

    from reckon import saga as S

    saga = S.from_result(insert_order, compensate=delete_order).then(
        lambda order_id: S.from_result(lambda: mark_key_done(order_id))
    )
    result = await S.run(saga)
"""

from reckon.saga._run import run, run_compensators
from reckon.saga._step import from_async, from_result, step
from reckon.saga._types import Compensator, Saga, SagaError, SagaResult, SagaStep, Then

__all__ = (
    "Compensator",
    "Saga",
    "SagaError",
    "SagaResult",
    "SagaStep",
    "Then",
    "step",
    "from_result",
    "from_async",
    "run",
    "run_compensators",
)

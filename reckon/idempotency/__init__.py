"""
Idempotency — at most one execution per key within a window.

Usage:
    from reckon import idempotency as I

    result = await I.run_idempotent(
        key="create_order:abc-123",
        input_hash=I.fingerprint(request_body),
        action=lambda: create(request),
        store=I.SQLAlchemyStore(session_factory),
        policy=I.Policy().with_ttl(seconds=600).with_on_pending(I.WAIT),
        discard=delete_order,
    )

    match result:
        case Ok(r):
            r.value, r.from_cache
        case Error(e) if e.kind is I.IdempotencyErrorKind.EXECUTION:
            e.original_error
"""

from reckon.idempotency._policy import FAIL, WAIT, OnPending, Policy
from reckon.idempotency._run import fingerprint, run_idempotent
from reckon.idempotency._store import SQLAlchemyStore, Store, StoreError
from reckon.idempotency._types import (
    IdempotencyError,
    IdempotencyErrorKind,
    IdempotencyRecord,
    IdempotencyResult,
    RecordState,
)

__all__ = (
    "FAIL",
    "WAIT",
    "OnPending",
    "Policy",
    "fingerprint",
    "run_idempotent",
    "SQLAlchemyStore",
    "Store",
    "StoreError",
    "IdempotencyError",
    "IdempotencyErrorKind",
    "IdempotencyRecord",
    "IdempotencyResult",
    "RecordState",
)

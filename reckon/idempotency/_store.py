"""
Idempotency store — Result-based storage protocol and its SQLAlchemy backend.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from kungfu import Error, Ok, Result
from sqlalchemy import delete, update

from reckon._clock import Clock, utcnow
from reckon.db import IdempotencyKeyTable, SessionFactory, upsert
from reckon.idempotency._types import IdempotencyRecord, RecordState


@dataclass(frozen=True)
class StoreError:
    message: str
    cause: Exception | None = None


class Store(Protocol):
    async def claim(self, key: str, fingerprint: str, expires_at: datetime) -> Result[bool, StoreError]:
        """Take the key if it is free or expired. Ok(False) when someone else holds it."""
        ...

    async def get(self, key: str) -> Result[IdempotencyRecord | None, StoreError]: ...

    async def complete(self, key: str, value: str, expires_at: datetime) -> Result[None, StoreError]: ...

    async def release(self, key: str) -> Result[None, StoreError]:
        """Drop a pending claim so the request can be retried."""
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# SQLAlchemy Store
# ═══════════════════════════════════════════════════════════════════════════════

class SQLAlchemyStore:
    """
    Keys live in `idempotency_keys`.

    Claiming is a single upsert that only overwrites an expired row:

        INSERT ... ON CONFLICT (key) DO UPDATE SET ... WHERE expires_at < :now
        RETURNING key
    """

    def __init__(self, session_factory: SessionFactory, clock: Clock = utcnow) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def claim(self, key: str, fingerprint: str, expires_at: datetime) -> Result[bool, StoreError]:
        now = self._clock()
        fresh = {
            "fingerprint": fingerprint,
            "status": "pending",
            "value": None,
            "created_at": now,
            "expires_at": expires_at,
        }
        try:
            async with self._session_factory() as session, session.begin():
                stmt = (
                    upsert(session, IdempotencyKeyTable)
                    .values(key=key, **fresh)
                    .on_conflict_do_update(
                        index_elements=["key"],
                        set_=fresh,
                        where=IdempotencyKeyTable.expires_at < now,
                    )
                    .returning(IdempotencyKeyTable.key)
                )
                claimed = (await session.execute(stmt)).scalar_one_or_none()
            return Ok(claimed is not None)
        except Exception as e:
            return Error(StoreError(f"Failed to claim {key}", e))

    async def get(self, key: str) -> Result[IdempotencyRecord | None, StoreError]:
        try:
            async with self._session_factory() as session:
                row = await session.get(IdempotencyKeyTable, key)
                if row is None or row.expires_at <= self._clock():
                    return Ok(None)
                return Ok(IdempotencyRecord(
                    key=row.key,
                    state=RecordState.COMPLETED if row.status == "completed" else RecordState.PENDING,
                    fingerprint=row.fingerprint,
                    value=row.value,
                    created_at=row.created_at,
                    expires_at=row.expires_at,
                ))
        except Exception as e:
            return Error(StoreError(f"Failed to get {key}", e))

    async def complete(self, key: str, value: str, expires_at: datetime) -> Result[None, StoreError]:
        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    update(IdempotencyKeyTable)
                    .where(IdempotencyKeyTable.key == key, IdempotencyKeyTable.status == "pending")
                    .values(status="completed", value=value, expires_at=expires_at)
                )
            if result.rowcount == 0:
                return Error(StoreError(f"Claim on {key} was lost before completion"))
            return Ok(None)
        except Exception as e:
            return Error(StoreError(f"Failed to complete {key}", e))

    async def release(self, key: str) -> Result[None, StoreError]:
        try:
            async with self._session_factory() as session, session.begin():
                await session.execute(
                    delete(IdempotencyKeyTable).where(
                        IdempotencyKeyTable.key == key,
                        IdempotencyKeyTable.status == "pending",
                    )
                )
            return Ok(None)
        except Exception as e:
            return Error(StoreError(f"Failed to release {key}", e))


__all__ = ("StoreError", "Store", "SQLAlchemyStore")

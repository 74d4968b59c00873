"""
Webhook ledger — each provider event id is processed at most once.

    claim ──new──▶ process ──▶ mark_processed (inside the settlement transaction)
      │                  └──transient failure──▶ release (provider redelivers)
      ├──processed──▶ ack without touching state
      └──in flight──▶ do not ack; the provider retries later

A claim left in flight by a crashed worker becomes claimable again after
`stale_after`.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from enum import Enum, auto

from kungfu import Error, Ok, Result
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from reckon._clock import Clock, utcnow
from reckon.db import SessionFactory, WebhookEventTable, upsert
from reckon.idempotency import StoreError
from reckon.payments._types import InboundEvent

logger = logging.getLogger(__name__)


class Claim(Enum):
    NEW = auto()
    PROCESSED = auto()
    IN_FLIGHT = auto()


class WebhookLedger:
    def __init__(
        self,
        session_factory: SessionFactory,
        stale_after: timedelta = timedelta(minutes=5),
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._stale_after = stale_after
        self._clock = clock

    async def claim(
        self,
        event: InboundEvent,
        provider: str,
        raw_payload: bytes,
        signature: str | None = None,
    ) -> Result[Claim, StoreError]:
        now = self._clock()
        try:
            async with self._session_factory() as session, session.begin():
                stmt = (
                    upsert(session, WebhookEventTable)
                    .values(
                        event_id=event.event_id,
                        provider=provider,
                        event_type=event.name,
                        status="processing",
                        payload=raw_payload.decode("utf-8", errors="replace"),
                        signature=signature,
                        claimed_at=now,
                    )
                    .on_conflict_do_update(
                        index_elements=["event_id"],
                        set_={"claimed_at": now},
                        where=(WebhookEventTable.status == "processing")
                        & (WebhookEventTable.claimed_at < now - self._stale_after),
                    )
                    .returning(WebhookEventTable.event_id)
                )
                if (await session.execute(stmt)).scalar_one_or_none() is not None:
                    return Ok(Claim.NEW)

                status = await session.scalar(
                    select(WebhookEventTable.status).where(WebhookEventTable.event_id == event.event_id)
                )
        except Exception as e:
            return Error(StoreError(f"Failed to claim event {event.event_id}", e))

        if status == "processed":
            logger.info("webhook %s already processed", event.event_id)
            return Ok(Claim.PROCESSED)
        logger.info("webhook %s in flight elsewhere", event.event_id)
        return Ok(Claim.IN_FLIGHT)

    @staticmethod
    async def mark_processed(session: AsyncSession, event_id: str, result: str, now: datetime) -> None:
        await session.execute(
            update(WebhookEventTable)
            .where(WebhookEventTable.event_id == event_id)
            .values(status="processed", result=result, processed_at=now)
        )

    async def finish(self, event_id: str, result: str) -> None:
        async with self._session_factory() as session, session.begin():
            await self.mark_processed(session, event_id, result, self._clock())

    async def release(self, event_id: str) -> None:
        async with self._session_factory() as session, session.begin():
            await session.execute(
                delete(WebhookEventTable).where(
                    WebhookEventTable.event_id == event_id,
                    WebhookEventTable.status == "processing",
                )
            )
        logger.info("released webhook %s for redelivery", event_id)


__all__ = ("Claim", "WebhookLedger")

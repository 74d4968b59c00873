"""
Rate limiter — fixed-window counters with reputation tiers.

The increment is one conditional upsert:

    INSERT ... VALUES (count = 1)
    ON CONFLICT (identifier, identifier_type, operation, window_start)
    DO UPDATE SET request_count = request_count + 1
    WHERE request_count < :cap
    RETURNING request_count

No returned row means the cap was already reached. Denials never move
`request_count`; they bump `violation_count` on the window and on the
identifier's reputation, which outlives the window.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime

from kungfu import Error, Ok, Result
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from reckon._clock import Clock, utcnow
from reckon.db import RateLimitReputationTable, RateLimitWindowTable, SessionFactory, upsert
from reckon.events import Incident, IncidentKind, Severity, add_incident
from reckon.ratelimit._types import (
    Allowed,
    DenialReason,
    Denied,
    IdentifierType,
    Limits,
    RateLimitKey,
    Thresholds,
    Tier,
    window_bounds,
)

logger = logging.getLogger(__name__)

_WINDOW_KEY = ["identifier", "identifier_type", "operation", "window_start"]


class RateLimiter:
    def __init__(
        self,
        session_factory: SessionFactory,
        thresholds: Thresholds = Thresholds(),
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._thresholds = thresholds
        self._clock = clock

    async def check_and_increment(self, key: RateLimitKey, limits: Limits) -> Result[Allowed, Denied]:
        now = self._clock()
        start, end = window_bounds(now, limits.window)
        tier = Tier.NORMAL
        cap = limits.max_requests

        try:
            async with self._session_factory() as session, session.begin():
                tier = await self._tier(session, key.identifier, key.identifier_type)
                cap = limits.for_tier(tier)

                if cap > 0:
                    count = await self._increment(session, key, start, end, cap, tier)
                    if count is not None:
                        return Ok(Allowed(key=key, tier=tier, count=count, limit=cap, reset_at=end))

                violations = await self._record_violation(session, key, start, end, tier, now)
                reason = DenialReason.BLOCKED if tier is Tier.BLOCKED else DenialReason.LIMIT_EXCEEDED
                add_incident(session, Incident(
                    kind=IncidentKind.RATE_LIMIT_EXCEEDED,
                    severity=Severity.HIGH if tier is Tier.BLOCKED else Severity.MEDIUM,
                    message=f"{key.operation} denied for {key.identifier_type}",
                    reference=str(key),
                    detail={"limit": cap, "tier": tier.value, "violations": violations},
                    occurred_at=now,
                ))
        except SQLAlchemyError as exc:
            logger.error("rate limit store unavailable for %s: %r", key, exc)
            return Error(Denied(
                key=key,
                reason=DenialReason.STORE_UNAVAILABLE,
                tier=tier,
                limit=cap,
                reset_at=end,
                retry_after=1,
            ))

        logger.info("rate limited %s tier=%s violations=%d", key, tier, violations)
        return Error(Denied(
            key=key,
            reason=reason,
            tier=tier,
            limit=cap,
            reset_at=end,
            retry_after=max(1, math.ceil((end - now).total_seconds())),
            violations=violations,
        ))

    async def flag_identifier(
        self,
        identifier: str,
        identifier_type: IdentifierType,
        tier: Tier | None,
    ) -> None:
        """Pin an identifier to a tier, or clear the pin with None."""
        now = self._clock()
        async with self._session_factory() as session, session.begin():
            stmt = (
                upsert(session, RateLimitReputationTable)
                .values(
                    identifier=identifier,
                    identifier_type=identifier_type.value,
                    violation_count=0,
                    flagged_tier=tier.value if tier else None,
                    updated_at=now,
                )
                .on_conflict_do_update(
                    index_elements=["identifier", "identifier_type"],
                    set_={"flagged_tier": tier.value if tier else None, "updated_at": now},
                )
            )
            await session.execute(stmt)
        logger.info("flagged %s:%s as %s", identifier_type, identifier, tier)

    async def tier_of(self, identifier: str, identifier_type: IdentifierType) -> Tier:
        async with self._session_factory() as session:
            return await self._tier(session, identifier, identifier_type)

    async def cleanup_expired_windows(self, before: datetime | None = None) -> int:
        """Delete windows that ended before `before` (default: now). Reputation is kept."""
        cutoff = before or self._clock()
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                delete(RateLimitWindowTable).where(RateLimitWindowTable.window_end < cutoff)
            )
        removed = result.rowcount or 0
        logger.info("removed %d expired rate limit windows", removed)
        return removed

    # ═══════════════════════════════════════════════════════════════════════════
    # Internals
    # ═══════════════════════════════════════════════════════════════════════════

    async def _tier(self, session: AsyncSession, identifier: str, identifier_type: IdentifierType) -> Tier:
        reputation = await session.get(RateLimitReputationTable, (identifier, identifier_type.value))
        if reputation is None:
            return Tier.NORMAL
        flagged = Tier(reputation.flagged_tier) if reputation.flagged_tier else None
        return self._thresholds.tier_for(reputation.violation_count, flagged)

    async def _increment(
        self,
        session: AsyncSession,
        key: RateLimitKey,
        start: datetime,
        end: datetime,
        cap: int,
        tier: Tier,
    ) -> int | None:
        stmt = (
            upsert(session, RateLimitWindowTable)
            .values(
                identifier=key.identifier,
                identifier_type=key.identifier_type.value,
                operation=key.operation.value,
                window_start=start,
                window_end=end,
                request_count=1,
                violation_count=0,
                tier=tier.value,
            )
            .on_conflict_do_update(
                index_elements=_WINDOW_KEY,
                set_={"request_count": RateLimitWindowTable.request_count + 1, "tier": tier.value},
                where=RateLimitWindowTable.request_count < cap,
            )
            .returning(RateLimitWindowTable.request_count)
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    async def _record_violation(
        self,
        session: AsyncSession,
        key: RateLimitKey,
        start: datetime,
        end: datetime,
        tier: Tier,
        now: datetime,
    ) -> int:
        window = (
            upsert(session, RateLimitWindowTable)
            .values(
                identifier=key.identifier,
                identifier_type=key.identifier_type.value,
                operation=key.operation.value,
                window_start=start,
                window_end=end,
                request_count=0,
                violation_count=1,
                tier=tier.value,
            )
            .on_conflict_do_update(
                index_elements=_WINDOW_KEY,
                set_={"violation_count": RateLimitWindowTable.violation_count + 1, "tier": tier.value},
            )
        )
        await session.execute(window)

        reputation = (
            upsert(session, RateLimitReputationTable)
            .values(
                identifier=key.identifier,
                identifier_type=key.identifier_type.value,
                violation_count=1,
                updated_at=now,
            )
            .on_conflict_do_update(
                index_elements=["identifier", "identifier_type"],
                set_={"violation_count": RateLimitReputationTable.violation_count + 1, "updated_at": now},
            )
            .returning(RateLimitReputationTable.violation_count)
        )
        return (await session.execute(reputation)).scalar_one()


__all__ = ("RateLimiter",)

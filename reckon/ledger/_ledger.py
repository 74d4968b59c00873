"""
Promotion usage ledger — read counts for eligibility, record usage on payment.

Counts are read outside any transaction by the pricing engine (advisory),
and enforced again at recording time with a capped atomic increment:

    UPDATE promotions SET usage_count = usage_count + 1
    WHERE id = :id AND (usage_limit IS NULL OR usage_count < usage_limit)

so two confirmations racing for the last slot cannot both win. Per-customer
caps use the same shape against a (promotion, customer) counter row:

    INSERT INTO promotion_customer_usage VALUES (:id, :customer, 1)
    ON CONFLICT DO UPDATE SET usage_count = usage_count + 1
    WHERE usage_count < per_customer_limit
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, auto

from kungfu import Error, Ok, Result
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from reckon.db import (
    PromotionCustomerUsageTable,
    PromotionTable,
    PromotionUsageTable,
    SessionFactory,
    upsert,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# Types
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class UsageCount:
    total: int
    by_customer: int


class LedgerErrorKind(Enum):
    UNKNOWN_PROMOTION = auto()
    LIMIT_REACHED = auto()
    CUSTOMER_LIMIT_REACHED = auto()


@dataclass(frozen=True, slots=True)
class LedgerError:
    kind: LedgerErrorKind
    message: str
    promotion_id: str


# ═══════════════════════════════════════════════════════════════════════════════
# Ledger
# ═══════════════════════════════════════════════════════════════════════════════

class PromotionLedger:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def usage(self, promotion_id: str, customer_key: str | None) -> UsageCount:
        async with self._session_factory() as session:
            total = await session.scalar(
                select(PromotionTable.usage_count).where(PromotionTable.id == promotion_id)
            )
            by_customer = None
            if customer_key is not None:
                by_customer = await session.scalar(
                    select(PromotionCustomerUsageTable.usage_count).where(
                        PromotionCustomerUsageTable.promotion_id == promotion_id,
                        PromotionCustomerUsageTable.customer_key == customer_key,
                    )
                )
        return UsageCount(total=total or 0, by_customer=by_customer or 0)

    async def record(
        self,
        session: AsyncSession,
        *,
        promotion_id: str,
        order_id: str,
        customer_key: str | None,
        discount_amount: int,
    ) -> Result[None, LedgerError]:
        """
        Record one use inside the caller's transaction.

        Nothing is left written when a cap is hit, so the caller may keep its
        transaction and decide what the overrun means.
        """
        promotion = await session.get(PromotionTable, promotion_id)
        if promotion is None:
            return Error(LedgerError(LedgerErrorKind.UNKNOWN_PROMOTION, "promotion does not exist", promotion_id))

        result = await session.execute(
            update(PromotionTable)
            .where(
                PromotionTable.id == promotion_id,
                or_(PromotionTable.usage_limit.is_(None), PromotionTable.usage_count < PromotionTable.usage_limit),
            )
            .values(usage_count=PromotionTable.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return Error(LedgerError(LedgerErrorKind.LIMIT_REACHED, "promotion usage limit reached", promotion_id))

        if customer_key is not None:
            used = await self._count_customer(session, promotion_id, customer_key, promotion.per_customer_limit)
            if used is None:
                # Give back the global slot taken above
                await session.execute(
                    update(PromotionTable)
                    .where(PromotionTable.id == promotion_id)
                    .values(usage_count=PromotionTable.usage_count - 1)
                    .execution_options(synchronize_session=False)
                )
                return Error(LedgerError(
                    LedgerErrorKind.CUSTOMER_LIMIT_REACHED,
                    f"customer already used this promotion {promotion.per_customer_limit} time(s)",
                    promotion_id,
                ))

        session.add(PromotionUsageTable(
            promotion_id=promotion_id,
            order_id=order_id,
            customer_key=customer_key,
            discount_amount=discount_amount,
        ))
        logger.info("promotion %s used by order %s", promotion_id, order_id)
        return Ok(None)

    @staticmethod
    async def _count_customer(
        session: AsyncSession,
        promotion_id: str,
        customer_key: str,
        cap: int | None,
    ) -> int | None:
        """Increment the customer's counter unless it sits at `cap`. None when capped."""
        if cap is not None and cap <= 0:
            return None
        stmt = (
            upsert(session, PromotionCustomerUsageTable)
            .values(promotion_id=promotion_id, customer_key=customer_key, usage_count=1)
            .on_conflict_do_update(
                index_elements=["promotion_id", "customer_key"],
                set_={"usage_count": PromotionCustomerUsageTable.usage_count + 1},
                where=PromotionCustomerUsageTable.usage_count < cap if cap is not None else None,
            )
            .returning(PromotionCustomerUsageTable.usage_count)
        )
        return (await session.execute(stmt)).scalar_one_or_none()


__all__ = ("UsageCount", "LedgerErrorKind", "LedgerError", "PromotionLedger")

"""Order numbers — ORD-YYYYMMDD-NNNNNN, random suffix, checked before commit."""

from __future__ import annotations

import secrets
from datetime import datetime

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reckon.db import OrderTable


def order_number(now: datetime) -> str:
    return f"ORD-{now:%Y%m%d}-{secrets.randbelow(1_000_000):06d}"


async def is_taken(session: AsyncSession, number: str) -> bool:
    return bool(await session.scalar(select(exists().where(OrderTable.order_number == number))))


def is_number_collision(exc: IntegrityError) -> bool:
    """A unique violation on order_number, as opposed to any other constraint."""
    return "order_number" in str(exc.orig)


__all__ = ("order_number", "is_taken", "is_number_collision")

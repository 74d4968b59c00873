"""
Promotion usage ledger.

Usage:
    ledger = PromotionLedger(session_factory)
    counts = await ledger.usage(promotion_id, customer_key)

    async with session.begin():
        match await ledger.record(session, promotion_id=..., order_id=..., customer_key=..., discount_amount=...):
            case Ok(_): ...
            case Error(e): ...  # e.kind is LIMIT_REACHED / CUSTOMER_LIMIT_REACHED
"""

from reckon.ledger._ledger import LedgerError, LedgerErrorKind, PromotionLedger, UsageCount

__all__ = ("LedgerError", "LedgerErrorKind", "PromotionLedger", "UsageCount")

"""
Payment reconciliation — webhook and client verification converge on one settle path.

    handle_webhook(raw, signature)          verify_payment(reference)
      signature ─ bad ─▶ incident, 200        rate limit
      parse ─── bad ─▶ incident, 200          provider fetch (retry, no tx open)
      ledger claim                                  │
            └──────────────┬────────────────────────┘
                           ▼
          one transaction: find attempt → reprice stored order
            → exact amount check → CAS pending→paid → attempt success
            → promotion usage → ledger processed → incidents
                           ▼
          after commit: incidents to audit, order_paid to notifications

A lost CAS rolls the transaction back and re-reads once; the second read
sees the winner's state and reports ALREADY_PAID without emitting anything.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime

from kungfu import Error, Ok, Result
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from reckon._clock import Clock, utcnow
from reckon.db import OrderTable, PaymentTransactionTable, SessionFactory
from reckon.events import (
    Dispatcher,
    DomainEvent,
    EventType,
    Incident,
    IncidentKind,
    Severity,
    add_incident,
)
from reckon.ledger import PromotionLedger
from reckon.orders import Order, OrderStatus, PaymentStatus, compare_and_swap, to_order
from reckon.payments._retry import Retry, retrying
from reckon.payments._types import (
    Ack,
    ChargeStatus,
    EventKind,
    InboundEvent,
    Outcome,
    PaymentError,
    PaymentErrorKind,
    PaymentInit,
    PaymentProvider,
    ProviderCharge,
    ProviderErrorKind,
    ProviderRefund,
    VerificationResult,
    VerificationStatus,
)
from reckon.payments._webhooks import Claim, WebhookLedger
from reckon.pricing import PricingEngine
from reckon.ratelimit import DenialReason, IdentifierType, Limits, Operation, RateLimiter, RateLimitKey

logger = logging.getLogger(__name__)

_SETTLED = (PaymentStatus.PAID, PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED)

_VERIFICATION = {
    Outcome.PAID: VerificationStatus.PAID,
    Outcome.ALREADY_PAID: VerificationStatus.ALREADY_PAID,
    Outcome.AMOUNT_MISMATCH: VerificationStatus.AMOUNT_MISMATCH,
    Outcome.ORDER_NOT_FOUND: VerificationStatus.NOT_FOUND,
    Outcome.INTEGRITY_ERROR: VerificationStatus.INTEGRITY_ERROR,
    Outcome.INVALID_STATE: VerificationStatus.INVALID_STATE,
    Outcome.IGNORED: VerificationStatus.INVALID_STATE,
    Outcome.FAILED: VerificationStatus.FAILED,
    Outcome.RETRY: VerificationStatus.RETRYABLE,
}


class _LostRace(Exception):
    """Raised inside a transaction to roll it back after a lost CAS."""


@dataclass
class _Effects:
    """What to publish once the transaction has committed."""

    incidents: list[Incident] = field(default_factory=list)
    events: list[DomainEvent] = field(default_factory=list)


type Work = Callable[[AsyncSession, _Effects], Awaitable[Outcome]]


class ReconciliationService:
    def __init__(
        self,
        session_factory: SessionFactory,
        provider: PaymentProvider,
        pricing: PricingEngine,
        promotions: PromotionLedger,
        webhooks: WebhookLedger,
        dispatcher: Dispatcher,
        limiter: RateLimiter | None = None,
        *,
        verify_limits: Limits = Limits.per_hour(60),
        webhook_limits: Limits = Limits.per_hour(1000),
        retry: Retry = Retry(),
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._provider = provider
        self._pricing = pricing
        self._promotions = promotions
        self._webhooks = webhooks
        self._dispatcher = dispatcher
        self._limiter = limiter
        self._verify_limits = verify_limits
        self._webhook_limits = webhook_limits
        self._retry = retry
        self._clock = clock

    # ═══════════════════════════════════════════════════════════════════════════
    # Payment Initialization
    # ═══════════════════════════════════════════════════════════════════════════

    async def initialize_payment(self, order_id: str) -> Result[PaymentInit, PaymentError]:
        """Open a pending attempt with a fresh provider reference for the authoritative amount."""
        async with self._session_factory() as session, session.begin():
            row = await session.get(OrderTable, order_id)
            if row is None:
                return Error(PaymentError(PaymentErrorKind.NOT_FOUND, "order not found"))
            order = to_order(row)
            if (order.status, order.payment_status) != (OrderStatus.PENDING, PaymentStatus.PENDING):
                return Error(PaymentError(PaymentErrorKind.INVALID_STATE, f"order is {order.status}/{order.payment_status}"))

            match self._pricing.reprice(order.stored()):
                case Ok(expected):
                    pass
                case Error(e):
                    return Error(PaymentError(PaymentErrorKind.INTEGRITY, e.message))

            reference = f"{order.order_number}-{secrets.token_hex(4)}"
            session.add(PaymentTransactionTable(
                order_id=order.id,
                provider=self._provider.name,
                provider_reference=reference,
                kind="charge",
                amount=expected.total_amount,
                currency=order.currency,
                status="pending",
                created_at=self._clock(),
            ))

        logger.info("payment attempt %s opened for %d %s", reference, expected.total_amount, order.currency)
        return Ok(PaymentInit(order_id=order.id, reference=reference, amount=expected.total_amount, currency=order.currency))

    # ═══════════════════════════════════════════════════════════════════════════
    # Webhook
    # ═══════════════════════════════════════════════════════════════════════════

    async def handle_webhook(self, raw_payload: bytes, signature: str | None, source_ip: str | None = None) -> Ack:
        if self._limiter is not None and source_ip:
            key = RateLimitKey(source_ip, IdentifierType.IP, Operation.WEBHOOK)
            match await self._limiter.check_and_increment(key, self._webhook_limits):
                case Error(_):
                    return Ack(429, Outcome.RATE_LIMITED)
                case Ok(_):
                    pass

        if not self._provider.verify_signature(raw_payload, signature):
            await self._report(Incident(
                kind=IncidentKind.INVALID_SIGNATURE,
                severity=Severity.HIGH,
                message="security_incident: webhook signature rejected",
                detail={"source_ip": source_ip, "size": len(raw_payload), "signed": bool(signature)},
            ))
            return Ack(200, Outcome.REJECTED)

        match self._provider.parse_event(raw_payload):
            case Ok(event):
                pass
            case Error(e):
                await self._report(Incident(
                    kind=IncidentKind.MALFORMED_PAYLOAD,
                    severity=Severity.MEDIUM,
                    message=e.message,
                    detail={"source_ip": source_ip},
                ))
                return Ack(200, Outcome.REJECTED)

        match await self._webhooks.claim(event, self._provider.name, raw_payload, signature):
            case Ok(Claim.NEW):
                pass
            case Ok(Claim.PROCESSED):
                return Ack(200, Outcome.DUPLICATE)
            case Ok(Claim.IN_FLIGHT):
                return Ack(409, Outcome.RETRY)
            case Error(e):
                logger.error("webhook ledger unavailable: %s", e.message)
                return Ack(500, Outcome.RETRY)

        try:
            outcome = await self._apply(event)
        except OperationalError as exc:
            logger.error("webhook %s hit a storage error: %r", event.event_id, exc)
            outcome = Outcome.RETRY
        except Exception:
            await self._webhooks.release(event.event_id)
            raise

        if outcome is Outcome.RETRY:
            await self._webhooks.release(event.event_id)
            return Ack(500, outcome)

        logger.info("webhook %s -> %s", event.event_id, outcome)
        return Ack(200, outcome)

    async def _apply(self, event: InboundEvent) -> Outcome:
        match event:
            case InboundEvent(kind=EventKind.CHARGE_SUCCESS, charge=ProviderCharge() as charge):
                return await self._transact(lambda s, fx: self._settle(s, fx, charge), event.event_id)
            case InboundEvent(kind=EventKind.CHARGE_FAILED, charge=ProviderCharge() as charge):
                return await self._transact(lambda s, fx: self._fail(s, fx, charge), event.event_id)
            case InboundEvent(kind=EventKind.REFUND_PROCESSED, refund=ProviderRefund() as refund):
                return await self._transact(lambda s, fx: self._refund(s, fx, refund), event.event_id)
            case _:
                await self._webhooks.finish(event.event_id, Outcome.IGNORED.value)
                return Outcome.IGNORED

    # ═══════════════════════════════════════════════════════════════════════════
    # Client Verification
    # ═══════════════════════════════════════════════════════════════════════════

    async def verify_payment(self, reference: str, identifier: str | None = None) -> VerificationResult:
        if self._limiter is not None and identifier:
            key = RateLimitKey(identifier, IdentifierType.IP, Operation.VERIFY_PAYMENT)
            match await self._limiter.check_and_increment(key, self._verify_limits):
                case Error(denied):
                    status = (
                        VerificationStatus.RETRYABLE
                        if denied.reason is DenialReason.STORE_UNAVAILABLE
                        else VerificationStatus.RATE_LIMITED
                    )
                    return VerificationResult(status, reference, denied.message, retry_after=denied.retry_after)
                case Ok(_):
                    pass

        async with self._session_factory() as session:
            attempt = await _attempt(session, reference)
            order = await _order_for(session, attempt)

        if attempt is None or order is None:
            await self._report(_not_found(reference, None))
            return VerificationResult(VerificationStatus.NOT_FOUND, reference, "no order for this reference")
        if attempt.status == "success" and order.payment_status in _SETTLED:
            return VerificationResult(VerificationStatus.ALREADY_PAID, reference, order_id=order.id)

        match await retrying(
            lambda: self._provider.fetch_charge(reference),
            self._retry,
            retry_on=lambda e: e.transient,
        ):
            case Ok(charge):
                pass
            case Error(e) if e.kind is ProviderErrorKind.NOT_FOUND:
                return VerificationResult(VerificationStatus.PENDING, reference, "payment not seen by provider yet", order.id)
            case Error(e):
                logger.warning("verification of %s failed: %s", reference, e.kind.name)
                return VerificationResult(VerificationStatus.RETRYABLE, reference, "payment could not be verified, retry", order.id)

        if charge.reference != reference:
            await self._report(Incident(
                kind=IncidentKind.PRICE_INTEGRITY,
                severity=Severity.HIGH,
                message="provider answered for a different reference",
                reference=reference,
                order_id=order.id,
                detail={"provider_reference": charge.reference},
            ))
            return VerificationResult(VerificationStatus.INTEGRITY_ERROR, reference, "reference mismatch", order.id)

        match charge.status:
            case ChargeStatus.SUCCESS:
                work: Work = lambda s, fx: self._settle(s, fx, charge)
            case ChargeStatus.FAILED:
                work = lambda s, fx: self._fail(s, fx, charge)
            case _:
                return VerificationResult(VerificationStatus.PENDING, reference, "payment not completed yet", order.id)

        async def settle() -> Result[Outcome, OperationalError]:
            try:
                return Ok(await self._transact(work, None))
            except OperationalError as exc:
                logger.warning("verification of %s hit a storage error: %r", reference, exc)
                return Error(exc)

        match await retrying(settle, self._retry, retry_on=lambda _: True):
            case Ok(outcome):
                pass
            case Error(_):
                outcome = Outcome.RETRY
        return VerificationResult(_VERIFICATION[outcome], reference, outcome.value, order.id)

    # ═══════════════════════════════════════════════════════════════════════════
    # Transactions
    # ═══════════════════════════════════════════════════════════════════════════

    async def _transact(self, work: Work, event_id: str | None) -> Outcome:
        for attempt in (1, 2):
            effects = _Effects()
            try:
                async with self._session_factory() as session, session.begin():
                    outcome = await work(session, effects)
                    for incident in effects.incidents:
                        add_incident(session, incident)
                    if event_id is not None:
                        await self._webhooks.mark_processed(session, event_id, outcome.value, self._clock())
            except _LostRace:
                logger.info("state changed underneath (attempt %d), re-reading", attempt)
                continue

            for incident in effects.incidents:
                self._dispatcher.report(incident)
            for event in effects.events:
                self._dispatcher.emit(event)
            return outcome

        return Outcome.RETRY

    async def _settle(self, session: AsyncSession, fx: _Effects, charge: ProviderCharge) -> Outcome:
        now = self._clock()
        attempt = await _attempt(session, charge.reference)
        order = await _order_for(session, attempt)
        if attempt is None or order is None:
            fx.incidents.append(_not_found(charge.reference, charge.amount))
            return Outcome.ORDER_NOT_FOUND

        attempt.reported_amount = charge.amount
        attempt.channel = charge.channel
        attempt.provider_transaction_id = charge.provider_transaction_id
        attempt.raw_response = charge.raw

        if order.payment_status in _SETTLED:
            if attempt.status == "success":
                return Outcome.ALREADY_PAID
            attempt.status = "flagged"
            attempt.processed_at = now
            fx.incidents.append(_state_conflict(order, charge.reference, "second successful charge for a paid order"))
            return Outcome.INVALID_STATE
        if (order.status, order.payment_status) != (OrderStatus.PENDING, PaymentStatus.PENDING):
            attempt.status = "flagged"
            attempt.processed_at = now
            fx.incidents.append(_state_conflict(order, charge.reference, "charge succeeded for a closed order"))
            return Outcome.INVALID_STATE

        match self._pricing.reprice(order.stored()):
            case Ok(expected):
                pass
            case Error(e):
                attempt.status = "flagged"
                attempt.processed_at = now
                fx.incidents.append(Incident(
                    kind=IncidentKind.PRICE_INTEGRITY,
                    severity=Severity.CRITICAL,
                    message=e.message,
                    reference=charge.reference,
                    order_id=order.id,
                ))
                return Outcome.INTEGRITY_ERROR

        if charge.currency != order.currency or charge.amount != expected.total_amount:
            attempt.status = "flagged"
            attempt.processed_at = now
            fx.incidents.append(Incident(
                kind=IncidentKind.AMOUNT_MISMATCH,
                severity=Severity.HIGH,
                message="provider amount differs from order total",
                reference=charge.reference,
                order_id=order.id,
                detail={
                    "expected": expected.total_amount,
                    "reported": charge.amount,
                    "expected_currency": order.currency,
                    "reported_currency": charge.currency,
                },
            ))
            return Outcome.AMOUNT_MISMATCH

        match await compare_and_swap(
            session,
            order.id,
            expect_status=OrderStatus.PENDING,
            expect_payment=PaymentStatus.PENDING,
            status=OrderStatus.CONFIRMED,
            payment_status=PaymentStatus.PAID,
            values={"paid_at": charge.paid_at or now},
            now=now,
        ):
            case Error(_):
                raise _LostRace
            case Ok(_):
                pass

        attempt.status = "success"
        attempt.processed_at = now
        attempt.settled_at = charge.paid_at or now

        if order.promotion_id is not None:
            savings = order.discount_amount + sum(line.discount_amount for line in order.lines)
            match await self._promotions.record(
                session,
                promotion_id=order.promotion_id,
                order_id=order.id,
                customer_key=order.customer.key,
                discount_amount=savings,
            ):
                case Error(le):
                    fx.incidents.append(Incident(
                        kind=IncidentKind.PROMOTION_OVERRUN,
                        severity=Severity.MEDIUM,
                        message=le.message,
                        reference=charge.reference,
                        order_id=order.id,
                        detail={"promotion_id": order.promotion_id},
                    ))
                case Ok(_):
                    pass

        fx.events.append(_event(EventType.ORDER_PAID, order, now))
        logger.info("order %s paid via %s", order.order_number, charge.reference)
        return Outcome.PAID

    async def _fail(self, session: AsyncSession, fx: _Effects, charge: ProviderCharge) -> Outcome:
        now = self._clock()
        attempt = await _attempt(session, charge.reference)
        order = await _order_for(session, attempt)
        if attempt is None or order is None:
            fx.incidents.append(_not_found(charge.reference, charge.amount))
            return Outcome.ORDER_NOT_FOUND

        if attempt.status == "pending":
            attempt.status = "failed"
            attempt.processed_at = now
            attempt.reported_amount = charge.amount
            attempt.raw_response = charge.raw

        if (order.status, order.payment_status) != (OrderStatus.PENDING, PaymentStatus.PENDING):
            return Outcome.IGNORED

        match await compare_and_swap(
            session,
            order.id,
            expect_status=OrderStatus.PENDING,
            expect_payment=PaymentStatus.PENDING,
            status=OrderStatus.PAYMENT_FAILED,
            payment_status=PaymentStatus.FAILED,
            now=now,
        ):
            case Error(_):
                raise _LostRace
            case Ok(_):
                pass

        fx.events.append(_event(EventType.ORDER_FAILED, order, now))
        logger.info("order %s payment failed via %s", order.order_number, charge.reference)
        return Outcome.FAILED

    async def _refund(self, session: AsyncSession, fx: _Effects, refund: ProviderRefund) -> Outcome:
        now = self._clock()
        attempt = await _attempt(session, refund.transaction_reference)
        order = await _order_for(session, attempt)
        if attempt is None or order is None:
            fx.incidents.append(_not_found(refund.transaction_reference, refund.amount))
            return Outcome.ORDER_NOT_FOUND

        refund_reference = f"refund:{refund.refund_id}"
        if await _attempt(session, refund_reference, kind="refund") is not None:
            return Outcome.DUPLICATE
        if order.payment_status not in (PaymentStatus.PAID, PaymentStatus.PARTIALLY_REFUNDED):
            fx.incidents.append(_state_conflict(order, refund.transaction_reference, "refund for an unpaid order"))
            return Outcome.INVALID_STATE

        refunded = await session.scalar(
            select(func.coalesce(func.sum(PaymentTransactionTable.amount), 0)).where(
                PaymentTransactionTable.order_id == order.id,
                PaymentTransactionTable.kind == "refund",
                PaymentTransactionTable.status == "success",
            )
        )
        total = (refunded or 0) + refund.amount
        row = PaymentTransactionTable(
            order_id=order.id,
            provider=self._provider.name,
            provider_reference=refund_reference,
            kind="refund",
            amount=refund.amount,
            currency=refund.currency,
            status="success",
            provider_transaction_id=refund.refund_id,
            created_at=now,
            processed_at=now,
            raw_response=refund.raw,
        )

        if total > order.total_amount or refund.currency != order.currency:
            row.status = "flagged"
            session.add(row)
            fx.incidents.append(Incident(
                kind=IncidentKind.REFUND_OVERRUN,
                severity=Severity.HIGH,
                message="refunds exceed the amount paid",
                reference=refund.transaction_reference,
                order_id=order.id,
                detail={"paid": order.total_amount, "refunded": total},
            ))
            return Outcome.INVALID_STATE

        row.settled_at = now
        full = total == order.total_amount
        match await compare_and_swap(
            session,
            order.id,
            expect_status=order.status,
            expect_payment=order.payment_status,
            status=OrderStatus.REFUNDED if full else None,
            payment_status=PaymentStatus.REFUNDED if full else PaymentStatus.PARTIALLY_REFUNDED,
            now=now,
        ):
            case Error(_):
                raise _LostRace
            case Ok(_):
                pass

        session.add(row)
        logger.info("order %s refunded %d of %d", order.order_number, total, order.total_amount)
        return Outcome.REFUNDED if full else Outcome.PARTIALLY_REFUNDED

    async def _report(self, incident: Incident) -> None:
        """Persist an incident that has no surrounding transaction, then forward it."""
        async with self._session_factory() as session, session.begin():
            add_incident(session, incident)
        self._dispatcher.report(incident)


# ═══════════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════════

async def _attempt(session: AsyncSession, reference: str, kind: str = "charge") -> PaymentTransactionTable | None:
    return await session.scalar(
        select(PaymentTransactionTable).where(
            PaymentTransactionTable.provider_reference == reference,
            PaymentTransactionTable.kind == kind,
        )
    )


async def _order_for(session: AsyncSession, attempt: PaymentTransactionTable | None) -> Order | None:
    if attempt is None:
        return None
    row = await session.get(OrderTable, attempt.order_id, populate_existing=True)
    return to_order(row) if row is not None else None


def _event(kind: EventType, order: Order, now: datetime) -> DomainEvent:
    return DomainEvent(
        type=kind,
        order_id=order.id,
        order_number=order.order_number,
        amount=order.total_amount,
        currency=order.currency,
        customer_contact=order.customer.email or order.customer.phone,
        occurred_at=now,
    )


def _not_found(reference: str, amount: int | None) -> Incident:
    return Incident(
        kind=IncidentKind.ORDER_NOT_FOUND,
        severity=Severity.HIGH,
        message="no order matches the provider reference",
        reference=reference,
        detail={"amount": amount},
    )


def _state_conflict(order: Order, reference: str, message: str) -> Incident:
    return Incident(
        kind=IncidentKind.STATE_CONFLICT,
        severity=Severity.HIGH,
        message=message,
        reference=reference,
        order_id=order.id,
        detail={"status": order.status.value, "payment_status": order.payment_status.value},
    )


__all__ = ("ReconciliationService",)

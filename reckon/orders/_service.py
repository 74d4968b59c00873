"""
Order creation — rate gate, idempotency, authoritative pricing, atomic persist.

    create_order
      ├─ rate limit (create_order, and promotion_code when a code is sent)
      └─ run_idempotent(key)
           └─ saga: price → allocate number → INSERT order + items (one tx)
                    → record key (compensate: delete the order)
"""

from __future__ import annotations

import logging
import uuid

from kungfu import Error, Ok, Result
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from reckon import idempotency as I
from reckon._clock import Clock, utcnow
from reckon.db import OrderTable, SessionFactory
from reckon.events import Dispatcher, Incident, IncidentKind, Severity, add_incident
from reckon.orders._numbers import is_number_collision, is_taken, order_number
from reckon.orders._repo import new_order_row, to_order
from reckon.orders._state import compare_and_swap
from reckon.orders._types import (
    CreateOrderRequest,
    Order,
    OrderError,
    OrderErrorKind,
    OrderStatus,
    PaymentStatus,
)
from reckon.pricing import PriceBreakdown, PricingEngine, PricingError, PricingErrorKind
from reckon.ratelimit import (
    DenialReason,
    Denied,
    IdentifierType,
    Limits,
    Operation,
    RateLimiter,
    RateLimitKey,
)

logger = logging.getLogger(__name__)

_CANCELLABLE = {
    (OrderStatus.PENDING, PaymentStatus.PENDING),
    (OrderStatus.PAYMENT_FAILED, PaymentStatus.FAILED),
}


def caller_identity(request: CreateOrderRequest) -> tuple[str, IdentifierType] | None:
    customer = request.customer
    if customer.customer_id:
        return customer.customer_id, IdentifierType.CUSTOMER
    if request.client_ip:
        return request.client_ip, IdentifierType.IP
    if customer.email:
        return customer.email.strip().lower(), IdentifierType.EMAIL
    if customer.guest_session_id:
        return customer.guest_session_id, IdentifierType.SESSION
    return None


def _denied(denied: Denied) -> OrderError:
    if denied.reason is DenialReason.STORE_UNAVAILABLE:
        return OrderError(OrderErrorKind.TRANSIENT, denied.message, retry_after=denied.retry_after)
    return OrderError(OrderErrorKind.RATE_LIMITED, denied.message, retry_after=denied.retry_after)


class OrderService:
    def __init__(
        self,
        session_factory: SessionFactory,
        pricing: PricingEngine,
        limiter: RateLimiter,
        keys: I.Store,
        *,
        create_limits: Limits = Limits.per_hour(10),
        promotion_limits: Limits = Limits.per_hour(10),
        policy: I.Policy = I.Policy(),
        number_attempts: int = 5,
        dispatcher: Dispatcher | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._pricing = pricing
        self._limiter = limiter
        self._keys = keys
        self._create_limits = create_limits
        self._promotion_limits = promotion_limits
        self._policy = policy
        self._number_attempts = number_attempts
        self._dispatcher = dispatcher or Dispatcher()
        self._clock = clock

    # ═══════════════════════════════════════════════════════════════════════════
    # Create
    # ═══════════════════════════════════════════════════════════════════════════

    async def create_order(self, request: CreateOrderRequest) -> Result[Order, OrderError]:
        match _validate(request):
            case Error(e):
                return Error(e)
            case Ok((identifier, identifier_type)):
                pass

        gates = [(Operation.CREATE_ORDER, self._create_limits)]
        if request.promotion_code:
            gates.append((Operation.PROMOTION_CODE, self._promotion_limits))
        for operation, limits in gates:
            key = RateLimitKey(identifier, identifier_type, operation)
            match await self._limiter.check_and_increment(key, limits):
                case Error(denied):
                    return Error(_denied(denied))
                case Ok(_):
                    pass

        outcome = await I.run_idempotent(
            key=f"create_order:{request.idempotency_key}",
            input_hash=I.fingerprint(request.fingerprint_payload()),
            action=lambda: self._create(request),
            store=self._keys,
            policy=self._policy,
            discard=self._discard,
            clock=self._clock,
        )

        match outcome:
            case Ok(done):
                order = await self.get_order(done.value)
                if order is None:
                    return Error(OrderError(OrderErrorKind.TRANSIENT, "order is not readable yet, retry"))
                return Ok(order)
            case Error(e):
                return Error(_from_idempotency(e))

    async def _create(self, request: CreateOrderRequest) -> Result[str, OrderError]:
        match await self._pricing.compute_price(
            request.items,
            request.fulfillment,
            promotion_code=request.promotion_code,
            customer=request.customer,
        ):
            case Ok(price):
                pass
            case Error(pe):
                logger.info("order rejected at pricing: %s", pe.kind.name)
                if pe.kind is PricingErrorKind.PRICE_DRIFT:
                    await self._report_drift(request, pe)
                return Error(OrderError(
                    OrderErrorKind.PRICING,
                    pe.message,
                    pricing=pe,
                ))

        return await self._persist(request, price)

    async def _report_drift(self, request: CreateOrderRequest, error: PricingError) -> None:
        """A client total that disagrees with the catalog is tampering until shown otherwise."""
        incident = Incident(
            kind=IncidentKind.PRICE_INTEGRITY,
            severity=Severity.HIGH,
            message=error.message,
            detail={
                "product_id": error.product_id,
                "idempotency_key": request.idempotency_key,
                "client_ip": request.client_ip,
            },
            occurred_at=self._clock(),
        )
        async with self._session_factory() as session, session.begin():
            add_incident(session, incident)
        self._dispatcher.report(incident)

    async def _persist(self, request: CreateOrderRequest, price: PriceBreakdown) -> Result[str, OrderError]:
        order_id = f"ord_{uuid.uuid4().hex}"
        for attempt in range(1, self._number_attempts + 1):
            now = self._clock()
            number = order_number(now)
            try:
                async with self._session_factory() as session, session.begin():
                    if await is_taken(session, number):
                        logger.debug("order number %s taken (attempt %d)", number, attempt)
                        continue
                    session.add(new_order_row(order_id, number, request, price, now))
            except IntegrityError as exc:
                if is_number_collision(exc):
                    logger.debug("order number %s collided at commit (attempt %d)", number, attempt)
                    continue
                raise
            except SQLAlchemyError as exc:
                logger.error("order persist failed: %r", exc)
                return Error(OrderError(OrderErrorKind.TRANSIENT, "could not save the order, retry"))

            logger.info("created order %s total=%d %s", number, price.total_amount, price.currency)
            return Ok(order_id)

        return Error(OrderError(OrderErrorKind.TRANSIENT, "could not allocate an order number, retry"))

    async def _discard(self, order_id: str) -> None:
        async with self._session_factory() as session, session.begin():
            row = await session.get(OrderTable, order_id)
            if row is not None:
                await session.delete(row)
        logger.warning("discarded order %s after idempotency record failed", order_id)

    # ═══════════════════════════════════════════════════════════════════════════
    # Read / Cancel
    # ═══════════════════════════════════════════════════════════════════════════

    async def get_order(self, order_id: str) -> Order | None:
        async with self._session_factory() as session:
            row = await session.get(OrderTable, order_id)
            return to_order(row) if row is not None else None

    async def cancel_order(self, order_id: str) -> Result[Order, OrderError]:
        """Admin override: cancel an order that has not been paid."""
        for _ in range(2):
            async with self._session_factory() as session, session.begin():
                row = await session.get(OrderTable, order_id)
                if row is None:
                    return Error(OrderError(OrderErrorKind.NOT_FOUND, "order not found"))
                state = (OrderStatus(row.status), PaymentStatus(row.payment_status))
                if state[0] is OrderStatus.CANCELLED:
                    return Ok(to_order(row))
                if state not in _CANCELLABLE:
                    return Error(OrderError(OrderErrorKind.INVALID_STATE, f"cannot cancel a {state[0]} order"))

                match await compare_and_swap(
                    session,
                    order_id,
                    expect_status=state[0],
                    expect_payment=state[1],
                    status=OrderStatus.CANCELLED,
                    now=self._clock(),
                ):
                    case Ok(_):
                        logger.info("order %s cancelled", row.order_number)
                        break
                    case Error(_):
                        continue
        else:
            return Error(OrderError(OrderErrorKind.TRANSIENT, "order changed concurrently, retry"))

        order = await self.get_order(order_id)
        if order is None:
            return Error(OrderError(OrderErrorKind.NOT_FOUND, "order not found"))
        return Ok(order)


# ═══════════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════════

def _validate(request: CreateOrderRequest) -> Result[tuple[str, IdentifierType], OrderError]:
    if not request.idempotency_key or len(request.idempotency_key) > 200:
        return Error(OrderError(OrderErrorKind.INVALID_REQUEST, "idempotency_key is required (max 200 chars)"))
    if not (request.customer.customer_id or request.customer.guest_session_id or request.customer.email):
        return Error(OrderError(OrderErrorKind.INVALID_REQUEST, "customer id, guest session or email is required"))
    identity = caller_identity(request)
    if identity is None:
        return Error(OrderError(OrderErrorKind.INVALID_REQUEST, "caller cannot be identified"))
    return Ok(identity)


def _from_idempotency(error: I.IdempotencyError[OrderError]) -> OrderError:
    match error.kind:
        case I.IdempotencyErrorKind.EXECUTION if error.original_error is not None:
            return error.original_error
        case I.IdempotencyErrorKind.INPUT_MISMATCH:
            return OrderError(OrderErrorKind.IDEMPOTENCY_CONFLICT, error.message)
        case I.IdempotencyErrorKind.CONFLICT | I.IdempotencyErrorKind.TIMEOUT:
            return OrderError(OrderErrorKind.IN_PROGRESS, error.message)
        case _:
            return OrderError(OrderErrorKind.TRANSIENT, error.message)


__all__ = ("OrderService", "caller_identity")

"""
FastAPI application — orders, payment initialization and verification, provider webhooks.

    POST /orders                            create (201) or error body
    GET  /orders/{order_id}
    POST /orders/{order_id}/cancel          admin override
    POST /payments/{order_id}/initialize    open a payment attempt
    POST /payments/{reference}/verify       client-side confirmation
    POST /webhooks/paystack                 raw body + x-paystack-signature
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated

import fastapi
from fastapi import Depends, Request
from fastapi.responses import JSONResponse
from kungfu import Error, Ok

from reckon._clock import Clock, utcnow
from reckon.api._schemas import CreateOrderIn, ErrorOut, OrderOut, PaymentInitOut, VerificationOut
from reckon.config import Settings, configure_logging
from reckon.db import create_database
from reckon.events import Dispatcher
from reckon.orders import OrderError, OrderErrorKind
from reckon.payments import SIGNATURE_HEADER, PaymentErrorKind, PaymentProvider, VerificationStatus
from reckon.pricing import Geocoder, PricingErrorKind
from reckon.wiring import Services, build_services

logger = logging.getLogger(__name__)

_ORDER_STATUS = {
    OrderErrorKind.INVALID_REQUEST: 400,
    OrderErrorKind.RATE_LIMITED: 429,
    OrderErrorKind.PRICING: 422,
    OrderErrorKind.IDEMPOTENCY_CONFLICT: 422,
    OrderErrorKind.IN_PROGRESS: 409,
    OrderErrorKind.TRANSIENT: 503,
    OrderErrorKind.NOT_FOUND: 404,
    OrderErrorKind.INVALID_STATE: 409,
}

_PAYMENT_STATUS = {
    PaymentErrorKind.NOT_FOUND: 404,
    PaymentErrorKind.INVALID_STATE: 409,
    PaymentErrorKind.INTEGRITY: 409,
}

_VERIFICATION_STATUS = {
    VerificationStatus.NOT_FOUND: 404,
    VerificationStatus.RATE_LIMITED: 429,
}


def _services(request: Request) -> Services:
    return request.app.state.services


ServicesDep = Annotated[Services, Depends(_services)]


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def _order_error(error: OrderError) -> JSONResponse:
    status = _ORDER_STATUS[error.kind]
    if error.pricing is not None and error.pricing.kind is PricingErrorKind.UNAVAILABLE:
        status = 503
    headers = {"Retry-After": str(error.retry_after)} if error.retry_after else None
    return JSONResponse(ErrorOut.from_domain(error).model_dump(), status_code=status, headers=headers)


def create_app(
    settings: Settings | None = None,
    provider: PaymentProvider | None = None,
    geocoder: Geocoder | None = None,
    dispatcher: Dispatcher | None = None,
    clock: Clock = utcnow,
) -> fastapi.FastAPI:
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: fastapi.FastAPI) -> AsyncIterator[None]:
        configure_logging(settings.log_level)
        session_factory, engine = await create_database(settings.database_url)
        services = build_services(session_factory, settings, provider, geocoder, dispatcher, clock)
        app.state.services = services
        logger.info("reckon started on %s", engine.url.render_as_string(hide_password=True))
        try:
            yield
        finally:
            await services.dispatcher.drain()
            if (aclose := getattr(services.provider, "aclose", None)) is not None:
                await aclose()
            await engine.dispose()

    app = fastapi.FastAPI(title="reckon", lifespan=lifespan)

    # ═══════════════════════════════════════════════════════════════════════════
    # Orders
    # ═══════════════════════════════════════════════════════════════════════════

    @app.post("/orders", status_code=201, response_model=OrderOut)
    async def create_order(body: CreateOrderIn, request: Request, services: ServicesDep) -> OrderOut | JSONResponse:
        match await services.orders.create_order(body.to_domain(_client_ip(request))):
            case Ok(order):
                return OrderOut.from_domain(order)
            case Error(e):
                return _order_error(e)

    @app.get("/orders/{order_id}", response_model=OrderOut)
    async def get_order(order_id: str, services: ServicesDep) -> OrderOut | JSONResponse:
        order = await services.orders.get_order(order_id)
        if order is None:
            return _order_error(OrderError(OrderErrorKind.NOT_FOUND, "order not found"))
        return OrderOut.from_domain(order)

    @app.post("/orders/{order_id}/cancel", response_model=OrderOut)
    async def cancel_order(order_id: str, services: ServicesDep) -> OrderOut | JSONResponse:
        match await services.orders.cancel_order(order_id):
            case Ok(order):
                return OrderOut.from_domain(order)
            case Error(e):
                return _order_error(e)

    # ═══════════════════════════════════════════════════════════════════════════
    # Payments
    # ═══════════════════════════════════════════════════════════════════════════

    @app.post("/payments/{order_id}/initialize", response_model=PaymentInitOut)
    async def initialize_payment(order_id: str, services: ServicesDep) -> PaymentInitOut | JSONResponse:
        match await services.payments.initialize_payment(order_id):
            case Ok(init):
                return PaymentInitOut.from_domain(init)
            case Error(e):
                body = {"code": e.kind.name.lower(), "message": e.message, "retryable": False}
                return JSONResponse(body, status_code=_PAYMENT_STATUS[e.kind])

    @app.post("/payments/{reference}/verify", response_model=VerificationOut)
    async def verify_payment(reference: str, request: Request, services: ServicesDep) -> JSONResponse:
        result = await services.payments.verify_payment(reference, identifier=_client_ip(request))
        headers = {"Retry-After": str(result.retry_after)} if result.retry_after else None
        return JSONResponse(
            VerificationOut.from_domain(result).model_dump(),
            status_code=_VERIFICATION_STATUS.get(result.status, 200),
            headers=headers,
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # Webhooks
    # ═══════════════════════════════════════════════════════════════════════════

    @app.post("/webhooks/paystack")
    async def paystack_webhook(request: Request, services: ServicesDep) -> JSONResponse:
        raw = await request.body()
        ack = await services.payments.handle_webhook(raw, request.headers.get(SIGNATURE_HEADER), _client_ip(request))
        return JSONResponse(ack.body, status_code=ack.status_code)

    return app


__all__ = ("create_app",)

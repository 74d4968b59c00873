"""
Wiring — build every service from settings and one session factory.

    session_factory, engine = await create_database(settings.database_url)
    services = build_services(session_factory, settings)

    await services.orders.create_order(...)
    await services.payments.handle_webhook(...)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from reckon import idempotency as I
from reckon._clock import Clock, utcnow
from reckon.config import Settings
from reckon.db import SessionFactory
from reckon.events import Dispatcher
from reckon.ledger import PromotionLedger
from reckon.orders import OrderService
from reckon.payments import PaymentProvider, PaystackProvider, ReconciliationService, Retry, WebhookLedger
from reckon.pricing import FixedDistance, Geocoder, PricingEngine, SQLAlchemyCatalog
from reckon.ratelimit import Limits, RateLimiter, Thresholds


@dataclass(frozen=True, slots=True)
class Services:
    pricing: PricingEngine
    limiter: RateLimiter
    promotions: PromotionLedger
    orders: OrderService
    payments: ReconciliationService
    provider: PaymentProvider
    dispatcher: Dispatcher


def build_services(
    session_factory: SessionFactory,
    settings: Settings,
    provider: PaymentProvider | None = None,
    geocoder: Geocoder | None = None,
    dispatcher: Dispatcher | None = None,
    clock: Clock = utcnow,
) -> Services:
    provider = provider or PaystackProvider(
        settings.paystack_secret_key,
        base_url=settings.paystack_base_url,
        timeout=settings.provider_timeout_seconds,
    )
    dispatcher = dispatcher or Dispatcher()

    promotions = PromotionLedger(session_factory)
    pricing = PricingEngine(
        SQLAlchemyCatalog(session_factory),
        promotions,
        geocoder=geocoder or FixedDistance(),
        currency=settings.currency,
        clock=clock,
    )
    limiter = RateLimiter(
        session_factory,
        Thresholds(
            suspicious_after=settings.suspicious_after_violations,
            blocked_after=settings.blocked_after_violations,
        ),
        clock=clock,
    )

    orders = OrderService(
        session_factory,
        pricing,
        limiter,
        I.SQLAlchemyStore(session_factory, clock=clock),
        create_limits=Limits.per_hour(settings.create_order_limit_per_hour),
        promotion_limits=Limits.per_hour(settings.promotion_code_limit_per_hour),
        policy=I.Policy().with_ttl(delta=timedelta(seconds=settings.idempotency_window_seconds)),
        number_attempts=settings.order_number_attempts,
        dispatcher=dispatcher,
        clock=clock,
    )
    payments = ReconciliationService(
        session_factory,
        provider,
        pricing,
        promotions,
        WebhookLedger(session_factory, clock=clock),
        dispatcher,
        limiter,
        verify_limits=Limits.per_hour(settings.verify_payment_limit_per_hour),
        webhook_limits=Limits.per_hour(settings.webhook_limit_per_hour),
        retry=Retry(
            times=settings.verify_retry_attempts,
            backoff_initial=settings.verify_backoff_initial,
            backoff_factor=settings.verify_backoff_factor,
            backoff_max=settings.verify_backoff_max,
        ),
        clock=clock,
    )

    return Services(
        pricing=pricing,
        limiter=limiter,
        promotions=promotions,
        orders=orders,
        payments=payments,
        provider=provider,
        dispatcher=dispatcher,
    )


__all__ = ("Services", "build_services")

"""
Payments — provider adapter, webhook ledger and reconciliation.

Usage:
    provider = PaystackProvider(settings.paystack_secret_key)
    service = ReconciliationService(
        session_factory, provider, pricing,
        PromotionLedger(session_factory), WebhookLedger(session_factory),
        Dispatcher(notifications=sink, audit=sink),
    )

    match await service.initialize_payment(order.id):
        case Ok(init):
            init.reference, init.amount   # hand to the checkout widget
        case Error(e):
            e.kind

    ack = await service.handle_webhook(raw_body, request.headers.get(SIGNATURE_HEADER))
    ack.status_code, ack.body

    result = await service.verify_payment(reference, identifier=client_ip)
    result.status, result.retryable
"""

from reckon.payments._paystack import SIGNATURE_HEADER, PaystackEvent, PaystackProvider
from reckon.payments._retry import Retry, retrying
from reckon.payments._service import ReconciliationService
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
    ProviderError,
    ProviderErrorKind,
    ProviderRefund,
    VerificationResult,
    VerificationStatus,
)
from reckon.payments._webhooks import Claim, WebhookLedger

__all__ = (
    "SIGNATURE_HEADER",
    "PaystackEvent",
    "PaystackProvider",
    "Retry",
    "retrying",
    "ReconciliationService",
    "Ack",
    "ChargeStatus",
    "EventKind",
    "InboundEvent",
    "Outcome",
    "PaymentError",
    "PaymentErrorKind",
    "PaymentInit",
    "PaymentProvider",
    "ProviderCharge",
    "ProviderError",
    "ProviderErrorKind",
    "ProviderRefund",
    "VerificationResult",
    "VerificationStatus",
    "Claim",
    "WebhookLedger",
)

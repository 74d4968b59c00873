"""
Paystack adapter — webhook signature, tagged event payloads, verify-by-reference.

Webhook:  x-paystack-signature = hex(HMAC-SHA512(secret_key, raw_body))
Verify:   GET {base_url}/transaction/verify/{reference}

Amounts arrive in minor units (kobo). Only the fields reconciliation needs
are modelled; authorization and customer blocks are never parsed or logged,
only carried along in the raw body kept for audit.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from datetime import datetime
from typing import Annotated, Any, Literal
from urllib.parse import quote

import httpx
from combinators import lift as L
from kungfu import Error, Ok, Result
from pydantic import AliasChoices, BaseModel, Field, TypeAdapter, ValidationError

from reckon.payments._types import (
    ChargeStatus,
    EventKind,
    InboundEvent,
    ProviderCharge,
    ProviderError,
    ProviderErrorKind,
    ProviderRefund,
)

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-paystack-signature"


# ═══════════════════════════════════════════════════════════════════════════════
# Wire Models
# ═══════════════════════════════════════════════════════════════════════════════

class PaystackCharge(BaseModel):
    id: int
    reference: str
    amount: int
    currency: str = "NGN"
    status: str
    channel: str | None = None
    paid_at: datetime | None = Field(default=None, validation_alias=AliasChoices("paid_at", "paidAt"))


class PaystackRefund(BaseModel):
    id: int | str
    transaction_reference: str
    amount: int
    currency: str = "NGN"


class ChargeSuccess(BaseModel):
    event: Literal["charge.success"]
    data: PaystackCharge


class ChargeFailed(BaseModel):
    event: Literal["charge.failed"]
    data: PaystackCharge


class RefundProcessed(BaseModel):
    event: Literal["refund.processed"]
    data: PaystackRefund


class Envelope(BaseModel):
    event: str


class VerifyResponse(BaseModel):
    status: bool
    message: str = ""
    data: PaystackCharge | None = None


PaystackEvent = Annotated[ChargeSuccess | ChargeFailed | RefundProcessed, Field(discriminator="event")]
_events = TypeAdapter(PaystackEvent)
_KNOWN = {kind.value for kind in EventKind if kind is not EventKind.IGNORED}


def _status(raw: str) -> ChargeStatus:
    match raw:
        case "success":
            return ChargeStatus.SUCCESS
        case "failed" | "reversed":
            return ChargeStatus.FAILED
        case "abandoned":
            return ChargeStatus.ABANDONED
        case _:
            return ChargeStatus.PENDING


def _charge(data: PaystackCharge, raw: dict[str, Any] | None) -> ProviderCharge:
    return ProviderCharge(
        reference=data.reference,
        amount=data.amount,
        currency=data.currency.upper(),
        status=_status(data.status),
        provider_transaction_id=str(data.id),
        channel=data.channel,
        paid_at=data.paid_at.replace(tzinfo=None) if data.paid_at else None,
        raw=raw,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Provider
# ═══════════════════════════════════════════════════════════════════════════════

class PaystackProvider:
    name = "paystack"

    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.paystack.co",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._secret = secret_key.encode()
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    def sign(self, raw_payload: bytes) -> str:
        return hmac.new(self._secret, raw_payload, hashlib.sha512).hexdigest()

    def verify_signature(self, raw_payload: bytes, signature: str | None) -> bool:
        if not self._secret or not signature:
            return False
        return hmac.compare_digest(self.sign(raw_payload), signature.strip())

    def parse_event(self, raw_payload: bytes) -> Result[InboundEvent, ProviderError]:
        try:
            name = Envelope.model_validate_json(raw_payload).event
        except ValidationError as exc:
            return Error(ProviderError(ProviderErrorKind.MALFORMED, f"not a provider event: {exc.error_count()} error(s)"))

        if name not in _KNOWN:
            digest = hashlib.sha256(raw_payload).hexdigest()[:32]
            return Ok(InboundEvent(event_id=f"{name}:{digest}", kind=EventKind.IGNORED, name=name))

        try:
            event = _events.validate_json(raw_payload)
        except ValidationError as exc:
            return Error(ProviderError(ProviderErrorKind.MALFORMED, f"invalid {name} payload: {exc.error_count()} error(s)"))

        raw = json.loads(raw_payload)
        match event:
            case ChargeSuccess(data=data):
                return Ok(InboundEvent(f"{name}:{data.id}", EventKind.CHARGE_SUCCESS, name, charge=_charge(data, raw)))
            case ChargeFailed(data=data):
                return Ok(InboundEvent(f"{name}:{data.id}", EventKind.CHARGE_FAILED, name, charge=_charge(data, raw)))
            case RefundProcessed(data=data):
                refund = ProviderRefund(
                    refund_id=str(data.id),
                    transaction_reference=data.transaction_reference,
                    amount=data.amount,
                    currency=data.currency.upper(),
                    raw=raw,
                )
                return Ok(InboundEvent(f"{name}:{data.id}", EventKind.REFUND_PROCESSED, name, refund=refund))

    async def fetch_charge(self, reference: str) -> Result[ProviderCharge, ProviderError]:
        url = f"{self._base_url}/transaction/verify/{quote(reference, safe='')}"
        headers = {"Authorization": f"Bearer {self._secret.decode()}"}

        match await L.catching_async(
            lambda: self._client.get(url, headers=headers, timeout=self._timeout),
            on_error=_transport_error,
        ):
            case Ok(response):
                pass
            case Error(e):
                return Error(e)

        status = response.status_code
        if status == 429 or status >= 500:
            return Error(ProviderError(ProviderErrorKind.TRANSIENT, f"provider returned {status}", status))
        if status == 404:
            return Error(ProviderError(ProviderErrorKind.NOT_FOUND, "unknown reference", status))

        try:
            body = VerifyResponse.model_validate_json(response.content)
        except ValidationError:
            return Error(ProviderError(ProviderErrorKind.MALFORMED, "unreadable verify response", status))

        if status >= 400 or not body.status or body.data is None:
            kind = ProviderErrorKind.NOT_FOUND if "not found" in body.message.lower() else ProviderErrorKind.REJECTED
            return Error(ProviderError(kind, body.message or f"provider returned {status}", status))

        charge = _charge(body.data, response.json())
        logger.info("verified %s: status=%s amount=%d", reference, charge.status, charge.amount)
        return Ok(charge)


def _transport_error(exc: Exception) -> ProviderError:
    if isinstance(exc, httpx.TimeoutException | httpx.TransportError):
        logger.warning("provider unreachable: %s", type(exc).__name__)
        return ProviderError(ProviderErrorKind.TRANSIENT, "payment provider unreachable")
    logger.error("provider call failed: %r", exc)
    return ProviderError(ProviderErrorKind.REJECTED, "payment provider call failed")


__all__ = ("SIGNATURE_HEADER", "PaystackProvider", "PaystackEvent")

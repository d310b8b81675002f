"""Card payment gateway adapter (Stripe REST API over httpx).

The rest of the service only sees ``PaymentGateway``; tests swap in a fake
through the ``get_payment_gateway`` dependency.
"""
import hashlib
import hmac
import json
import logging
import re
import time
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional, Protocol

import httpx
from pydantic import BaseModel, Field

from traffic_fines.core.config import settings
from traffic_fines.core.exceptions import GatewayUnavailableError, SignatureInvalidError, ValidationFailedError

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"
EVENT_PAYMENT_SUCCEEDED = "payment_intent.succeeded"
EVENT_PAYMENT_FAILED = "payment_intent.payment_failed"

PAYMENT_INTENT_ID_PATTERN = r"^pi_[A-Za-z0-9_]+$"
_PAYMENT_INTENT_ID_RE = re.compile(PAYMENT_INTENT_ID_PATTERN)


class PaymentIntent(BaseModel):
    id: str
    client_secret: Optional[str] = None
    status: str
    amount: int
    currency: str
    metadata: Dict[str, str] = Field(default_factory=dict)
    charge_id: Optional[str] = None
    receipt_url: Optional[str] = None


class GatewayEvent(BaseModel):
    id: str
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)


class PaymentGateway(Protocol):
    async def create_payment_intent(self, amount: int, currency: str, metadata: Dict[str, str],
                                    description: Optional[str] = None) -> PaymentIntent:
        ...

    async def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntent:
        ...

    def construct_event(self, payload: bytes, signature_header: Optional[str]) -> GatewayEvent:
        ...


def to_minor_units(amount: Decimal) -> int:
    """Major currency units -> integer cents, half-up."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def verify_notification(payload: bytes, signature_header: Optional[str], secret: Optional[str],
                        tolerance: int, now: Optional[float] = None) -> None:
    """Check a ``t=<ts>,v1=<hex>`` signature header against the raw payload.

    Raises SignatureInvalidError on any failure, including a missing secret.
    """
    if not secret:
        raise SignatureInvalidError("Webhook secret is not configured")
    if not signature_header:
        raise SignatureInvalidError("Missing signature header")

    timestamp = None
    signatures = []
    for part in signature_header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)

    if timestamp is None or not signatures:
        raise SignatureInvalidError("Malformed signature header")
    try:
        ts = int(timestamp)
    except ValueError:
        raise SignatureInvalidError("Malformed signature timestamp")

    signed = f"{timestamp}.".encode() + payload
    expected = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    if not any(hmac.compare_digest(expected, sig) for sig in signatures):
        raise SignatureInvalidError("Signature mismatch")

    now = time.time() if now is None else now
    if tolerance and abs(now - ts) > tolerance:
        raise SignatureInvalidError("Signature timestamp outside tolerance")


def sign_payload(payload: bytes, secret: str, timestamp: Optional[int] = None) -> str:
    """Build a signature header the way the gateway does; used by tests and local tooling."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(secret.encode(), f"{timestamp}.".encode() + payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def parse_event(payload: bytes) -> GatewayEvent:
    try:
        body = json.loads(payload)
        return GatewayEvent(
            id=body["id"],
            type=body["type"],
            data=(body.get("data") or {}).get("object") or {},
        )
    except (ValueError, KeyError, TypeError, AttributeError):
        raise ValidationFailedError({"payload": "Malformed webhook payload"})


class StripeGateway:
    def __init__(self, secret_key: str, webhook_secret: Optional[str], api_base: str = "https://api.stripe.com/v1",
                 timeout: float = 10.0, tolerance: int = 300, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.tolerance = tolerance
        self.transport = transport

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                base_url=self.api_base,
                auth=(self.secret_key, ""),
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("Payment gateway timeout | path=%s | error=%s", path, e)
            raise GatewayUnavailableError("Payment gateway timed out")
        except httpx.HTTPError as e:
            logger.warning("Payment gateway unreachable | path=%s | error=%s", path, e)
            raise GatewayUnavailableError("Payment gateway unreachable")

        if response.status_code >= 500 or response.status_code in (401, 403, 429):
            logger.error("Payment gateway error | path=%s | status=%s", path, response.status_code)
            raise GatewayUnavailableError("Payment gateway unavailable", gateway_status=response.status_code)
        if response.status_code >= 400:
            try:
                message = response.json().get("error", {}).get("message")
            except (ValueError, AttributeError):
                message = None
            raise ValidationFailedError({"payment": message or "Payment gateway rejected the request"})
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            logger.error("Payment gateway returned a non-object body | path=%s", path)
            raise GatewayUnavailableError("Payment gateway returned an unexpected response")
        return body

    @staticmethod
    def _to_intent(body: Dict[str, Any]) -> PaymentIntent:
        if body.get("object", "payment_intent") != "payment_intent" or not body.get("id"):
            logger.error("Payment gateway returned an unexpected object | object=%s", body.get("object"))
            raise GatewayUnavailableError("Payment gateway returned an unexpected response")
        charge = body.get("latest_charge")
        charge_id = receipt_url = None
        if isinstance(charge, dict):
            charge_id = charge.get("id")
            receipt_url = charge.get("receipt_url")
        elif isinstance(charge, str):
            charge_id = charge
        return PaymentIntent(
            id=body["id"],
            client_secret=body.get("client_secret"),
            status=body.get("status", ""),
            amount=body.get("amount", 0),
            currency=body.get("currency", ""),
            metadata=body.get("metadata") or {},
            charge_id=charge_id,
            receipt_url=receipt_url,
        )

    async def create_payment_intent(self, amount: int, currency: str, metadata: Dict[str, str],
                                    description: Optional[str] = None) -> PaymentIntent:
        data = {
            "amount": str(amount),
            "currency": currency.lower(),
            "automatic_payment_methods[enabled]": "true",
        }
        for key, value in metadata.items():
            data[f"metadata[{key}]"] = str(value)
        if description:
            data["description"] = description

        body = await self._request("POST", "/payment_intents", data=data)
        logger.info("Payment intent created | intent_id=%s | amount=%s | currency=%s", body.get("id"), amount, currency)
        return self._to_intent(body)

    async def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntent:
        if not _PAYMENT_INTENT_ID_RE.fullmatch(payment_intent_id or ""):
            raise ValidationFailedError({"payment_intent_id": "Invalid payment intent id"})
        body = await self._request(
            "GET", f"/payment_intents/{payment_intent_id}", params={"expand[]": "latest_charge"}
        )
        return self._to_intent(body)

    def construct_event(self, payload: bytes, signature_header: Optional[str]) -> GatewayEvent:
        verify_notification(payload, signature_header, self.webhook_secret, self.tolerance)
        return parse_event(payload)


def get_payment_gateway() -> PaymentGateway:
    if not settings.STRIPE_SECRET_KEY:
        raise GatewayUnavailableError("Payment gateway is not configured")
    return StripeGateway(
        secret_key=settings.STRIPE_SECRET_KEY,
        webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
        api_base=settings.STRIPE_API_BASE,
        timeout=settings.PAYMENT_GATEWAY_TIMEOUT,
        tolerance=settings.WEBHOOK_TOLERANCE_SECONDS,
    )

"""
Payment gateway seam. Only the checkout / webhook / refund contract is used;
which provider answers it is chosen by PAYMENT_PROVIDER.
"""
import asyncio
import hashlib
import hmac
import json
import logging
import uuid
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

import stripe

from vaultdrop.core.config import settings
from vaultdrop.core.errors import ConfigurationError, InvalidInput

logger = logging.getLogger(__name__)

SUCCESS_EVENTS = {
    "payment.succeeded",
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
    "payment_intent.succeeded",
}
FAILURE_EVENTS = {
    "payment.failed",
    "checkout.session.async_payment_failed",
    "checkout.session.expired",
    "payment_intent.payment_failed",
}

@dataclass
class CheckoutSession:
    provider_ref: str
    checkout_url: str

@dataclass
class PaymentEvent:
    event_type: str
    transfer_id: Optional[uuid.UUID]
    payment_ref: Optional[str]
    payment_status: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        # Delayed payment methods complete the session before the funds settle
        if self.event_type == "checkout.session.completed":
            return self.payment_status in ("paid", "no_payment_required")
        return self.event_type in SUCCESS_EVENTS

    @property
    def awaiting_funds(self) -> bool:
        return self.event_type == "checkout.session.completed" and not self.succeeded

    @property
    def failed(self) -> bool:
        return self.event_type in FAILURE_EVENTS

def _parse_transfer_id(value) -> Optional[uuid.UUID]:
    if not value:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise InvalidInput("Webhook transfer_id is not a valid id")

class PaymentGateway:
    name = "abstract"

    async def create_checkout(self, transfer_id: uuid.UUID, amount: float, currency: str, title: str) -> CheckoutSession:
        raise NotImplementedError

    def parse_webhook(self, payload: bytes, signature: Optional[str]) -> PaymentEvent:
        raise NotImplementedError

    async def refund(self, provider_ref: str, amount: float, currency: str) -> None:
        raise NotImplementedError

class MockPaymentGateway(PaymentGateway):
    """
    Local checkout for development and tests. Webhook body:
    {"event_type": "payment.succeeded", "transfer_id": "...", "payment_ref": "..."}
    signed with HMAC-SHA256 (hex, X-Webhook-Signature) when PAYMENT_WEBHOOK_SECRET is set.
    """
    name = "mock"

    def __init__(self, base_url: str, webhook_secret: Optional[str] = None):
        self.base_url = base_url.rstrip("/")
        self.webhook_secret = webhook_secret
        self.refunds = []

    async def create_checkout(self, transfer_id, amount, currency, title) -> CheckoutSession:
        ref = f"mock_{uuid.uuid4().hex}"
        return CheckoutSession(provider_ref=ref, checkout_url=f"{self.base_url}/{transfer_id}?ref={ref}")

    def sign(self, payload: bytes) -> str:
        return hmac.new(self.webhook_secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()

    def parse_webhook(self, payload: bytes, signature: Optional[str]) -> PaymentEvent:
        if self.webhook_secret:
            if not signature or not hmac.compare_digest(self.sign(payload), signature):
                raise InvalidInput("Invalid webhook signature")
        try:
            body = json.loads(payload or b"{}")
        except ValueError:
            raise InvalidInput("Webhook body is not valid JSON")
        if not isinstance(body, dict) or not body.get("event_type"):
            raise InvalidInput("Webhook event_type is required")
        return PaymentEvent(
            event_type=body["event_type"],
            transfer_id=_parse_transfer_id(body.get("transfer_id")),
            payment_ref=body.get("payment_ref"),
        )

    async def refund(self, provider_ref, amount, currency) -> None:
        self.refunds.append((provider_ref, amount, currency))
        logger.info(f"[Payments] Mock refund recorded for {provider_ref}")

class StripePaymentGateway(PaymentGateway):
    """Stripe hosted checkout. The stripe client is blocking, so calls run in a thread."""
    name = "stripe"

    def __init__(self, secret_key: Optional[str], webhook_secret: Optional[str]):
        if not secret_key:
            raise ConfigurationError("PAYMENT_PROVIDER=stripe requires STRIPE_SECRET_KEY")
        stripe.api_key = secret_key
        self.webhook_secret = webhook_secret

    async def create_checkout(self, transfer_id, amount, currency, title) -> CheckoutSession:
        session = await asyncio.to_thread(
            stripe.checkout.Session.create,
            mode="payment",
            line_items=[{
                "price_data": {
                    "currency": currency.lower(),
                    "product_data": {"name": title},
                    "unit_amount": int(round(amount * 100)),
                },
                "quantity": 1,
            }],
            success_url=settings.CHECKOUT_SUCCESS_URL,
            cancel_url=settings.CHECKOUT_CANCEL_URL,
            client_reference_id=str(transfer_id),
            metadata={"transfer_id": str(transfer_id)},
        )
        logger.info(f"[Payments] Stripe checkout session {session.id} for transfer {transfer_id}")
        return CheckoutSession(provider_ref=session.id, checkout_url=session.url)

    def parse_webhook(self, payload: bytes, signature: Optional[str]) -> PaymentEvent:
        if not self.webhook_secret:
            raise ConfigurationError("Stripe webhooks require PAYMENT_WEBHOOK_SECRET")
        try:
            stripe.Webhook.construct_event(payload, signature or "", self.webhook_secret)
        except ValueError:
            raise InvalidInput("Webhook body is not valid JSON")
        except stripe.SignatureVerificationError:
            raise InvalidInput("Invalid webhook signature")

        # StripeObject is not a dict, read the verified body back as plain JSON
        body = json.loads(payload)
        obj = (body.get("data") or {}).get("object") or {}
        metadata = obj.get("metadata") or {}
        transfer_id = metadata.get("transfer_id") or obj.get("client_reference_id")
        payment_ref = obj.get("payment_intent") or obj.get("id")
        logger.info(f"[Payments] Stripe event {body.get('id')} ({body.get('type')})")
        return PaymentEvent(
            event_type=body.get("type") or "",
            transfer_id=_parse_transfer_id(transfer_id),
            payment_ref=payment_ref,
            payment_status=obj.get("payment_status"),
        )

    async def refund(self, provider_ref, amount, currency) -> None:
        await asyncio.to_thread(stripe.Refund.create, payment_intent=provider_ref)
        logger.info(f"[Payments] Stripe refund created for {provider_ref}")

def build_payment_gateway(provider: str) -> PaymentGateway:
    if provider == "mock":
        return MockPaymentGateway(settings.CHECKOUT_BASE_URL, settings.PAYMENT_WEBHOOK_SECRET)
    if provider == "stripe":
        return StripePaymentGateway(settings.STRIPE_SECRET_KEY, settings.PAYMENT_WEBHOOK_SECRET)
    raise ConfigurationError(f"Unknown PAYMENT_PROVIDER: {provider}")

@lru_cache()
def get_payment_gateway() -> PaymentGateway:
    gateway = build_payment_gateway(settings.PAYMENT_PROVIDER)
    logger.info(f"[Payments] Using {gateway.name} gateway")
    return gateway

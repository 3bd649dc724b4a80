import hashlib
import hmac
import json
import time
import uuid
from types import SimpleNamespace

import pytest
import stripe

from vaultdrop.core.errors import ConfigurationError, InvalidInput, InvalidState
from vaultdrop.modules.keys import service as key_service
from vaultdrop.modules.payments.gateway import MockPaymentGateway, PaymentEvent, StripePaymentGateway
from vaultdrop.modules.payments import service as payment_service
from vaultdrop.modules.payments.models import PaymentStatus
from vaultdrop.modules.transfers import service as transfer_service
from vaultdrop.modules.transfers.models import TransferStatus

SECRET = "whsec_test"

def _body(**fields) -> bytes:
    return json.dumps(fields).encode("utf-8")

def test_signed_webhook_is_parsed():
    gateway = MockPaymentGateway("https://checkout.example.com", SECRET)
    transfer_id = uuid.uuid4()
    payload = _body(event_type="payment.succeeded", transfer_id=str(transfer_id), payment_ref="pi_1")

    event = gateway.parse_webhook(payload, gateway.sign(payload))

    assert event.succeeded
    assert not event.failed
    assert event.transfer_id == transfer_id
    assert event.payment_ref == "pi_1"

@pytest.mark.parametrize("signature", [None, "", "deadbeef"])
def test_bad_signature_is_rejected(signature):
    gateway = MockPaymentGateway("https://checkout.example.com", SECRET)
    with pytest.raises(InvalidInput):
        gateway.parse_webhook(_body(event_type="payment.succeeded"), signature)

@pytest.mark.parametrize("payload", [b"not json", b"[]", _body(transfer_id="x"), _body(event_type="payment.succeeded", transfer_id="nope")])
def test_malformed_webhook_bodies(payload):
    gateway = MockPaymentGateway("https://checkout.example.com")
    with pytest.raises(InvalidInput):
        gateway.parse_webhook(payload, None)

@pytest.mark.asyncio
async def test_unrelated_events_are_ignored(db):
    result = await payment_service.handle_payment_event(
        db, PaymentEvent(event_type="charge.updated", transfer_id=None, payment_ref=None)
    )
    assert result == {"status": "ignored", "event_type": "charge.updated"}

@pytest.mark.asyncio
async def test_success_without_transfer_is_invalid(db):
    with pytest.raises(InvalidInput):
        await payment_service.handle_payment_event(
            db, PaymentEvent(event_type="payment.succeeded", transfer_id=None, payment_ref="pi_1")
        )

@pytest.mark.asyncio
async def test_webhook_endpoint_marks_transfer_paid(client, db, gateway, seller, buyer, ready_product):
    product = await ready_product(seller)
    transfer = await transfer_service.create_offer(db, seller.id, product.id, buyer.id)
    await transfer_service.create_invoice(db, gateway, buyer.id, transfer_id=transfer.id)
    gateway.webhook_secret = SECRET

    payload = _body(event_type="payment.succeeded", transfer_id=str(transfer.id), payment_ref="pi_hook")
    forged = await client.post(
        "/api/v1/payments/webhook",
        content=payload,
        headers={"X-Webhook-Signature": "0" * 64, "Content-Type": "application/json"},
    )
    assert forged.status_code == 400
    assert forged.json()["error"] == "invalid_input"

    headers = {"X-Webhook-Signature": gateway.sign(payload), "Content-Type": "application/json"}
    first = await client.post("/api/v1/payments/webhook", content=payload, headers=headers)
    assert first.status_code == 200
    assert first.json()["status"] == "paid"

    replay = await client.post("/api/v1/payments/webhook", content=payload, headers=headers)
    assert replay.status_code == 200
    assert replay.json()["duplicate"] is True

    intent = await payment_service.get_intent_for_transfer(db, transfer.id)
    await db.refresh(intent)
    assert intent.status == PaymentStatus.PAID
    assert intent.provider_ref == "pi_hook"

@pytest.mark.asyncio
async def test_success_replay_after_refund_is_a_noop(db, gateway, seller, buyer, paid_transfer):
    _, transfer = await paid_transfer(seller, buyer)
    await key_service.grant(db, buyer.id, transfer.id)
    await transfer_service.revoke(db, gateway, seller.id, transfer.id, reason="Chargeback")

    replay = await payment_service.handle_payment_event(
        db, PaymentEvent(event_type="payment.succeeded", transfer_id=transfer.id, payment_ref="pi_late")
    )
    assert replay == {"transfer_id": transfer.id, "status": "refunded", "duplicate": True}

    await db.refresh(transfer)
    assert transfer.status == TransferStatus.REFUNDED
    intent = await payment_service.get_intent_for_transfer(db, transfer.id)
    assert intent.status == PaymentStatus.REFUNDED
    assert intent.provider_ref == "pi_test_123"

@pytest.mark.asyncio
async def test_success_replay_after_dispute_is_a_noop(db, seller, buyer, paid_transfer):
    _, transfer = await paid_transfer(seller, buyer)
    await transfer_service.open_dispute(db, buyer.id, transfer.id, "File is corrupted")

    replay = await payment_service.handle_payment_event(
        db, PaymentEvent(event_type="checkout.session.async_payment_succeeded", transfer_id=transfer.id, payment_ref="pi_test_123")
    )
    assert replay["duplicate"] is True
    assert replay["status"] == "disputed"

def test_completed_checkout_counts_only_when_paid():
    transfer_id = uuid.uuid4()
    paid = PaymentEvent("checkout.session.completed", transfer_id, "pi_1", payment_status="paid")
    unpaid = PaymentEvent("checkout.session.completed", transfer_id, "pi_1", payment_status="unpaid")
    settled = PaymentEvent("checkout.session.async_payment_succeeded", transfer_id, "pi_1")

    assert paid.succeeded and not paid.awaiting_funds
    assert not unpaid.succeeded and unpaid.awaiting_funds and not unpaid.failed
    assert settled.succeeded

# Stripe

STRIPE_SECRET = "whsec_stripe_test"

def _stripe_gateway(monkeypatch) -> StripePaymentGateway:
    monkeypatch.setattr(stripe, "api_key", stripe.api_key)
    return StripePaymentGateway("sk_test_vaultdrop", STRIPE_SECRET)

def _stripe_header(payload: bytes, secret: str = STRIPE_SECRET) -> str:
    timestamp = int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    return f"t={timestamp},v1={hmac.new(secret.encode('utf-8'), signed, hashlib.sha256).hexdigest()}"

def _session_event(event_type: str, transfer_id, payment_status: str = "paid") -> bytes:
    return json.dumps({
        "id": "evt_test_1",
        "object": "event",
        "type": event_type,
        "data": {
            "object": {
                "id": "cs_test_1",
                "object": "checkout.session",
                "payment_status": payment_status,
                "payment_intent": "pi_stripe_1",
                "client_reference_id": str(transfer_id),
                "metadata": {"transfer_id": str(transfer_id)},
            }
        },
    }).encode("utf-8")

def test_stripe_paid_session_is_parsed(monkeypatch):
    gateway = _stripe_gateway(monkeypatch)
    transfer_id = uuid.uuid4()
    payload = _session_event("checkout.session.completed", transfer_id)

    event = gateway.parse_webhook(payload, _stripe_header(payload))

    assert event.event_type == "checkout.session.completed"
    assert event.transfer_id == transfer_id
    assert event.payment_ref == "pi_stripe_1"
    assert event.payment_status == "paid"
    assert event.succeeded

def test_stripe_unpaid_and_failed_sessions(monkeypatch):
    gateway = _stripe_gateway(monkeypatch)
    transfer_id = uuid.uuid4()

    unpaid = _session_event("checkout.session.completed", transfer_id, payment_status="unpaid")
    event = gateway.parse_webhook(unpaid, _stripe_header(unpaid))
    assert not event.succeeded
    assert event.awaiting_funds

    failed = _session_event("checkout.session.async_payment_failed", transfer_id, payment_status="unpaid")
    event = gateway.parse_webhook(failed, _stripe_header(failed))
    assert event.failed
    assert not event.succeeded

def test_stripe_transfer_id_falls_back_to_client_reference(monkeypatch):
    gateway = _stripe_gateway(monkeypatch)
    transfer_id = uuid.uuid4()
    body = json.loads(_session_event("checkout.session.completed", transfer_id))
    del body["data"]["object"]["metadata"]
    payload = json.dumps(body).encode("utf-8")

    assert gateway.parse_webhook(payload, _stripe_header(payload)).transfer_id == transfer_id

@pytest.mark.parametrize("header", [None, "", "t=1,v1=deadbeef"])
def test_stripe_bad_signature_is_rejected(monkeypatch, header):
    gateway = _stripe_gateway(monkeypatch)
    with pytest.raises(InvalidInput):
        gateway.parse_webhook(_session_event("checkout.session.completed", uuid.uuid4()), header)

def test_stripe_signature_with_other_secret_is_rejected(monkeypatch):
    gateway = _stripe_gateway(monkeypatch)
    payload = _session_event("checkout.session.completed", uuid.uuid4())
    with pytest.raises(InvalidInput):
        gateway.parse_webhook(payload, _stripe_header(payload, secret="whsec_other"))

def test_stripe_requires_keys(monkeypatch):
    monkeypatch.setattr(stripe, "api_key", stripe.api_key)
    with pytest.raises(ConfigurationError):
        StripePaymentGateway(None, STRIPE_SECRET)
    gateway = StripePaymentGateway("sk_test_vaultdrop", None)
    with pytest.raises(ConfigurationError):
        gateway.parse_webhook(b"{}", "t=1,v1=00")

@pytest.mark.asyncio
async def test_stripe_checkout_and_refund_calls(monkeypatch):
    gateway = _stripe_gateway(monkeypatch)
    calls = {}

    def fake_session_create(**kwargs):
        calls["session"] = kwargs
        return SimpleNamespace(id="cs_test_1", url="https://checkout.stripe.com/c/cs_test_1")

    def fake_refund_create(**kwargs):
        calls["refund"] = kwargs
        return SimpleNamespace(id="re_test_1")

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_session_create)
    monkeypatch.setattr(stripe.Refund, "create", fake_refund_create)

    transfer_id = uuid.uuid4()
    checkout = await gateway.create_checkout(transfer_id, 10.0, "USD", "Field Guide")
    assert checkout.provider_ref == "cs_test_1"
    assert checkout.checkout_url == "https://checkout.stripe.com/c/cs_test_1"

    sent = calls["session"]
    assert sent["mode"] == "payment"
    assert sent["client_reference_id"] == str(transfer_id)
    assert sent["metadata"] == {"transfer_id": str(transfer_id)}
    price = sent["line_items"][0]["price_data"]
    assert price["unit_amount"] == 1000
    assert price["currency"] == "usd"
    assert price["product_data"] == {"name": "Field Guide"}

    await gateway.refund("pi_stripe_1", 10.0, "USD")
    assert calls["refund"] == {"payment_intent": "pi_stripe_1"}

@pytest.mark.asyncio
async def test_stripe_events_drive_transfer_status(monkeypatch, db, gateway, seller, buyer, ready_product):
    stripe_gateway = _stripe_gateway(monkeypatch)
    product = await ready_product(seller)
    transfer = await transfer_service.create_offer(db, seller.id, product.id, buyer.id)
    await transfer_service.create_invoice(db, gateway, buyer.id, transfer_id=transfer.id)

    unpaid = _session_event("checkout.session.completed", transfer.id, payment_status="unpaid")
    result = await payment_service.handle_payment_event(db, stripe_gateway.parse_webhook(unpaid, _stripe_header(unpaid)))
    assert result["status"] == "pending"
    await db.refresh(transfer)
    assert transfer.status == TransferStatus.INVOICED
    intent = await payment_service.get_intent_for_transfer(db, transfer.id)
    assert intent.status == PaymentStatus.PENDING

    # early access stays closed while funds are pending
    with pytest.raises(InvalidState):
        await key_service.grant(db, buyer.id, transfer.id)

    settled = _session_event("checkout.session.async_payment_succeeded", transfer.id)
    result = await payment_service.handle_payment_event(db, stripe_gateway.parse_webhook(settled, _stripe_header(settled)))
    assert result["status"] == "paid"
    await db.refresh(intent)
    assert intent.status == PaymentStatus.PAID
    assert intent.provider_ref == "pi_stripe_1"

@pytest.mark.asyncio
async def test_stripe_failed_async_payment_keeps_transfer_invoiced(monkeypatch, db, gateway, seller, buyer, ready_product):
    stripe_gateway = _stripe_gateway(monkeypatch)
    product = await ready_product(seller)
    transfer = await transfer_service.create_offer(db, seller.id, product.id, buyer.id)
    await transfer_service.create_invoice(db, gateway, buyer.id, transfer_id=transfer.id)

    failed = _session_event("checkout.session.async_payment_failed", transfer.id, payment_status="unpaid")
    result = await payment_service.handle_payment_event(db, stripe_gateway.parse_webhook(failed, _stripe_header(failed)))

    assert result["payment_status"] == "failed"
    assert result["status"] == "invoiced"
    intent = await payment_service.get_intent_for_transfer(db, transfer.id)
    await db.refresh(intent)
    assert intent.status == PaymentStatus.FAILED

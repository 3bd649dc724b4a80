import logging
import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from vaultdrop.core.config import settings
from vaultdrop.core.errors import (
    Conflict,
    Expired,
    InvalidInput,
    InvalidState,
    MissingRequiredInputs,
    NotFoundOrDenied,
)
from vaultdrop.core.retry import transient_retry
from vaultdrop.core.time import as_naive_utc, utcnow
from vaultdrop.modules.audit.service import create_audit_log
from vaultdrop.modules.auth.models import User
from vaultdrop.modules.keys.models import ProductKey
from vaultdrop.modules.payments import service as payment_service
from vaultdrop.modules.payments.gateway import PaymentGateway
from vaultdrop.modules.payments.models import PaymentStatus
from vaultdrop.modules.products import service as product_service
from vaultdrop.modules.products.models import Product
from vaultdrop.modules.transfers import state_machine
from vaultdrop.modules.transfers.models import DeliveryReceipt, Transfer, TransferStatus
from vaultdrop.modules.transfers.state_machine import TransferEvent
from vaultdrop.modules.worker.runner import notify

logger = logging.getLogger(__name__)

CLIENT_HASH_RE = re.compile(r"^[0-9a-fA-F]{64}$")
MIN_SIGNATURE_LENGTH = 64

def _status(transfer: Transfer) -> str:
    return TransferStatus(transfer.status).value

def counterparty_of(transfer: Transfer, user_id: UUID) -> UUID:
    return transfer.to_recipient_id if user_id == transfer.from_owner_id else transfer.from_owner_id

async def get_transfer_for_party(db: AsyncSession, transfer_id: UUID, user_id: UUID) -> Transfer:
    transfer = await db.get(Transfer, transfer_id)
    if not transfer or user_id not in (transfer.from_owner_id, transfer.to_recipient_id):
        raise NotFoundOrDenied()
    return transfer

async def find_active_transfer(db: AsyncSession, product_id: UUID, recipient_id: UUID) -> Optional[Transfer]:
    result = await db.execute(
        select(Transfer)
        .where(
            Transfer.product_id == product_id,
            Transfer.to_recipient_id == recipient_id,
            Transfer.status.in_(list(state_machine.ACTIVE_STATUSES)),
        )
        .order_by(Transfer.created_at.desc())
    )
    return result.scalars().first()

async def _new_offer(
    db: AsyncSession,
    product: Product,
    to_recipient_id: UUID,
    price: Optional[float] = None,
    currency: Optional[str] = None,
    policy: Optional[Dict[str, Any]] = None,
) -> Transfer:
    if to_recipient_id == product.owner_id:
        raise InvalidInput("Cannot offer a product to its owner")
    recipient = await db.get(User, to_recipient_id)
    if not recipient or not recipient.is_active:
        raise NotFoundOrDenied("Recipient not found")
    if not product.is_ready:
        raise InvalidState("Product upload has not been completed")
    if price is not None and price < 0:
        raise InvalidInput("Price must not be negative")

    transfer = Transfer(
        id=uuid.uuid4(),
        product_id=product.id,
        from_owner_id=product.owner_id,
        to_recipient_id=to_recipient_id,
        price=product.price if price is None else price,
        currency=(currency or product.currency or "USD").upper(),
        status=TransferStatus.OFFERED,
        policy=dict(policy or {}),
        buyer_inputs={},
    )
    db.add(transfer)
    return transfer

@transient_retry
async def create_offer(
    db: AsyncSession,
    owner_id: UUID,
    product_id: UUID,
    to_recipient_id: UUID,
    price: Optional[float] = None,
    currency: Optional[str] = None,
    policy: Optional[Dict[str, Any]] = None,
    message: Optional[str] = None,
) -> Transfer:
    product = await product_service.get_owned_product(db, product_id, owner_id)

    existing = await find_active_transfer(db, product_id, to_recipient_id)
    if existing:
        raise Conflict(
            "Transfer already exists",
            transfer_id=str(existing.id),
            status=_status(existing),
        )

    transfer = await _new_offer(db, product, to_recipient_id, price, currency, policy)
    await db.commit()

    logger.info(f"[Transfers] Offer {transfer.id}: product {product_id} -> recipient {to_recipient_id} ({transfer.price} {transfer.currency})")
    await notify(
        to_recipient_id,
        "New product offer",
        message or f"You have been offered '{product.title}' for {transfer.price:.2f} {transfer.currency}.",
        "transfer", transfer.id,
    )
    return transfer

@transient_retry
async def create_invoice(
    db: AsyncSession,
    gateway: PaymentGateway,
    caller_id: UUID,
    transfer_id: Optional[UUID] = None,
    product_id: Optional[UUID] = None,
    to_recipient_id: Optional[UUID] = None,
    buyer_inputs: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Invoice a transfer, creating the offer on the fly when addressed by
    (product_id, to_recipient_id). Paid transfers short-circuit without a new intent.
    """
    if transfer_id:
        transfer = await get_transfer_for_party(db, transfer_id, caller_id)
        product = await product_service.get_product(db, transfer.product_id)
        preexisting = True
    elif product_id and to_recipient_id:
        product = await product_service.get_product(db, product_id)
        if caller_id not in (product.owner_id, to_recipient_id):
            raise NotFoundOrDenied()
        transfer = await find_active_transfer(db, product_id, to_recipient_id)
        preexisting = transfer is not None
        if transfer is None:
            transfer = await _new_offer(db, product, to_recipient_id)
    else:
        raise InvalidInput("Either transfer_id or (product_id, to_recipient_id) is required")

    if buyer_inputs:
        transfer.buyer_inputs = {**(transfer.buyer_inputs or {}), **buyer_inputs}

    if transfer.status in state_machine.ENTITLED_STATUSES:
        await db.commit()
        intent = await payment_service.get_intent_for_transfer(db, transfer.id)
        logger.info(f"[Transfers] Invoice for {transfer.id} short-circuited, already {_status(transfer)}")
        return {
            "transfer_id": transfer.id,
            "checkout_url": intent.checkout_url if intent else None,
            "amount": transfer.price,
            "currency": transfer.currency,
            "status": _status(transfer),
        }

    state_machine.require(transfer, TransferEvent.INVOICE)

    missing = product_service.missing_inputs(product, transfer.buyer_inputs, "pre_payment")
    if missing:
        extra = {"missing_inputs": missing}
        if preexisting:
            extra["transfer_id"] = str(transfer.id)
        raise MissingRequiredInputs("Pre-payment required inputs must be provided before creating invoice", **extra)

    checkout_url = None
    payment_intent_id = None
    if transfer.price > 0:
        checkout = await gateway.create_checkout(transfer.id, transfer.price, transfer.currency, product.title)
        intent = await payment_service.upsert_pending_intent(db, transfer, gateway.name, checkout)
        checkout_url = checkout.checkout_url
        await db.flush()
        payment_intent_id = intent.id

    state_machine.transition(transfer, TransferEvent.INVOICE)
    await db.commit()

    await notify(
        counterparty_of(transfer, caller_id),
        "Invoice created",
        f"An invoice of {transfer.price:.2f} {transfer.currency} was created for '{product.title}'.",
        "transfer", transfer.id,
    )
    return {
        "transfer_id": transfer.id,
        "checkout_url": checkout_url,
        "amount": transfer.price,
        "currency": transfer.currency,
        "status": _status(transfer),
        "payment_intent_id": payment_intent_id,
    }

def _requirements_report(product: Product, transfer: Transfer) -> Dict[str, Any]:
    return {
        "transfer_id": transfer.id,
        "status": _status(transfer),
        "required_inputs": list(product.required_inputs or []),
        "buyer_inputs": dict(transfer.buyer_inputs or {}),
        "missing_pre_payment": product_service.missing_inputs(product, transfer.buyer_inputs, "pre_payment"),
        "missing_post_payment_pre_grant": product_service.missing_inputs(
            product, transfer.buyer_inputs, "post_payment_pre_grant"
        ),
    }

@transient_retry
async def submit_requirements(
    db: AsyncSession,
    caller_id: UUID,
    transfer_id: UUID,
    inputs: Dict[str, Any],
) -> Dict[str, Any]:
    transfer = await get_transfer_for_party(db, transfer_id, caller_id)
    if transfer.to_recipient_id != caller_id:
        raise NotFoundOrDenied()
    if transfer.status in state_machine.TERMINAL_STATUSES:
        raise InvalidState(f"Transfer is {_status(transfer)}", status=_status(transfer))
    if not isinstance(inputs, dict) or not inputs:
        raise InvalidInput("inputs must be a non-empty object")

    # Additive merge, last write wins per field
    transfer.buyer_inputs = {**(transfer.buyer_inputs or {}), **inputs}
    await db.commit()

    product = await product_service.get_product(db, transfer.product_id)
    logger.info(f"[Transfers] Buyer inputs updated on {transfer.id}: {sorted(inputs)}")
    await notify(
        transfer.from_owner_id,
        "Buyer inputs submitted",
        f"The buyer submitted {len(inputs)} input(s) for '{product.title}'.",
        "transfer", transfer.id,
    )
    return _requirements_report(product, transfer)

async def get_requirements_status(db: AsyncSession, caller_id: UUID, transfer_id: UUID) -> Dict[str, Any]:
    transfer = await get_transfer_for_party(db, transfer_id, caller_id)
    product = await product_service.get_product(db, transfer.product_id)
    return _requirements_report(product, transfer)

@transient_retry
async def acknowledge(
    db: AsyncSession,
    caller_id: UUID,
    transfer_id: UUID,
    client_hash: str,
    signature: str,
    meta: Optional[Dict[str, Any]] = None,
) -> DeliveryReceipt:
    transfer = await get_transfer_for_party(db, transfer_id, caller_id)
    if transfer.to_recipient_id != caller_id:
        raise NotFoundOrDenied()

    result = await db.execute(select(DeliveryReceipt).where(DeliveryReceipt.transfer_id == transfer.id))
    existing = result.scalars().first()
    if existing:
        raise Conflict("Delivery receipt already exists", receipt_id=str(existing.id), status=_status(transfer))

    state_machine.require(transfer, TransferEvent.ACKNOWLEDGE)

    if not client_hash or not CLIENT_HASH_RE.match(client_hash):
        raise InvalidInput("client_hash must be a 64 character hex sha256 digest")
    # Signature is stored as presented; it is not cryptographically verified
    if not signature or len(signature) < MIN_SIGNATURE_LENGTH:
        raise InvalidInput(f"signature must be at least {MIN_SIGNATURE_LENGTH} characters")

    receipt = DeliveryReceipt(
        transfer_id=transfer.id,
        client_hash=client_hash.lower(),
        signature=signature,
        meta=dict(meta or {}),
        delivered_at=utcnow(),
    )
    db.add(receipt)
    state_machine.transition(transfer, TransferEvent.ACKNOWLEDGE)
    try:
        await db.commit()
    except IntegrityError:
        # Lost the race against a concurrent receipt for the same transfer
        await db.rollback()
        raise Conflict("Delivery receipt already exists", status=TransferStatus.ACKNOWLEDGED.value)

    await notify(
        transfer.from_owner_id,
        "Delivery acknowledged",
        "The buyer confirmed receipt of your product.",
        "transfer", transfer.id,
    )
    return receipt

def dispute_deadline(transfer: Transfer) -> datetime:
    base = transfer.updated_at or transfer.created_at or utcnow()
    return base + timedelta(days=settings.DISPUTE_WINDOW_DAYS)

@transient_retry
async def open_dispute(
    db: AsyncSession,
    caller_id: UUID,
    transfer_id: UUID,
    reason: str,
    description: Optional[str] = None,
    evidence: Optional[List[Any]] = None,
    requested_action: Optional[str] = None,
) -> Dict[str, Any]:
    transfer = await get_transfer_for_party(db, transfer_id, caller_id)
    if not reason or not reason.strip():
        raise InvalidInput("reason is required")

    if transfer.status == TransferStatus.DISPUTED:
        raise Conflict("Transfer is already in dispute", status=_status(transfer))
    state_machine.require(transfer, TransferEvent.DISPUTE)

    now = utcnow()
    deadline = dispute_deadline(transfer)
    if now > deadline:
        raise Expired(
            f"Dispute deadline has passed ({settings.DISPUTE_WINDOW_DAYS} days from last update)",
            deadline=deadline.isoformat(),
        )

    role = "owner" if caller_id == transfer.from_owner_id else "recipient"
    dispute = {
        "id": str(uuid.uuid4()),
        "reason": reason.strip(),
        "description": description,
        "evidence": list(evidence or []),
        "requested_action": requested_action or "refund",
        "disputed_by": str(caller_id),
        "disputed_by_role": role,
        "disputed_at": now.isoformat(),
        "status": "open",
    }
    transfer.policy = {**(transfer.policy or {}), "dispute": dispute}
    state_machine.transition(transfer, TransferEvent.DISPUTE)
    create_audit_log(
        db,
        action="transfer.dispute",
        user_id=caller_id,
        target_type="transfer",
        target_id=transfer.id,
        metadata={"dispute_id": dispute["id"], "reason": dispute["reason"], "role": role},
    )
    await db.commit()

    await notify(
        counterparty_of(transfer, caller_id),
        "Dispute opened",
        f"A dispute was opened on your transfer: {dispute['reason']}",
        "transfer", transfer.id,
    )
    return {
        "dispute_id": dispute["id"],
        "transfer_id": transfer.id,
        "status": _status(transfer),
        "reason": dispute["reason"],
        "requested_action": dispute["requested_action"],
        "disputed_by_role": role,
        "disputed_at": now,
    }

def _parse_deadline(value: Any) -> Optional[datetime]:
    if isinstance(value, (int, float)):
        # epoch seconds, or milliseconds for large values
        seconds = value / 1000 if value > 1e11 else value
        return as_naive_utc(datetime.fromtimestamp(seconds, tz=timezone.utc))
    if isinstance(value, str):
        return as_naive_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    return None

@transient_retry
async def revoke(
    db: AsyncSession,
    gateway: PaymentGateway,
    caller_id: UUID,
    transfer_id: UUID,
    reason: Optional[str] = None,
    policy: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Irreversible: expire the recipient's key, mark the transfer refunded and
    audit it in one commit. The gateway refund afterwards is best effort.
    """
    transfer = await get_transfer_for_party(db, transfer_id, caller_id)
    if transfer.from_owner_id != caller_id:
        raise NotFoundOrDenied()
    state_machine.require(transfer, TransferEvent.REVOKE)

    current_policy = dict(transfer.policy or {})
    if current_policy.get("noRevocation") is True:
        raise InvalidState("Transfer policy does not allow revocation")
    if current_policy.get("revocationDeadline"):
        try:
            deadline = _parse_deadline(current_policy["revocationDeadline"])
        except (ValueError, OverflowError, OSError):
            logger.warning(f"[Transfers] Invalid revocation deadline on {transfer.id}: {current_policy['revocationDeadline']!r}")
            deadline = None
        if deadline and utcnow() > deadline:
            raise Expired("Revocation deadline has passed", deadline=deadline.isoformat())

    now = utcnow()
    reason = reason or "Manual revocation"

    await db.execute(
        update(ProductKey)
        .where(
            ProductKey.product_id == transfer.product_id,
            ProductKey.recipient_id == transfer.to_recipient_id,
        )
        .values(expires_at=now, updated_at=now)
    )
    transfer.policy = {
        **current_policy,
        **(policy or {}),
        "revoked": True,
        "revokedAt": now.isoformat(),
        "revokedReason": reason,
        "revokedBy": str(caller_id),
    }
    state_machine.transition(transfer, TransferEvent.REVOKE)
    create_audit_log(
        db,
        action="transfer.revoke",
        user_id=caller_id,
        target_type="transfer",
        target_id=transfer.id,
        metadata={"product_id": str(transfer.product_id), "recipient_id": str(transfer.to_recipient_id), "reason": reason},
    )
    await db.commit()
    logger.info(f"[Transfers] Access revoked on {transfer.id} by {caller_id}: {reason}")

    result = {
        "transfer_id": transfer.id,
        "status": _status(transfer),
        "reason": reason,
        "revoked_at": now,
    }
    recipient_id = transfer.to_recipient_id
    result["refund_status"] = await _refund_best_effort(db, gateway, transfer.id)

    await notify(
        recipient_id,
        "Access revoked",
        f"Your access to a purchased product was revoked: {reason}",
        "transfer", result["transfer_id"],
    )
    return result

async def _refund_best_effort(db: AsyncSession, gateway: PaymentGateway, transfer_id: UUID) -> Optional[str]:
    intent = await payment_service.get_intent_for_transfer(db, transfer_id)
    if not intent or intent.status != PaymentStatus.PAID or not intent.provider_ref:
        return None
    try:
        await gateway.refund(intent.provider_ref, intent.amount, intent.currency)
        intent.status = PaymentStatus.REFUNDED
        await db.commit()
        return PaymentStatus.REFUNDED.value
    except Exception as e:
        logger.error(f"[Transfers] Refund failed for transfer {transfer_id}: {e}")
        return "refund_failed"

async def list_transfers(
    db: AsyncSession,
    user_id: UUID,
    role: Optional[str] = None,
    status: Optional[TransferStatus] = None,
) -> List[Transfer]:
    query = select(Transfer)
    if role == "seller":
        query = query.where(Transfer.from_owner_id == user_id)
    elif role == "buyer":
        query = query.where(Transfer.to_recipient_id == user_id)
    elif role is None:
        query = query.where((Transfer.from_owner_id == user_id) | (Transfer.to_recipient_id == user_id))
    else:
        raise InvalidInput("role must be 'seller' or 'buyer'")
    if status is not None:
        query = query.where(Transfer.status == status)
    result = await db.execute(query.order_by(Transfer.created_at.desc()))
    return result.scalars().all()

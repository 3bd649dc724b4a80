import logging
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vaultdrop.core.errors import InvalidInput, NotFoundOrDenied
from vaultdrop.core.retry import transient_retry
from vaultdrop.modules.payments.gateway import CheckoutSession, PaymentEvent
from vaultdrop.modules.payments.models import PaymentIntent, PaymentStatus
from vaultdrop.modules.transfers import state_machine
from vaultdrop.modules.transfers.models import Transfer, TransferStatus
from vaultdrop.modules.worker.runner import notify

logger = logging.getLogger(__name__)

async def get_intent_for_transfer(db: AsyncSession, transfer_id) -> Optional[PaymentIntent]:
    result = await db.execute(select(PaymentIntent).where(PaymentIntent.transfer_id == transfer_id))
    return result.scalars().first()

async def upsert_pending_intent(
    db: AsyncSession,
    transfer: Transfer,
    provider: str,
    checkout: CheckoutSession,
) -> PaymentIntent:
    """The single intent of a transfer is created on first invoice and refreshed on re-invoice."""
    intent = await get_intent_for_transfer(db, transfer.id)
    if intent is None:
        intent = PaymentIntent(transfer_id=transfer.id)
        db.add(intent)
    intent.amount = transfer.price
    intent.currency = transfer.currency
    intent.status = PaymentStatus.PENDING
    intent.provider = provider
    intent.provider_ref = checkout.provider_ref
    intent.checkout_url = checkout.checkout_url
    return intent

@transient_retry
async def handle_payment_event(db: AsyncSession, event: PaymentEvent) -> Dict[str, Any]:
    """
    Apply a verified gateway event. Success moves intent and transfer to paid;
    replays for a transfer already past invoiced are no-ops. Failure marks the
    intent failed and leaves the transfer invoiced, as does a completed checkout
    whose funds have not settled yet.
    """
    if event.awaiting_funds:
        logger.info(f"[Payments] Checkout completed for transfer {event.transfer_id}, funds not settled")
        return {"transfer_id": event.transfer_id, "status": "pending", "payment_status": event.payment_status}

    if not (event.succeeded or event.failed):
        logger.info(f"[Payments] Ignoring webhook event {event.event_type}")
        return {"status": "ignored", "event_type": event.event_type}

    if event.transfer_id is None:
        raise InvalidInput("Webhook event does not reference a transfer")

    transfer = await db.get(Transfer, event.transfer_id)
    if not transfer:
        raise NotFoundOrDenied()

    intent = await get_intent_for_transfer(db, transfer.id)

    if event.failed:
        if intent and intent.status == PaymentStatus.PENDING:
            intent.status = PaymentStatus.FAILED
            await db.commit()
            logger.warning(f"[Payments] Payment failed for transfer {transfer.id}")
            await notify(
                transfer.to_recipient_id,
                "Payment failed",
                "Your payment did not go through. You can request a new invoice.",
                "transfer", transfer.id,
            )
        return {"transfer_id": transfer.id, "status": TransferStatus(transfer.status).value, "payment_status": "failed"}

    # Payment already applied; access may since have been disputed or revoked
    if transfer.status in state_machine.ENTITLED_STATUSES | state_machine.TERMINAL_STATUSES:
        logger.info(f"[Payments] Duplicate success event for transfer {transfer.id} ({transfer.status})")
        return {"transfer_id": transfer.id, "status": TransferStatus(transfer.status).value, "duplicate": True}

    state_machine.transition(transfer, state_machine.TransferEvent.PAY)
    if intent is None:
        # Paid through a channel that skipped our checkout record
        intent = PaymentIntent(
            transfer_id=transfer.id,
            amount=transfer.price,
            currency=transfer.currency,
            provider="external",
        )
        db.add(intent)
    intent.status = PaymentStatus.PAID
    if event.payment_ref:
        intent.provider_ref = event.payment_ref
    await db.commit()

    logger.info(f"[Payments] Transfer {transfer.id} paid (ref recorded: {bool(event.payment_ref)})")
    await notify(
        transfer.from_owner_id,
        "Payment received",
        "A buyer paid for your product. Access can now be granted.",
        "transfer", transfer.id,
    )
    await notify(
        transfer.to_recipient_id,
        "Payment confirmed",
        "Your payment was confirmed. You can now request access.",
        "transfer", transfer.id,
    )
    return {"transfer_id": transfer.id, "status": TransferStatus.PAID.value}

import logging
import uuid
from datetime import timedelta
from typing import Any, Dict, Optional
from urllib.parse import urlencode
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from vaultdrop.core import security
from vaultdrop.core.config import settings
from vaultdrop.core.errors import (
    Conflict,
    InvalidState,
    KeyExpired,
    MissingRequiredInputs,
    NotFoundOrDenied,
)
from vaultdrop.core.retry import transient_retry
from vaultdrop.core.time import utcnow
from vaultdrop.modules.auth.models import User
from vaultdrop.modules.keys import envelope
from vaultdrop.modules.keys.models import ProductKey
from vaultdrop.modules.products import service as product_service
from vaultdrop.modules.transfers import state_machine
from vaultdrop.modules.transfers.models import Transfer, TransferStatus
from vaultdrop.modules.transfers.state_machine import TransferEvent
from vaultdrop.modules.worker.runner import notify

logger = logging.getLogger(__name__)

CLAIMABLE_STATUSES = frozenset({TransferStatus.DELIVERED, TransferStatus.ACKNOWLEDGED})

def grant_event_for(transfer: Transfer) -> TransferEvent:
    """
    Unpaid grant (invoiced -> delivered) is a policy decision: free products,
    or ALLOW_UNPAID_GRANT for demo and trial deployments.
    """
    if transfer.status == TransferStatus.INVOICED and (settings.ALLOW_UNPAID_GRANT or transfer.price == 0):
        return TransferEvent.GRANT_UNPAID
    return TransferEvent.GRANT

async def get_key(db: AsyncSession, product_id: UUID, recipient_id: UUID) -> Optional[ProductKey]:
    result = await db.execute(
        select(ProductKey).where(
            ProductKey.product_id == product_id,
            ProductKey.recipient_id == recipient_id,
        )
    )
    return result.scalars().first()

@transient_retry
async def grant(
    db: AsyncSession,
    caller_id: UUID,
    transfer_id: UUID,
    recipient_public_key: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Mint (or reuse) the recipient's key envelope, issue a fresh claim token,
    and move the transfer to delivered. Repeating a grant returns the same
    envelope while the key is live.
    """
    transfer = await db.get(Transfer, transfer_id)
    if not transfer or transfer.to_recipient_id != caller_id:
        raise NotFoundOrDenied()

    event = grant_event_for(transfer)
    state_machine.require(transfer, event)

    product = await product_service.get_product(db, transfer.product_id)
    if product.manifest is None:
        raise InvalidState("Product upload has not been completed")

    missing = product_service.missing_inputs(product, transfer.buyer_inputs, "post_payment_pre_grant")
    if missing:
        raise MissingRequiredInputs(
            "Required inputs must be submitted before access is granted",
            missing_inputs=missing,
            transfer_id=str(transfer.id),
        )

    now = utcnow()
    key = await get_key(db, product.id, caller_id)
    reused = key is not None and key.is_live(now)

    if not reused:
        if not recipient_public_key:
            recipient = await db.get(User, caller_id)
            recipient_public_key = recipient.public_key if recipient else None
        sealed, algorithm = envelope.seal_content_key(
            envelope.generate_content_key(), product.id, caller_id, recipient_public_key
        )
        expires_at = now + timedelta(days=settings.KEY_ENVELOPE_TTL_DAYS)
        if key is None:
            key = ProductKey(id=uuid.uuid4(), product_id=product.id, recipient_id=caller_id)
            db.add(key)
        key.key_envelope = sealed
        key.algorithm = algorithm
        key.expires_at = expires_at

    previous = state_machine.transition(transfer, event)
    try:
        await db.commit()
    except IntegrityError:
        # A concurrent grant inserted the key row first
        await db.rollback()
        raise Conflict("Grant already in progress for this transfer, retry")

    claim_token, claim_expires_at = security.create_claim_token(transfer.id, product.id, caller_id, key.id)
    logger.info(
        f"[Keys] Granted transfer {transfer.id} (key {key.id}, {'reused' if reused else 'minted'}, via {event.value})"
    )

    if previous != TransferStatus.DELIVERED:
        await notify(
            transfer.from_owner_id,
            "Product delivered",
            f"Access to '{product.title}' was granted to the buyer.",
            "transfer", transfer.id,
        )

    return {
        "transfer_id": transfer.id,
        "key_id": key.id,
        "key_envelope": key.key_envelope,
        "algorithm": key.algorithm,
        "expires_at": key.expires_at,
        "claim_token": claim_token,
        "claim_expires_at": claim_expires_at,
        "status": TransferStatus(transfer.status).value,
        "reused": reused,
    }

def build_download_urls(base_url: str, product_id, recipient_id, download_token: str, total_chunks: int) -> Dict[str, Any]:
    base = base_url.rstrip("/")
    params = {"product_id": str(product_id), "recipient_id": str(recipient_id), "token": download_token}
    return {
        "manifest": f"{base}/delivery/manifest?{urlencode(params)}",
        "chunks": [
            f"{base}/delivery/chunk?{urlencode({**params, 'chunk_index': index})}"
            for index in range(total_chunks)
        ],
    }

async def claim(db: AsyncSession, claim_token: str, base_url: str) -> Dict[str, Any]:
    """
    Exchange a claim token for a download token plus envelope and manifest.
    The download token is only a credential; every read still goes through the gate.
    """
    payload = security.decode_token(claim_token, security.CLAIM)
    transfer_id = security.token_uuid(payload, "transfer_id")
    product_id = security.token_uuid(payload, "product_id")
    recipient_id = security.token_uuid(payload, "recipient_id")
    key_id = security.token_uuid(payload, "key_id")

    transfer = await db.get(Transfer, transfer_id)
    if not transfer or transfer.product_id != product_id or transfer.to_recipient_id != recipient_id:
        raise NotFoundOrDenied()
    if transfer.status not in CLAIMABLE_STATUSES:
        raise InvalidState(
            f"Transfer is {TransferStatus(transfer.status).value}, access cannot be claimed",
            status=TransferStatus(transfer.status).value,
        )

    key = await db.get(ProductKey, key_id)
    if not key or key.product_id != product_id or key.recipient_id != recipient_id:
        raise NotFoundOrDenied()
    if not key.is_live(utcnow()):
        raise KeyExpired()

    product = await product_service.get_product(db, product_id)
    if product.manifest is None:
        raise InvalidState("Product upload has not been completed")

    download_token, download_expires_at = security.create_download_token(transfer.id, product.id, recipient_id)
    logger.info(f"[Keys] Claim exchanged for transfer {transfer.id} (key {key.id})")

    return {
        "transfer_id": transfer.id,
        "product_id": product.id,
        "title": product.title,
        "content_type": product.content_type,
        "size_bytes": product.size_bytes,
        "download_token": download_token,
        "expires_at": download_expires_at,
        "key_envelope": key.key_envelope,
        "key_expires_at": key.expires_at,
        "manifest": product.manifest,
        "download_urls": build_download_urls(
            base_url, product.id, recipient_id, download_token, product.manifest["total_chunks"]
        ),
        "status": "ready_for_download",
    }

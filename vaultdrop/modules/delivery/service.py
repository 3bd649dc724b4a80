import hashlib
import logging
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vaultdrop.core.deps import Requester
from vaultdrop.core.errors import (
    ChunkIntegrityError,
    InvalidChunkIndex,
    InvalidState,
    NotFoundOrDenied,
)
from vaultdrop.core.retry import transient_retry
from vaultdrop.core.time import utcnow
from vaultdrop.modules.keys.models import ProductKey
from vaultdrop.modules.products.models import Product
from vaultdrop.modules.storage.blob_store import BlobStore, chunk_key
from vaultdrop.modules.transfers.models import Transfer
from vaultdrop.modules.transfers.state_machine import ENTITLED_STATUSES

logger = logging.getLogger(__name__)

async def has_grant(db: AsyncSession, product_id: UUID, recipient_id: UUID) -> bool:
    """Entitled transfer AND a live key for (product, recipient). Never cached."""
    transfer_result = await db.execute(
        select(Transfer.id)
        .where(
            Transfer.product_id == product_id,
            Transfer.to_recipient_id == recipient_id,
            Transfer.status.in_(list(ENTITLED_STATUSES)),
        )
        .limit(1)
    )
    if transfer_result.scalar() is None:
        return False

    key_result = await db.execute(
        select(ProductKey.id)
        .where(
            ProductKey.product_id == product_id,
            ProductKey.recipient_id == recipient_id,
            ProductKey.expires_at > utcnow(),
        )
        .limit(1)
    )
    return key_result.scalar() is not None

async def authorize_read(db: AsyncSession, product_id: UUID, requester_id: UUID) -> Product:
    """
    Owner, or recipient holding a current grant. Everything else, including an
    unknown product, is the same NotFoundOrDenied.
    """
    product = await db.get(Product, product_id)
    if not product:
        raise NotFoundOrDenied()
    if product.owner_id == requester_id:
        return product
    if not await has_grant(db, product_id, requester_id):
        logger.info(f"[Delivery] Denied read of product {product_id} for {requester_id}")
        raise NotFoundOrDenied()
    return product

def resolve_requester(requester: Requester, product_id: UUID, recipient_id: Optional[UUID] = None) -> UUID:
    """
    A download token only opens the product it was minted for. An explicit
    recipient_id must match the authenticated requester.
    """
    if requester.via_download_token and requester.token_product_id != product_id:
        raise NotFoundOrDenied()
    if recipient_id is not None and recipient_id != requester.user_id:
        raise NotFoundOrDenied()
    return requester.user_id

@transient_retry
async def get_manifest(
    db: AsyncSession,
    product_id: UUID,
    requester: Requester,
    recipient_id: Optional[UUID] = None,
) -> Dict[str, Any]:
    requester_id = resolve_requester(requester, product_id, recipient_id)
    product = await authorize_read(db, product_id, requester_id)
    if product.manifest is None:
        raise InvalidState("Product upload has not been completed")
    return product.manifest

@transient_retry
async def read_chunk(
    db: AsyncSession,
    store: BlobStore,
    product_id: UUID,
    requester: Requester,
    chunk_index: int,
    recipient_id: Optional[UUID] = None,
) -> bytes:
    requester_id = resolve_requester(requester, product_id, recipient_id)
    product = await authorize_read(db, product_id, requester_id)
    manifest = product.manifest
    if manifest is None:
        raise InvalidState("Product upload has not been completed")
    if chunk_index < 0 or chunk_index >= manifest["total_chunks"]:
        raise InvalidChunkIndex(f"chunk_index must be in [0, {manifest['total_chunks']})")

    entry = manifest["chunks"][chunk_index]
    data = await store.get(chunk_key(product.storage_pointer, chunk_index))
    if data is None:
        logger.error(f"[Delivery] Chunk {chunk_index} of product {product_id} missing from store")
        raise NotFoundOrDenied()

    digest = hashlib.sha256(data).hexdigest()
    if digest != entry["hash"]:
        logger.error(f"[Delivery] Integrity failure on product {product_id} chunk {chunk_index}")
        raise ChunkIntegrityError(f"Chunk {chunk_index} failed integrity verification")
    return data

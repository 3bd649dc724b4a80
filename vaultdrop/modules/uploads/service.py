import hashlib
import logging
import math
import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from vaultdrop.core.config import settings
from vaultdrop.core.errors import (
    ChunkIntegrityError,
    IncompleteUpload,
    InvalidChunkIndex,
    InvalidInput,
    InvalidState,
    SessionNotFound,
)
from vaultdrop.core.retry import transient_retry
from vaultdrop.core.time import utcnow
from vaultdrop.modules.products import service as product_service
from vaultdrop.modules.products.models import Product, PENDING_POINTER
from vaultdrop.modules.products.schemas import Manifest, ProductCreate
from vaultdrop.modules.storage.blob_store import BlobStore, chunk_key
from vaultdrop.modules.uploads.models import UploadChunk, UploadSession

logger = logging.getLogger(__name__)

def expected_chunks_for(total_size: int, chunk_size: int) -> int:
    return math.ceil(total_size / chunk_size)

def _validate_sizes(total_size: int, chunk_size: int) -> None:
    if chunk_size <= 0 or chunk_size > settings.MAX_CHUNK_SIZE:
        raise InvalidInput(f"chunk_size must be between 1 and {settings.MAX_CHUNK_SIZE} bytes")
    if total_size <= 0 or total_size > settings.MAX_FILE_SIZE:
        raise InvalidInput(f"File size must be between 1 and {settings.MAX_FILE_SIZE} bytes")

def _new_session(db: AsyncSession, product: Product, chunk_size: Optional[int]) -> UploadSession:
    chunk_size = chunk_size or settings.DEFAULT_CHUNK_SIZE
    _validate_sizes(product.size_bytes, chunk_size)

    now = utcnow()
    upload_id = uuid.uuid4()
    session = UploadSession(
        upload_id=upload_id,
        product_id=product.id,
        storage_prefix=f"products/{product.id}/chunks/{upload_id}",
        chunk_size=chunk_size,
        total_size=product.size_bytes,
        expected_chunks=expected_chunks_for(product.size_bytes, chunk_size),
        created_at=now,
        expires_at=now + timedelta(minutes=settings.UPLOAD_SESSION_TTL_MINUTES),
    )
    db.add(session)
    return session

@transient_retry
async def initialize_upload(
    db: AsyncSession,
    owner_id: UUID,
    product_id: UUID,
    chunk_size: Optional[int] = None,
) -> UploadSession:
    """Open a session for a product that is still pending and owned by the caller."""
    product = await product_service.get_owned_product(db, product_id, owner_id)
    if product.storage_pointer != PENDING_POINTER:
        raise InvalidState("Product upload has already been completed")

    session = _new_session(db, product, chunk_size)
    await db.commit()
    logger.info(
        f"[Uploads] Session {session.upload_id} opened for product {product.id} "
        f"({session.expected_chunks} chunks of {session.chunk_size} bytes)"
    )
    return session

@transient_retry
async def create_product_upload(
    db: AsyncSession,
    owner_id: UUID,
    data: ProductCreate,
    chunk_size: Optional[int] = None,
) -> UploadSession:
    """Product row and upload session land in the same commit."""
    _validate_sizes(data.size, chunk_size or settings.DEFAULT_CHUNK_SIZE)
    product = product_service.new_product(db, owner_id, data)
    # product.id is assigned on flush
    await db.flush()

    session = _new_session(db, product, chunk_size)
    await db.commit()
    logger.info(f"[Uploads] Product {product.id} created with upload session {session.upload_id}")
    return session

async def get_live_session(db: AsyncSession, upload_id: UUID) -> UploadSession:
    session = await db.get(UploadSession, upload_id)
    if not session or session.expires_at <= utcnow():
        raise SessionNotFound()
    return session

async def _owned_session(db: AsyncSession, upload_id: UUID, caller_id: UUID):
    session = await get_live_session(db, upload_id)
    product = await db.get(Product, session.product_id)
    if not product or product.owner_id != caller_id:
        # Do not reveal that the session exists
        raise SessionNotFound()
    return session, product

async def _receipts(db: AsyncSession, upload_id: UUID) -> Dict[int, UploadChunk]:
    result = await db.execute(
        select(UploadChunk).where(UploadChunk.upload_id == upload_id).order_by(UploadChunk.chunk_index)
    )
    return {row.chunk_index: row for row in result.scalars().all()}

async def _upsert_receipt(db: AsyncSession, upload_id: UUID, index: int, digest: str, size: int) -> None:
    result = await db.execute(
        select(UploadChunk).where(UploadChunk.upload_id == upload_id, UploadChunk.chunk_index == index)
    )
    receipt = result.scalars().first()
    if receipt:
        receipt.hash = digest
        receipt.size = size
        receipt.uploaded_at = utcnow()
    else:
        db.add(UploadChunk(upload_id=upload_id, chunk_index=index, hash=digest, size=size))
    await db.commit()

@transient_retry
async def upload_chunk(
    db: AsyncSession,
    store: BlobStore,
    caller_id: UUID,
    upload_id: UUID,
    index: int,
    data: bytes,
) -> Dict[str, Any]:
    """
    Store one chunk and record its receipt. Re-sending an index overwrites
    both the blob and the receipt, so retries are safe.
    """
    session, _ = await _owned_session(db, upload_id, caller_id)
    if index < 0 or index >= session.expected_chunks:
        raise InvalidChunkIndex(f"chunk index must be in [0, {session.expected_chunks})")
    if not data:
        raise InvalidInput("Chunk payload is empty")
    if len(data) > session.chunk_size:
        raise InvalidInput(f"Chunk exceeds the session chunk size of {session.chunk_size} bytes")

    expected = session.expected_chunks
    digest = hashlib.sha256(data).hexdigest()
    await store.set(chunk_key(session.storage_prefix, index), data)

    try:
        await _upsert_receipt(db, upload_id, index, digest, len(data))
    except IntegrityError:
        # Same index raced in from another request; last write wins
        await db.rollback()
        await _upsert_receipt(db, upload_id, index, digest, len(data))

    result = await db.execute(select(UploadChunk.chunk_index).where(UploadChunk.upload_id == upload_id))
    uploaded = len(result.scalars().all())
    logger.info(f"[Uploads] Chunk {index} stored for session {upload_id} ({len(data)} bytes)")

    return {
        "upload_id": upload_id,
        "chunk_index": index,
        "hash": digest,
        "size": len(data),
        "uploaded_chunks": uploaded,
        "expected_chunks": expected,
    }

def _manifest_from_receipts(session: UploadSession, product: Product, receipts: Dict[int, UploadChunk]) -> Dict[str, Any]:
    chunks = [
        {"index": index, "hash": receipts[index].hash, "size": receipts[index].size}
        for index in range(session.expected_chunks)
    ]
    return {
        "chunks": chunks,
        "total_chunks": session.expected_chunks,
        "chunk_size": session.chunk_size,
        "total_size": sum(chunk["size"] for chunk in chunks),
        "content_hash": product.content_hash,
    }

def validate_manifest(
    manifest: Dict[str, Any],
    session: UploadSession,
    product: Product,
    receipts: Dict[int, UploadChunk],
) -> None:
    chunks = manifest["chunks"]
    if len(chunks) != manifest["total_chunks"] or manifest["total_chunks"] != session.expected_chunks:
        raise InvalidInput(f"Manifest must list exactly {session.expected_chunks} chunks")
    if [chunk["index"] for chunk in chunks] != list(range(session.expected_chunks)):
        raise InvalidInput("Manifest chunk indices must be contiguous from 0")
    if manifest["chunk_size"] != session.chunk_size:
        raise InvalidInput("Manifest chunk_size does not match the upload session")

    total = sum(chunk["size"] for chunk in chunks)
    if total != manifest["total_size"] or total != product.size_bytes:
        raise InvalidInput(f"Manifest total_size must equal the declared size of {product.size_bytes} bytes")
    if manifest["content_hash"].lower() != product.content_hash:
        raise InvalidInput("Manifest content_hash does not match the product")

    for chunk in chunks:
        receipt = receipts[chunk["index"]]
        if chunk["hash"].lower() != receipt.hash or chunk["size"] != receipt.size:
            raise InvalidInput(f"Manifest entry {chunk['index']} does not match the uploaded chunk")

async def _verify_content_hash(store: BlobStore, session: UploadSession, manifest: Dict[str, Any]) -> None:
    digest = hashlib.sha256()
    for chunk in manifest["chunks"]:
        data = await store.get(chunk_key(session.storage_prefix, chunk["index"]))
        if data is None or hashlib.sha256(data).hexdigest() != chunk["hash"]:
            raise ChunkIntegrityError(f"Stored chunk {chunk['index']} does not match its receipt")
        digest.update(data)
    if digest.hexdigest() != manifest["content_hash"]:
        raise InvalidInput("Uploaded content does not match the declared content_hash")

@transient_retry
async def complete_upload(
    db: AsyncSession,
    store: BlobStore,
    caller_id: UUID,
    upload_id: UUID,
    manifest: Optional[Manifest] = None,
) -> Product:
    """
    Finalize: every expected index must have a receipt, the manifest must agree
    with the receipts, and the reassembled content must hash to the declared
    content_hash. Product becomes ready and the session is dropped, in one commit.
    """
    session, product = await _owned_session(db, upload_id, caller_id)
    if product.storage_pointer != PENDING_POINTER:
        raise InvalidState("Product upload has already been completed")

    receipts = await _receipts(db, session.upload_id)
    missing = [index for index in range(session.expected_chunks) if index not in receipts]
    if missing:
        raise IncompleteUpload(
            f"{len(missing)} of {session.expected_chunks} chunks have not been uploaded",
            missing_indices=missing,
        )

    if manifest is None:
        manifest_data = _manifest_from_receipts(session, product, receipts)
    else:
        manifest_data = manifest.model_dump()
        manifest_data["content_hash"] = manifest_data["content_hash"].lower()
        for chunk in manifest_data["chunks"]:
            chunk["hash"] = chunk["hash"].lower()
    validate_manifest(manifest_data, session, product, receipts)
    await _verify_content_hash(store, session, manifest_data)

    product.manifest = manifest_data
    product.storage_pointer = session.storage_prefix
    await db.execute(delete(UploadChunk).where(UploadChunk.upload_id == session.upload_id))
    await db.delete(session)
    await db.commit()

    logger.info(
        f"[Uploads] Product {product.id} is ready "
        f"({manifest_data['total_chunks']} chunks, {manifest_data['total_size']} bytes)"
    )
    return product

def guess_content_type(filename: Optional[str], declared: Optional[str]) -> str:
    if filename and filename.lower().endswith(".md"):
        return "text/markdown"
    return declared or "application/octet-stream"

async def upload_single(
    db: AsyncSession,
    store: BlobStore,
    owner_id: UUID,
    data: bytes,
    title: str,
    content_type: str,
    chunk_size: Optional[int] = None,
    price: float = 0.0,
    currency: str = "USD",
    description: Optional[str] = None,
) -> Product:
    """
    One-call upload for small files: hash on the server, then run the same
    init / chunk / complete path a chunked client would.
    """
    product_data = ProductCreate(
        title=title,
        content_type=content_type,
        size=len(data),
        content_hash=hashlib.sha256(data).hexdigest(),
        description=description,
        price=price,
        currency=currency,
    )
    session = await create_product_upload(db, owner_id, product_data, chunk_size)
    upload_id, size = session.upload_id, session.chunk_size
    for index in range(session.expected_chunks):
        await upload_chunk(db, store, owner_id, upload_id, index, data[index * size:(index + 1) * size])
    return await complete_upload(db, store, owner_id, upload_id)

async def get_progress(db: AsyncSession, caller_id: UUID, upload_id: UUID) -> Dict[str, Any]:
    session, _ = await _owned_session(db, upload_id, caller_id)
    receipts = await _receipts(db, session.upload_id)
    uploaded = sorted(receipts)
    return {
        "upload_id": session.upload_id,
        "product_id": session.product_id,
        "expected_chunks": session.expected_chunks,
        "uploaded_indices": uploaded,
        "missing_indices": [index for index in range(session.expected_chunks) if index not in receipts],
        "expires_at": session.expires_at,
    }

async def purge_expired_sessions(db: AsyncSession, store: BlobStore) -> int:
    """
    Housekeeping: drop expired sessions, their receipts and the orphaned chunk
    blobs. Blob deletion failures are logged and the row is kept for the next run.
    """
    result = await db.execute(select(UploadSession).where(UploadSession.expires_at <= utcnow()))
    expired: List[UploadSession] = list(result.scalars().all())

    purged = 0
    for session in expired:
        upload_id = session.upload_id
        try:
            for key in await store.list(session.storage_prefix + "/"):
                await store.delete(key)
        except Exception as e:
            logger.error(f"[Uploads] Could not delete blobs of expired session {upload_id}: {e}")
            continue
        await db.execute(delete(UploadChunk).where(UploadChunk.upload_id == upload_id))
        await db.delete(session)
        purged += 1

    await db.commit()
    if purged:
        logger.info(f"[Uploads] Purged {purged} expired upload sessions")
    return purged

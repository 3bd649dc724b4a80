from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from vaultdrop.core import deps
from vaultdrop.core.db import get_db
from vaultdrop.modules.auth.models import User
from vaultdrop.modules.products.schemas import ProductCreate
from vaultdrop.modules.storage.blob_store import BlobStore, get_blob_store
from vaultdrop.modules.uploads import schemas, service

router = APIRouter()

def _session_read(session) -> dict:
    return {
        "upload_id": session.upload_id,
        "product_id": session.product_id,
        "chunk_size": session.chunk_size,
        "total_size": session.total_size,
        "expected_chunks": session.expected_chunks,
        "expires_at": session.expires_at,
    }

@router.post("/products/upload/init", response_model=schemas.UploadSessionRead, status_code=201)
async def init_product_upload(
    body: schemas.ProductUploadInit,
    current_user: User = Depends(deps.get_current_active_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Create a pending product and its upload session in one call.
    """
    data = ProductCreate.model_validate(body.model_dump(exclude={"chunk_size"}))
    session = await service.create_product_upload(db, current_user.id, data, body.chunk_size)
    return _session_read(session)

@router.post("/products/upload/single", response_model=schemas.UploadCompleteResponse, status_code=201)
async def upload_single(
    file: UploadFile = File(...),
    title: str = Form(...),
    content_type: Optional[str] = Form(None),
    chunk_size: Optional[int] = Form(None),
    price: float = Form(0.0),
    currency: str = Form("USD"),
    description: Optional[str] = Form(None),
    current_user: User = Depends(deps.get_current_active_user),
    db: AsyncSession = Depends(get_db),
    store: BlobStore = Depends(get_blob_store)
) -> Any:
    """
    Create a product from a single multipart file. The server computes the
    content hash and splits the file into chunks.
    """
    data = await file.read()
    product = await service.upload_single(
        db,
        store,
        current_user.id,
        data,
        title=title,
        content_type=content_type or service.guess_content_type(file.filename, file.content_type),
        chunk_size=chunk_size,
        price=price,
        currency=currency,
        description=description,
    )
    return {"product_id": product.id, "status": "ready", "manifest": product.manifest}

@router.post("/products/{product_id}/upload/init", response_model=schemas.UploadSessionRead, status_code=201)
async def init_upload(
    product_id: UUID,
    body: schemas.UploadInit,
    current_user: User = Depends(deps.get_current_active_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    session = await service.initialize_upload(db, current_user.id, product_id, body.chunk_size)
    return _session_read(session)

@router.post("/uploads/{upload_id}/chunks/{index}", response_model=schemas.ChunkReceipt)
async def upload_chunk(
    upload_id: UUID,
    index: int,
    chunk: UploadFile = File(...),
    current_user: User = Depends(deps.get_current_active_user),
    db: AsyncSession = Depends(get_db),
    store: BlobStore = Depends(get_blob_store)
) -> Any:
    data = await chunk.read()
    return await service.upload_chunk(db, store, current_user.id, upload_id, index, data)

@router.post("/uploads/{upload_id}/complete", response_model=schemas.UploadCompleteResponse)
async def complete_upload(
    upload_id: UUID,
    body: Optional[schemas.UploadComplete] = None,
    current_user: User = Depends(deps.get_current_active_user),
    db: AsyncSession = Depends(get_db),
    store: BlobStore = Depends(get_blob_store)
) -> Any:
    product = await service.complete_upload(db, store, current_user.id, upload_id, body.manifest if body else None)
    return {"product_id": product.id, "status": "ready", "manifest": product.manifest}

@router.get("/uploads/{upload_id}", response_model=schemas.UploadProgress)
async def get_upload_progress(
    upload_id: UUID,
    current_user: User = Depends(deps.get_current_active_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await service.get_progress(db, current_user.id, upload_id)

from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from vaultdrop.core import deps
from vaultdrop.core.db import get_db
from vaultdrop.modules.delivery import service
from vaultdrop.modules.products.schemas import Manifest
from vaultdrop.modules.storage.blob_store import BlobStore, get_blob_store

router = APIRouter()

@router.get("/manifest", response_model=Manifest)
async def get_manifest(
    product_id: UUID,
    recipient_id: Optional[UUID] = None,
    requester: deps.Requester = Depends(deps.get_requester),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await service.get_manifest(db, product_id, requester, recipient_id)

@router.get("/chunk")
async def get_chunk(
    product_id: UUID,
    chunk_index: int = Query(...),
    recipient_id: Optional[UUID] = None,
    requester: deps.Requester = Depends(deps.get_requester),
    db: AsyncSession = Depends(get_db),
    store: BlobStore = Depends(get_blob_store)
):
    """
    Raw chunk bytes, verified against the manifest hash before they leave.
    Authorization is checked on every call.
    """
    data = await service.read_chunk(db, store, product_id, requester, chunk_index, recipient_id)
    return Response(
        content=data,
        media_type="application/octet-stream",
        headers={"Cache-Control": "no-store", "X-Chunk-Index": str(chunk_index)},
    )

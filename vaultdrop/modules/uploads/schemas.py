from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel

from vaultdrop.modules.products.schemas import Manifest, ProductCreate

class UploadInit(BaseModel):
    chunk_size: Optional[int] = None

class ProductUploadInit(ProductCreate):
    chunk_size: Optional[int] = None

class UploadSessionRead(BaseModel):
    upload_id: UUID
    product_id: UUID
    chunk_size: int
    total_size: int
    expected_chunks: int
    expires_at: datetime

class ChunkReceipt(BaseModel):
    upload_id: UUID
    chunk_index: int
    hash: str
    size: int
    uploaded_chunks: int
    expected_chunks: int

class UploadComplete(BaseModel):
    # Omitted: the manifest is assembled from the stored chunk receipts
    manifest: Optional[Manifest] = None

class UploadCompleteResponse(BaseModel):
    product_id: UUID
    status: str
    manifest: Manifest

class UploadProgress(BaseModel):
    upload_id: UUID
    product_id: UUID
    expected_chunks: int
    uploaded_indices: List[int]
    missing_indices: List[int]
    expires_at: datetime

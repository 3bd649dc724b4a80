from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

class RequiredInput(BaseModel):
    name: str = Field(min_length=1)
    type: str = "text"
    timing: Literal["pre_payment", "post_payment_pre_grant"]
    required: bool = True
    description: Optional[str] = None

class ManifestChunk(BaseModel):
    index: int
    hash: str
    size: int

class Manifest(BaseModel):
    chunks: List[ManifestChunk]
    total_chunks: int
    chunk_size: int
    total_size: int
    content_hash: str

class ProductCreate(BaseModel):
    title: str
    content_type: str
    size: int
    content_hash: str
    description: Optional[str] = None
    price: float = 0.0
    currency: str = "USD"
    required_inputs: List[RequiredInput] = []

class ProductRead(BaseModel):
    """Public product metadata. Never carries the storage pointer."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_id: UUID
    title: str
    description: Optional[str] = None
    content_type: str
    size_bytes: int
    content_hash: str
    encryption_algorithm: str
    price: float
    currency: str
    is_ready: bool
    created_at: datetime

class RequirementsRead(BaseModel):
    product_id: UUID
    required_inputs: List[RequiredInput]

class RequirementsUpdate(BaseModel):
    required_inputs: List[RequiredInput]

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel

class GrantCreate(BaseModel):
    transfer_id: UUID
    # base64 raw X25519 key; falls back to the key stored on the user profile
    recipient_public_key: Optional[str] = None

class GrantRead(BaseModel):
    transfer_id: UUID
    key_id: UUID
    key_envelope: str
    algorithm: str
    expires_at: datetime
    claim_token: str
    claim_expires_at: datetime
    status: str
    reused: bool

class DownloadUrls(BaseModel):
    manifest: str
    chunks: List[str]

class ClaimRead(BaseModel):
    transfer_id: UUID
    product_id: UUID
    title: str
    content_type: str
    size_bytes: int
    download_token: str
    expires_at: datetime
    key_envelope: str
    key_expires_at: datetime
    manifest: Dict[str, Any]
    download_urls: DownloadUrls
    status: str

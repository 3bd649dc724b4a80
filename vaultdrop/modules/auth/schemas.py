from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr

class UserRead(BaseModel):
    id: UUID
    email: EmailStr
    display_name: Optional[str] = None
    public_key: Optional[str] = None
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True

class PublicKeyUpdate(BaseModel):
    # base64 of the raw 32 byte X25519 public key; null clears it
    public_key: Optional[str] = None

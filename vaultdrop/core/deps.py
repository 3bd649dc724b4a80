from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from fastapi import Depends, HTTPException, Query, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vaultdrop.core import security
from vaultdrop.core.config import settings
from vaultdrop.core.db import get_db
from vaultdrop.modules.auth.models import User

# Identity is issued elsewhere; we only verify the bearer JWT and resolve `sub`.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_V1_STR}/auth/token", auto_error=False)

credentials_exception = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Could not validate credentials",
    headers={"WWW-Authenticate": "Bearer"},
)

async def _user_from_token(token: str, db: AsyncSession) -> Optional[User]:
    try:
        payload = jwt.decode(token, settings.require_secret_key(), algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
    if payload.get("type", security.ACCESS) != security.ACCESS:
        return None
    user_id = payload.get("sub")
    if user_id is None:
        return None
    try:
        user_uuid = UUID(str(user_id))
    except ValueError:
        return None

    result = await db.execute(select(User).where(User.id == user_uuid))
    return result.scalars().first()

async def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db)
) -> User:
    if not token:
        raise credentials_exception
    user = await _user_from_token(token, db)
    if user is None:
        raise credentials_exception
    return user

async def get_current_active_user(
    current_user: User = Depends(get_current_user)
) -> User:
    if not current_user.is_active:
        raise HTTPException(status_code=400, detail="Inactive user")
    return current_user

@dataclass
class Requester:
    """Who is asking for delivery content, and how they proved it."""
    user_id: UUID
    via_download_token: bool = False
    token_product_id: Optional[UUID] = None

async def get_requester(
    token: Optional[str] = Query(None, alias="token"),
    bearer: Optional[str] = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db)
) -> Requester:
    """
    Manifest and chunk reads accept either a bearer token or a download token
    (query `token`). A download token takes precedence when both are present.
    """
    if token:
        payload = security.decode_token(token, security.DOWNLOAD)
        return Requester(
            user_id=security.token_uuid(payload, "recipient_id"),
            via_download_token=True,
            token_product_id=security.token_uuid(payload, "product_id"),
        )

    if not bearer:
        raise credentials_exception
    user = await _user_from_token(bearer, db)
    if user is None or not user.is_active:
        raise credentials_exception
    return Requester(user_id=user.id)

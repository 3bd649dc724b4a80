import logging
from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from vaultdrop.core import deps
from vaultdrop.core.db import get_db
from vaultdrop.modules.auth import models, schemas
from vaultdrop.modules.keys import envelope

logger = logging.getLogger(__name__)

router = APIRouter()

@router.get("/me", response_model=schemas.UserRead)
async def read_users_me(
    current_user: models.User = Depends(deps.get_current_active_user),
) -> Any:
    return current_user

@router.put("/me/public-key", response_model=schemas.UserRead)
async def update_public_key(
    key_in: schemas.PublicKeyUpdate,
    current_user: models.User = Depends(deps.get_current_active_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Register the X25519 key that future grants seal envelopes to.
    Existing envelopes are not re-sealed.
    """
    if key_in.public_key:
        # Validates length and encoding
        envelope.parse_public_key(key_in.public_key)
    current_user.public_key = key_in.public_key or None
    db.add(current_user)
    await db.commit()
    logger.info(f"[Auth] Public key {'set' if current_user.public_key else 'cleared'} for user {current_user.id}")
    return current_user

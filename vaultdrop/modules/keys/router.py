from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from vaultdrop.core import deps
from vaultdrop.core.config import settings
from vaultdrop.core.db import get_db
from vaultdrop.modules.auth.models import User
from vaultdrop.modules.keys import schemas, service

router = APIRouter()

@router.post("/grant", response_model=schemas.GrantRead)
async def grant_access(
    grant_in: schemas.GrantCreate,
    current_user: User = Depends(deps.get_current_active_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Recipient requests access on a paid transfer. Returns the key envelope and
    a fresh claim token; repeating the call reuses the live envelope.
    """
    return await service.grant(db, current_user.id, grant_in.transfer_id, grant_in.recipient_public_key)

@router.get("/claim", response_model=schemas.ClaimRead)
async def claim_access(
    request: Request,
    claim: str = Query(..., description="Claim token issued by /keys/grant"),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Exchange a claim token for a download token. No bearer token required,
    the claim token is the credential.
    """
    base_url = str(request.base_url).rstrip("/") + settings.API_V1_STR
    return await service.claim(db, claim, base_url)

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from vaultdrop.core import deps
from vaultdrop.core.db import get_db
from vaultdrop.modules.auth.models import User
from vaultdrop.modules.products import schemas, service

router = APIRouter()

@router.post("/", response_model=schemas.ProductRead, status_code=201)
async def create_product(
    product_in: schemas.ProductCreate,
    current_user: User = Depends(deps.get_current_active_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Register a product in pending state. Content arrives through an upload session.
    """
    return await service.create_product(db, current_user.id, product_in)

@router.get("/{product_id}", response_model=schemas.ProductRead)
async def get_product(
    product_id: UUID,
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await service.get_product(db, product_id)

@router.get("/{product_id}/requirements", response_model=schemas.RequirementsRead)
async def get_requirements(
    product_id: UUID,
    db: AsyncSession = Depends(get_db)
) -> Any:
    required_inputs = await service.get_requirements(db, product_id)
    return {"product_id": product_id, "required_inputs": required_inputs}

@router.put("/{product_id}/requirements", response_model=schemas.RequirementsRead)
async def update_requirements(
    product_id: UUID,
    body: schemas.RequirementsUpdate,
    current_user: User = Depends(deps.get_current_active_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Owner only. Replaces the whole requirement list.
    """
    required_inputs = await service.set_requirements(db, product_id, current_user.id, body.required_inputs)
    return {"product_id": product_id, "required_inputs": required_inputs}

@router.get("/{product_id}/manifest", response_model=schemas.Manifest)
async def get_manifest(
    product_id: UUID,
    current_user: User = Depends(deps.get_current_active_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await service.get_product_manifest(db, product_id, current_user.id)

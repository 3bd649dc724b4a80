import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from vaultdrop.core.config import settings
from vaultdrop.core.errors import InvalidInput, InvalidState, NotFoundOrDenied
from vaultdrop.core.retry import transient_retry
from vaultdrop.modules.delivery.service import authorize_read
from vaultdrop.modules.products import models, schemas

logger = logging.getLogger(__name__)

TIMINGS = ("pre_payment", "post_payment_pre_grant")

def validate_content_type(content_type: str) -> None:
    allowed = settings.ALLOWED_CONTENT_TYPES
    ok = any(
        content_type.startswith(entry) if entry.endswith("/") else content_type == entry
        for entry in allowed
    )
    if not ok:
        raise InvalidInput(f"Content type {content_type!r} is not allowed")

def normalize_required_inputs(inputs: List[Any]) -> List[Dict[str, Any]]:
    """Validate requirement definitions and return them as plain dicts (JSON column)."""
    normalized = []
    seen = set()
    for item in inputs or []:
        if isinstance(item, schemas.RequiredInput):
            entry = item.model_dump()
        else:
            try:
                entry = schemas.RequiredInput.model_validate(item).model_dump()
            except ValueError as e:
                raise InvalidInput(f"Invalid required input definition: {e}")
        if entry["timing"] not in TIMINGS:
            raise InvalidInput(f"Invalid timing for {entry['name']!r}")
        if entry["name"] in seen:
            raise InvalidInput(f"Duplicate required input name {entry['name']!r}")
        seen.add(entry["name"])
        normalized.append(entry)
    return normalized

def new_product(
    db: AsyncSession,
    owner_id: UUID,
    data: schemas.ProductCreate,
) -> models.Product:
    """
    Validate and stage a Product in pending storage state. The caller commits,
    so product + upload session can land in one transaction.
    """
    title = (data.title or "").strip()
    if not title:
        raise InvalidInput("Title is required")
    if data.size <= 0 or data.size > settings.MAX_FILE_SIZE:
        raise InvalidInput(f"File size must be between 1 and {settings.MAX_FILE_SIZE} bytes")
    if not data.content_hash:
        raise InvalidInput("content_hash is required")
    if data.price < 0:
        raise InvalidInput("Price must not be negative")
    validate_content_type(data.content_type)

    product = models.Product(
        owner_id=owner_id,
        title=title,
        description=data.description,
        content_type=data.content_type,
        size_bytes=data.size,
        content_hash=data.content_hash.lower(),
        encryption_algorithm=models.DEFAULT_ENCRYPTION,
        storage_type=settings.STORAGE_BACKEND,
        storage_pointer=models.PENDING_POINTER,
        manifest=None,
        required_inputs=normalize_required_inputs(data.required_inputs),
        price=data.price,
        currency=(data.currency or "USD").upper(),
    )
    db.add(product)
    return product

@transient_retry
async def create_product(db: AsyncSession, owner_id: UUID, data: schemas.ProductCreate) -> models.Product:
    product = new_product(db, owner_id, data)
    await db.commit()
    logger.info(f"[Products] Created product {product.id} for owner {owner_id}")
    return product

async def get_product(db: AsyncSession, product_id: UUID) -> models.Product:
    product = await db.get(models.Product, product_id)
    if not product:
        raise NotFoundOrDenied()
    return product

async def get_owned_product(db: AsyncSession, product_id: UUID, owner_id: UUID) -> models.Product:
    product = await db.get(models.Product, product_id)
    if not product or product.owner_id != owner_id:
        raise NotFoundOrDenied()
    return product

async def get_requirements(db: AsyncSession, product_id: UUID) -> List[Dict[str, Any]]:
    product = await get_product(db, product_id)
    return list(product.required_inputs or [])

@transient_retry
async def set_requirements(
    db: AsyncSession,
    product_id: UUID,
    owner_id: UUID,
    inputs: List[Any],
) -> List[Dict[str, Any]]:
    product = await get_owned_product(db, product_id, owner_id)
    product.required_inputs = normalize_required_inputs(inputs)
    await db.commit()
    logger.info(f"[Products] Requirements updated for product {product_id} ({len(product.required_inputs)} inputs)")
    return product.required_inputs

async def get_product_manifest(db: AsyncSession, product_id: UUID, requester_id: UUID) -> Dict[str, Any]:
    """
    Manifest read through the access gate. Absent product and missing rights
    produce the same NotFoundOrDenied.
    """
    product = await authorize_read(db, product_id, requester_id)
    if product.manifest is None:
        raise InvalidState("Product upload has not been completed")
    return product.manifest

def missing_inputs(
    product: models.Product,
    buyer_inputs: Optional[Dict[str, Any]],
    timing: str,
) -> List[Dict[str, Any]]:
    """Required definitions of the given timing that have no usable value in buyer_inputs."""
    buyer_inputs = buyer_inputs or {}
    missing = []
    for entry in product.required_inputs or []:
        if entry.get("timing") != timing or not entry.get("required", True):
            continue
        value = buyer_inputs.get(entry["name"])
        if value is None or value == "":
            missing.append(entry)
    return missing

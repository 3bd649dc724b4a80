from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from vaultdrop.core import deps
from vaultdrop.core.db import get_db
from vaultdrop.modules.auth.models import User
from vaultdrop.modules.payments.gateway import PaymentGateway, get_payment_gateway
from vaultdrop.modules.transfers import schemas, service
from vaultdrop.modules.transfers.models import TransferStatus

router = APIRouter()

@router.post("/offer", response_model=schemas.TransferRead, status_code=201)
async def create_offer(
    offer_in: schemas.OfferCreate,
    current_user: User = Depends(deps.get_current_active_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Seller offers an owned, ready product to a recipient.
    """
    return await service.create_offer(
        db,
        current_user.id,
        offer_in.product_id,
        offer_in.to_recipient_id,
        price=offer_in.price,
        currency=offer_in.currency,
        policy=offer_in.policy,
        message=offer_in.message,
    )

@router.post("/invoice", response_model=schemas.InvoiceRead)
async def create_invoice(
    invoice_in: schemas.InvoiceCreate,
    current_user: User = Depends(deps.get_current_active_user),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway)
) -> Any:
    return await service.create_invoice(
        db,
        gateway,
        current_user.id,
        transfer_id=invoice_in.transfer_id,
        product_id=invoice_in.product_id,
        to_recipient_id=invoice_in.to_recipient_id,
        buyer_inputs=invoice_in.buyer_inputs,
    )

@router.get("/", response_model=List[schemas.TransferRead])
async def list_transfers(
    role: Optional[str] = None,
    status: Optional[TransferStatus] = None,
    current_user: User = Depends(deps.get_current_active_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Transfers where the caller is seller or buyer. role narrows to one side.
    """
    return await service.list_transfers(db, current_user.id, role=role, status=status)

@router.get("/{transfer_id}", response_model=schemas.TransferRead)
async def get_transfer(
    transfer_id: UUID,
    current_user: User = Depends(deps.get_current_active_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await service.get_transfer_for_party(db, transfer_id, current_user.id)

@router.get("/{transfer_id}/requirements", response_model=schemas.RequirementsStatus)
async def get_requirements(
    transfer_id: UUID,
    current_user: User = Depends(deps.get_current_active_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await service.get_requirements_status(db, current_user.id, transfer_id)

@router.post("/{transfer_id}/requirements/submit", response_model=schemas.RequirementsStatus)
async def submit_requirements(
    transfer_id: UUID,
    body: schemas.RequirementsSubmit,
    current_user: User = Depends(deps.get_current_active_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await service.submit_requirements(db, current_user.id, transfer_id, body.inputs)

@router.post("/{transfer_id}/ack", response_model=schemas.ReceiptRead, status_code=201)
async def acknowledge(
    transfer_id: UUID,
    ack_in: schemas.AcknowledgeCreate,
    current_user: User = Depends(deps.get_current_active_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await service.acknowledge(
        db, current_user.id, transfer_id, ack_in.client_hash, ack_in.signature, ack_in.meta
    )

@router.post("/{transfer_id}/dispute", response_model=schemas.DisputeRead, status_code=201)
async def open_dispute(
    transfer_id: UUID,
    dispute_in: schemas.DisputeCreate,
    current_user: User = Depends(deps.get_current_active_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await service.open_dispute(
        db,
        current_user.id,
        transfer_id,
        dispute_in.reason,
        description=dispute_in.description,
        evidence=dispute_in.evidence,
        requested_action=dispute_in.requested_action,
    )

@router.post("/{transfer_id}/revoke", response_model=schemas.RevokeRead)
async def revoke(
    transfer_id: UUID,
    revoke_in: schemas.RevokeCreate,
    current_user: User = Depends(deps.get_current_active_user),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway)
) -> Any:
    """
    Seller only. Access ends immediately; the refund is attempted afterwards.
    """
    return await service.revoke(
        db, gateway, current_user.id, transfer_id, reason=revoke_in.reason, policy=revoke_in.policy
    )

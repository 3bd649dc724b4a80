from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from vaultdrop.modules.transfers.models import TransferStatus

class OfferCreate(BaseModel):
    product_id: UUID
    to_recipient_id: UUID
    price: Optional[float] = None
    currency: Optional[str] = None
    policy: Dict[str, Any] = {}
    message: Optional[str] = None

class TransferRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID
    from_owner_id: UUID
    to_recipient_id: UUID
    price: float
    currency: str
    status: TransferStatus
    policy: Dict[str, Any] = {}
    buyer_inputs: Dict[str, Any] = {}
    created_at: datetime
    updated_at: datetime

class InvoiceCreate(BaseModel):
    transfer_id: Optional[UUID] = None
    product_id: Optional[UUID] = None
    to_recipient_id: Optional[UUID] = None
    buyer_inputs: Dict[str, Any] = {}

class InvoiceRead(BaseModel):
    transfer_id: UUID
    checkout_url: Optional[str] = None
    amount: float
    currency: str
    status: str
    payment_intent_id: Optional[UUID] = None

class RequirementsSubmit(BaseModel):
    inputs: Dict[str, Any]

class RequirementsStatus(BaseModel):
    transfer_id: UUID
    status: str
    required_inputs: List[Dict[str, Any]]
    buyer_inputs: Dict[str, Any]
    missing_pre_payment: List[Dict[str, Any]]
    missing_post_payment_pre_grant: List[Dict[str, Any]]

class AcknowledgeCreate(BaseModel):
    client_hash: str
    signature: str
    meta: Dict[str, Any] = {}

class ReceiptRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    transfer_id: UUID
    client_hash: str
    meta: Dict[str, Any] = {}
    delivered_at: datetime

class DisputeCreate(BaseModel):
    reason: str
    description: Optional[str] = None
    evidence: List[Any] = []
    requested_action: Optional[str] = None

class DisputeRead(BaseModel):
    dispute_id: str
    transfer_id: UUID
    status: str
    reason: str
    requested_action: str
    disputed_by_role: str
    disputed_at: datetime

class RevokeCreate(BaseModel):
    reason: Optional[str] = None
    policy: Dict[str, Any] = {}

class RevokeRead(BaseModel):
    transfer_id: UUID
    status: str
    reason: str
    revoked_at: datetime
    refund_status: Optional[str] = None

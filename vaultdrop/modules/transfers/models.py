import uuid
import enum
from sqlalchemy import Column, String, Float, DateTime, ForeignKey, JSON, Enum, Uuid, Index
from vaultdrop.core.db import Base
from vaultdrop.core.time import utcnow

class TransferStatus(str, enum.Enum):
    OFFERED = "offered"
    INVOICED = "invoiced"
    PAID = "paid"
    DELIVERED = "delivered"
    ACKNOWLEDGED = "acknowledged"
    DISPUTED = "disputed"
    REFUNDED = "refunded"

def _values(enum_cls):
    return [member.value for member in enum_cls]

class Transfer(Base):
    """One seller -> buyer handoff of one product."""
    __tablename__ = "transfers"
    __table_args__ = (
        Index("ix_transfers_product_recipient", "product_id", "to_recipient_id"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id = Column(Uuid, ForeignKey("products.id"), nullable=False, index=True)
    from_owner_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    to_recipient_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)

    price = Column(Float, default=0.0, nullable=False)
    currency = Column(String, default="USD", nullable=False)
    status = Column(
        Enum(TransferStatus, name="transfer_status", values_callable=_values),
        default=TransferStatus.OFFERED,
        nullable=False,
    )

    # dispute / revocation records and flags (noRevocation, revocationDeadline)
    policy = Column(JSON, nullable=False, default=dict)
    buyer_inputs = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

class DeliveryReceipt(Base):
    __tablename__ = "delivery_receipts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    # unique: a second receipt for the same transfer is a conflict
    transfer_id = Column(Uuid, ForeignKey("transfers.id"), nullable=False, unique=True)

    client_hash = Column(String, nullable=False)
    signature = Column(String, nullable=False)
    meta = Column(JSON, nullable=False, default=dict)
    delivered_at = Column(DateTime, default=utcnow, nullable=False)

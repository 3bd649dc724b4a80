import uuid
import enum
from sqlalchemy import Column, String, Float, DateTime, ForeignKey, Enum, Uuid
from vaultdrop.core.db import Base
from vaultdrop.core.time import utcnow

class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"

class PaymentIntent(Base):
    __tablename__ = "payment_intents"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    # One intent per transfer, created lazily on the first invoice
    transfer_id = Column(Uuid, ForeignKey("transfers.id"), nullable=False, unique=True)

    amount = Column(Float, nullable=False)
    currency = Column(String, default="USD", nullable=False)
    status = Column(
        Enum(PaymentStatus, name="payment_status", values_callable=lambda e: [m.value for m in e]),
        default=PaymentStatus.PENDING,
        nullable=False,
    )

    provider = Column(String, nullable=False) # mock | stripe
    provider_ref = Column(String, nullable=True) # checkout session / payment intent id
    checkout_url = Column(String, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

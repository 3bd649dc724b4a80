import uuid
from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Uuid, UniqueConstraint
from vaultdrop.core.db import Base
from vaultdrop.core.time import utcnow

class ProductKey(Base):
    """
    Sealed content key for one (product, recipient) pair.
    Revocation sets expires_at to now; an expired row is re-minted in place by the next grant.
    """
    __tablename__ = "product_keys"
    __table_args__ = (
        UniqueConstraint("product_id", "recipient_id", name="uq_product_keys_product_recipient"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id = Column(Uuid, ForeignKey("products.id"), nullable=False, index=True)
    recipient_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)

    key_envelope = Column(Text, nullable=False)
    algorithm = Column(String, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def is_live(self, now) -> bool:
        return self.expires_at > now

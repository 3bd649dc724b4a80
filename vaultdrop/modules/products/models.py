import uuid
from sqlalchemy import Column, String, Text, Float, BigInteger, DateTime, ForeignKey, JSON, Uuid
from vaultdrop.core.db import Base
from vaultdrop.core.time import utcnow

PENDING_POINTER = "pending"
DEFAULT_ENCRYPTION = "AES-256-GCM"

class Product(Base):
    __tablename__ = "products"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)

    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    content_type = Column(String, nullable=False)
    size_bytes = Column(BigInteger, nullable=False)
    content_hash = Column(String, nullable=False) # sha256 hex of the whole file

    encryption_algorithm = Column(String, default=DEFAULT_ENCRYPTION, nullable=False)
    storage_type = Column(String, nullable=False) # memory | local | b2
    # Blob prefix of the chunks; "pending" until the upload is completed
    storage_pointer = Column(String, default=PENDING_POINTER, nullable=False)
    manifest = Column(JSON, nullable=True)

    # [{name, type, timing: pre_payment|post_payment_pre_grant, required, description}]
    required_inputs = Column(JSON, nullable=False, default=list)

    price = Column(Float, default=0.0, nullable=False)
    currency = Column(String, default="USD", nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def is_ready(self) -> bool:
        return self.manifest is not None and self.storage_pointer != PENDING_POINTER

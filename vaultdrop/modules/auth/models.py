import uuid
from sqlalchemy import Column, String, Boolean, DateTime, Uuid
from vaultdrop.core.db import Base
from vaultdrop.core.time import utcnow

class User(Base):
    """
    Marketplace participant. Credentials live with the identity provider;
    this row only anchors ownership and recipient checks.
    """
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, index=True, nullable=False)
    display_name = Column(String, nullable=True)
    # Optional X25519 public key (base64, raw 32 bytes) used to seal key envelopes
    public_key = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)

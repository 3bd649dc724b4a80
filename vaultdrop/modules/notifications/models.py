import uuid
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Text, Uuid
from vaultdrop.core.db import Base
from vaultdrop.core.time import utcnow

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)

    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)

    # Optional link to resource
    resource_type = Column(String, nullable=True) # e.g. "transfer", "product"
    resource_id = Column(String, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)

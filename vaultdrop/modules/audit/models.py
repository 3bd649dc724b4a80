import uuid
from sqlalchemy import Column, String, DateTime, ForeignKey, JSON, Uuid
from vaultdrop.core.db import Base
from vaultdrop.core.time import utcnow

class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=True) # Null for system/webhook actions

    action = Column(String, nullable=False, index=True) # e.g. "transfer.revoke", "transfer.dispute"
    target_type = Column(String, nullable=True) # e.g. "transfer", "product"
    target_id = Column(String, nullable=True)

    metadata_json = Column(JSON, nullable=True)
    ip_address = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

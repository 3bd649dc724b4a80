import uuid
from sqlalchemy import Column, String, Integer, BigInteger, DateTime, ForeignKey, Uuid, UniqueConstraint
from vaultdrop.core.db import Base
from vaultdrop.core.time import utcnow

class UploadSession(Base):
    """Ephemeral: deleted on completion, purged by housekeeping once expired."""
    __tablename__ = "upload_sessions"

    upload_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id = Column(Uuid, ForeignKey("products.id"), nullable=False, index=True)

    storage_prefix = Column(String, nullable=False) # products/<product_id>/chunks/<upload_id>
    chunk_size = Column(Integer, nullable=False)
    total_size = Column(BigInteger, nullable=False)
    expected_chunks = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)

class UploadChunk(Base):
    """Receipt of one stored chunk. Same-index re-upload overwrites the row."""
    __tablename__ = "upload_chunks"
    __table_args__ = (
        UniqueConstraint("upload_id", "chunk_index", name="uq_upload_chunks_upload_index"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    upload_id = Column(Uuid, ForeignKey("upload_sessions.upload_id", ondelete="CASCADE"), nullable=False, index=True)
    chunk_index = Column(Integer, nullable=False)
    hash = Column(String, nullable=False) # sha256 hex
    size = Column(Integer, nullable=False)
    uploaded_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.base import Base
from app.models.types import EncryptedString


class BusinessDocument(Base):
    __tablename__ = "business_documents"
    __table_args__ = (
        Index("ix_business_documents_business_deleted", "business_id", "deleted_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    business_id = Column(
        UUID(as_uuid=True),
        ForeignKey("business_profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    doc_type = Column(String(50), nullable=True, index=True)
    doc_url = Column(Text, nullable=True)
    # Password for protected statements; never serialised into snapshots
    doc_password = Column(EncryptedString(), nullable=True)
    doc_bank_name = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    business = relationship("BusinessProfile", back_populates="documents")

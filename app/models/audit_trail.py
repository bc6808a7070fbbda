import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base


class AuditTrailEntry(Base):
    """Append-only record of one action taken against a loan application."""

    __tablename__ = "application_audit_trail"
    __table_args__ = (
        Index("ix_audit_trail_application_created", "loan_application_id", "created_at"),
        Index("ix_audit_trail_application_action", "loan_application_id", "action"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_application_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loan_applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    action = Column(String(64), nullable=False, index=True)
    reason = Column(Text, nullable=True)
    details = Column(Text, nullable=True)
    # JSON documents serialised to text
    entry_metadata = Column("metadata", Text, nullable=True)
    before_data = Column(Text, nullable=True)
    after_data = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

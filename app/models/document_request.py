import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base

PERSONAL_DOCUMENT_TYPES = (
    "national_id_front",
    "national_id_back",
    "passport_bio_page",
    "drivers_license",
    "utility_bill",
    "bank_statement",
)

BUSINESS_DOCUMENT_TYPES = (
    "business_registration",
    "articles_of_association",
    "business_permit",
    "tax_registration_certificate",
    "certificate_of_incorporation",
    "tax_clearance_certificate",
    "partnership_deed",
    "memorandum_of_association",
    "business_plan",
    "pitch_deck",
    "annual_bank_statement",
    "audited_financial_statements",
)

REQUESTED_DOCUMENT_TYPES = PERSONAL_DOCUMENT_TYPES + BUSINESS_DOCUMENT_TYPES + ("other",)
DOCUMENT_REQUEST_STATUSES = ("pending", "fulfilled", "overdue")


class DocumentRequest(Base):
    __tablename__ = "document_requests"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'fulfilled', 'overdue')",
            name="ck_document_request_status",
        ),
        Index("ix_document_requests_application_status", "loan_application_id", "status"),
        Index("ix_document_requests_requested_from_status", "requested_from", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_application_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loan_applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    requested_by = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    requested_from = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    document_type = Column(String(50), nullable=False)
    description = Column(Text, nullable=False)
    is_required = Column(Boolean, nullable=False, default=True)
    status = Column(String(20), nullable=False, default="pending")
    due_date = Column(DateTime(timezone=True), nullable=True)
    fulfilled_at = Column(DateTime(timezone=True), nullable=True)
    # Id of the personal or business document that satisfied the request
    fulfilled_with = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

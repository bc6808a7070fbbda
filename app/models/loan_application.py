import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.base import Base

LOAN_PURPOSES = (
    "working_capital",
    "business_expansion",
    "equipment_purchase",
    "inventory_financing",
    "debt_consolidation",
    "seasonal_financing",
    "emergency_funding",
    "other",
)


class LoanApplication(Base):
    __tablename__ = "loan_applications"
    __table_args__ = (
        CheckConstraint("loan_amount > 0", name="ck_loan_app_amount_positive"),
        CheckConstraint("loan_term > 0", name="ck_loan_app_term_positive"),
        CheckConstraint("version >= 1", name="ck_loan_app_version_positive"),
        CheckConstraint(
            "status IN ('draft', 'submitted', 'under_review', 'approved', "
            "'offer_letter_sent', 'offer_letter_signed', 'offer_letter_declined', "
            "'disbursed', 'rejected', 'withdrawn', 'expired')",
            name="ck_loan_app_status",
        ),
        CheckConstraint(
            "purpose IN ('working_capital', 'business_expansion', 'equipment_purchase', "
            "'inventory_financing', 'debt_consolidation', 'seasonal_financing', "
            "'emergency_funding', 'other')",
            name="ck_loan_app_purpose",
        ),
        Index("ix_loan_applications_user_status", "user_id", "status"),
        Index("ix_loan_applications_status_created", "status", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    application_number = Column(String(50), nullable=False, unique=True)
    user_id = Column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    business_id = Column(
        UUID(as_uuid=True),
        ForeignKey("business_profiles.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    loan_product_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loan_products.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    loan_amount = Column(Numeric(15, 2), nullable=False)
    loan_term = Column(Integer, nullable=False)
    currency = Column(String(10), nullable=False)
    purpose = Column(String(50), nullable=False)
    purpose_description = Column(Text, nullable=True)
    is_business_loan = Column(Boolean, nullable=False, default=False)
    status = Column(String(30), nullable=False, default="draft", index=True)
    status_reason = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    disbursed_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    last_updated_by = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    last_updated_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)

    applicant = relationship("User", foreign_keys=[user_id])
    business = relationship("BusinessProfile")
    loan_product = relationship("LoanProduct")
    offer_letters = relationship(
        "OfferLetter",
        back_populates="loan_application",
        order_by="OfferLetter.version",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __mapper_args__ = {"version_id_col": version}

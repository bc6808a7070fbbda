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
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.base import Base

OFFER_LETTER_STATUSES = (
    "draft",
    "sent",
    "delivered",
    "viewed",
    "signed",
    "declined",
    "voided",
    "expired",
    "superseded",
)

ENVELOPE_STATUSES = (
    "not_sent",
    "sent",
    "delivered",
    "viewed",
    "completed",
    "declined",
    "voided",
    "expired",
)


class OfferLetter(Base):
    __tablename__ = "offer_letters"
    __table_args__ = (
        CheckConstraint("offer_amount > 0", name="ck_offer_letter_amount_positive"),
        CheckConstraint("offer_term > 0", name="ck_offer_letter_term_positive"),
        CheckConstraint(
            "status IN ('draft', 'sent', 'delivered', 'viewed', 'signed', 'declined', "
            "'voided', 'expired', 'superseded')",
            name="ck_offer_letter_status",
        ),
        # At most one live offer per application
        Index(
            "uq_offer_letters_active_application",
            "loan_application_id",
            unique=True,
            postgresql_where=text("is_active AND deleted_at IS NULL"),
        ),
        Index("ix_offer_letters_application_version", "loan_application_id", "version"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_application_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loan_applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    offer_number = Column(String(50), nullable=False, unique=True)
    version = Column(Integer, nullable=False, default=1)
    offer_amount = Column(Numeric(15, 2), nullable=False)
    offer_term = Column(Integer, nullable=False)
    interest_rate = Column(Numeric(7, 4), nullable=False)
    currency = Column(String(10), nullable=False)
    special_conditions = Column(Text, nullable=True)
    requires_guarantor = Column(Boolean, nullable=False, default=False)
    requires_collateral = Column(Boolean, nullable=False, default=False)
    envelope_id = Column(String(100), nullable=True, unique=True)
    envelope_status = Column(String(20), nullable=False, default="not_sent")
    template_id = Column(String(100), nullable=True)
    offer_letter_url = Column(Text, nullable=True)
    signed_document_url = Column(Text, nullable=True)
    recipient_email = Column(String(320), nullable=False)
    recipient_name = Column(String(200), nullable=False)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    viewed_at = Column(DateTime(timezone=True), nullable=True)
    signed_at = Column(DateTime(timezone=True), nullable=True)
    declined_at = Column(DateTime(timezone=True), nullable=True)
    expired_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), nullable=False, default="draft", index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    loan_application = relationship("LoanApplication", back_populates="offer_letters")
    creator = relationship("User", foreign_keys=[created_by])

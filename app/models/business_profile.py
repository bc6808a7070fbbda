import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.base import Base


class BusinessProfile(Base):
    __tablename__ = "business_profiles"
    __table_args__ = (
        Index("ix_business_profiles_user_deleted", "user_id", "deleted_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(150), nullable=False, index=True)
    description = Column(Text, nullable=True)
    entity_type = Column(String(50), nullable=True)
    country = Column(String(100), nullable=True)
    city = Column(String(100), nullable=True)
    address = Column(String(200), nullable=True)
    zip_code = Column(String(20), nullable=True)
    sector = Column(String(100), nullable=True)
    year_of_incorporation = Column(String(10), nullable=True)
    avg_monthly_turnover = Column(Numeric(15, 2), nullable=True)
    avg_yearly_turnover = Column(Numeric(15, 2), nullable=True)
    borrowing_history = Column(Boolean, nullable=True)
    amount_borrowed = Column(Numeric(15, 2), nullable=True)
    currency = Column(String(10), nullable=True)
    ownership_type = Column(String(50), nullable=True)
    ownership_percentage = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    owner = relationship("User", back_populates="business_profiles")
    documents = relationship(
        "BusinessDocument",
        back_populates="business",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

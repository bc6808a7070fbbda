import uuid

from sqlalchemy import Column, DateTime, Index, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.base import Base

STAFF_ROLES = ("super-admin", "admin", "member")


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        Index("ix_users_deleted_at", "deleted_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # Stable user id issued by the identity provider (token ``sub``)
    external_id = Column(String(64), nullable=False, unique=True)
    email = Column(String(320), nullable=False, unique=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    phone_number = Column(String(32), nullable=True)
    role = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    personal_documents = relationship(
        "PersonalDocument",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    business_profiles = relationship(
        "BusinessProfile",
        back_populates="owner",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def full_name(self) -> str:
        parts = [part for part in (self.first_name, self.last_name) if part]
        return " ".join(parts) or self.email

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.schemas.common import LoanPurpose, normalize_currency


class LoanApplicationCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    loan_product_id: UUID
    business_id: UUID | None = None
    loan_amount: Decimal = Field(gt=0, max_digits=15, decimal_places=2)
    loan_term: int = Field(ge=1)
    currency: str
    purpose: LoanPurpose
    purpose_description: str | None = Field(default=None, max_length=2000)
    is_business_loan: bool = False

    @field_validator("currency")
    @classmethod
    def _currency(cls, value: str) -> str:
        return normalize_currency(value)


class LoanApplicationDraftUpdate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    business_id: UUID | None = None
    loan_amount: Decimal | None = Field(default=None, gt=0, max_digits=15, decimal_places=2)
    loan_term: int | None = Field(default=None, ge=1)
    purpose: LoanPurpose | None = None
    purpose_description: str | None = Field(default=None, max_length=2000)
    is_business_loan: bool | None = None


class LoanApplicationDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    application_number: str
    user_id: UUID
    business_id: UUID | None = None
    loan_product_id: UUID
    loan_amount: Decimal
    loan_term: int
    currency: str
    purpose: str
    purpose_description: str | None = None
    is_business_loan: bool = False
    status: str
    status_reason: str | None = None
    rejection_reason: str | None = None
    submitted_at: datetime | None = None
    reviewed_at: datetime | None = None
    approved_at: datetime | None = None
    disbursed_at: datetime | None = None
    rejected_at: datetime | None = None
    last_updated_by: UUID | None = None
    last_updated_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class LoanApplicationListResponse(BaseModel):
    items: list[LoanApplicationDTO]
    total: int
    limit: int
    offset: int


class StatusUpdateRequest(BaseModel):
    # Kept as a plain string so unknown targets surface as transition errors
    status: str = Field(min_length=1, max_length=50)
    reason: str | None = Field(default=None, max_length=2000)
    rejection_reason: str | None = Field(default=None, max_length=2000)
    metadata: dict[str, Any] | None = None


class ApproveRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)
    metadata: dict[str, Any] | None = None


class RejectRequest(BaseModel):
    rejection_reason: str = Field(min_length=1, max_length=2000)
    reason: str | None = Field(default=None, max_length=2000)
    metadata: dict[str, Any] | None = None


class StatusUpdateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    success: bool
    previous_status: str
    new_status: str
    message: str
    snapshot_created: bool = False
    audit_entry_id: UUID | None = None
    offer_letter_id: UUID | None = None


class StatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    loan_application_id: UUID
    status: str
    status_reason: str | None = None
    last_updated_by: UUID | None = None
    last_updated_at: datetime | None = None
    allowed_transitions: list[str]


class StatusHistoryEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    status: str
    action: str
    reason: str | None = None
    details: str | None = None
    metadata: Any = None
    actor_id: UUID
    actor_name: str | None = None
    created_at: datetime | None = None


class StatusHistoryResponse(BaseModel):
    items: list[StatusHistoryEntry]

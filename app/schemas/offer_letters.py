from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class OfferLetterCreate(BaseModel):
    offer_amount: Decimal | None = Field(default=None, gt=0, max_digits=15, decimal_places=2)
    offer_term: int | None = Field(default=None, ge=1)
    interest_rate: Decimal | None = Field(default=None, ge=0, max_digits=7, decimal_places=4)
    recipient_email: EmailStr | None = None
    recipient_name: str | None = Field(default=None, max_length=200)
    special_conditions: str | None = None
    requires_guarantor: bool = False
    requires_collateral: bool = False
    notes: str | None = None


class OfferLetterSend(BaseModel):
    recipient_email: EmailStr | None = None
    recipient_name: str | None = Field(default=None, max_length=200)


class OfferLetterVoid(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


class OfferLetterDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    loan_application_id: UUID
    offer_number: str
    version: int
    offer_amount: Decimal
    offer_term: int
    interest_rate: Decimal
    currency: str
    special_conditions: str | None = None
    requires_guarantor: bool = False
    requires_collateral: bool = False
    envelope_id: str | None = None
    envelope_status: str
    offer_letter_url: str | None = None
    signed_document_url: str | None = None
    recipient_email: str | None = None
    recipient_name: str | None = None
    sent_at: datetime | None = None
    delivered_at: datetime | None = None
    viewed_at: datetime | None = None
    signed_at: datetime | None = None
    declined_at: datetime | None = None
    expired_at: datetime | None = None
    expires_at: datetime | None = None
    status: str
    is_active: bool
    created_by: UUID
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class OfferLetterListResponse(BaseModel):
    items: list[OfferLetterDTO]


class EnvelopeUpdateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    processed: bool
    message: str
    offer_letter_id: UUID | None = None
    offer_status: str | None = None
    application_status: str | None = None

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.schemas.common import normalize_currency


class BusinessRegister(BaseModel):
    name: str = Field(min_length=1, max_length=150)
    description: str | None = Field(default=None, max_length=2000)
    entity_type: str = Field(min_length=1, max_length=50)
    country: str = Field(min_length=2, max_length=100)
    city: str | None = Field(default=None, max_length=100)
    address: str | None = Field(default=None, max_length=200)
    zip_code: str | None = Field(default=None, max_length=20)
    sector: str = Field(min_length=1, max_length=100)
    year_of_incorporation: int = Field(ge=1900, le=2100)
    avg_monthly_turnover: Decimal | None = Field(default=None, ge=0, max_digits=15, decimal_places=2)
    avg_yearly_turnover: Decimal | None = Field(default=None, ge=0, max_digits=15, decimal_places=2)
    borrowing_history: bool | None = None
    amount_borrowed: Decimal | None = Field(default=None, ge=0, max_digits=15, decimal_places=2)
    currency: str | None = None
    is_owned: bool
    ownership_percentage: float | None = Field(default=None, ge=0, le=100)
    ownership_type: str | None = Field(default=None, min_length=1, max_length=50)

    @field_validator("currency")
    @classmethod
    def _currency(cls, value: str | None) -> str | None:
        return normalize_currency(value) if value is not None else None

    @model_validator(mode="after")
    def _ownership(self) -> "BusinessRegister":
        if self.is_owned:
            if self.ownership_percentage is None or self.ownership_type is None:
                raise ValueError(
                    "ownership_percentage and ownership_type are required when is_owned is true"
                )
        elif self.ownership_percentage:
            raise ValueError("ownership_percentage must be 0 when is_owned is false")
        return self


class BusinessProfileDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    name: str
    description: str | None = None
    entity_type: str | None = None
    country: str | None = None
    city: str | None = None
    sector: str | None = None
    year_of_incorporation: str | None = None
    currency: str | None = None
    ownership_type: str | None = None
    ownership_percentage: int | None = None
    created_at: datetime | None = None


class BusinessProfileListResponse(BaseModel):
    items: list[BusinessProfileDTO]
    total: int

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.schemas.common import normalize_currency


class TermUnit(str, Enum):
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"
    QUARTERS = "quarters"
    YEARS = "years"


class InterestType(str, Enum):
    FIXED = "fixed"
    VARIABLE = "variable"


class RatePeriod(str, Enum):
    PER_DAY = "per_day"
    PER_MONTH = "per_month"
    PER_QUARTER = "per_quarter"
    PER_YEAR = "per_year"


class AmortizationMethod(str, Enum):
    FLAT = "flat"
    REDUCING_BALANCE = "reducing_balance"


class RepaymentFrequency(str, Enum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


class LoanProductCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    name: str = Field(min_length=1, max_length=150)
    slug: str | None = Field(default=None, max_length=180)
    summary: str | None = None
    description: str | None = None
    currency: str
    min_amount: Decimal = Field(ge=0, max_digits=15, decimal_places=2)
    max_amount: Decimal = Field(gt=0, max_digits=15, decimal_places=2)
    min_term: int = Field(ge=1)
    max_term: int = Field(ge=1)
    term_unit: TermUnit = TermUnit.MONTHS
    interest_rate: Decimal = Field(ge=0, max_digits=7, decimal_places=4)
    interest_type: InterestType = InterestType.FIXED
    rate_period: RatePeriod = RatePeriod.PER_YEAR
    amortization_method: AmortizationMethod = AmortizationMethod.REDUCING_BALANCE
    repayment_frequency: RepaymentFrequency = RepaymentFrequency.MONTHLY
    processing_fee_rate: Decimal | None = Field(default=None, ge=0)
    processing_fee_flat: Decimal | None = Field(default=None, ge=0)
    late_fee_rate: Decimal | None = Field(default=None, ge=0)
    late_fee_flat: Decimal | None = Field(default=None, ge=0)
    prepayment_penalty_rate: Decimal | None = Field(default=None, ge=0)
    grace_period_days: int = Field(default=0, ge=0)

    @field_validator("currency")
    @classmethod
    def _currency(cls, value: str) -> str:
        return normalize_currency(value)


class LoanProductUpdate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    name: str | None = Field(default=None, min_length=1, max_length=150)
    summary: str | None = None
    description: str | None = None
    min_amount: Decimal | None = Field(default=None, ge=0, max_digits=15, decimal_places=2)
    max_amount: Decimal | None = Field(default=None, gt=0, max_digits=15, decimal_places=2)
    min_term: int | None = Field(default=None, ge=1)
    max_term: int | None = Field(default=None, ge=1)
    term_unit: TermUnit | None = None
    interest_rate: Decimal | None = Field(default=None, ge=0, max_digits=7, decimal_places=4)
    interest_type: InterestType | None = None
    rate_period: RatePeriod | None = None
    amortization_method: AmortizationMethod | None = None
    repayment_frequency: RepaymentFrequency | None = None
    processing_fee_rate: Decimal | None = Field(default=None, ge=0)
    processing_fee_flat: Decimal | None = Field(default=None, ge=0)
    late_fee_rate: Decimal | None = Field(default=None, ge=0)
    late_fee_flat: Decimal | None = Field(default=None, ge=0)
    prepayment_penalty_rate: Decimal | None = Field(default=None, ge=0)
    grace_period_days: int | None = Field(default=None, ge=0)
    is_active: bool | None = None


class LoanProductDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    slug: str | None = None
    summary: str | None = None
    description: str | None = None
    currency: str
    min_amount: Decimal
    max_amount: Decimal
    min_term: int
    max_term: int
    term_unit: str
    interest_rate: Decimal
    interest_type: str
    rate_period: str
    amortization_method: str
    repayment_frequency: str
    processing_fee_rate: Decimal | None = None
    processing_fee_flat: Decimal | None = None
    late_fee_rate: Decimal | None = None
    late_fee_flat: Decimal | None = None
    prepayment_penalty_rate: Decimal | None = None
    grace_period_days: int = 0
    version: int
    is_active: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None


class LoanProductListResponse(BaseModel):
    items: list[LoanProductDTO]
    total: int

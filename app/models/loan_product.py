import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base

TERM_UNITS = ("days", "weeks", "months", "quarters", "years")
INTEREST_TYPES = ("fixed", "variable")
RATE_PERIODS = ("per_day", "per_month", "per_quarter", "per_year")
REPAYMENT_FREQUENCIES = ("weekly", "biweekly", "monthly", "quarterly")
AMORTIZATION_METHODS = ("flat", "reducing_balance")


class LoanProduct(Base):
    __tablename__ = "loan_products"
    __table_args__ = (
        CheckConstraint("min_amount >= 0", name="ck_loan_product_min_amount_nonneg"),
        CheckConstraint("max_amount >= min_amount", name="ck_loan_product_amount_range"),
        CheckConstraint("min_term >= 1", name="ck_loan_product_min_term_positive"),
        CheckConstraint("max_term >= min_term", name="ck_loan_product_term_range"),
        CheckConstraint("interest_rate >= 0", name="ck_loan_product_rate_nonneg"),
        CheckConstraint("version >= 1", name="ck_loan_product_version_positive"),
        CheckConstraint(
            "term_unit IN ('days', 'weeks', 'months', 'quarters', 'years')",
            name="ck_loan_product_term_unit",
        ),
        CheckConstraint(
            "interest_type IN ('fixed', 'variable')",
            name="ck_loan_product_interest_type",
        ),
        CheckConstraint(
            "rate_period IN ('per_day', 'per_month', 'per_quarter', 'per_year')",
            name="ck_loan_product_rate_period",
        ),
        CheckConstraint(
            "repayment_frequency IN ('weekly', 'biweekly', 'monthly', 'quarterly')",
            name="ck_loan_product_repayment_frequency",
        ),
        CheckConstraint(
            "amortization_method IN ('flat', 'reducing_balance')",
            name="ck_loan_product_amortization_method",
        ),
        Index("ix_loan_products_active_deleted", "is_active", "deleted_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(150), nullable=False, unique=True)
    slug = Column(String(180), nullable=True)
    summary = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    currency = Column(String(10), nullable=False, index=True)
    min_amount = Column(Numeric(15, 2), nullable=False)
    max_amount = Column(Numeric(15, 2), nullable=False)
    min_term = Column(Integer, nullable=False)
    max_term = Column(Integer, nullable=False)
    term_unit = Column(String(20), nullable=False)
    # Percentage value: 12.5 means 12.5%
    interest_rate = Column(Numeric(7, 4), nullable=False)
    interest_type = Column(String(20), nullable=False, default="fixed")
    rate_period = Column(String(20), nullable=False, default="per_year")
    amortization_method = Column(String(30), nullable=False, default="reducing_balance")
    repayment_frequency = Column(String(20), nullable=False, default="monthly")
    processing_fee_rate = Column(Numeric(7, 4), nullable=True)
    processing_fee_flat = Column(Numeric(15, 2), nullable=True)
    late_fee_rate = Column(Numeric(7, 4), nullable=True)
    late_fee_flat = Column(Numeric(15, 2), nullable=True)
    prepayment_penalty_rate = Column(Numeric(7, 4), nullable=True)
    grace_period_days = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
    deleted_at = Column(DateTime(timezone=True), nullable=True)

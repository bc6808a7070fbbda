"""initial loan origination schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _uuid(name: str, **kwargs) -> sa.Column:
    return sa.Column(name, postgresql.UUID(as_uuid=True), **kwargs)


def _timestamps(*, with_updated: bool = True, with_deleted: bool = False) -> list[sa.Column]:
    columns = [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        )
    ]
    if with_updated:
        columns.append(
            sa.Column(
                "updated_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.func.now(),
            )
        )
    if with_deleted:
        columns.append(sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True))
    return columns


def upgrade() -> None:
    op.create_table(
        "users",
        _uuid("id", primary_key=True, nullable=False),
        sa.Column("external_id", sa.String(length=64), nullable=False, unique=True),
        sa.Column("email", sa.String(length=320), nullable=False, unique=True),
        sa.Column("first_name", sa.String(length=100), nullable=True),
        sa.Column("last_name", sa.String(length=100), nullable=True),
        sa.Column("phone_number", sa.String(length=32), nullable=True),
        sa.Column("role", sa.String(length=50), nullable=True),
        *_timestamps(with_deleted=True),
    )
    op.create_index("ix_users_deleted_at", "users", ["deleted_at"])

    op.create_table(
        "loan_products",
        _uuid("id", primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=150), nullable=False, unique=True),
        sa.Column("slug", sa.String(length=180), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("currency", sa.String(length=10), nullable=False),
        sa.Column("min_amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("max_amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("min_term", sa.Integer(), nullable=False),
        sa.Column("max_term", sa.Integer(), nullable=False),
        sa.Column("term_unit", sa.String(length=20), nullable=False),
        sa.Column("interest_rate", sa.Numeric(7, 4), nullable=False),
        sa.Column("interest_type", sa.String(length=20), nullable=False, server_default="fixed"),
        sa.Column("rate_period", sa.String(length=20), nullable=False, server_default="per_year"),
        sa.Column(
            "amortization_method",
            sa.String(length=30),
            nullable=False,
            server_default="reducing_balance",
        ),
        sa.Column(
            "repayment_frequency", sa.String(length=20), nullable=False, server_default="monthly"
        ),
        sa.Column("processing_fee_rate", sa.Numeric(7, 4), nullable=True),
        sa.Column("processing_fee_flat", sa.Numeric(15, 2), nullable=True),
        sa.Column("late_fee_rate", sa.Numeric(7, 4), nullable=True),
        sa.Column("late_fee_flat", sa.Numeric(15, 2), nullable=True),
        sa.Column("prepayment_penalty_rate", sa.Numeric(7, 4), nullable=True),
        sa.Column("grace_period_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(with_deleted=True),
        sa.CheckConstraint("min_amount >= 0", name="ck_loan_product_min_amount_nonneg"),
        sa.CheckConstraint("max_amount >= min_amount", name="ck_loan_product_amount_range"),
        sa.CheckConstraint("min_term >= 1", name="ck_loan_product_min_term_positive"),
        sa.CheckConstraint("max_term >= min_term", name="ck_loan_product_term_range"),
        sa.CheckConstraint("interest_rate >= 0", name="ck_loan_product_rate_nonneg"),
        sa.CheckConstraint("version >= 1", name="ck_loan_product_version_positive"),
        sa.CheckConstraint(
            "term_unit IN ('days', 'weeks', 'months', 'quarters', 'years')",
            name="ck_loan_product_term_unit",
        ),
        sa.CheckConstraint(
            "interest_type IN ('fixed', 'variable')", name="ck_loan_product_interest_type"
        ),
        sa.CheckConstraint(
            "rate_period IN ('per_day', 'per_month', 'per_quarter', 'per_year')",
            name="ck_loan_product_rate_period",
        ),
        sa.CheckConstraint(
            "repayment_frequency IN ('weekly', 'biweekly', 'monthly', 'quarterly')",
            name="ck_loan_product_repayment_frequency",
        ),
        sa.CheckConstraint(
            "amortization_method IN ('flat', 'reducing_balance')",
            name="ck_loan_product_amortization_method",
        ),
    )
    op.create_index("ix_loan_products_currency", "loan_products", ["currency"])
    op.create_index(
        "ix_loan_products_active_deleted", "loan_products", ["is_active", "deleted_at"]
    )

    op.create_table(
        "business_profiles",
        _uuid("id", primary_key=True, nullable=False),
        _uuid("user_id", sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=150), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("entity_type", sa.String(length=50), nullable=True),
        sa.Column("country", sa.String(length=100), nullable=True),
        sa.Column("city", sa.String(length=100), nullable=True),
        sa.Column("address", sa.String(length=200), nullable=True),
        sa.Column("zip_code", sa.String(length=20), nullable=True),
        sa.Column("sector", sa.String(length=100), nullable=True),
        sa.Column("year_of_incorporation", sa.String(length=10), nullable=True),
        sa.Column("avg_monthly_turnover", sa.Numeric(15, 2), nullable=True),
        sa.Column("avg_yearly_turnover", sa.Numeric(15, 2), nullable=True),
        sa.Column("borrowing_history", sa.Boolean(), nullable=True),
        sa.Column("amount_borrowed", sa.Numeric(15, 2), nullable=True),
        sa.Column("currency", sa.String(length=10), nullable=True),
        sa.Column("ownership_type", sa.String(length=50), nullable=True),
        sa.Column("ownership_percentage", sa.Integer(), nullable=True),
        *_timestamps(with_deleted=True),
    )
    op.create_index("ix_business_profiles_user_id", "business_profiles", ["user_id"])
    op.create_index("ix_business_profiles_name", "business_profiles", ["name"])
    op.create_index(
        "ix_business_profiles_user_deleted", "business_profiles", ["user_id", "deleted_at"]
    )

    op.create_table(
        "personal_documents",
        _uuid("id", primary_key=True, nullable=False),
        _uuid("user_id", sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("doc_type", sa.String(length=50), nullable=True),
        sa.Column("doc_url", sa.Text(), nullable=True),
        *_timestamps(with_deleted=True),
    )
    op.create_index("ix_personal_documents_user_id", "personal_documents", ["user_id"])

    op.create_table(
        "business_documents",
        _uuid("id", primary_key=True, nullable=False),
        _uuid(
            "business_id",
            sa.ForeignKey("business_profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("doc_type", sa.String(length=50), nullable=True),
        sa.Column("doc_url", sa.Text(), nullable=True),
        sa.Column("doc_password", sa.LargeBinary(), nullable=True),
        sa.Column("doc_bank_name", sa.String(length=100), nullable=True),
        *_timestamps(with_deleted=True),
    )
    op.create_index("ix_business_documents_business_id", "business_documents", ["business_id"])
    op.create_index("ix_business_documents_doc_type", "business_documents", ["doc_type"])
    op.create_index(
        "ix_business_documents_business_deleted",
        "business_documents",
        ["business_id", "deleted_at"],
    )

    op.create_table(
        "loan_applications",
        _uuid("id", primary_key=True, nullable=False),
        sa.Column("application_number", sa.String(length=50), nullable=False, unique=True),
        _uuid("user_id", sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        _uuid(
            "business_id",
            sa.ForeignKey("business_profiles.id", ondelete="SET NULL"),
            nullable=True,
        ),
        _uuid(
            "loan_product_id",
            sa.ForeignKey("loan_products.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("loan_amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("loan_term", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=10), nullable=False),
        sa.Column("purpose", sa.String(length=50), nullable=False),
        sa.Column("purpose_description", sa.Text(), nullable=True),
        sa.Column("is_business_loan", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="draft"),
        sa.Column("status_reason", sa.Text(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("disbursed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        _uuid("last_updated_by", sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("last_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(with_deleted=True),
        sa.CheckConstraint("loan_amount > 0", name="ck_loan_app_amount_positive"),
        sa.CheckConstraint("loan_term > 0", name="ck_loan_app_term_positive"),
        sa.CheckConstraint("version >= 1", name="ck_loan_app_version_positive"),
        sa.CheckConstraint(
            "status IN ('draft', 'submitted', 'under_review', 'approved', "
            "'offer_letter_sent', 'offer_letter_signed', 'offer_letter_declined', "
            "'disbursed', 'rejected', 'withdrawn', 'expired')",
            name="ck_loan_app_status",
        ),
        sa.CheckConstraint(
            "purpose IN ('working_capital', 'business_expansion', 'equipment_purchase', "
            "'inventory_financing', 'debt_consolidation', 'seasonal_financing', "
            "'emergency_funding', 'other')",
            name="ck_loan_app_purpose",
        ),
    )
    op.create_index("ix_loan_applications_user_id", "loan_applications", ["user_id"])
    op.create_index("ix_loan_applications_business_id", "loan_applications", ["business_id"])
    op.create_index(
        "ix_loan_applications_loan_product_id", "loan_applications", ["loan_product_id"]
    )
    op.create_index("ix_loan_applications_status", "loan_applications", ["status"])
    op.create_index("ix_loan_applications_deleted_at", "loan_applications", ["deleted_at"])
    op.create_index("ix_loan_applications_user_status", "loan_applications", ["user_id", "status"])
    op.create_index(
        "ix_loan_applications_status_created", "loan_applications", ["status", "created_at"]
    )

    op.create_table(
        "loan_product_snapshots",
        _uuid("id", primary_key=True, nullable=False),
        _uuid(
            "loan_application_id",
            sa.ForeignKey("loan_applications.id", ondelete="CASCADE"),
            nullable=False,
        ),
        _uuid(
            "loan_product_id",
            sa.ForeignKey("loan_products.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("product_snapshot", sa.Text(), nullable=False),
        sa.Column("product_version", sa.Integer(), nullable=False),
        sa.Column(
            "snapshot_reason",
            sa.String(length=50),
            nullable=False,
            server_default="application_creation",
        ),
        *_timestamps(with_updated=False),
    )
    op.create_index(
        "ix_loan_product_snapshots_loan_application_id",
        "loan_product_snapshots",
        ["loan_application_id"],
    )
    op.create_index(
        "ix_loan_product_snapshots_loan_product_id", "loan_product_snapshots", ["loan_product_id"]
    )

    op.create_table(
        "application_audit_trail",
        _uuid("id", primary_key=True, nullable=False),
        _uuid(
            "loan_application_id",
            sa.ForeignKey("loan_applications.id", ondelete="CASCADE"),
            nullable=False,
        ),
        _uuid("user_id", sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("details", sa.Text(), nullable=True),
        sa.Column("metadata", sa.Text(), nullable=True),
        sa.Column("before_data", sa.Text(), nullable=True),
        sa.Column("after_data", sa.Text(), nullable=True),
        *_timestamps(with_updated=False),
    )
    op.create_index(
        "ix_application_audit_trail_loan_application_id",
        "application_audit_trail",
        ["loan_application_id"],
    )
    op.create_index("ix_application_audit_trail_user_id", "application_audit_trail", ["user_id"])
    op.create_index("ix_application_audit_trail_action", "application_audit_trail", ["action"])
    op.create_index(
        "ix_audit_trail_application_created",
        "application_audit_trail",
        ["loan_application_id", "created_at"],
    )
    op.create_index(
        "ix_audit_trail_application_action",
        "application_audit_trail",
        ["loan_application_id", "action"],
    )

    op.create_table(
        "loan_application_snapshots",
        _uuid("id", primary_key=True, nullable=False),
        _uuid(
            "loan_application_id",
            sa.ForeignKey("loan_applications.id", ondelete="CASCADE"),
            nullable=False,
        ),
        _uuid("created_by", sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("snapshot_data", sa.Text(), nullable=False),
        sa.Column("approval_stage", sa.String(length=50), nullable=False),
        *_timestamps(with_updated=False),
    )
    op.create_index(
        "ix_loan_application_snapshots_loan_application_id",
        "loan_application_snapshots",
        ["loan_application_id"],
    )
    op.create_index(
        "ix_app_snapshots_application_created",
        "loan_application_snapshots",
        ["loan_application_id", "created_at"],
    )

    op.create_table(
        "offer_letters",
        _uuid("id", primary_key=True, nullable=False),
        _uuid(
            "loan_application_id",
            sa.ForeignKey("loan_applications.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("offer_number", sa.String(length=50), nullable=False, unique=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("offer_amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("offer_term", sa.Integer(), nullable=False),
        sa.Column("interest_rate", sa.Numeric(7, 4), nullable=False),
        sa.Column("currency", sa.String(length=10), nullable=False),
        sa.Column("special_conditions", sa.Text(), nullable=True),
        sa.Column("requires_guarantor", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("requires_collateral", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("envelope_id", sa.String(length=100), nullable=True, unique=True),
        sa.Column(
            "envelope_status", sa.String(length=20), nullable=False, server_default="not_sent"
        ),
        sa.Column("template_id", sa.String(length=100), nullable=True),
        sa.Column("offer_letter_url", sa.Text(), nullable=True),
        sa.Column("signed_document_url", sa.Text(), nullable=True),
        sa.Column("recipient_email", sa.String(length=320), nullable=False),
        sa.Column("recipient_name", sa.String(length=200), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("viewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("signed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("declined_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _uuid("created_by", sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(with_deleted=True),
        sa.CheckConstraint("offer_amount > 0", name="ck_offer_letter_amount_positive"),
        sa.CheckConstraint("offer_term > 0", name="ck_offer_letter_term_positive"),
        sa.CheckConstraint(
            "status IN ('draft', 'sent', 'delivered', 'viewed', 'signed', 'declined', "
            "'voided', 'expired', 'superseded')",
            name="ck_offer_letter_status",
        ),
    )
    op.create_index(
        "ix_offer_letters_loan_application_id", "offer_letters", ["loan_application_id"]
    )
    op.create_index("ix_offer_letters_status", "offer_letters", ["status"])
    op.create_index(
        "ix_offer_letters_application_version",
        "offer_letters",
        ["loan_application_id", "version"],
    )
    op.create_index(
        "uq_offer_letters_active_application",
        "offer_letters",
        ["loan_application_id"],
        unique=True,
        postgresql_where=sa.text("is_active AND deleted_at IS NULL"),
    )

    op.create_table(
        "document_requests",
        _uuid("id", primary_key=True, nullable=False),
        _uuid(
            "loan_application_id",
            sa.ForeignKey("loan_applications.id", ondelete="CASCADE"),
            nullable=False,
        ),
        _uuid("requested_by", sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        _uuid("requested_from", sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("document_type", sa.String(length=50), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("fulfilled_at", sa.DateTime(timezone=True), nullable=True),
        _uuid("fulfilled_with", nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('pending', 'fulfilled', 'overdue')", name="ck_document_request_status"
        ),
    )
    op.create_index(
        "ix_document_requests_loan_application_id", "document_requests", ["loan_application_id"]
    )
    op.create_index(
        "ix_document_requests_application_status",
        "document_requests",
        ["loan_application_id", "status"],
    )
    op.create_index(
        "ix_document_requests_requested_from_status",
        "document_requests",
        ["requested_from", "status"],
    )


def downgrade() -> None:
    op.drop_table("document_requests")
    op.drop_index("uq_offer_letters_active_application", table_name="offer_letters")
    op.drop_table("offer_letters")
    op.drop_table("loan_application_snapshots")
    op.drop_table("application_audit_trail")
    op.drop_table("loan_product_snapshots")
    op.drop_table("loan_applications")
    op.drop_table("business_documents")
    op.drop_table("personal_documents")
    op.drop_table("business_profiles")
    op.drop_table("loan_products")
    op.drop_table("users")

from __future__ import annotations

import logging
import secrets
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import InvalidParametersError, NotFoundError
from app.models.business_profile import BusinessProfile
from app.models.loan_application import LoanApplication
from app.models.loan_product import LoanProduct
from app.models.loan_product_snapshot import LoanProductSnapshot
from app.schemas.loan import LoanApplicationCreate, LoanApplicationDraftUpdate
from app.services import audit_trail, loan_products
from app.services.audit_trail import AuditAction, load_json
from app.services.status_transitions import LoanApplicationStatus
from app.services.user_cache import CachedUser

logger = logging.getLogger(__name__)

PRODUCT_SNAPSHOT_REASON = "application_creation"
# Applications past this point are part of the lending record and stay visible
DELETABLE_STATUSES = frozenset(
    {LoanApplicationStatus.DRAFT.value, LoanApplicationStatus.SUBMITTED.value}
)
_DRAFT_FIELDS = (
    "business_id",
    "loan_amount",
    "loan_term",
    "purpose",
    "purpose_description",
    "is_business_loan",
)


def generate_application_number(now: datetime | None = None) -> str:
    year = (now or datetime.now(timezone.utc)).year
    return f"LOAN-{year}-{secrets.randbelow(1_000_000):06d}"


def _not_found(loan_application_id) -> NotFoundError:
    return NotFoundError(
        f"Loan application {loan_application_id} not found",
        code="LOAN_APPLICATION_NOT_FOUND",
    )


def _check_terms(
    *,
    amount: Decimal,
    term: int,
    min_amount: Decimal,
    max_amount: Decimal,
    min_term: int,
    max_term: int,
    term_unit: str,
) -> None:
    if amount < min_amount or amount > max_amount:
        raise InvalidParametersError(
            f"Loan amount must be between {min_amount} and {max_amount}",
            code="INVALID_AMOUNT",
        )
    if term < min_term or term > max_term:
        raise InvalidParametersError(
            f"Loan term must be between {min_term} and {max_term} {term_unit}",
            code="INVALID_TERM",
        )


async def _get_active_product(db: AsyncSession, product_id: uuid.UUID) -> LoanProduct:
    stmt = select(LoanProduct).where(
        LoanProduct.id == product_id,
        LoanProduct.deleted_at.is_(None),
        LoanProduct.is_active.is_(True),
    )
    product = (await db.execute(stmt)).scalar_one_or_none()
    if product is None:
        raise NotFoundError(f"Loan product {product_id} not found", code="LOAN_PRODUCT_NOT_FOUND")
    return product


async def check_business(
    db: AsyncSession, business_id: uuid.UUID, user: CachedUser
) -> BusinessProfile:
    """Fetch a live business profile; borrowers only ever see their own."""
    stmt = select(BusinessProfile).where(
        BusinessProfile.id == business_id,
        BusinessProfile.deleted_at.is_(None),
    )
    business = (await db.execute(stmt)).scalar_one_or_none()
    if business is None or (not user.is_staff and business.user_id != user.id):
        raise NotFoundError(f"Business {business_id} not found", code="BUSINESS_NOT_FOUND")
    return business


async def get_product_snapshot(
    db: AsyncSession, loan_application_id: uuid.UUID
) -> LoanProductSnapshot | None:
    stmt = (
        select(LoanProductSnapshot)
        .where(LoanProductSnapshot.loan_application_id == loan_application_id)
        .order_by(desc(LoanProductSnapshot.created_at))
        .limit(1)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def create_application(
    db: AsyncSession, *, user: CachedUser, payload: LoanApplicationCreate
) -> LoanApplication:
    """Create a draft application bound to the product's current terms."""
    product = await _get_active_product(db, payload.loan_product_id)
    if payload.currency != product.currency:
        raise InvalidParametersError(
            f"Currency must match loan product currency: {product.currency}",
            code="INVALID_CURRENCY",
        )
    _check_terms(
        amount=payload.loan_amount,
        term=payload.loan_term,
        min_amount=Decimal(str(product.min_amount)),
        max_amount=Decimal(str(product.max_amount)),
        min_term=product.min_term,
        max_term=product.max_term,
        term_unit=product.term_unit,
    )
    if payload.is_business_loan and payload.business_id is None:
        raise InvalidParametersError("Business loans require a business_id")
    if payload.business_id is not None:
        await check_business(db, payload.business_id, user)

    now = datetime.now(timezone.utc)
    application = LoanApplication(
        id=uuid.uuid4(),
        application_number=generate_application_number(now),
        user_id=user.id,
        business_id=payload.business_id,
        loan_product_id=product.id,
        loan_amount=payload.loan_amount,
        loan_term=payload.loan_term,
        currency=payload.currency,
        purpose=payload.purpose,
        purpose_description=payload.purpose_description,
        is_business_loan=payload.is_business_loan,
        status=LoanApplicationStatus.DRAFT.value,
        last_updated_by=user.id,
        last_updated_at=now,
        version=1,
        created_at=now,
    )
    db.add(application)
    db.add(
        LoanProductSnapshot(
            id=uuid.uuid4(),
            loan_application_id=application.id,
            loan_product_id=product.id,
            product_snapshot=audit_trail.dump_json(loan_products.product_terms(product)),
            product_version=product.version or 1,
            snapshot_reason=PRODUCT_SNAPSHOT_REASON,
            created_at=now,
        )
    )
    audit_trail.log_action(
        db,
        loan_application_id=application.id,
        user_id=user.id,
        action=AuditAction.APPLICATION_CREATED,
        details={
            "application_number": application.application_number,
            "loan_product_id": str(product.id),
            "product_version": product.version or 1,
        },
        after_data=audit_trail.model_snapshot(application),
    )
    await db.flush()
    logger.info(
        "Loan application created",
        extra={
            "fields": {
                "loan_application_id": str(application.id),
                "application_number": application.application_number,
            }
        },
    )
    return application


async def list_applications(
    db: AsyncSession,
    *,
    user: CachedUser,
    status: str | None = None,
    loan_product_id: uuid.UUID | None = None,
    business_id: uuid.UUID | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[LoanApplication], int]:
    conditions = [LoanApplication.deleted_at.is_(None)]
    if not user.is_staff:
        conditions.append(LoanApplication.user_id == user.id)
    if status:
        conditions.append(LoanApplication.status == status)
    if loan_product_id:
        conditions.append(LoanApplication.loan_product_id == loan_product_id)
    if business_id:
        conditions.append(LoanApplication.business_id == business_id)

    count_stmt = select(func.count()).select_from(LoanApplication).where(*conditions)
    total = int((await db.execute(count_stmt)).scalar_one() or 0)
    stmt = (
        select(LoanApplication)
        .where(*conditions)
        .order_by(LoanApplication.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all()), total


async def get_application(
    db: AsyncSession, loan_application_id: uuid.UUID, *, user: CachedUser | None = None
) -> LoanApplication:
    """Fetch a live application; borrowers only ever see their own."""
    stmt = select(LoanApplication).where(
        LoanApplication.id == loan_application_id,
        LoanApplication.deleted_at.is_(None),
    )
    application = (await db.execute(stmt)).scalar_one_or_none()
    if application is None:
        raise _not_found(loan_application_id)
    if user is not None and not user.is_staff and application.user_id != user.id:
        raise _not_found(loan_application_id)
    return application


async def _frozen_terms(db: AsyncSession, application: LoanApplication) -> dict[str, Any] | None:
    snapshot = await get_product_snapshot(db, application.id)
    if snapshot is None:
        return None
    terms = load_json(snapshot.product_snapshot)
    return terms if isinstance(terms, dict) else None


async def update_draft_application(
    db: AsyncSession,
    loan_application_id: uuid.UUID,
    payload: LoanApplicationDraftUpdate,
    *,
    user: CachedUser,
) -> LoanApplication:
    application = await get_application(db, loan_application_id, user=user)
    if application.status != LoanApplicationStatus.DRAFT.value:
        raise InvalidParametersError(
            "Only draft applications can be edited",
            code="INVALID_STATUS",
            details={"status": application.status},
        )
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        return application

    if "loan_amount" in changes or "loan_term" in changes:
        terms = await _frozen_terms(db, application)
        if terms is not None:
            _check_terms(
                amount=Decimal(str(changes.get("loan_amount") or application.loan_amount)),
                term=int(changes.get("loan_term") or application.loan_term),
                min_amount=Decimal(str(terms["min_amount"])),
                max_amount=Decimal(str(terms["max_amount"])),
                min_term=int(terms["min_term"]),
                max_term=int(terms["max_term"]),
                term_unit=terms.get("term_unit") or "",
            )
    if changes.get("business_id") is not None:
        await check_business(db, changes["business_id"], user)
    is_business_loan = changes.get("is_business_loan", application.is_business_loan)
    business_id = changes.get("business_id", application.business_id)
    if is_business_loan and business_id is None:
        raise InvalidParametersError("Business loans require a business_id")

    before = audit_trail.model_snapshot(application)
    now = datetime.now(timezone.utc)
    for key in _DRAFT_FIELDS:
        if key in changes:
            setattr(application, key, changes[key])
    application.last_updated_by = user.id
    application.last_updated_at = now
    application.updated_at = now
    db.add(application)
    audit_trail.log_action(
        db,
        loan_application_id=application.id,
        user_id=user.id,
        action=AuditAction.APPLICATION_UPDATED,
        details={"fields": sorted(changes)},
        before_data=before,
        after_data=audit_trail.model_snapshot(application),
    )
    await db.flush()
    return application


async def delete_application(
    db: AsyncSession, loan_application_id: uuid.UUID, *, user: CachedUser
) -> LoanApplication:
    application = await get_application(db, loan_application_id, user=user)
    if application.status not in DELETABLE_STATUSES:
        raise InvalidParametersError(
            "Only draft or submitted applications can be deleted",
            code="INVALID_STATUS",
            details={"status": application.status},
        )
    now = datetime.now(timezone.utc)
    application.deleted_at = now
    application.updated_at = now
    application.last_updated_by = user.id
    application.last_updated_at = now
    db.add(application)
    audit_trail.log_action(
        db,
        loan_application_id=application.id,
        user_id=user.id,
        action=AuditAction.APPLICATION_DELETED,
        details={"application_number": application.application_number},
    )
    await db.flush()
    return application

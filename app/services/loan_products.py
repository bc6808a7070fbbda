from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConflictError, InvalidParametersError, NotFoundError
from app.models.loan_product import LoanProduct
from app.schemas.products import LoanProductCreate, LoanProductUpdate
from app.services.audit_trail import model_snapshot


_REQUIRED_FIELDS = frozenset(
    {
        "name",
        "min_amount",
        "max_amount",
        "min_term",
        "max_term",
        "term_unit",
        "interest_rate",
        "interest_type",
        "rate_period",
        "amortization_method",
        "repayment_frequency",
        "grace_period_days",
        "is_active",
    }
)


def _slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.strip().lower()).strip("-")


def _not_found(product_id) -> NotFoundError:
    return NotFoundError(f"Loan product {product_id} not found", code="LOAN_PRODUCT_NOT_FOUND")


def _check_ranges(values: dict[str, Any]) -> None:
    min_amount = Decimal(values["min_amount"])
    max_amount = Decimal(values["max_amount"])
    if min_amount < 0 or max_amount < min_amount:
        raise InvalidParametersError(
            "max_amount must be greater than or equal to min_amount",
            code="INVALID_AMOUNT",
            details={"min_amount": str(min_amount), "max_amount": str(max_amount)},
        )
    if values["min_term"] < 1 or values["max_term"] < values["min_term"]:
        raise InvalidParametersError(
            "max_term must be greater than or equal to min_term",
            code="INVALID_TERM",
            details={"min_term": values["min_term"], "max_term": values["max_term"]},
        )


async def list_products(
    db: AsyncSession,
    *,
    include_inactive: bool = False,
    currency: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[LoanProduct], int]:
    conditions = [LoanProduct.deleted_at.is_(None)]
    if not include_inactive:
        conditions.append(LoanProduct.is_active.is_(True))
    if currency:
        conditions.append(LoanProduct.currency == currency.upper())
    count_stmt = select(func.count()).select_from(LoanProduct).where(*conditions)
    total = int((await db.execute(count_stmt)).scalar_one() or 0)
    stmt = (
        select(LoanProduct)
        .where(*conditions)
        .order_by(LoanProduct.name)
        .limit(limit)
        .offset(offset)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all()), total


async def get_product(db: AsyncSession, product_id: uuid.UUID) -> LoanProduct:
    stmt = select(LoanProduct).where(
        LoanProduct.id == product_id, LoanProduct.deleted_at.is_(None)
    )
    product = (await db.execute(stmt)).scalar_one_or_none()
    if product is None:
        raise _not_found(product_id)
    return product


async def create_product(db: AsyncSession, payload: LoanProductCreate) -> LoanProduct:
    values = payload.model_dump()
    _check_ranges(values)
    if not values.get("slug"):
        values["slug"] = _slugify(values["name"])
    product = LoanProduct(id=uuid.uuid4(), version=1, is_active=True, **values)
    db.add(product)
    try:
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError(
            f"Loan product named {payload.name!r} already exists", code="LOAN_PRODUCT_EXISTS"
        ) from exc
    return product


async def update_product(
    db: AsyncSession, product_id: uuid.UUID, payload: LoanProductUpdate
) -> LoanProduct:
    """Apply an edit and bump the version.

    Applications keep the terms captured in their product snapshot, so older
    versions are never rewritten.
    """
    product = await get_product(db, product_id)
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        return product
    merged = {
        key: changes[key] if changes.get(key) is not None else getattr(product, key)
        for key in ("min_amount", "max_amount", "min_term", "max_term")
    }
    for key in _REQUIRED_FIELDS:
        if key in changes and changes[key] is None:
            raise InvalidParametersError(f"{key} cannot be cleared")
    _check_ranges(merged)
    for key, value in changes.items():
        setattr(product, key, value)
    product.version = (product.version or 1) + 1
    db.add(product)
    try:
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError(
            f"Loan product named {product.name!r} already exists", code="LOAN_PRODUCT_EXISTS"
        ) from exc
    return product


async def delete_product(db: AsyncSession, product_id: uuid.UUID) -> LoanProduct:
    product = await get_product(db, product_id)
    product.deleted_at = datetime.now(timezone.utc)
    product.is_active = False
    db.add(product)
    await db.flush()
    return product


def product_terms(product: LoanProduct) -> dict[str, Any]:
    """JSON-ready view of the terms an application is bound to."""
    return model_snapshot(product, exclude={"created_at", "updated_at", "deleted_at"})

"""Borrower-held documents and the business profiles they belong to.

Uploads are upserts keyed by document type: a live document of the same type
is replaced in place, anything else is inserted. Each change is written to the
audit trail of every open application the document can support.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ForbiddenError
from app.models.business_document import BusinessDocument
from app.models.business_profile import BusinessProfile
from app.models.loan_application import LoanApplication
from app.models.personal_document import PersonalDocument
from app.schemas.business import BusinessRegister
from app.schemas.documents import BusinessDocumentsUpsert, PersonalDocumentsUpsert
from app.services import audit_trail, loan_applications
from app.services.audit_trail import AuditAction, AuditActionInput
from app.services.status_transitions import LoanApplicationStatus, is_terminal
from app.services.user_cache import CachedUser

logger = logging.getLogger(__name__)

_CLOSED_STATUSES = tuple(status.value for status in LoanApplicationStatus if is_terminal(status))


async def register_business(
    db: AsyncSession, *, user: CachedUser, payload: BusinessRegister
) -> BusinessProfile:
    now = datetime.now(timezone.utc)
    business = BusinessProfile(
        id=uuid.uuid4(),
        user_id=user.id,
        name=payload.name,
        description=payload.description,
        entity_type=payload.entity_type,
        country=payload.country,
        city=payload.city,
        address=payload.address,
        zip_code=payload.zip_code,
        sector=payload.sector,
        year_of_incorporation=str(payload.year_of_incorporation),
        avg_monthly_turnover=payload.avg_monthly_turnover,
        avg_yearly_turnover=payload.avg_yearly_turnover,
        borrowing_history=payload.borrowing_history,
        amount_borrowed=payload.amount_borrowed,
        currency=payload.currency,
        ownership_type=payload.ownership_type if payload.is_owned else None,
        ownership_percentage=(
            round(payload.ownership_percentage)
            if payload.is_owned and payload.ownership_percentage is not None
            else None
        ),
        created_at=now,
        updated_at=now,
    )
    db.add(business)
    await db.flush()
    logger.info("Business %s registered for user %s", business.id, user.id)
    return business


async def list_businesses(db: AsyncSession, *, user: CachedUser) -> list[BusinessProfile]:
    stmt = (
        select(BusinessProfile)
        .where(BusinessProfile.user_id == user.id, BusinessProfile.deleted_at.is_(None))
        .order_by(BusinessProfile.created_at.desc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def _open_applications(db: AsyncSession, **filters: Any) -> list[LoanApplication]:
    stmt = select(LoanApplication).where(
        LoanApplication.deleted_at.is_(None),
        LoanApplication.status.not_in(_CLOSED_STATUSES),
    )
    for column, value in filters.items():
        stmt = stmt.where(getattr(LoanApplication, column) == value)
    result = await db.execute(stmt)
    return list(result.scalars().all())


def _latest_by_type(items: Sequence[Any]) -> list[Any]:
    # Last item of each type wins
    by_type = {item.doc_type: item for item in items}
    return list(by_type.values())


def _audit_changes(
    db: AsyncSession,
    applications: Sequence[LoanApplication],
    *,
    actor: CachedUser,
    changes: Sequence[tuple[AuditAction, dict[str, Any] | None, dict[str, Any]]],
    scope: str,
) -> None:
    if not applications:
        logger.info("No open applications to audit %d %s document change(s)", len(changes), scope)
        return
    entries = []
    for action, before, after in changes:
        verb = "updated" if before else "uploaded"
        for application in applications:
            entries.append(
                AuditActionInput(
                    loan_application_id=application.id,
                    user_id=actor.id,
                    action=action,
                    reason=f"{scope.capitalize()} document {verb}",
                    details=f"{scope.capitalize()} document {after['doc_type']} {verb}",
                    before_data=before or {},
                    after_data=after,
                    metadata={
                        "document_scope": scope,
                        "document_type": after["doc_type"],
                        "operation": "update" if before else "create",
                    },
                )
            )
    audit_trail.log_multiple_actions(db, entries)


async def upsert_personal_documents(
    db: AsyncSession, *, user: CachedUser, payload: PersonalDocumentsUpsert
) -> list[PersonalDocument]:
    items = _latest_by_type(payload.documents)
    stmt = select(PersonalDocument).where(
        PersonalDocument.user_id == user.id,
        PersonalDocument.doc_type.in_([item.doc_type for item in items]),
        PersonalDocument.deleted_at.is_(None),
    )
    existing = {doc.doc_type: doc for doc in (await db.execute(stmt)).scalars().all()}

    now = datetime.now(timezone.utc)
    documents: list[PersonalDocument] = []
    changes = []
    for item in items:
        document = existing.get(item.doc_type)
        if document is None:
            document = PersonalDocument(
                id=uuid.uuid4(),
                user_id=user.id,
                doc_type=item.doc_type,
                doc_url=item.doc_url,
                created_at=now,
                updated_at=now,
            )
            changes.append((AuditAction.DOCUMENTS_UPLOADED, None, _personal_data(document)))
        else:
            before = _personal_data(document)
            document.doc_url = item.doc_url
            document.updated_at = now
            changes.append((AuditAction.DOCUMENTS_UPDATED, before, _personal_data(document)))
        db.add(document)
        documents.append(document)

    applications = await _open_applications(db, user_id=user.id)
    _audit_changes(db, applications, actor=user, changes=changes, scope="personal")
    await db.flush()
    return documents


def _personal_data(document: PersonalDocument) -> dict[str, Any]:
    return {"doc_type": document.doc_type, "doc_url": document.doc_url}


async def list_personal_documents(
    db: AsyncSession, *, user: CachedUser, user_id: uuid.UUID | None = None
) -> list[PersonalDocument]:
    """Live personal documents of ``user_id``; only staff may look past their own."""
    owner_id = user_id or user.id
    if owner_id != user.id and not user.is_staff:
        raise ForbiddenError("Only staff can view another user's documents")
    stmt = (
        select(PersonalDocument)
        .where(PersonalDocument.user_id == owner_id, PersonalDocument.deleted_at.is_(None))
        .order_by(PersonalDocument.doc_type)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


def _business_data(document: BusinessDocument) -> dict[str, Any]:
    return {
        "doc_type": document.doc_type,
        "doc_url": document.doc_url,
        "doc_bank_name": document.doc_bank_name,
        "has_password": bool(document.doc_password),
    }


async def upsert_business_documents(
    db: AsyncSession,
    business_id: uuid.UUID,
    *,
    user: CachedUser,
    payload: BusinessDocumentsUpsert,
) -> list[BusinessDocument]:
    business = await loan_applications.check_business(db, business_id, user)
    items = _latest_by_type(payload.documents)
    stmt = select(BusinessDocument).where(
        BusinessDocument.business_id == business.id,
        BusinessDocument.doc_type.in_([item.doc_type for item in items]),
        BusinessDocument.deleted_at.is_(None),
    )
    existing = {doc.doc_type: doc for doc in (await db.execute(stmt)).scalars().all()}

    now = datetime.now(timezone.utc)
    documents: list[BusinessDocument] = []
    changes = []
    for item in items:
        document = existing.get(item.doc_type)
        before = _business_data(document) if document is not None else None
        if document is None:
            document = BusinessDocument(
                id=uuid.uuid4(),
                business_id=business.id,
                doc_type=item.doc_type,
                created_at=now,
            )
        document.doc_url = item.doc_url
        document.doc_password = item.doc_password
        document.doc_bank_name = item.doc_bank_name
        document.updated_at = now
        action = AuditAction.DOCUMENTS_UPDATED if before else AuditAction.DOCUMENTS_UPLOADED
        changes.append((action, before, _business_data(document)))
        db.add(document)
        documents.append(document)

    applications = await _open_applications(db, business_id=business.id)
    _audit_changes(db, applications, actor=user, changes=changes, scope="business")
    await db.flush()
    return documents


async def list_business_documents(
    db: AsyncSession, business_id: uuid.UUID, *, user: CachedUser
) -> list[BusinessDocument]:
    business = await loan_applications.check_business(db, business_id, user)
    stmt = (
        select(BusinessDocument)
        .where(BusinessDocument.business_id == business.id, BusinessDocument.deleted_at.is_(None))
        .order_by(BusinessDocument.doc_type)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.errors import NotFoundError
from app.models.business_profile import BusinessProfile
from app.models.loan_application import LoanApplication
from app.models.loan_application_snapshot import LoanApplicationSnapshot
from app.models.user import User
from app.services.audit_trail import load_json, model_snapshot

logger = logging.getLogger(__name__)

LOAN_APPROVED_STAGE = "loan_approved"
_SECRET_DOCUMENT_FIELDS = frozenset({"doc_password"})


@dataclass(slots=True)
class SnapshotRecord:
    id: uuid.UUID
    loan_application_id: uuid.UUID
    created_by: uuid.UUID
    approval_stage: str
    created_at: datetime | None
    snapshot_data: dict[str, Any]

    @classmethod
    def from_model(cls, snapshot: LoanApplicationSnapshot) -> "SnapshotRecord":
        return cls(
            id=snapshot.id,
            loan_application_id=snapshot.loan_application_id,
            created_by=snapshot.created_by,
            approval_stage=snapshot.approval_stage,
            created_at=snapshot.created_at,
            snapshot_data=load_json(snapshot.snapshot_data) or {},
        )


def application_graph_options() -> list:
    """Eager-load everything a snapshot captures in one round of queries."""
    return [
        selectinload(LoanApplication.business).selectinload(BusinessProfile.documents),
        selectinload(LoanApplication.applicant).selectinload(User.personal_documents),
        selectinload(LoanApplication.offer_letters),
    ]


async def _load_application_graph(
    db: AsyncSession, loan_application_id: uuid.UUID
) -> LoanApplication | None:
    stmt = (
        select(LoanApplication)
        .options(*application_graph_options())
        .where(LoanApplication.id == loan_application_id, LoanApplication.deleted_at.is_(None))
    )
    return (await db.execute(stmt)).scalar_one_or_none()


def _live(items) -> list:
    return [item for item in (items or []) if getattr(item, "deleted_at", None) is None]


def build_snapshot_data(
    application: LoanApplication,
    *,
    created_by: uuid.UUID,
    approval_stage: str,
    created_at: datetime,
) -> dict[str, Any]:
    business = application.business
    if business is not None and business.deleted_at is not None:
        business = None
    applicant = application.applicant
    return {
        "application": model_snapshot(application),
        "business_profile": model_snapshot(business) if business is not None else None,
        "personal_documents": [
            model_snapshot(document)
            for document in _live(applicant.personal_documents if applicant else [])
        ],
        "business_documents": [
            model_snapshot(document, exclude=_SECRET_DOCUMENT_FIELDS)
            for document in _live(business.documents if business else [])
        ],
        "offer_letters": [model_snapshot(offer) for offer in _live(application.offer_letters)],
        "metadata": {
            "created_at": created_at.isoformat(),
            "created_by": str(created_by),
            "approval_stage": approval_stage,
        },
    }


async def create_snapshot(
    db: AsyncSession,
    *,
    loan_application_id: uuid.UUID,
    created_by: uuid.UUID,
    approval_stage: str = LOAN_APPROVED_STAGE,
    application: LoanApplication | None = None,
) -> LoanApplicationSnapshot:
    """Capture the application and its related records as a new snapshot row.

    ``application`` may be passed when the caller already holds it with its
    relationships loaded; in-flight changes on it are captured as they stand.
    The row is added to the caller's transaction, never committed here.
    """
    if application is None:
        application = await _load_application_graph(db, loan_application_id)
    if application is None:
        raise NotFoundError(
            f"Loan application {loan_application_id} not found",
            code="LOAN_APPLICATION_NOT_FOUND",
        )

    created_at = datetime.now(timezone.utc)
    data = build_snapshot_data(
        application,
        created_by=created_by,
        approval_stage=approval_stage,
        created_at=created_at,
    )
    snapshot = LoanApplicationSnapshot(
        id=uuid.uuid4(),
        loan_application_id=application.id,
        created_by=created_by,
        snapshot_data=json.dumps(data),
        approval_stage=approval_stage,
        created_at=created_at,
    )
    db.add(snapshot)
    logger.info(
        "Snapshot created",
        extra={
            "fields": {
                "snapshot_id": str(snapshot.id),
                "loan_application_id": str(application.id),
                "approval_stage": approval_stage,
            }
        },
    )
    return snapshot


async def get_snapshot(db: AsyncSession, snapshot_id: uuid.UUID) -> SnapshotRecord:
    stmt = select(LoanApplicationSnapshot).where(LoanApplicationSnapshot.id == snapshot_id)
    snapshot = (await db.execute(stmt)).scalar_one_or_none()
    if snapshot is None:
        raise NotFoundError(f"Snapshot {snapshot_id} not found", code="SNAPSHOT_NOT_FOUND")
    return SnapshotRecord.from_model(snapshot)


async def get_snapshots(db: AsyncSession, loan_application_id: uuid.UUID) -> list[SnapshotRecord]:
    """Every snapshot for the application, newest first."""
    stmt = (
        select(LoanApplicationSnapshot)
        .where(LoanApplicationSnapshot.loan_application_id == loan_application_id)
        .order_by(desc(LoanApplicationSnapshot.created_at), desc(LoanApplicationSnapshot.id))
    )
    result = await db.execute(stmt)
    return [SnapshotRecord.from_model(snapshot) for snapshot in result.scalars().all()]


async def get_latest_snapshot(db: AsyncSession, loan_application_id: uuid.UUID) -> SnapshotRecord:
    stmt = (
        select(LoanApplicationSnapshot)
        .where(LoanApplicationSnapshot.loan_application_id == loan_application_id)
        .order_by(desc(LoanApplicationSnapshot.created_at), desc(LoanApplicationSnapshot.id))
        .limit(1)
    )
    snapshot = (await db.execute(stmt)).scalar_one_or_none()
    if snapshot is None:
        raise NotFoundError(
            f"No snapshots exist for loan application {loan_application_id}",
            code="SNAPSHOT_NOT_FOUND",
        )
    return SnapshotRecord.from_model(snapshot)

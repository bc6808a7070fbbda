"""Loan-application status changes and their transactional side effects."""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import desc, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.context import get_request_id
from app.core.errors import (
    ConflictError,
    DomainError,
    InvalidParametersError,
    InvalidStatusTransitionError,
    NotFoundError,
    PersistenceError,
)
from app.models.audit_trail import AuditTrailEntry
from app.models.loan_application import LoanApplication
from app.models.offer_letter import OfferLetter
from app.models.user import User
from app.services import audit_trail, offer_letters, snapshots
from app.services.audit_trail import AuditAction, load_json, status_action
from app.services.status_transitions import (
    LoanApplicationStatus,
    allowed_transitions,
    parse_status,
    validate_transition,
)
from app.services.task_queue import TaskQueue
from app.services.user_cache import CachedUser, UserLookupCache

logger = logging.getLogger(__name__)

TASK_SEND_OFFER_LETTER = "offer_letter.send"
TASK_STATUS_NOTIFICATION = "notification.status_update"

_MILESTONE_FIELDS = {
    LoanApplicationStatus.SUBMITTED: "submitted_at",
    LoanApplicationStatus.UNDER_REVIEW: "reviewed_at",
    LoanApplicationStatus.APPROVED: "approved_at",
    LoanApplicationStatus.DISBURSED: "disbursed_at",
    LoanApplicationStatus.REJECTED: "rejected_at",
}

STATUS_HISTORY_ACTIONS = tuple(
    action.value for action in AuditAction if audit_trail.is_status_action(action.value)
)


@dataclass(slots=True)
class StatusUpdateResult:
    success: bool
    previous_status: str
    new_status: str
    message: str
    snapshot_created: bool = False
    audit_entry_id: uuid.UUID | None = None
    offer_letter_id: uuid.UUID | None = None


@dataclass(slots=True)
class StatusInfo:
    loan_application_id: uuid.UUID
    status: str
    status_reason: str | None
    last_updated_by: uuid.UUID | None
    last_updated_at: datetime | None
    allowed_transitions: list[str] = field(default_factory=list)


@dataclass(slots=True)
class StatusHistoryItem:
    id: uuid.UUID
    status: str
    action: str
    reason: str | None
    details: str | None
    metadata: Any
    actor_id: uuid.UUID
    actor_name: str | None
    created_at: datetime | None


def _not_found(loan_application_id) -> NotFoundError:
    return NotFoundError(
        f"Loan application {loan_application_id} not found",
        code="LOAN_APPLICATION_NOT_FOUND",
    )


async def _load_for_update(
    db: AsyncSession, loan_application_id: uuid.UUID, *, with_graph: bool
) -> LoanApplication | None:
    stmt = select(LoanApplication).where(
        LoanApplication.id == loan_application_id,
        LoanApplication.deleted_at.is_(None),
    )
    if with_graph:
        stmt = stmt.options(*snapshots.application_graph_options())
    # Refresh rows already in the identity map with the locked values
    stmt = stmt.with_for_update(of=LoanApplication).execution_options(populate_existing=True)
    return (await db.execute(stmt)).scalar_one_or_none()


def _apply_status(
    application: LoanApplication,
    target: LoanApplicationStatus,
    *,
    actor: CachedUser,
    reason: str | None,
    rejection_reason: str | None,
    now: datetime,
) -> None:
    application.status = target.value
    application.status_reason = reason or f"Status updated to {target.value}"
    application.last_updated_by = actor.id
    application.last_updated_at = now
    application.updated_at = now
    milestone = _MILESTONE_FIELDS.get(target)
    if milestone:
        setattr(application, milestone, now)
    if target is LoanApplicationStatus.REJECTED:
        application.rejection_reason = rejection_reason


def _status_fields(application: LoanApplication) -> dict[str, Any]:
    return {
        "status": application.status,
        "status_reason": application.status_reason,
        "rejection_reason": application.rejection_reason,
        "submitted_at": application.submitted_at,
        "reviewed_at": application.reviewed_at,
        "approved_at": application.approved_at,
        "disbursed_at": application.disbursed_at,
        "rejected_at": application.rejected_at,
        "last_updated_by": application.last_updated_by,
        "last_updated_at": application.last_updated_at,
    }


def _enqueue(task_queue: TaskQueue | None, name: str, payload: dict[str, Any], request_id: str) -> bool:
    if task_queue is None:
        logger.warning("[%s] No task queue configured; skipped %s", request_id, name)
        return False
    try:
        task_queue.enqueue(name, payload)
    except Exception:
        logger.exception("[%s] Failed to enqueue %s", request_id, name)
        return False
    return True


async def update_status(
    db: AsyncSession,
    *,
    loan_application_id: uuid.UUID,
    new_status: str | LoanApplicationStatus,
    actor_external_id: str,
    reason: str | None = None,
    rejection_reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    user_cache: UserLookupCache,
    task_queue: TaskQueue | None = None,
) -> StatusUpdateResult:
    """Move an application to ``new_status``.

    The row update, audit entries, approval snapshot and offer-letter draft
    commit together or not at all. Notification and signing dispatch are
    queued only after the commit succeeds.
    """
    request_id = get_request_id()
    if request_id == "-":
        request_id = uuid.uuid4().hex[:12]
    started = time.perf_counter()
    requested = new_status.value if isinstance(new_status, LoanApplicationStatus) else new_status

    if not loan_application_id or not requested or not actor_external_id:
        raise InvalidParametersError("Missing required status update parameters")
    if requested == LoanApplicationStatus.REJECTED.value and not (rejection_reason or "").strip():
        raise InvalidParametersError(
            "A rejection reason is required when rejecting an application",
            code="REJECTION_REASON_REQUIRED",
        )

    logger.info(
        "[%s] Status update requested: application=%s target=%s actor=%s",
        request_id,
        loan_application_id,
        requested,
        actor_external_id,
    )
    target = parse_status(requested)
    with_graph = target is LoanApplicationStatus.APPROVED

    try:
        application = await _load_for_update(db, loan_application_id, with_graph=with_graph)
        if application is None:
            raise _not_found(loan_application_id)

        previous_status = application.status
        validation = validate_transition(previous_status, requested)
        if not validation.is_valid:
            raise InvalidStatusTransitionError(
                validation.error or "Invalid status transition",
                allowed_transitions=validation.allowed_transitions,
            )
        logger.info(
            "[%s] Transition %s -> %s validated", request_id, previous_status, requested
        )

        actor = await user_cache.resolve(db, actor_external_id)

        now = datetime.now(timezone.utc)
        before = _status_fields(application)
        _apply_status(
            application,
            target,
            actor=actor,
            reason=reason,
            rejection_reason=rejection_reason,
            now=now,
        )
        db.add(application)

        audit_entry = audit_trail.log_action(
            db,
            loan_application_id=application.id,
            user_id=actor.id,
            action=status_action(target.value),
            reason=reason or f"Application status updated to {target.value}",
            details=rejection_reason or f"Status changed from {previous_status} to {target.value}",
            before_data=before,
            after_data=_status_fields(application),
            metadata={
                **(metadata or {}),
                "previous_status": previous_status,
                "new_status": target.value,
                "rejection_reason": rejection_reason,
                "request_id": request_id,
            },
        )

        snapshot_created = False
        if target is LoanApplicationStatus.APPROVED:
            snapshot = await snapshots.create_snapshot(
                db,
                loan_application_id=application.id,
                created_by=actor.id,
                approval_stage=snapshots.LOAN_APPROVED_STAGE,
                application=application,
            )
            audit_trail.log_action(
                db,
                loan_application_id=application.id,
                user_id=actor.id,
                action=AuditAction.SNAPSHOT_CREATED,
                reason="Immutable snapshot created at loan approval",
                details="Complete application state captured for audit trail",
                metadata={
                    "snapshot_id": str(snapshot.id),
                    "approval_stage": snapshots.LOAN_APPROVED_STAGE,
                    "triggered_by": "status_update",
                },
            )
            snapshot_created = True

        created_offer: OfferLetter | None = None
        if target is LoanApplicationStatus.OFFER_LETTER_SENT:
            existing_offer = await offer_letters.get_active_offer_letter(db, application.id)
            if existing_offer is None:
                created_offer = await offer_letters.create_offer_letter(
                    db, application=application, created_by=actor.id
                )
                audit_trail.log_action(
                    db,
                    loan_application_id=application.id,
                    user_id=actor.id,
                    action=AuditAction.OFFER_LETTER_CREATED,
                    reason="Offer letter created when status changed to offer_letter_sent",
                    details="Signing dispatch queued after commit",
                    metadata={
                        "triggered_by": "status_update",
                        "offer_letter_id": str(created_offer.id),
                        "offer_number": created_offer.offer_number,
                    },
                )
                logger.info(
                    "[%s] Offer letter %s drafted", request_id, created_offer.offer_number
                )
            else:
                logger.info(
                    "[%s] Active offer letter %s already exists; none created",
                    request_id,
                    existing_offer.id,
                )

        logger.info("[%s] Committing status update", request_id)
        await db.commit()
    except DomainError:
        await db.rollback()
        raise
    except StaleDataError as exc:
        await db.rollback()
        logger.warning("[%s] Concurrent status update detected: %s", request_id, exc)
        raise ConflictError(
            f"Loan application {loan_application_id} was modified concurrently; reload and retry",
            code="CONCURRENT_STATUS_UPDATE",
        ) from exc
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("[%s] Status update failed in the datastore", request_id)
        raise PersistenceError(
            "Failed to update loan application status", code="STATUS_UPDATE_ERROR"
        ) from exc

    logger.info("[%s] Status update committed", request_id)

    if created_offer is not None:
        _enqueue(
            task_queue,
            TASK_SEND_OFFER_LETTER,
            {"offer_letter_id": str(created_offer.id), "actor_id": str(actor.id)},
            request_id,
        )
    _enqueue(
        task_queue,
        TASK_STATUS_NOTIFICATION,
        {
            "loan_application_id": str(application.id),
            "application_number": application.application_number,
            "recipient_user_id": str(application.user_id),
            "previous_status": previous_status,
            "new_status": target.value,
            "reason": reason,
            "rejection_reason": rejection_reason,
        },
        request_id,
    )

    logger.info(
        "[%s] Status update finished in %.1fms",
        request_id,
        (time.perf_counter() - started) * 1000,
    )
    return StatusUpdateResult(
        success=True,
        previous_status=previous_status,
        new_status=target.value,
        message=f"Status successfully updated from {previous_status} to {target.value}",
        snapshot_created=snapshot_created,
        audit_entry_id=audit_entry.id,
        offer_letter_id=created_offer.id if created_offer is not None else None,
    )


async def get_status(db: AsyncSession, loan_application_id: uuid.UUID) -> StatusInfo:
    stmt = select(LoanApplication).where(
        LoanApplication.id == loan_application_id,
        LoanApplication.deleted_at.is_(None),
    )
    application = (await db.execute(stmt)).scalar_one_or_none()
    if application is None:
        raise _not_found(loan_application_id)
    return StatusInfo(
        loan_application_id=application.id,
        status=application.status,
        status_reason=application.status_reason,
        last_updated_by=application.last_updated_by,
        last_updated_at=application.last_updated_at,
        allowed_transitions=allowed_transitions(application.status),
    )


async def get_status_history(
    db: AsyncSession, loan_application_id: uuid.UUID
) -> list[StatusHistoryItem]:
    """Status-change audit entries with actor names, newest first."""
    stmt = (
        select(AuditTrailEntry, User)
        .outerjoin(User, User.id == AuditTrailEntry.user_id)
        .where(
            AuditTrailEntry.loan_application_id == loan_application_id,
            AuditTrailEntry.action.in_(STATUS_HISTORY_ACTIONS),
        )
        .order_by(desc(AuditTrailEntry.created_at), desc(AuditTrailEntry.id))
    )
    rows = (await db.execute(stmt)).all()
    prefix_length = len(audit_trail.STATUS_ACTION_PREFIX)
    return [
        StatusHistoryItem(
            id=entry.id,
            status=entry.action[prefix_length:],
            action=entry.action,
            reason=entry.reason,
            details=entry.details,
            metadata=load_json(entry.entry_metadata),
            actor_id=entry.user_id,
            actor_name=user.full_name if user is not None else None,
            created_at=entry.created_at,
        )
        for entry, user in rows
    ]

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ForbiddenError, InvalidParametersError, NotFoundError
from app.models.business_document import BusinessDocument
from app.models.document_request import BUSINESS_DOCUMENT_TYPES, DocumentRequest
from app.models.personal_document import PersonalDocument
from app.schemas.documents import DocumentRequestCreate, DocumentRequestFulfill
from app.services import audit_trail, loan_applications
from app.services.audit_trail import AuditAction, AuditActionInput
from app.services.task_queue import TaskQueue
from app.services.user_cache import CachedUser

logger = logging.getLogger(__name__)

TASK_DOCUMENT_REQUEST_NOTIFICATION = "notification.document_request"
OPEN_STATUSES = ("pending", "overdue")


def _not_found(request_id) -> NotFoundError:
    return NotFoundError(
        f"Document request {request_id} not found", code="DOCUMENT_REQUEST_NOT_FOUND"
    )


async def get_request(db: AsyncSession, request_id: uuid.UUID) -> DocumentRequest:
    stmt = select(DocumentRequest).where(DocumentRequest.id == request_id)
    request = (await db.execute(stmt)).scalar_one_or_none()
    if request is None:
        raise _not_found(request_id)
    return request


async def create_request(
    db: AsyncSession,
    *,
    loan_application_id: uuid.UUID,
    requested_by: CachedUser,
    payload: DocumentRequestCreate,
    task_queue: TaskQueue | None = None,
) -> DocumentRequest:
    """Ask the applicant for a document and notify them.

    Commits the request with its audit entry, then queues the notification.
    """
    application = await loan_applications.get_application(db, loan_application_id)
    now = datetime.now(timezone.utc)
    request = DocumentRequest(
        id=uuid.uuid4(),
        loan_application_id=application.id,
        requested_by=requested_by.id,
        requested_from=application.user_id,
        document_type=payload.document_type,
        description=payload.description,
        is_required=payload.is_required,
        status="pending",
        due_date=payload.due_date,
        created_at=now,
    )
    db.add(request)
    audit_trail.log_action(
        db,
        loan_application_id=application.id,
        user_id=requested_by.id,
        action=AuditAction.DOCUMENT_REQUEST_CREATED,
        details={
            "document_request_id": str(request.id),
            "document_type": request.document_type,
            "is_required": request.is_required,
        },
    )
    await db.commit()

    if task_queue is None:
        logger.warning("No task queue configured; document request %s not notified", request.id)
        return request
    try:
        task_queue.enqueue(
            TASK_DOCUMENT_REQUEST_NOTIFICATION,
            {
                "loan_application_id": str(application.id),
                "recipient_user_id": str(application.user_id),
                "document_type": request.document_type,
                "description": request.description,
                "due_date": request.due_date.isoformat() if request.due_date else None,
            },
        )
    except Exception:
        logger.exception("Failed to queue notification for document request %s", request.id)
    return request


async def list_requests(
    db: AsyncSession,
    loan_application_id: uuid.UUID,
    *,
    status: str | None = None,
) -> list[DocumentRequest]:
    stmt = select(DocumentRequest).where(
        DocumentRequest.loan_application_id == loan_application_id
    )
    if status:
        stmt = stmt.where(DocumentRequest.status == status)
    stmt = stmt.order_by(DocumentRequest.created_at.desc())
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def fulfill_request(
    db: AsyncSession,
    request_id: uuid.UUID,
    payload: DocumentRequestFulfill,
    *,
    user: CachedUser,
) -> DocumentRequest:
    request = await get_request(db, request_id)
    if not user.is_staff and request.requested_from != user.id:
        raise ForbiddenError("Only the requested applicant can fulfil this request")
    if request.status not in OPEN_STATUSES:
        raise InvalidParametersError(
            "Document request has already been fulfilled", code="INVALID_STATUS"
        )

    now = datetime.now(timezone.utc)
    if request.document_type in BUSINESS_DOCUMENT_TYPES:
        application = await loan_applications.get_application(db, request.loan_application_id)
        business_id = application.business_id
        if payload.business_id is not None and payload.business_id != business_id:
            if business_id is not None and not user.is_staff:
                raise InvalidParametersError(
                    "Business documents must belong to the application's business",
                    code="BUSINESS_MISMATCH",
                )
            await loan_applications.check_business(db, payload.business_id, user)
            business_id = payload.business_id
        if business_id is None:
            raise InvalidParametersError(
                "A business_id is required for business documents", code="BUSINESS_REQUIRED"
            )
        document = BusinessDocument(
            id=uuid.uuid4(),
            business_id=business_id,
            doc_type=request.document_type,
            doc_url=payload.doc_url,
            doc_password=payload.doc_password,
            doc_bank_name=payload.doc_bank_name,
            created_at=now,
        )
    else:
        document = PersonalDocument(
            id=uuid.uuid4(),
            user_id=request.requested_from,
            doc_type=request.document_type,
            doc_url=payload.doc_url,
            created_at=now,
        )
    db.add(document)

    request.status = "fulfilled"
    request.fulfilled_at = now
    request.fulfilled_with = document.id
    request.updated_at = now
    db.add(request)

    details = {
        "document_request_id": str(request.id),
        "document_type": request.document_type,
        "document_id": str(document.id),
    }
    audit_trail.log_multiple_actions(
        db,
        [
            AuditActionInput(
                loan_application_id=request.loan_application_id,
                user_id=user.id,
                action=AuditAction.DOCUMENTS_UPLOADED,
                details=details,
            ),
            AuditActionInput(
                loan_application_id=request.loan_application_id,
                user_id=user.id,
                action=AuditAction.DOCUMENT_REQUEST_FULFILLED,
                details=details,
            ),
        ],
    )
    await db.flush()
    return request


async def mark_overdue_requests(
    db: AsyncSession, *, actor: CachedUser, now: datetime | None = None
) -> int:
    """Flag pending requests whose due date has passed."""
    now = now or datetime.now(timezone.utc)
    stmt = select(DocumentRequest).where(
        DocumentRequest.status == "pending",
        DocumentRequest.due_date.is_not(None),
        DocumentRequest.due_date < now,
    )
    overdue = list((await db.execute(stmt)).scalars().all())
    for request in overdue:
        request.status = "overdue"
        request.updated_at = now
        db.add(request)
    audit_trail.log_multiple_actions(
        db,
        [
            AuditActionInput(
                loan_application_id=request.loan_application_id,
                user_id=actor.id,
                action=AuditAction.DOCUMENT_REQUEST_OVERDUE,
                details={
                    "document_request_id": str(request.id),
                    "due_date": request.due_date,
                },
            )
            for request in overdue
        ],
    )
    await db.flush()
    if overdue:
        logger.info("Marked %d document requests overdue", len(overdue))
    return len(overdue)

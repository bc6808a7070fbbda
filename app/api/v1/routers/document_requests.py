from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.db.session import get_db
from app.schemas.documents import (
    DocumentRequestCreate,
    DocumentRequestDTO,
    DocumentRequestFulfill,
    DocumentRequestListResponse,
    OverdueSweepResponse,
)
from app.services import document_requests, loan_applications
from app.services.task_queue import TaskQueue
from app.services.user_cache import CachedUser

router = APIRouter(tags=["document-requests"])


@router.post(
    "/loan-applications/{loan_application_id}/document-requests",
    response_model=DocumentRequestDTO,
    status_code=201,
    summary="Request a document from the applicant",
)
async def create_document_request(
    loan_application_id: UUID,
    payload: DocumentRequestCreate,
    current_user: CachedUser = Depends(deps.require_staff_user),
    db: AsyncSession = Depends(get_db),
    task_queue: TaskQueue | None = Depends(deps.get_task_queue),
) -> DocumentRequestDTO:
    request = await document_requests.create_request(
        db,
        loan_application_id=loan_application_id,
        requested_by=current_user,
        payload=payload,
        task_queue=task_queue,
    )
    return DocumentRequestDTO.model_validate(request)


@router.get(
    "/loan-applications/{loan_application_id}/document-requests",
    response_model=DocumentRequestListResponse,
    summary="Document requests for an application",
)
async def list_document_requests(
    loan_application_id: UUID,
    current_user: CachedUser = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
    status_filter: str | None = Query(default=None, alias="status"),
) -> DocumentRequestListResponse:
    await loan_applications.get_application(db, loan_application_id, user=current_user)
    items = await document_requests.list_requests(
        db, loan_application_id, status=status_filter
    )
    return DocumentRequestListResponse(
        items=[DocumentRequestDTO.model_validate(item) for item in items], total=len(items)
    )


@router.post(
    "/document-requests/mark-overdue",
    response_model=OverdueSweepResponse,
    summary="Flag pending requests past their due date",
)
async def mark_overdue_document_requests(
    current_user: CachedUser = Depends(deps.require_staff_user),
    db: AsyncSession = Depends(get_db),
) -> OverdueSweepResponse:
    count = await document_requests.mark_overdue_requests(db, actor=current_user)
    await db.commit()
    return OverdueSweepResponse(marked_overdue=count)


@router.post(
    "/document-requests/{request_id}/fulfill",
    response_model=DocumentRequestDTO,
    summary="Upload the document a request asked for",
)
async def fulfill_document_request(
    request_id: UUID,
    payload: DocumentRequestFulfill,
    current_user: CachedUser = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> DocumentRequestDTO:
    request = await document_requests.fulfill_request(db, request_id, payload, user=current_user)
    await db.commit()
    return DocumentRequestDTO.model_validate(request)

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.db.session import get_db
from app.schemas.audit import AuditTrailEntryDTO, AuditTrailListResponse, AuditTrailSummaryDTO
from app.schemas.common import MessageResponse
from app.schemas.loan import (
    ApproveRequest,
    LoanApplicationCreate,
    LoanApplicationDraftUpdate,
    LoanApplicationDTO,
    LoanApplicationListResponse,
    RejectRequest,
    StatusHistoryEntry,
    StatusHistoryResponse,
    StatusResponse,
    StatusUpdateRequest,
    StatusUpdateResponse,
)
from app.schemas.snapshots import SnapshotDTO, SnapshotListResponse
from app.services import audit_trail, loan_applications, loan_status, snapshots
from app.services.status_transitions import LoanApplicationStatus
from app.services.task_queue import TaskQueue
from app.services.user_cache import CachedUser, UserLookupCache

router = APIRouter(prefix="/loan-applications", tags=["loan-applications"])

# Statuses an applicant may move their own application into
APPLICANT_STATUS_TARGETS = frozenset(
    {LoanApplicationStatus.SUBMITTED.value, LoanApplicationStatus.WITHDRAWN.value}
)


@router.get(
    "/snapshots/{snapshot_id}",
    response_model=SnapshotDTO,
    summary="Get a single application snapshot",
)
async def get_snapshot(
    snapshot_id: UUID,
    current_user: CachedUser = Depends(deps.require_staff_user),
    db: AsyncSession = Depends(get_db),
) -> SnapshotDTO:
    record = await snapshots.get_snapshot(db, snapshot_id)
    return SnapshotDTO.model_validate(record)


@router.get(
    "",
    response_model=LoanApplicationListResponse,
    summary="List loan applications",
)
async def list_loan_applications(
    current_user: CachedUser = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
    status_filter: LoanApplicationStatus | None = Query(default=None, alias="status"),
    loan_product_id: UUID | None = Query(default=None),
    business_id: UUID | None = Query(default=None),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> LoanApplicationListResponse:
    items, total = await loan_applications.list_applications(
        db,
        user=current_user,
        status=status_filter.value if status_filter else None,
        loan_product_id=loan_product_id,
        business_id=business_id,
        limit=limit,
        offset=offset,
    )
    return LoanApplicationListResponse(
        items=[LoanApplicationDTO.model_validate(item) for item in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post(
    "",
    response_model=LoanApplicationDTO,
    status_code=201,
    summary="Create a draft loan application",
)
async def create_loan_application(
    payload: LoanApplicationCreate,
    current_user: CachedUser = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> LoanApplicationDTO:
    application = await loan_applications.create_application(
        db, user=current_user, payload=payload
    )
    await db.commit()
    return LoanApplicationDTO.model_validate(application)


@router.get(
    "/{loan_application_id}",
    response_model=LoanApplicationDTO,
    summary="Get a loan application",
)
async def get_loan_application(
    loan_application_id: UUID,
    current_user: CachedUser = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> LoanApplicationDTO:
    application = await loan_applications.get_application(
        db, loan_application_id, user=current_user
    )
    return LoanApplicationDTO.model_validate(application)


@router.patch(
    "/{loan_application_id}",
    response_model=LoanApplicationDTO,
    summary="Edit a draft loan application",
)
async def update_loan_application(
    loan_application_id: UUID,
    payload: LoanApplicationDraftUpdate,
    current_user: CachedUser = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> LoanApplicationDTO:
    application = await loan_applications.update_draft_application(
        db, loan_application_id, payload, user=current_user
    )
    await db.commit()
    return LoanApplicationDTO.model_validate(application)


@router.delete(
    "/{loan_application_id}",
    response_model=MessageResponse,
    summary="Delete a loan application",
)
async def delete_loan_application(
    loan_application_id: UUID,
    current_user: CachedUser = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await loan_applications.delete_application(db, loan_application_id, user=current_user)
    await db.commit()
    return MessageResponse(message="Loan application deleted successfully")


@router.get(
    "/{loan_application_id}/status",
    response_model=StatusResponse,
    summary="Current status and allowed transitions",
)
async def get_application_status(
    loan_application_id: UUID,
    current_user: CachedUser = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> StatusResponse:
    if not current_user.is_staff:
        await loan_applications.get_application(db, loan_application_id, user=current_user)
    info = await loan_status.get_status(db, loan_application_id)
    return StatusResponse.model_validate(info)


@router.put(
    "/{loan_application_id}/status",
    response_model=StatusUpdateResponse,
    summary="Move an application to a new status",
)
async def update_application_status(
    loan_application_id: UUID,
    payload: StatusUpdateRequest,
    current_user: CachedUser = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
    user_cache: UserLookupCache = Depends(deps.get_user_cache),
    task_queue: TaskQueue | None = Depends(deps.get_task_queue),
) -> StatusUpdateResponse:
    if not current_user.is_staff:
        await loan_applications.get_application(db, loan_application_id, user=current_user)
        if payload.status not in APPLICANT_STATUS_TARGETS:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Internal staff access required for this status change",
            )
    result = await loan_status.update_status(
        db,
        loan_application_id=loan_application_id,
        new_status=payload.status,
        actor_external_id=current_user.external_id,
        reason=payload.reason,
        rejection_reason=payload.rejection_reason,
        metadata=payload.metadata,
        user_cache=user_cache,
        task_queue=task_queue,
    )
    return StatusUpdateResponse.model_validate(result)


@router.get(
    "/{loan_application_id}/status/history",
    response_model=StatusHistoryResponse,
    summary="Status change history",
)
async def get_application_status_history(
    loan_application_id: UUID,
    current_user: CachedUser = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> StatusHistoryResponse:
    await loan_applications.get_application(db, loan_application_id, user=current_user)
    items = await loan_status.get_status_history(db, loan_application_id)
    return StatusHistoryResponse(
        items=[StatusHistoryEntry.model_validate(item) for item in items]
    )


@router.post(
    "/{loan_application_id}/approve",
    response_model=StatusUpdateResponse,
    summary="Approve an application under review",
)
async def approve_application(
    loan_application_id: UUID,
    payload: ApproveRequest,
    current_user: CachedUser = Depends(deps.require_staff_user),
    db: AsyncSession = Depends(get_db),
    user_cache: UserLookupCache = Depends(deps.get_user_cache),
    task_queue: TaskQueue | None = Depends(deps.get_task_queue),
) -> StatusUpdateResponse:
    result = await loan_status.update_status(
        db,
        loan_application_id=loan_application_id,
        new_status=LoanApplicationStatus.APPROVED,
        actor_external_id=current_user.external_id,
        reason=payload.reason,
        metadata=payload.metadata,
        user_cache=user_cache,
        task_queue=task_queue,
    )
    return StatusUpdateResponse.model_validate(result)


@router.post(
    "/{loan_application_id}/reject",
    response_model=StatusUpdateResponse,
    summary="Reject an application",
)
async def reject_application(
    loan_application_id: UUID,
    payload: RejectRequest,
    current_user: CachedUser = Depends(deps.require_staff_user),
    db: AsyncSession = Depends(get_db),
    user_cache: UserLookupCache = Depends(deps.get_user_cache),
    task_queue: TaskQueue | None = Depends(deps.get_task_queue),
) -> StatusUpdateResponse:
    result = await loan_status.update_status(
        db,
        loan_application_id=loan_application_id,
        new_status=LoanApplicationStatus.REJECTED,
        actor_external_id=current_user.external_id,
        reason=payload.reason,
        rejection_reason=payload.rejection_reason,
        metadata=payload.metadata,
        user_cache=user_cache,
        task_queue=task_queue,
    )
    return StatusUpdateResponse.model_validate(result)


@router.get(
    "/{loan_application_id}/audit-trail",
    response_model=AuditTrailListResponse,
    summary="Audit trail for an application",
)
async def get_application_audit_trail(
    loan_application_id: UUID,
    current_user: CachedUser = Depends(deps.require_staff_user),
    db: AsyncSession = Depends(get_db),
    limit: int = Query(default=audit_trail.DEFAULT_AUDIT_TRAIL_LIMIT),
    offset: int = Query(default=0),
    action: str | None = Query(default=None),
) -> AuditTrailListResponse:
    entries = await audit_trail.get_audit_trail(
        db, loan_application_id, limit=limit, offset=offset, action=action
    )
    return AuditTrailListResponse(
        items=[AuditTrailEntryDTO.model_validate(entry) for entry in entries],
        limit=limit,
        offset=offset,
    )


@router.get(
    "/{loan_application_id}/audit-trail/summary",
    response_model=AuditTrailSummaryDTO,
    summary="Audit trail counts per action",
)
async def get_application_audit_summary(
    loan_application_id: UUID,
    current_user: CachedUser = Depends(deps.require_staff_user),
    db: AsyncSession = Depends(get_db),
) -> AuditTrailSummaryDTO:
    summary = await audit_trail.get_audit_trail_summary(db, loan_application_id)
    return AuditTrailSummaryDTO.model_validate(summary)


@router.get(
    "/{loan_application_id}/snapshots",
    response_model=SnapshotListResponse,
    summary="All snapshots for an application, newest first",
)
async def list_application_snapshots(
    loan_application_id: UUID,
    current_user: CachedUser = Depends(deps.require_staff_user),
    db: AsyncSession = Depends(get_db),
) -> SnapshotListResponse:
    records = await snapshots.get_snapshots(db, loan_application_id)
    return SnapshotListResponse(
        items=[SnapshotDTO.model_validate(record) for record in records],
        total=len(records),
    )


@router.get(
    "/{loan_application_id}/snapshots/latest",
    response_model=SnapshotDTO,
    summary="Most recent snapshot for an application",
)
async def get_latest_application_snapshot(
    loan_application_id: UUID,
    current_user: CachedUser = Depends(deps.require_staff_user),
    db: AsyncSession = Depends(get_db),
) -> SnapshotDTO:
    record = await snapshots.get_latest_snapshot(db, loan_application_id)
    return SnapshotDTO.model_validate(record)

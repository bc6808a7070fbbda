from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.db.session import get_db
from app.schemas.business import BusinessProfileDTO, BusinessProfileListResponse, BusinessRegister
from app.schemas.documents import (
    BusinessDocumentDTO,
    BusinessDocumentListResponse,
    BusinessDocumentsUpsert,
    PersonalDocumentDTO,
    PersonalDocumentListResponse,
    PersonalDocumentsUpsert,
)
from app.services import documents
from app.services.user_cache import CachedUser

router = APIRouter(tags=["documents"])


@router.post(
    "/businesses",
    response_model=BusinessProfileDTO,
    status_code=201,
    summary="Register a business profile",
)
async def register_business(
    payload: BusinessRegister,
    current_user: CachedUser = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> BusinessProfileDTO:
    business = await documents.register_business(db, user=current_user, payload=payload)
    await db.commit()
    return BusinessProfileDTO.model_validate(business)


@router.get(
    "/businesses",
    response_model=BusinessProfileListResponse,
    summary="Business profiles of the current user",
)
async def list_businesses(
    current_user: CachedUser = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> BusinessProfileListResponse:
    items = await documents.list_businesses(db, user=current_user)
    return BusinessProfileListResponse(
        items=[BusinessProfileDTO.model_validate(item) for item in items], total=len(items)
    )


@router.post(
    "/businesses/{business_id}/documents",
    response_model=BusinessDocumentListResponse,
    summary="Upload or replace business documents",
)
async def upsert_business_documents(
    business_id: UUID,
    payload: BusinessDocumentsUpsert,
    current_user: CachedUser = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> BusinessDocumentListResponse:
    items = await documents.upsert_business_documents(
        db, business_id, user=current_user, payload=payload
    )
    await db.commit()
    return BusinessDocumentListResponse(
        items=[BusinessDocumentDTO.from_document(item) for item in items], total=len(items)
    )


@router.get(
    "/businesses/{business_id}/documents",
    response_model=BusinessDocumentListResponse,
    summary="Live documents of a business",
)
async def list_business_documents(
    business_id: UUID,
    current_user: CachedUser = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> BusinessDocumentListResponse:
    items = await documents.list_business_documents(db, business_id, user=current_user)
    return BusinessDocumentListResponse(
        items=[BusinessDocumentDTO.from_document(item) for item in items], total=len(items)
    )


@router.put(
    "/documents/personal",
    response_model=PersonalDocumentListResponse,
    summary="Upload or replace personal documents",
)
async def upsert_personal_documents(
    payload: PersonalDocumentsUpsert,
    current_user: CachedUser = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> PersonalDocumentListResponse:
    items = await documents.upsert_personal_documents(db, user=current_user, payload=payload)
    await db.commit()
    return PersonalDocumentListResponse(
        items=[PersonalDocumentDTO.model_validate(item) for item in items], total=len(items)
    )


@router.get(
    "/documents/personal",
    response_model=PersonalDocumentListResponse,
    summary="Live personal documents",
)
async def list_personal_documents(
    current_user: CachedUser = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
    user_id: UUID | None = Query(default=None),
) -> PersonalDocumentListResponse:
    items = await documents.list_personal_documents(db, user=current_user, user_id=user_id)
    return PersonalDocumentListResponse(
        items=[PersonalDocumentDTO.model_validate(item) for item in items], total=len(items)
    )

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.db.session import get_db
from app.schemas.offer_letters import (
    OfferLetterCreate,
    OfferLetterDTO,
    OfferLetterListResponse,
    OfferLetterSend,
    OfferLetterVoid,
)
from app.services import loan_applications, offer_letters
from app.services.signing import SigningClient
from app.services.user_cache import CachedUser

router = APIRouter(tags=["offer-letters"])


@router.post(
    "/loan-applications/{loan_application_id}/offer-letters",
    response_model=OfferLetterDTO,
    status_code=201,
    summary="Draft an offer letter for an approved application",
)
async def create_offer_letter(
    loan_application_id: UUID,
    payload: OfferLetterCreate,
    current_user: CachedUser = Depends(deps.require_staff_user),
    db: AsyncSession = Depends(get_db),
) -> OfferLetterDTO:
    application = await loan_applications.get_application(db, loan_application_id)
    offer = await offer_letters.create_offer_letter(
        db,
        application=application,
        created_by=current_user.id,
        **payload.model_dump(),
    )
    await db.commit()
    return OfferLetterDTO.model_validate(offer)


@router.get(
    "/loan-applications/{loan_application_id}/offer-letters",
    response_model=OfferLetterListResponse,
    summary="Offer letters for an application, newest version first",
)
async def list_offer_letters(
    loan_application_id: UUID,
    current_user: CachedUser = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> OfferLetterListResponse:
    await loan_applications.get_application(db, loan_application_id, user=current_user)
    items = await offer_letters.list_offer_letters(db, loan_application_id)
    return OfferLetterListResponse(items=[OfferLetterDTO.model_validate(item) for item in items])


@router.get(
    "/offer-letters/{offer_letter_id}",
    response_model=OfferLetterDTO,
    summary="Get an offer letter",
)
async def get_offer_letter(
    offer_letter_id: UUID,
    current_user: CachedUser = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> OfferLetterDTO:
    offer = await offer_letters.get_offer_letter(db, offer_letter_id)
    if not current_user.is_staff:
        await loan_applications.get_application(
            db, offer.loan_application_id, user=current_user
        )
    return OfferLetterDTO.model_validate(offer)


@router.post(
    "/offer-letters/{offer_letter_id}/send",
    response_model=OfferLetterDTO,
    summary="Send a draft offer letter for signature",
)
async def send_offer_letter(
    offer_letter_id: UUID,
    payload: OfferLetterSend,
    current_user: CachedUser = Depends(deps.require_staff_user),
    db: AsyncSession = Depends(get_db),
    signing_client: SigningClient = Depends(deps.get_signing_client),
) -> OfferLetterDTO:
    offer = await offer_letters.send_offer_letter(
        db,
        offer_letter_id=offer_letter_id,
        actor_id=current_user.id,
        signing_client=signing_client,
        recipient_email=payload.recipient_email,
        recipient_name=payload.recipient_name,
    )
    await db.commit()
    return OfferLetterDTO.model_validate(offer)


@router.post(
    "/offer-letters/{offer_letter_id}/void",
    response_model=OfferLetterDTO,
    summary="Withdraw an unsigned offer letter",
)
async def void_offer_letter(
    offer_letter_id: UUID,
    payload: OfferLetterVoid,
    current_user: CachedUser = Depends(deps.require_staff_user),
    db: AsyncSession = Depends(get_db),
) -> OfferLetterDTO:
    offer = await offer_letters.void_offer_letter(
        db, offer_letter_id=offer_letter_id, actor_id=current_user.id, reason=payload.reason
    )
    await db.commit()
    return OfferLetterDTO.model_validate(offer)

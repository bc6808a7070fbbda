from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.db.session import get_db
from app.schemas.common import MessageResponse
from app.schemas.products import (
    LoanProductCreate,
    LoanProductDTO,
    LoanProductListResponse,
    LoanProductUpdate,
)
from app.services import loan_products
from app.services.user_cache import CachedUser

router = APIRouter(prefix="/loan-products", tags=["loan-products"])


@router.get("", response_model=LoanProductListResponse, summary="List loan products")
async def list_loan_products(
    current_user: CachedUser = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
    include_inactive: bool = Query(default=False),
    currency: str | None = Query(default=None, max_length=10),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> LoanProductListResponse:
    items, total = await loan_products.list_products(
        db,
        # Only staff see retired products
        include_inactive=include_inactive and current_user.is_staff,
        currency=currency,
        limit=limit,
        offset=offset,
    )
    return LoanProductListResponse(
        items=[LoanProductDTO.model_validate(item) for item in items], total=total
    )


@router.post("", response_model=LoanProductDTO, status_code=201, summary="Create a loan product")
async def create_loan_product(
    payload: LoanProductCreate,
    current_user: CachedUser = Depends(deps.require_staff_user),
    db: AsyncSession = Depends(get_db),
) -> LoanProductDTO:
    product = await loan_products.create_product(db, payload)
    await db.commit()
    return LoanProductDTO.model_validate(product)


@router.get("/{product_id}", response_model=LoanProductDTO, summary="Get a loan product")
async def get_loan_product(
    product_id: UUID,
    current_user: CachedUser = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> LoanProductDTO:
    product = await loan_products.get_product(db, product_id)
    return LoanProductDTO.model_validate(product)


@router.patch("/{product_id}", response_model=LoanProductDTO, summary="Edit a loan product")
async def update_loan_product(
    product_id: UUID,
    payload: LoanProductUpdate,
    current_user: CachedUser = Depends(deps.require_staff_user),
    db: AsyncSession = Depends(get_db),
) -> LoanProductDTO:
    product = await loan_products.update_product(db, product_id, payload)
    await db.commit()
    return LoanProductDTO.model_validate(product)


@router.delete("/{product_id}", response_model=MessageResponse, summary="Retire a loan product")
async def delete_loan_product(
    product_id: UUID,
    current_user: CachedUser = Depends(deps.require_staff_user),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await loan_products.delete_product(db, product_id)
    await db.commit()
    return MessageResponse(message="Loan product deleted successfully")

from fastapi import APIRouter

from app.api.v1.routers import (
    document_requests,
    documents,
    health,
    loan_applications,
    loan_products,
    offer_letters,
    webhooks,
)

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(loan_products.router)
api_router.include_router(loan_applications.router)
api_router.include_router(offer_letters.router)
api_router.include_router(document_requests.router)
api_router.include_router(documents.router)
api_router.include_router(webhooks.router)

__all__ = ["api_router"]

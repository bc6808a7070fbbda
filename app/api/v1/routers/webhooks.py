import json
import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.limiter import limiter
from app.db.session import get_db
from app.schemas.offer_letters import EnvelopeUpdateResponse
from app.services import offer_letters
from app.services.signing import verify_webhook_signature
from app.services.task_queue import TaskQueue
from app.services.user_cache import UserLookupCache

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

SIGNATURE_HEADER = "X-DocuSign-Signature-1"


def _extract_envelope(event: Any) -> tuple[str | None, str | None, str | None]:
    if not isinstance(event, dict):
        return None, None, None
    data = event.get("data") or {}
    if not isinstance(data, dict):
        return None, None, None
    summary = data.get("envelopeSummary")
    if isinstance(summary, dict):
        source = summary
    else:
        source = data
    changed_at = source.get("statusChangedDateTime") or event.get("generatedDateTime")
    return source.get("envelopeId"), source.get("status"), changed_at


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


@router.post(
    "/signing",
    response_model=EnvelopeUpdateResponse,
    summary="Envelope status events from the signing service",
)
@limiter.exempt
async def signing_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    user_cache: UserLookupCache = Depends(deps.get_user_cache),
    task_queue: TaskQueue | None = Depends(deps.get_task_queue),
) -> EnvelopeUpdateResponse:
    body = await request.body()
    if not verify_webhook_signature(body, request.headers.get(SIGNATURE_HEADER)):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="[INVALID_WEBHOOK_SIGNATURE] Webhook signature mismatch",
        )
    try:
        event = json.loads(body or b"null")
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="[INVALID_WEBHOOK_PAYLOAD] Body is not valid JSON",
        ) from exc

    envelope_id, envelope_status, changed_at = _extract_envelope(event)
    if not envelope_id or not envelope_status:
        logger.warning("Signing webhook without envelope information")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="[INVALID_WEBHOOK_PAYLOAD] Missing envelope information",
        )
    logger.info(
        "Signing webhook received",
        extra={
            "fields": {
                "event": event.get("event"),
                "envelope_id": envelope_id,
                "envelope_status": envelope_status,
            }
        },
    )
    result = await offer_letters.apply_envelope_status(
        db,
        envelope_id=envelope_id,
        envelope_status=str(envelope_status).lower(),
        status_changed_at=_parse_timestamp(changed_at),
        user_cache=user_cache,
        task_queue=task_queue,
    )
    return EnvelopeUpdateResponse.model_validate(result)

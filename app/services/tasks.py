"""Handlers for the side effects queued after status changes commit."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import AsyncSessionLocal
from app.models.offer_letter import OfferLetter
from app.models.user import User
from app.services import offer_letters
from app.services.document_requests import TASK_DOCUMENT_REQUEST_NOTIFICATION
from app.services.loan_status import TASK_SEND_OFFER_LETTER, TASK_STATUS_NOTIFICATION
from app.services.notifications import NotificationService, Recipient
from app.services.signing import SigningClient
from app.services.task_queue import TaskQueue

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Any]


class NotificationDeliveryError(RuntimeError):
    """Raised so the queue retries a notification the provider did not accept."""


async def _load_recipient(db: AsyncSession, user_id: str) -> Recipient | None:
    stmt = select(User).where(User.id == uuid.UUID(user_id), User.deleted_at.is_(None))
    user = (await db.execute(stmt)).scalar_one_or_none()
    if user is None:
        return None
    return Recipient(email=user.email, first_name=user.first_name)


def _parse_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def register_handlers(
    queue: TaskQueue,
    *,
    notification_service: NotificationService,
    signing_client: SigningClient,
    session_factory: SessionFactory = AsyncSessionLocal,
) -> TaskQueue:
    async def send_status_update(payload: dict[str, Any]) -> None:
        async with session_factory() as db:
            recipient = await _load_recipient(db, payload["recipient_user_id"])
        if recipient is None:
            logger.warning(
                "Status notification skipped; user %s not found", payload["recipient_user_id"]
            )
            return
        result = await notification_service.send_status_update_notification(
            recipient=recipient,
            loan_application_id=payload["loan_application_id"],
            application_number=payload.get("application_number"),
            previous_status=payload["previous_status"],
            new_status=payload["new_status"],
            reason=payload.get("reason"),
            rejection_reason=payload.get("rejection_reason"),
        )
        if not result.success:
            raise NotificationDeliveryError(result.error or "notification not delivered")

    async def send_document_request(payload: dict[str, Any]) -> None:
        async with session_factory() as db:
            recipient = await _load_recipient(db, payload["recipient_user_id"])
        if recipient is None:
            logger.warning(
                "Document request notification skipped; user %s not found",
                payload["recipient_user_id"],
            )
            return
        result = await notification_service.send_document_request_notification(
            recipient=recipient,
            loan_application_id=payload["loan_application_id"],
            document_type=payload["document_type"],
            description=payload["description"],
            due_date=_parse_datetime(payload.get("due_date")),
        )
        if not result.success:
            raise NotificationDeliveryError(result.error or "notification not delivered")

    async def send_offer_letter(payload: dict[str, Any]) -> None:
        offer_letter_id = uuid.UUID(payload["offer_letter_id"])
        async with session_factory() as db:
            stmt = select(OfferLetter).where(OfferLetter.id == offer_letter_id)
            offer = (await db.execute(stmt)).scalar_one_or_none()
            if offer is None or offer.deleted_at is not None or offer.status != "draft":
                # Already sent by an earlier attempt, or withdrawn meanwhile
                logger.info("Offer letter %s no longer awaiting dispatch", offer_letter_id)
                return
            await offer_letters.send_offer_letter(
                db,
                offer_letter_id=offer_letter_id,
                actor_id=uuid.UUID(payload["actor_id"]),
                signing_client=signing_client,
            )
            await db.commit()

    queue.register(TASK_STATUS_NOTIFICATION, send_status_update)
    queue.register(TASK_DOCUMENT_REQUEST_NOTIFICATION, send_document_request)
    queue.register(TASK_SEND_OFFER_LETTER, send_offer_letter)
    return queue

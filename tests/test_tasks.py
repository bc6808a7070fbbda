from uuid import uuid4

import pytest

from app.core.errors import ExternalServiceError
from app.models.offer_letter import OfferLetter
from app.models.user import User
from app.services import loan_status
from app.services.document_requests import TASK_DOCUMENT_REQUEST_NOTIFICATION
from app.services.notifications import NotificationService
from app.services.task_queue import TaskQueue
from app.services.tasks import register_handlers

from conftest import (
    FakeAsyncSession,
    FakeResult,
    FakeSigningClient,
    RecordingEmailSender,
    entity_handler,
    make_offer_letter,
    make_user,
)


class _Sleeps:
    async def __call__(self, seconds: float) -> None:
        return None


def _queue(db: FakeAsyncSession, sender: RecordingEmailSender, signing=None) -> TaskQueue:
    queue = TaskQueue(max_attempts=2, backoff_seconds=0, sleep=_Sleeps())
    return register_handlers(
        queue,
        notification_service=NotificationService(sender),
        signing_client=signing or FakeSigningClient(),
        session_factory=lambda: db,
    )


def _status_payload(user_id) -> dict:
    return {
        "loan_application_id": str(uuid4()),
        "application_number": "LOAN-2026-000777",
        "recipient_user_id": str(user_id),
        "previous_status": "submitted",
        "new_status": "under_review",
        "reason": None,
        "rejection_reason": None,
    }


def test_all_post_commit_tasks_are_registered():
    queue = _queue(FakeAsyncSession(), RecordingEmailSender())
    assert queue.registered() == sorted(
        [
            loan_status.TASK_STATUS_NOTIFICATION,
            loan_status.TASK_SEND_OFFER_LETTER,
            TASK_DOCUMENT_REQUEST_NOTIFICATION,
        ]
    )


@pytest.mark.asyncio
async def test_status_notification_emails_applicant():
    borrower = make_user(email="ada@example.com")
    db = FakeAsyncSession().on_execute(entity_handler(User, FakeResult(scalar=borrower)))
    sender = RecordingEmailSender()
    queue = _queue(db, sender)

    queue.enqueue(loan_status.TASK_STATUS_NOTIFICATION, _status_payload(borrower.id))
    await queue.drain()

    (message,) = sender.sent
    assert message["to"] == "ada@example.com"
    assert "LOAN-2026-000777" in message["text"]
    assert queue.dead_letters == []


@pytest.mark.asyncio
async def test_undelivered_notification_is_retried_then_dead_lettered():
    borrower = make_user()
    db = FakeAsyncSession().on_execute(entity_handler(User, FakeResult(scalar=borrower)))
    queue = _queue(db, RecordingEmailSender(error=ExternalServiceError("smtp down")))

    queue.enqueue(loan_status.TASK_STATUS_NOTIFICATION, _status_payload(borrower.id))
    await queue.drain()

    (dead,) = queue.dead_letters
    assert dead.attempts == 2
    assert dead.last_error.startswith("NotificationDeliveryError")


@pytest.mark.asyncio
async def test_notification_for_missing_user_is_skipped():
    sender = RecordingEmailSender()
    queue = _queue(FakeAsyncSession(), sender)

    queue.enqueue(loan_status.TASK_STATUS_NOTIFICATION, _status_payload(uuid4()))
    await queue.drain()

    assert sender.sent == []
    assert queue.stats()["processed"] == 1


@pytest.mark.asyncio
async def test_document_request_notification():
    borrower = make_user()
    db = FakeAsyncSession().on_execute(entity_handler(User, FakeResult(scalar=borrower)))
    sender = RecordingEmailSender()
    queue = _queue(db, sender)

    queue.enqueue(
        TASK_DOCUMENT_REQUEST_NOTIFICATION,
        {
            "loan_application_id": str(uuid4()),
            "recipient_user_id": str(borrower.id),
            "document_type": "tax_return",
            "description": "2025 return",
            "due_date": "2026-05-01T00:00:00+00:00",
        },
    )
    await queue.drain()

    (message,) = sender.sent
    assert "tax return" in message["subject"]
    assert "2026-05-01" in message["text"]


@pytest.mark.asyncio
async def test_offer_dispatch_sends_and_commits():
    offer = make_offer_letter()
    db = FakeAsyncSession().on_execute(entity_handler(OfferLetter, FakeResult(scalar=offer)))
    signing = FakeSigningClient(envelope_id="env-queued")
    queue = _queue(db, RecordingEmailSender(), signing)

    queue.enqueue(
        loan_status.TASK_SEND_OFFER_LETTER,
        {"offer_letter_id": str(offer.id), "actor_id": str(offer.created_by)},
    )
    await queue.drain()

    assert offer.status == "sent"
    assert offer.envelope_id == "env-queued"
    assert db.committed is True


@pytest.mark.asyncio
async def test_offer_dispatch_skips_already_sent_offer():
    offer = make_offer_letter(status="sent", envelope_id="env-old")
    db = FakeAsyncSession().on_execute(entity_handler(OfferLetter, FakeResult(scalar=offer)))
    signing = FakeSigningClient()
    queue = _queue(db, RecordingEmailSender(), signing)

    queue.enqueue(
        loan_status.TASK_SEND_OFFER_LETTER,
        {"offer_letter_id": str(offer.id), "actor_id": str(offer.created_by)},
    )
    await queue.drain()

    assert signing.created == []
    assert db.committed is False

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from pydantic import ValidationError

from app.core.errors import ForbiddenError, InvalidParametersError, NotFoundError
from app.models.audit_trail import AuditTrailEntry
from app.models.business_document import BusinessDocument
from app.models.business_profile import BusinessProfile
from app.models.document_request import DocumentRequest
from app.models.loan_application import LoanApplication
from app.models.personal_document import PersonalDocument
from app.schemas.documents import DocumentRequestCreate, DocumentRequestFulfill
from app.services import document_requests

from conftest import (
    FakeAsyncSession,
    FakeResult,
    RecordingTaskQueue,
    cached,
    entity_handler,
    make_application,
    make_business,
    make_document_request,
    make_staff_user,
    make_user,
)


def _actions(db):
    return [entry.action for entry in db.added_of(AuditTrailEntry)]


def test_document_type_is_validated_and_normalized():
    payload = DocumentRequestCreate(document_type=" Bank_Statement ", description="Statements")
    assert payload.document_type == "bank_statement"
    with pytest.raises(ValidationError):
        DocumentRequestCreate(document_type="selfie", description="Photo")


@pytest.mark.asyncio
async def test_create_request_commits_then_notifies():
    borrower = make_user()
    staff = cached(make_staff_user())
    application = make_application(status="under_review", user=borrower)
    db = FakeAsyncSession().on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))
    queue = RecordingTaskQueue()
    due = datetime(2026, 4, 1, tzinfo=timezone.utc)

    request = await document_requests.create_request(
        db,
        loan_application_id=application.id,
        requested_by=staff,
        payload=DocumentRequestCreate(
            document_type="tax_clearance_certificate", description="Current year", due_date=due
        ),
        task_queue=queue,
    )

    assert request.status == "pending"
    assert request.requested_from == borrower.id
    assert request.requested_by == staff.id
    assert _actions(db) == ["document_request_created"]
    assert db.committed is True
    ((name, payload),) = queue.enqueued
    assert name == document_requests.TASK_DOCUMENT_REQUEST_NOTIFICATION
    assert payload["recipient_user_id"] == str(borrower.id)
    assert payload["due_date"] == due.isoformat()


@pytest.mark.asyncio
async def test_create_request_survives_queue_failure():
    application = make_application()
    db = FakeAsyncSession().on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))

    request = await document_requests.create_request(
        db,
        loan_application_id=application.id,
        requested_by=cached(make_staff_user()),
        payload=DocumentRequestCreate(document_type="utility_bill", description="Recent bill"),
        task_queue=RecordingTaskQueue(fail=True),
    )
    assert request.status == "pending"
    assert db.committed is True


@pytest.mark.asyncio
async def test_create_request_for_missing_application():
    with pytest.raises(NotFoundError):
        await document_requests.create_request(
            FakeAsyncSession(),
            loan_application_id=make_application().id,
            requested_by=cached(make_staff_user()),
            payload=DocumentRequestCreate(document_type="utility_bill", description="Recent bill"),
        )


@pytest.mark.asyncio
async def test_fulfil_personal_document():
    borrower = make_user()
    application = make_application(user=borrower)
    request = make_document_request(application=application)
    db = FakeAsyncSession().on_execute(entity_handler(DocumentRequest, FakeResult(scalar=request)))

    fulfilled = await document_requests.fulfill_request(
        db, request.id, DocumentRequestFulfill(doc_url="s3://docs/statement.pdf"), user=cached(borrower)
    )

    (document,) = db.added_of(PersonalDocument)
    assert document.user_id == borrower.id
    assert document.doc_type == "bank_statement"
    assert fulfilled.status == "fulfilled"
    assert fulfilled.fulfilled_with == document.id
    assert fulfilled.fulfilled_at is not None
    assert _actions(db) == ["documents_uploaded", "document_request_fulfilled"]


@pytest.mark.asyncio
async def test_fulfil_business_document_uses_application_business():
    borrower = make_user()
    application = make_application(user=borrower, business_id=uuid4(), is_business_loan=True)
    request = make_document_request(application=application, document_type="business_permit")
    db = (
        FakeAsyncSession()
        .on_execute(entity_handler(DocumentRequest, FakeResult(scalar=request)))
        .on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))
    )

    await document_requests.fulfill_request(
        db,
        request.id,
        DocumentRequestFulfill(doc_url="s3://docs/permit.pdf", doc_password="secret"),
        user=cached(borrower),
    )

    (document,) = db.added_of(BusinessDocument)
    assert document.business_id == application.business_id
    assert document.doc_password == "secret"


@pytest.mark.asyncio
async def test_borrower_cannot_file_documents_under_a_strangers_business():
    borrower = make_user()
    stranger_business = make_business(owner=make_user(email="stranger@example.com"))
    application = make_application(user=borrower)
    request = make_document_request(application=application, document_type="business_permit")
    db = (
        FakeAsyncSession()
        .on_execute(entity_handler(DocumentRequest, FakeResult(scalar=request)))
        .on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))
        .on_execute(entity_handler(BusinessProfile, FakeResult(scalar=stranger_business)))
    )

    with pytest.raises(NotFoundError) as excinfo:
        await document_requests.fulfill_request(
            db,
            request.id,
            DocumentRequestFulfill(doc_url="s3://docs/permit.pdf", business_id=stranger_business.id),
            user=cached(borrower),
        )
    assert excinfo.value.code == "BUSINESS_NOT_FOUND"
    assert db.added == []
    assert request.status == "pending"


@pytest.mark.asyncio
async def test_business_must_match_the_applications_business():
    borrower = make_user()
    application = make_application(user=borrower, business_id=uuid4(), is_business_loan=True)
    request = make_document_request(application=application, document_type="business_permit")
    db = (
        FakeAsyncSession()
        .on_execute(entity_handler(DocumentRequest, FakeResult(scalar=request)))
        .on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))
    )

    with pytest.raises(InvalidParametersError) as excinfo:
        await document_requests.fulfill_request(
            db,
            request.id,
            DocumentRequestFulfill(doc_url="s3://docs/permit.pdf", business_id=uuid4()),
            user=cached(borrower),
        )
    assert excinfo.value.code == "BUSINESS_MISMATCH"
    assert db.added == []


@pytest.mark.asyncio
async def test_borrower_may_name_their_own_business():
    borrower = make_user()
    business = make_business(owner=borrower)
    application = make_application(user=borrower)
    request = make_document_request(application=application, document_type="business_permit")
    db = (
        FakeAsyncSession()
        .on_execute(entity_handler(DocumentRequest, FakeResult(scalar=request)))
        .on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))
        .on_execute(entity_handler(BusinessProfile, FakeResult(scalar=business)))
    )

    await document_requests.fulfill_request(
        db,
        request.id,
        DocumentRequestFulfill(doc_url="s3://docs/permit.pdf", business_id=business.id),
        user=cached(borrower),
    )

    (document,) = db.added_of(BusinessDocument)
    assert document.business_id == business.id


@pytest.mark.asyncio
async def test_fulfil_business_document_without_business():
    borrower = make_user()
    application = make_application(user=borrower)
    request = make_document_request(application=application, document_type="business_permit")
    db = (
        FakeAsyncSession()
        .on_execute(entity_handler(DocumentRequest, FakeResult(scalar=request)))
        .on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))
    )

    with pytest.raises(InvalidParametersError) as excinfo:
        await document_requests.fulfill_request(
            db, request.id, DocumentRequestFulfill(doc_url="s3://x"), user=cached(borrower)
        )
    assert excinfo.value.code == "BUSINESS_REQUIRED"


@pytest.mark.asyncio
async def test_only_requested_applicant_or_staff_can_fulfil():
    request = make_document_request(application=make_application())
    db = FakeAsyncSession().on_execute(entity_handler(DocumentRequest, FakeResult(scalar=request)))

    with pytest.raises(ForbiddenError):
        await document_requests.fulfill_request(
            db, request.id, DocumentRequestFulfill(doc_url="s3://x"), user=cached(make_user())
        )

    fulfilled = await document_requests.fulfill_request(
        db, request.id, DocumentRequestFulfill(doc_url="s3://x"), user=cached(make_staff_user())
    )
    assert fulfilled.status == "fulfilled"


@pytest.mark.asyncio
async def test_fulfilled_request_cannot_be_fulfilled_again():
    borrower = make_user()
    request = make_document_request(application=make_application(user=borrower), status="fulfilled")
    db = FakeAsyncSession().on_execute(entity_handler(DocumentRequest, FakeResult(scalar=request)))

    with pytest.raises(InvalidParametersError) as excinfo:
        await document_requests.fulfill_request(
            db, request.id, DocumentRequestFulfill(doc_url="s3://x"), user=cached(borrower)
        )
    assert excinfo.value.code == "INVALID_STATUS"


@pytest.mark.asyncio
async def test_mark_overdue_requests():
    now = datetime(2026, 4, 10, tzinfo=timezone.utc)
    late = [
        make_document_request(due_date=now - timedelta(days=1)),
        make_document_request(due_date=now - timedelta(days=5)),
    ]
    db = FakeAsyncSession().on_execute(entity_handler(DocumentRequest, FakeResult(items=late)))

    count = await document_requests.mark_overdue_requests(db, actor=cached(make_staff_user()), now=now)

    assert count == 2
    assert {request.status for request in late} == {"overdue"}
    assert _actions(db) == ["document_request_overdue", "document_request_overdue"]


@pytest.mark.asyncio
async def test_mark_overdue_with_nothing_due():
    db = FakeAsyncSession()
    assert await document_requests.mark_overdue_requests(db, actor=cached(make_staff_user())) == 0
    assert db.added == []

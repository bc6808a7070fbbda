import json
from datetime import datetime, timezone
from uuid import uuid4

import pytest
from pydantic import ValidationError

from app.core.errors import ForbiddenError, NotFoundError
from app.models.audit_trail import AuditTrailEntry
from app.models.business_document import BusinessDocument
from app.models.business_profile import BusinessProfile
from app.models.loan_application import LoanApplication
from app.models.personal_document import PersonalDocument
from app.schemas.business import BusinessRegister
from app.schemas.documents import (
    BusinessDocumentDTO,
    BusinessDocumentItem,
    BusinessDocumentsUpsert,
    PersonalDocumentsUpsert,
)
from app.services import documents

from conftest import (
    FakeAsyncSession,
    FakeResult,
    cached,
    entity_handler,
    make_application,
    make_business,
    make_staff_user,
    make_user,
)

_REGISTRATION = dict(
    name="Acme Trading",
    entity_type="llc",
    country="Kenya",
    sector="retail",
    year_of_incorporation=2015,
    currency="kes",
    is_owned=True,
    ownership_percentage=62.6,
    ownership_type="individual",
)


def _entries(db):
    return db.added_of(AuditTrailEntry)


def _personal(user, doc_type, doc_url):
    return PersonalDocument(
        id=uuid4(),
        user_id=user.id,
        doc_type=doc_type,
        doc_url=doc_url,
        created_at=datetime(2026, 2, 1, tzinfo=timezone.utc),
    )


@pytest.mark.asyncio
async def test_register_business_for_current_user():
    owner = make_user()
    db = FakeAsyncSession()

    business = await documents.register_business(
        db, user=cached(owner), payload=BusinessRegister(**_REGISTRATION)
    )

    assert db.added_of(BusinessProfile) == [business]
    assert business.user_id == owner.id
    assert business.year_of_incorporation == "2015"
    assert business.ownership_percentage == 63
    assert business.currency == "KES"
    assert db.flushed is True


def test_registration_requires_ownership_details_when_owned():
    with pytest.raises(ValidationError):
        BusinessRegister(**{**_REGISTRATION, "ownership_type": None})
    with pytest.raises(ValidationError):
        BusinessRegister(**{**_REGISTRATION, "is_owned": False})

    unowned = BusinessRegister(**{**_REGISTRATION, "is_owned": False, "ownership_percentage": None})
    assert unowned.ownership_percentage is None


@pytest.mark.asyncio
async def test_personal_upsert_replaces_same_type_and_inserts_new():
    borrower = make_user()
    current = _personal(borrower, "bank_statement", "s3://docs/old-statement.pdf")
    application = make_application(status="submitted", user=borrower)
    db = (
        FakeAsyncSession()
        .on_execute(entity_handler(PersonalDocument, FakeResult(items=[current])))
        .on_execute(entity_handler(LoanApplication, FakeResult(items=[application])))
    )
    payload = PersonalDocumentsUpsert(
        documents=[
            {"doc_type": "utility_bill", "doc_url": "s3://docs/bill-draft.pdf"},
            {"doc_type": "bank_statement", "doc_url": "s3://docs/new-statement.pdf"},
            {"doc_type": "utility_bill", "doc_url": "s3://docs/bill.pdf"},
        ]
    )

    saved = await documents.upsert_personal_documents(db, user=cached(borrower), payload=payload)

    assert [doc.doc_type for doc in saved] == ["utility_bill", "bank_statement"]
    assert saved[0].doc_url == "s3://docs/bill.pdf"
    assert saved[1] is current
    assert current.doc_url == "s3://docs/new-statement.pdf"
    uploaded, updated = _entries(db)
    assert (uploaded.action, updated.action) == ("documents_uploaded", "documents_updated")
    assert uploaded.loan_application_id == application.id
    assert json.loads(updated.before_data)["doc_url"] == "s3://docs/old-statement.pdf"
    assert json.loads(updated.after_data)["doc_url"] == "s3://docs/new-statement.pdf"
    assert json.loads(updated.entry_metadata)["operation"] == "update"
    assert db.flushed is True


@pytest.mark.asyncio
async def test_personal_upsert_without_open_applications_skips_audit():
    borrower = make_user()
    db = FakeAsyncSession()

    saved = await documents.upsert_personal_documents(
        db,
        user=cached(borrower),
        payload=PersonalDocumentsUpsert(
            documents=[{"doc_type": "passport_bio_page", "doc_url": "s3://docs/passport.pdf"}]
        ),
    )

    assert db.added_of(PersonalDocument) == saved
    assert _entries(db) == []


def test_personal_document_type_is_checked():
    with pytest.raises(ValidationError):
        PersonalDocumentsUpsert(documents=[{"doc_type": "pitch_deck", "doc_url": "s3://x"}])
    with pytest.raises(ValidationError):
        PersonalDocumentsUpsert(documents=[])


@pytest.mark.asyncio
async def test_list_personal_documents_of_someone_else_needs_staff():
    borrower = make_user()
    document = _personal(borrower, "drivers_license", "s3://docs/license.pdf")
    db = FakeAsyncSession().on_execute(entity_handler(PersonalDocument, FakeResult(items=[document])))

    with pytest.raises(ForbiddenError):
        await documents.list_personal_documents(
            db, user=cached(make_user(email="nosy@example.com")), user_id=borrower.id
        )

    listed = await documents.list_personal_documents(
        db, user=cached(make_staff_user()), user_id=borrower.id
    )
    assert listed == [document]


def test_business_item_conditional_fields():
    with pytest.raises(ValidationError):
        BusinessDocumentItem(doc_type="business_plan", doc_url="s3://x", is_password_protected=True)
    with pytest.raises(ValidationError):
        BusinessDocumentItem(doc_type="annual_bank_statement", doc_url="s3://x")
    item = BusinessDocumentItem(
        doc_type="Annual_Bank_Statement", doc_url="s3://x", doc_bank_name="Equity Bank"
    )
    assert item.doc_type == "annual_bank_statement"


@pytest.mark.asyncio
async def test_business_upsert_keeps_password_out_of_audit():
    owner = make_user()
    business = make_business(owner=owner)
    application = make_application(user=owner, business_id=business.id, is_business_loan=True)
    db = (
        FakeAsyncSession()
        .on_execute(entity_handler(BusinessProfile, FakeResult(scalar=business)))
        .on_execute(entity_handler(LoanApplication, FakeResult(items=[application])))
    )
    payload = BusinessDocumentsUpsert(
        documents=[
            {
                "doc_type": "annual_bank_statement",
                "doc_url": "s3://docs/statement-2025.pdf",
                "is_password_protected": True,
                "doc_password": "s3cret",
                "doc_bank_name": "Equity Bank",
            }
        ]
    )

    (document,) = await documents.upsert_business_documents(
        db, business.id, user=cached(owner), payload=payload
    )

    assert document.business_id == business.id
    assert document.doc_password == "s3cret"
    (entry,) = _entries(db)
    assert entry.action == "documents_uploaded"
    after = json.loads(entry.after_data)
    assert after["has_password"] is True
    assert "doc_password" not in after
    assert "s3cret" not in entry.after_data
    dto = BusinessDocumentDTO.from_document(document)
    assert dto.has_password is True
    assert "doc_password" not in dto.model_dump()


@pytest.mark.asyncio
async def test_business_upsert_updates_existing_document():
    owner = make_user()
    business = make_business(owner=owner)
    current = BusinessDocument(
        id=uuid4(),
        business_id=business.id,
        doc_type="business_permit",
        doc_url="s3://docs/permit-2024.pdf",
    )
    db = (
        FakeAsyncSession()
        .on_execute(entity_handler(BusinessProfile, FakeResult(scalar=business)))
        .on_execute(entity_handler(BusinessDocument, FakeResult(items=[current])))
        .on_execute(entity_handler(LoanApplication, FakeResult(items=[make_application(user=owner)])))
    )

    (document,) = await documents.upsert_business_documents(
        db,
        business.id,
        user=cached(owner),
        payload=BusinessDocumentsUpsert(
            documents=[{"doc_type": "business_permit", "doc_url": "s3://docs/permit-2025.pdf"}]
        ),
    )

    assert document is current
    assert current.doc_url == "s3://docs/permit-2025.pdf"
    assert [entry.action for entry in _entries(db)] == ["documents_updated"]


@pytest.mark.asyncio
async def test_business_documents_of_a_stranger_are_not_found():
    stranger_business = make_business(owner=make_user(email="stranger@example.com"))
    db = FakeAsyncSession().on_execute(
        entity_handler(BusinessProfile, FakeResult(scalar=stranger_business))
    )

    with pytest.raises(NotFoundError) as excinfo:
        await documents.upsert_business_documents(
            db,
            stranger_business.id,
            user=cached(make_user()),
            payload=BusinessDocumentsUpsert(
                documents=[{"doc_type": "pitch_deck", "doc_url": "s3://docs/deck.pdf"}]
            ),
        )
    assert excinfo.value.code == "BUSINESS_NOT_FOUND"
    assert db.added == []

    with pytest.raises(NotFoundError):
        await documents.list_business_documents(db, stranger_business.id, user=cached(make_user()))


@pytest.mark.asyncio
async def test_staff_can_list_any_business_documents():
    business = make_business()
    document = BusinessDocument(
        id=uuid4(),
        business_id=business.id,
        doc_type="pitch_deck",
        doc_url="s3://docs/deck.pdf",
        doc_password=None,
    )
    db = (
        FakeAsyncSession()
        .on_execute(entity_handler(BusinessProfile, FakeResult(scalar=business)))
        .on_execute(entity_handler(BusinessDocument, FakeResult(items=[document])))
    )

    assert await documents.list_business_documents(
        db, business.id, user=cached(make_staff_user())
    ) == [document]

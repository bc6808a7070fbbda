import json
from decimal import Decimal
from uuid import uuid4

import pytest

from app.core.errors import InvalidParametersError, NotFoundError
from app.models.audit_trail import AuditTrailEntry
from app.models.business_profile import BusinessProfile
from app.models.loan_application import LoanApplication
from app.models.loan_product import LoanProduct
from app.models.loan_product_snapshot import LoanProductSnapshot
from app.schemas.loan import LoanApplicationCreate, LoanApplicationDraftUpdate
from app.services import loan_applications, loan_products

from conftest import (
    FakeAsyncSession,
    FakeResult,
    cached,
    entity_handler,
    make_application,
    make_business,
    make_product,
    make_staff_user,
    make_user,
    sequence_handler,
)


def _payload(product, **overrides) -> LoanApplicationCreate:
    data = {
        "loan_product_id": str(product.id),
        "loan_amount": "15000.00",
        "loan_term": 12,
        "currency": "usd",
        "purpose": "working_capital",
    }
    data.update(overrides)
    return LoanApplicationCreate(**data)


@pytest.mark.asyncio
async def test_create_application_starts_as_draft_with_product_snapshot():
    borrower = cached(make_user())
    product = make_product(version=4)
    db = FakeAsyncSession().on_execute(entity_handler(LoanProduct, FakeResult(scalar=product)))

    application = await loan_applications.create_application(db, user=borrower, payload=_payload(product))

    assert application.status == "draft"
    assert application.user_id == borrower.id
    assert application.currency == "USD"
    assert application.loan_amount == Decimal("15000.00")
    assert application.application_number.startswith("LOAN-")
    (snapshot,) = db.added_of(LoanProductSnapshot)
    assert snapshot.loan_application_id == application.id
    assert snapshot.product_version == 4
    terms = json.loads(snapshot.product_snapshot)
    assert terms["interest_rate"] == "12.5000"
    assert "created_at" not in terms
    (entry,) = db.added_of(AuditTrailEntry)
    assert entry.action == "application_created"
    assert db.flushed is True
    assert db.committed is False


@pytest.mark.asyncio
async def test_create_rejects_currency_mismatch():
    product = make_product(currency="KES")
    db = FakeAsyncSession().on_execute(entity_handler(LoanProduct, FakeResult(scalar=product)))

    with pytest.raises(InvalidParametersError) as excinfo:
        await loan_applications.create_application(db, user=cached(make_user()), payload=_payload(product))
    assert excinfo.value.code == "INVALID_CURRENCY"
    assert db.added == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("overrides", "code"),
    [
        ({"loan_amount": "999.99"}, "INVALID_AMOUNT"),
        ({"loan_amount": "50000.01"}, "INVALID_AMOUNT"),
        ({"loan_term": 2}, "INVALID_TERM"),
        ({"loan_term": 25}, "INVALID_TERM"),
    ],
)
async def test_create_enforces_product_ranges(overrides, code):
    product = make_product()
    db = FakeAsyncSession().on_execute(entity_handler(LoanProduct, FakeResult(scalar=product)))

    with pytest.raises(InvalidParametersError) as excinfo:
        await loan_applications.create_application(
            db, user=cached(make_user()), payload=_payload(product, **overrides)
        )
    assert excinfo.value.code == code


@pytest.mark.asyncio
async def test_create_with_inactive_or_missing_product():
    product = make_product()
    with pytest.raises(NotFoundError) as excinfo:
        await loan_applications.create_application(
            FakeAsyncSession(), user=cached(make_user()), payload=_payload(product)
        )
    assert excinfo.value.code == "LOAN_PRODUCT_NOT_FOUND"


@pytest.mark.asyncio
async def test_business_loan_requires_business():
    product = make_product()
    db = FakeAsyncSession().on_execute(entity_handler(LoanProduct, FakeResult(scalar=product)))
    with pytest.raises(InvalidParametersError):
        await loan_applications.create_application(
            db, user=cached(make_user()), payload=_payload(product, is_business_loan=True)
        )


@pytest.mark.asyncio
async def test_business_must_belong_to_borrower():
    owner = make_user()
    stranger = make_user(email="someone@example.com")
    product = make_product()
    business = make_business(owner=owner)
    db = (
        FakeAsyncSession()
        .on_execute(entity_handler(LoanProduct, FakeResult(scalar=product)))
        .on_execute(entity_handler(BusinessProfile, FakeResult(scalar=business)))
    )
    payload = _payload(product, business_id=str(business.id), is_business_loan=True)

    with pytest.raises(NotFoundError) as excinfo:
        await loan_applications.create_application(db, user=cached(stranger), payload=payload)
    assert excinfo.value.code == "BUSINESS_NOT_FOUND"

    application = await loan_applications.create_application(db, user=cached(owner), payload=payload)
    assert application.business_id == business.id


@pytest.mark.asyncio
async def test_borrower_cannot_see_someone_elses_application():
    application = make_application(status="submitted")
    db = FakeAsyncSession().on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))

    with pytest.raises(NotFoundError):
        await loan_applications.get_application(db, application.id, user=cached(make_user()))

    staff_view = await loan_applications.get_application(db, application.id, user=cached(make_staff_user()))
    assert staff_view is application


@pytest.mark.asyncio
async def test_list_applications_returns_page_and_total():
    borrower = make_user()
    rows = [make_application(user=borrower), make_application(user=borrower)]
    db = FakeAsyncSession().on_execute(sequence_handler([FakeResult(scalar=7), FakeResult(items=rows)]))

    items, total = await loan_applications.list_applications(
        db, user=cached(borrower), status="draft", limit=2, offset=4
    )

    assert items == rows
    assert total == 7
    listing_sql = str(db.statements[1])
    assert "loan_applications.user_id" in listing_sql


@pytest.mark.asyncio
async def test_update_draft_validates_against_frozen_terms():
    borrower = make_user()
    application = make_application(status="draft", user=borrower)
    frozen = LoanProductSnapshot(
        id=uuid4(),
        loan_application_id=application.id,
        loan_product_id=application.loan_product_id,
        product_snapshot=json.dumps(
            loan_products.product_terms(make_product(min_amount=Decimal("1000"), max_amount=Decimal("20000")))
        ),
        product_version=1,
    )
    db = (
        FakeAsyncSession()
        .on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))
        .on_execute(entity_handler(LoanProductSnapshot, FakeResult(scalar=frozen)))
    )

    with pytest.raises(InvalidParametersError) as excinfo:
        await loan_applications.update_draft_application(
            db, application.id, LoanApplicationDraftUpdate(loan_amount="25000"), user=cached(borrower)
        )
    assert excinfo.value.code == "INVALID_AMOUNT"

    updated = await loan_applications.update_draft_application(
        db,
        application.id,
        LoanApplicationDraftUpdate(loan_amount="18000", purpose_description="New stock"),
        user=cached(borrower),
    )
    assert updated.loan_amount == Decimal("18000")
    assert updated.purpose_description == "New stock"
    (entry,) = db.added_of(AuditTrailEntry)
    assert entry.action == "application_updated"
    assert json.loads(entry.before_data)["loan_amount"] == "15000.00"
    assert json.loads(entry.details) == {"fields": ["loan_amount", "purpose_description"]}


@pytest.mark.asyncio
async def test_update_refuses_non_draft():
    borrower = make_user()
    application = make_application(status="submitted", user=borrower)
    db = FakeAsyncSession().on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))

    with pytest.raises(InvalidParametersError) as excinfo:
        await loan_applications.update_draft_application(
            db, application.id, LoanApplicationDraftUpdate(loan_term=6), user=cached(borrower)
        )
    assert excinfo.value.code == "INVALID_STATUS"


@pytest.mark.asyncio
async def test_delete_soft_deletes_early_applications():
    borrower = make_user()
    application = make_application(status="submitted", user=borrower)
    db = FakeAsyncSession().on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))

    await loan_applications.delete_application(db, application.id, user=cached(borrower))

    assert application.deleted_at is not None
    assert [entry.action for entry in db.added_of(AuditTrailEntry)] == ["application_deleted"]


@pytest.mark.asyncio
async def test_delete_refuses_reviewed_applications():
    borrower = make_user()
    application = make_application(status="approved", user=borrower)
    db = FakeAsyncSession().on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))

    with pytest.raises(InvalidParametersError):
        await loan_applications.delete_application(db, application.id, user=cached(borrower))
    assert application.deleted_at is None


def test_application_number_format():
    number = loan_applications.generate_application_number()
    prefix, year, digits = number.split("-")
    assert prefix == "LOAN"
    assert len(year) == 4
    assert len(digits) == 6 and digits.isdigit()

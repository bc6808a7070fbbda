import json
from datetime import datetime, timezone
from uuid import uuid4

from app.models.audit_trail import AuditTrailEntry
from app.models.loan_application import LoanApplication
from app.models.loan_application_snapshot import LoanApplicationSnapshot
from app.models.loan_product import LoanProduct
from app.models.loan_product_snapshot import LoanProductSnapshot
from app.models.offer_letter import OfferLetter
from app.services import loan_status

from conftest import FakeResult, entity_handler, make_application, make_product


def _route_application(fake_db, application):
    fake_db.on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))
    fake_db.on_execute(entity_handler(OfferLetter, FakeResult(items=[])))
    fake_db.on_execute(entity_handler(LoanProductSnapshot, FakeResult(scalar=None)))


def test_create_application_returns_created_envelope(client, fake_db):
    product = make_product()
    fake_db.on_execute(entity_handler(LoanProduct, FakeResult(scalar=product)))

    resp = client.post(
        "/api/v1/loan-applications",
        json={
            "loan_product_id": str(product.id),
            "loan_amount": "12000.00",
            "loan_term": 6,
            "currency": "USD",
            "purpose": "working_capital",
        },
    )

    assert resp.status_code == 201
    body = resp.json()
    assert body["code"] == "created"
    assert body["data"]["status"] == "draft"
    assert body["data"]["application_number"].startswith("LOAN-")
    assert fake_db.committed is True


def test_get_status_lists_allowed_transitions(client, fake_db):
    application = make_application(status="submitted")
    _route_application(fake_db, application)

    resp = client.get(f"/api/v1/loan-applications/{application.id}/status")

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["status"] == "submitted"
    assert data["allowed_transitions"] == ["under_review", "withdrawn"]


def test_invalid_transition_is_reported_with_allowed_targets(client, fake_db):
    application = make_application(status="draft")
    _route_application(fake_db, application)

    resp = client.put(
        f"/api/v1/loan-applications/{application.id}/status", json={"status": "approved"}
    )

    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == "invalid_status_transition"
    assert body["details"]["allowed_transitions"] == ["submitted", "withdrawn"]
    assert application.status == "draft"


def test_approve_creates_snapshot(client, fake_db, task_queue):
    application = make_application(status="under_review")
    _route_application(fake_db, application)

    resp = client.post(
        f"/api/v1/loan-applications/{application.id}/approve", json={"reason": "Good history"}
    )

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["new_status"] == "approved"
    assert data["snapshot_created"] is True
    assert len(fake_db.added_of(LoanApplicationSnapshot)) == 1
    assert task_queue.names() == [loan_status.TASK_STATUS_NOTIFICATION]


def test_reject_requires_rejection_reason(client, fake_db):
    application = make_application(status="under_review")
    _route_application(fake_db, application)

    resp = client.post(f"/api/v1/loan-applications/{application.id}/reject", json={})

    assert resp.status_code == 422
    body = resp.json()
    assert body["code"] == "validation_error"
    assert body["message"].startswith("rejection_reason:")
    assert fake_db.statements == []


def test_reject_records_reason(client, fake_db):
    application = make_application(status="under_review")
    _route_application(fake_db, application)

    resp = client.post(
        f"/api/v1/loan-applications/{application.id}/reject",
        json={"rejection_reason": "Insufficient cash flow"},
    )

    assert resp.status_code == 200
    assert resp.json()["data"]["new_status"] == "rejected"
    assert application.rejection_reason == "Insufficient cash flow"


def test_unknown_application_is_not_found(client, fake_db):
    resp = client.get(f"/api/v1/loan-applications/{uuid4()}/status")

    assert resp.status_code == 404
    assert resp.json()["code"] == "loan_application_not_found"


def test_audit_trail_rejects_oversized_page(client):
    resp = client.get(f"/api/v1/loan-applications/{uuid4()}/audit-trail", params={"limit": 1000})

    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_parameters"


def test_audit_trail_decodes_json_fields(client, fake_db):
    application_id = uuid4()
    entry = AuditTrailEntry(
        id=uuid4(),
        loan_application_id=application_id,
        user_id=uuid4(),
        action="application_submitted",
        details="Submitted for review",
        entry_metadata=json.dumps({"channel": "web"}),
        after_data=json.dumps({"status": "submitted"}),
        created_at=datetime(2026, 3, 1, tzinfo=timezone.utc),
    )
    fake_db.on_execute(entity_handler(AuditTrailEntry, FakeResult(items=[entry])))

    resp = client.get(f"/api/v1/loan-applications/{application_id}/audit-trail")

    assert resp.status_code == 200
    (item,) = resp.json()["data"]["items"]
    assert item["details"] == "Submitted for review"
    assert item["metadata"] == {"channel": "web"}
    assert item["after_data"] == {"status": "submitted"}


def test_latest_snapshot_missing(client):
    resp = client.get(f"/api/v1/loan-applications/{uuid4()}/snapshots/latest")

    assert resp.status_code == 404
    assert resp.json()["code"] == "snapshot_not_found"

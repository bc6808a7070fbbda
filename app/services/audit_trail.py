from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Sequence

from fastapi.encoders import jsonable_encoder
from sqlalchemy import desc, func, inspect, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import InvalidParametersError
from app.core.logging import get_audit_logger
from app.models.audit_trail import AuditTrailEntry

logger = logging.getLogger(__name__)
audit_logger = get_audit_logger()

DEFAULT_AUDIT_TRAIL_LIMIT = 100
MAX_AUDIT_TRAIL_LIMIT = 500


class AuditAction(str, Enum):
    APPLICATION_CREATED = "application_created"
    APPLICATION_SUBMITTED = "application_submitted"
    APPLICATION_UNDER_REVIEW = "application_under_review"
    APPLICATION_APPROVED = "application_approved"
    APPLICATION_REJECTED = "application_rejected"
    APPLICATION_WITHDRAWN = "application_withdrawn"
    APPLICATION_DISBURSED = "application_disbursed"
    APPLICATION_EXPIRED = "application_expired"
    APPLICATION_DELETED = "application_deleted"
    APPLICATION_UPDATED = "application_updated"
    APPLICATION_OFFER_LETTER_SENT = "application_offer_letter_sent"
    APPLICATION_OFFER_LETTER_SIGNED = "application_offer_letter_signed"
    APPLICATION_OFFER_LETTER_DECLINED = "application_offer_letter_declined"
    DOCUMENTS_UPLOADED = "documents_uploaded"
    DOCUMENTS_UPDATED = "documents_updated"
    DOCUMENT_REQUEST_CREATED = "document_request_created"
    DOCUMENT_REQUEST_FULFILLED = "document_request_fulfilled"
    DOCUMENT_REQUEST_OVERDUE = "document_request_overdue"
    OFFER_LETTER_CREATED = "offer_letter_created"
    OFFER_LETTER_GENERATED = "offer_letter_generated"
    OFFER_LETTER_SENT = "offer_letter_sent"
    OFFER_LETTER_DELIVERED = "offer_letter_delivered"
    OFFER_LETTER_VIEWED = "offer_letter_viewed"
    OFFER_LETTER_SIGNED = "offer_letter_signed"
    OFFER_LETTER_DECLINED = "offer_letter_declined"
    OFFER_LETTER_EXPIRED = "offer_letter_expired"
    OFFER_LETTER_VOIDED = "offer_letter_voided"
    OFFER_LETTER_UPDATED = "offer_letter_updated"
    STATUS_UPDATED = "status_updated"
    SNAPSHOT_CREATED = "snapshot_created"


STATUS_ACTION_PREFIX = "application_"
_NON_STATUS_APPLICATION_ACTIONS = frozenset(
    {
        AuditAction.APPLICATION_CREATED.value,
        AuditAction.APPLICATION_DELETED.value,
        AuditAction.APPLICATION_UPDATED.value,
    }
)


def status_action(status: str) -> AuditAction:
    """Audit action recorded when an application enters ``status``."""
    return AuditAction(f"{STATUS_ACTION_PREFIX}{status}")


def is_status_action(action: str) -> bool:
    return action.startswith(STATUS_ACTION_PREFIX) and action not in _NON_STATUS_APPLICATION_ACTIONS


def serialize_for_audit(value: Any) -> Any:
    return jsonable_encoder(
        value,
        custom_encoder={
            Decimal: lambda v: str(v),
            datetime: lambda v: v.isoformat(),
            date: lambda v: v.isoformat(),
            uuid.UUID: lambda v: str(v),
        },
    )


def model_snapshot(model: Any, *, exclude: Iterable[str] | None = None) -> dict[str, Any]:
    """Column values of an ORM instance as JSON-ready data."""
    if model is None:
        return {}
    excluded = set(exclude or [])
    data: dict[str, Any] = {}
    for attr in inspect(type(model)).column_attrs:
        if attr.key in excluded:
            continue
        data[attr.key] = getattr(model, attr.key)
    return serialize_for_audit(data)


def dump_json(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(serialize_for_audit(value))


def load_json(raw: str | None) -> Any:
    if raw is None or raw == "":
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Stored audit JSON could not be decoded; returning raw text")
        return raw


@dataclass(slots=True)
class AuditActionInput:
    loan_application_id: uuid.UUID
    user_id: uuid.UUID
    action: AuditAction | str
    reason: str | None = None
    details: Any | None = None
    metadata: dict[str, Any] | None = None
    before_data: Any | None = None
    after_data: Any | None = None


@dataclass(slots=True)
class AuditTrailSummary:
    total_entries: int
    last_action: str | None = None
    last_action_at: datetime | None = None
    action_counts: dict[str, int] = field(default_factory=dict)


def _validate(item: AuditActionInput) -> str:
    if not item.loan_application_id or not item.user_id or not item.action:
        raise InvalidParametersError(
            "loan_application_id, user_id and action are required for audit entries"
        )
    try:
        return AuditAction(item.action).value
    except ValueError as exc:
        raise InvalidParametersError(
            f"Unknown audit action '{item.action}'", code="INVALID_AUDIT_ACTION"
        ) from exc


def _build_entry(item: AuditActionInput, action: str) -> AuditTrailEntry:
    details = item.details
    if details is not None and not isinstance(details, str):
        details = dump_json(details)
    return AuditTrailEntry(
        id=uuid.uuid4(),
        loan_application_id=item.loan_application_id,
        user_id=item.user_id,
        action=action,
        reason=item.reason,
        details=details,
        entry_metadata=dump_json(item.metadata),
        before_data=dump_json(item.before_data),
        after_data=dump_json(item.after_data),
        created_at=datetime.now(timezone.utc),
    )


def _emit(entry: AuditTrailEntry) -> None:
    audit_logger.info(
        "audit_trail_entry",
        extra={
            "fields": {
                "audit_entry_id": str(entry.id),
                "loan_application_id": str(entry.loan_application_id),
                "actor_id": str(entry.user_id),
                "action": entry.action,
            }
        },
    )


def log_action(
    db: AsyncSession,
    *,
    loan_application_id: uuid.UUID,
    user_id: uuid.UUID,
    action: AuditAction | str,
    reason: str | None = None,
    details: Any | None = None,
    metadata: dict[str, Any] | None = None,
    before_data: Any | None = None,
    after_data: Any | None = None,
) -> AuditTrailEntry:
    """Append one audit entry to the caller's transaction.

    Nothing is committed here; the entry lands or disappears together with the
    change it describes.
    """
    item = AuditActionInput(
        loan_application_id=loan_application_id,
        user_id=user_id,
        action=action,
        reason=reason,
        details=details,
        metadata=metadata,
        before_data=before_data,
        after_data=after_data,
    )
    entry = _build_entry(item, _validate(item))
    db.add(entry)
    _emit(entry)
    return entry


def log_multiple_actions(
    db: AsyncSession, actions: Sequence[AuditActionInput]
) -> list[AuditTrailEntry]:
    """Append a batch of entries; any invalid item rejects the whole batch."""
    if not actions:
        return []
    validated = [(item, _validate(item)) for item in actions]
    entries = [_build_entry(item, action) for item, action in validated]
    db.add_all(entries)
    for entry in entries:
        _emit(entry)
    return entries


def _check_paging(limit: int, offset: int) -> None:
    if limit < 1 or limit > MAX_AUDIT_TRAIL_LIMIT:
        raise InvalidParametersError(f"limit must be between 1 and {MAX_AUDIT_TRAIL_LIMIT}")
    if offset < 0:
        raise InvalidParametersError("offset must not be negative")


async def get_audit_trail(
    db: AsyncSession,
    loan_application_id: uuid.UUID,
    *,
    limit: int = DEFAULT_AUDIT_TRAIL_LIMIT,
    offset: int = 0,
    action: AuditAction | str | None = None,
) -> list[AuditTrailEntry]:
    _check_paging(limit, offset)
    stmt = select(AuditTrailEntry).where(
        AuditTrailEntry.loan_application_id == loan_application_id
    )
    if action:
        stmt = stmt.where(AuditTrailEntry.action == str(getattr(action, "value", action)))
    stmt = (
        stmt.order_by(desc(AuditTrailEntry.created_at), desc(AuditTrailEntry.id))
        .offset(offset)
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_audit_trail_summary(
    db: AsyncSession, loan_application_id: uuid.UUID
) -> AuditTrailSummary:
    counts_stmt = (
        select(AuditTrailEntry.action, func.count(AuditTrailEntry.id))
        .where(AuditTrailEntry.loan_application_id == loan_application_id)
        .group_by(AuditTrailEntry.action)
    )
    counts_result = await db.execute(counts_stmt)
    action_counts = {action: int(count) for action, count in counts_result.all()}

    latest_stmt = (
        select(AuditTrailEntry)
        .where(AuditTrailEntry.loan_application_id == loan_application_id)
        .order_by(desc(AuditTrailEntry.created_at), desc(AuditTrailEntry.id))
        .limit(1)
    )
    latest = (await db.execute(latest_stmt)).scalar_one_or_none()

    return AuditTrailSummary(
        total_entries=sum(action_counts.values()),
        last_action=latest.action if latest else None,
        last_action_at=latest.created_at if latest else None,
        action_counts=action_counts,
    )

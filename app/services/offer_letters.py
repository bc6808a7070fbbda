from __future__ import annotations

import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import (
    ConflictError,
    DomainError,
    ExternalServiceError,
    InvalidParametersError,
    NotFoundError,
)
from app.core.settings import settings
from app.models.loan_application import LoanApplication
from app.models.loan_product import LoanProduct
from app.models.loan_product_snapshot import LoanProductSnapshot
from app.models.offer_letter import OfferLetter
from app.models.user import User
from app.services import audit_trail
from app.services.audit_trail import AuditAction, load_json
from app.services.signing import EnvelopeRequest, SigningClient
from app.services.status_transitions import LoanApplicationStatus

if TYPE_CHECKING:
    from app.services.task_queue import TaskQueue
    from app.services.user_cache import UserLookupCache

logger = logging.getLogger(__name__)

OFFER_ELIGIBLE_STATUSES = frozenset(
    {LoanApplicationStatus.APPROVED.value, LoanApplicationStatus.OFFER_LETTER_SENT.value}
)

# envelope status -> (offer status, timestamp attribute, audit action)
_ENVELOPE_TRANSITIONS: dict[str, tuple[str, str | None, AuditAction]] = {
    "sent": ("sent", "sent_at", AuditAction.OFFER_LETTER_SENT),
    "delivered": ("delivered", "delivered_at", AuditAction.OFFER_LETTER_DELIVERED),
    "viewed": ("viewed", "viewed_at", AuditAction.OFFER_LETTER_VIEWED),
    "completed": ("signed", "signed_at", AuditAction.OFFER_LETTER_SIGNED),
    "declined": ("declined", "declined_at", AuditAction.OFFER_LETTER_DECLINED),
    "voided": ("voided", None, AuditAction.OFFER_LETTER_VOIDED),
    "expired": ("expired", "expired_at", AuditAction.OFFER_LETTER_EXPIRED),
}

# envelope statuses that move the parent application forward
_APPLICATION_FOLLOW_UPS = {
    "completed": LoanApplicationStatus.OFFER_LETTER_SIGNED,
    "declined": LoanApplicationStatus.OFFER_LETTER_DECLINED,
}


@dataclass(slots=True)
class EnvelopeUpdateResult:
    processed: bool
    message: str
    offer_letter_id: uuid.UUID | None = None
    offer_status: str | None = None
    application_status: str | None = None


def generate_offer_number(now: datetime | None = None) -> str:
    year = (now or datetime.now(timezone.utc)).year
    return f"OFFER-{year}-{secrets.randbelow(1_000_000):06d}"


def _not_found(offer_letter_id) -> NotFoundError:
    return NotFoundError(
        f"Offer letter {offer_letter_id} not found", code="OFFER_LETTER_NOT_FOUND"
    )


async def list_offer_letters(
    db: AsyncSession, loan_application_id: uuid.UUID, *, include_deleted: bool = False
) -> list[OfferLetter]:
    stmt = select(OfferLetter).where(OfferLetter.loan_application_id == loan_application_id)
    if not include_deleted:
        stmt = stmt.where(OfferLetter.deleted_at.is_(None))
    stmt = stmt.order_by(desc(OfferLetter.version))
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_active_offer_letter(
    db: AsyncSession, loan_application_id: uuid.UUID
) -> OfferLetter | None:
    stmt = select(OfferLetter).where(
        OfferLetter.loan_application_id == loan_application_id,
        OfferLetter.is_active.is_(True),
        OfferLetter.deleted_at.is_(None),
    )
    return (await db.execute(stmt)).scalars().first()


async def get_offer_letter(db: AsyncSession, offer_letter_id: uuid.UUID) -> OfferLetter:
    stmt = select(OfferLetter).where(
        OfferLetter.id == offer_letter_id, OfferLetter.deleted_at.is_(None)
    )
    offer = (await db.execute(stmt)).scalar_one_or_none()
    if offer is None:
        raise _not_found(offer_letter_id)
    return offer


async def _resolve_interest_rate(db: AsyncSession, application: LoanApplication) -> Decimal:
    """Rate frozen at application time, falling back to the live product."""
    snapshot_stmt = (
        select(LoanProductSnapshot)
        .where(LoanProductSnapshot.loan_application_id == application.id)
        .order_by(desc(LoanProductSnapshot.created_at))
        .limit(1)
    )
    snapshot = (await db.execute(snapshot_stmt)).scalar_one_or_none()
    if snapshot is not None:
        frozen = load_json(snapshot.product_snapshot) or {}
        if isinstance(frozen, dict) and frozen.get("interest_rate") is not None:
            return Decimal(str(frozen["interest_rate"]))

    product_stmt = select(LoanProduct).where(LoanProduct.id == application.loan_product_id)
    product = (await db.execute(product_stmt)).scalar_one_or_none()
    if product is None:
        raise NotFoundError(
            f"Loan product {application.loan_product_id} not found",
            code="LOAN_PRODUCT_NOT_FOUND",
        )
    return Decimal(str(product.interest_rate))


async def _load_user(db: AsyncSession, user_id: uuid.UUID) -> User:
    user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if user is None:
        raise NotFoundError(f"User {user_id} not found", code="USER_NOT_FOUND")
    return user


async def create_offer_letter(
    db: AsyncSession,
    *,
    application: LoanApplication,
    created_by: uuid.UUID,
    offer_amount: Decimal | None = None,
    offer_term: int | None = None,
    interest_rate: Decimal | None = None,
    recipient_email: str | None = None,
    recipient_name: str | None = None,
    special_conditions: str | None = None,
    requires_guarantor: bool = False,
    requires_collateral: bool = False,
    notes: str | None = None,
) -> OfferLetter:
    """Draft a new active offer letter for an approved application.

    Terms default to the application's amount and term and the rate captured
    when the application was created. Added to the caller's transaction.
    """
    if application.status not in OFFER_ELIGIBLE_STATUSES:
        raise InvalidParametersError(
            f"Offer letters require an approved application (status is '{application.status}')",
            code="INVALID_APPLICATION_STATUS",
        )

    existing = await list_offer_letters(db, application.id, include_deleted=True)
    active = [offer for offer in existing if offer.is_active and offer.deleted_at is None]
    if active:
        raise ConflictError(
            f"Loan application {application.id} already has an active offer letter",
            code="ACTIVE_OFFER_EXISTS",
            details={"offer_letter_id": str(active[0].id)},
        )
    version = max((offer.version or 0 for offer in existing), default=0) + 1

    if interest_rate is None:
        interest_rate = await _resolve_interest_rate(db, application)
    if not recipient_email or not recipient_name:
        applicant = await _load_user(db, application.user_id)
        recipient_email = recipient_email or applicant.email
        recipient_name = recipient_name or applicant.full_name

    now = datetime.now(timezone.utc)
    offer = OfferLetter(
        id=uuid.uuid4(),
        loan_application_id=application.id,
        offer_number=generate_offer_number(now),
        version=version,
        offer_amount=offer_amount if offer_amount is not None else application.loan_amount,
        offer_term=offer_term if offer_term is not None else application.loan_term,
        interest_rate=interest_rate,
        currency=application.currency,
        special_conditions=special_conditions,
        requires_guarantor=requires_guarantor,
        requires_collateral=requires_collateral,
        envelope_status="not_sent",
        recipient_email=recipient_email,
        recipient_name=recipient_name,
        expires_at=now + timedelta(days=settings.offer_letter_expiry_days),
        status="draft",
        is_active=True,
        created_by=created_by,
        notes=notes,
        created_at=now,
    )
    db.add(offer)
    audit_trail.log_action(
        db,
        loan_application_id=application.id,
        user_id=created_by,
        action=AuditAction.OFFER_LETTER_GENERATED,
        details={"offer_letter_id": str(offer.id), "offer_number": offer.offer_number},
        after_data=audit_trail.model_snapshot(offer),
    )
    return offer


async def send_offer_letter(
    db: AsyncSession,
    *,
    offer_letter_id: uuid.UUID,
    actor_id: uuid.UUID,
    signing_client: SigningClient,
    recipient_email: str | None = None,
    recipient_name: str | None = None,
) -> OfferLetter:
    """Create and release a signing envelope for a draft offer letter.

    The caller commits. Signing-service failures propagate so a queued send
    can be retried.
    """
    offer = await get_offer_letter(db, offer_letter_id)
    if offer.status != "draft":
        raise InvalidParametersError(
            "Only draft offer letters can be sent", code="INVALID_OFFER_STATUS"
        )
    email = recipient_email or offer.recipient_email
    name = recipient_name or offer.recipient_name
    client_user_id = str(offer.id)

    envelope = await signing_client.create_envelope(
        EnvelopeRequest(
            email_subject=f"Loan Offer Letter - {offer.offer_number}",
            email_blurb=(
                f"Please review and sign your loan offer letter for "
                f"{offer.currency} {offer.offer_amount}"
            ),
            recipient_email=email,
            recipient_name=name,
            client_user_id=client_user_id,
            text_fields={
                "offer_number": offer.offer_number,
                "offer_amount": f"{offer.currency} {offer.offer_amount}",
                "offer_term": str(offer.offer_term),
                "interest_rate": f"{offer.interest_rate}%",
                "expires_at": offer.expires_at.date().isoformat(),
            },
        )
    )
    await signing_client.send_envelope(envelope.envelope_id)
    try:
        signing_url = await signing_client.get_signing_url(
            envelope.envelope_id,
            recipient_email=email,
            recipient_name=name,
            client_user_id=client_user_id,
        )
    except ExternalServiceError as exc:
        logger.warning("Signing URL unavailable for envelope %s: %s", envelope.envelope_id, exc)
        signing_url = None

    now = datetime.now(timezone.utc)
    offer.envelope_id = envelope.envelope_id
    offer.envelope_status = "sent"
    offer.template_id = signing_client.template_id
    offer.offer_letter_url = signing_url
    offer.recipient_email = email
    offer.recipient_name = name
    offer.status = "sent"
    offer.sent_at = now
    offer.updated_at = now
    db.add(offer)
    audit_trail.log_action(
        db,
        loan_application_id=offer.loan_application_id,
        user_id=actor_id,
        action=AuditAction.OFFER_LETTER_SENT,
        details={"offer_letter_id": str(offer.id), "envelope_id": envelope.envelope_id},
    )
    logger.info(
        "Offer letter sent for signing",
        extra={"fields": {"offer_letter_id": str(offer.id), "envelope_id": envelope.envelope_id}},
    )
    return offer


async def void_offer_letter(
    db: AsyncSession,
    *,
    offer_letter_id: uuid.UUID,
    actor_id: uuid.UUID,
    reason: str | None = None,
) -> OfferLetter:
    offer = await get_offer_letter(db, offer_letter_id)
    if offer.status == "signed":
        raise InvalidParametersError(
            "Signed offer letters cannot be voided", code="INVALID_OFFER_STATUS"
        )
    before = audit_trail.model_snapshot(offer)
    offer.status = "voided"
    offer.is_active = False
    offer.updated_at = datetime.now(timezone.utc)
    db.add(offer)
    audit_trail.log_action(
        db,
        loan_application_id=offer.loan_application_id,
        user_id=actor_id,
        action=AuditAction.OFFER_LETTER_VOIDED,
        reason=reason,
        before_data=before,
        after_data=audit_trail.model_snapshot(offer),
    )
    return offer


async def apply_envelope_status(
    db: AsyncSession,
    *,
    envelope_id: str,
    envelope_status: str,
    status_changed_at: datetime | None = None,
    user_cache: "UserLookupCache",
    task_queue: "TaskQueue | None" = None,
) -> EnvelopeUpdateResult:
    """Apply a signing-service status event to its offer letter.

    Commits the offer-letter change, then for ``completed``/``declined``
    advances the parent application through the status orchestrator.
    Repeated deliveries of the same event are acknowledged without effect.
    """
    from app.services import loan_status

    mapping = _ENVELOPE_TRANSITIONS.get(envelope_status)
    if mapping is None:
        raise InvalidParametersError(
            f"Unsupported envelope status '{envelope_status}'", code="INVALID_ENVELOPE_STATUS"
        )

    stmt = select(OfferLetter).where(
        OfferLetter.envelope_id == envelope_id, OfferLetter.deleted_at.is_(None)
    )
    offer = (await db.execute(stmt)).scalar_one_or_none()
    if offer is None:
        logger.warning("Envelope event for unknown envelope %s", envelope_id)
        return EnvelopeUpdateResult(processed=False, message="Envelope not found")

    if offer.envelope_status == envelope_status:
        return EnvelopeUpdateResult(
            processed=True,
            message="Envelope status already recorded",
            offer_letter_id=offer.id,
            offer_status=offer.status,
        )

    offer_status, timestamp_attr, action = mapping
    changed_at = status_changed_at or datetime.now(timezone.utc)
    previous_status = offer.status
    offer.envelope_status = envelope_status
    offer.status = offer_status
    if timestamp_attr:
        setattr(offer, timestamp_attr, changed_at)
    if envelope_status == "voided":
        offer.is_active = False
    offer.updated_at = datetime.now(timezone.utc)
    db.add(offer)
    audit_trail.log_action(
        db,
        loan_application_id=offer.loan_application_id,
        user_id=offer.created_by,
        action=action,
        details={"offer_letter_id": str(offer.id), "envelope_id": envelope_id},
        before_data={"status": previous_status},
        after_data={"status": offer_status, "envelope_status": envelope_status},
    )
    await db.commit()

    result = EnvelopeUpdateResult(
        processed=True,
        message="Envelope status applied",
        offer_letter_id=offer.id,
        offer_status=offer_status,
    )

    follow_up = _APPLICATION_FOLLOW_UPS.get(envelope_status)
    if follow_up is None:
        return result

    creator = await _load_user(db, offer.created_by)
    try:
        update = await loan_status.update_status(
            db,
            loan_application_id=offer.loan_application_id,
            new_status=follow_up.value,
            actor_external_id=creator.external_id,
            reason=f"Offer letter {offer.offer_number} {offer_status}",
            metadata={"source": "signing_webhook", "envelope_id": envelope_id},
            user_cache=user_cache,
            task_queue=task_queue,
        )
    except DomainError as exc:
        # The offer letter change is already committed; the application may
        # have moved on (e.g. withdrawn) since the envelope was sent.
        logger.warning(
            "Envelope %s applied but application %s was not advanced: %s",
            envelope_id,
            offer.loan_application_id,
            exc,
        )
        result.message = f"Envelope status applied; application not advanced ({exc.code})"
        return result

    result.application_status = update.new_status
    return result

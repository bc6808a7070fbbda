from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

import httpx

from app.core.errors import ExternalServiceError
from app.core.settings import settings

logger = logging.getLogger(__name__)

EMAIL_CHANNEL = "email"

_STATUS_LABELS = {
    "submitted": "Submitted",
    "under_review": "Under review",
    "approved": "Approved",
    "offer_letter_sent": "Offer letter sent",
    "offer_letter_signed": "Offer letter signed",
    "offer_letter_declined": "Offer letter declined",
    "disbursed": "Disbursed",
    "rejected": "Rejected",
    "withdrawn": "Withdrawn",
    "expired": "Expired",
}


@dataclass(frozen=True, slots=True)
class Recipient:
    email: str
    first_name: str | None = None


@dataclass(frozen=True, slots=True)
class NotificationResult:
    success: bool
    channel: str = EMAIL_CHANNEL
    message_id: str | None = None
    error: str | None = None


class EmailSender(Protocol):
    async def send(self, *, to: str, subject: str, text: str) -> str | None: ...


class EmailClient:
    """Posts plain-text messages to the configured email provider API."""

    def __init__(
        self,
        *,
        api_url: str | None = None,
        api_key: str | None = None,
        sender: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url or settings.email_api_url
        self.api_key = api_key or settings.email_api_key
        self.sender = sender or settings.email_from
        self.timeout = timeout
        self._transport = transport

    async def send(self, *, to: str, subject: str, text: str) -> str | None:
        if not self.api_url:
            raise ExternalServiceError("Email provider is not configured", code="EMAIL_NOT_CONFIGURED")
        payload = {"from": self.sender, "to": [to], "subject": subject, "text": text}
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.api_url, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ExternalServiceError(
                f"Email provider request failed: {exc}", code="EMAIL_SEND_ERROR"
            ) from exc
        body: dict[str, Any] = response.json() if response.content else {}
        return body.get("id") or body.get("message_id")


def _status_label(status: str) -> str:
    return _STATUS_LABELS.get(status, status.replace("_", " ").capitalize())


class NotificationService:
    def __init__(self, email_client: EmailSender) -> None:
        self.email_client = email_client

    async def _deliver(self, recipient: Recipient, subject: str, text: str) -> NotificationResult:
        try:
            message_id = await self.email_client.send(to=recipient.email, subject=subject, text=text)
        except ExternalServiceError as exc:
            logger.warning("Email to %s failed: %s", recipient.email, exc)
            return NotificationResult(success=False, error=str(exc))
        logger.info(
            "Email notification sent",
            extra={"fields": {"recipient": recipient.email, "message_id": message_id}},
        )
        return NotificationResult(success=True, message_id=message_id)

    async def send_status_update_notification(
        self,
        *,
        recipient: Recipient,
        loan_application_id: uuid.UUID | str,
        application_number: str | None,
        previous_status: str,
        new_status: str,
        reason: str | None = None,
        rejection_reason: str | None = None,
    ) -> NotificationResult:
        label = _status_label(new_status)
        reference = application_number or str(loan_application_id)
        lines = [
            f"Hello {recipient.first_name or 'Valued Customer'},",
            "",
            f"The status of your loan application {reference} changed from "
            f"{_status_label(previous_status)} to {label}.",
        ]
        if reason:
            lines.append(f"Reason: {reason}")
        if rejection_reason:
            lines.append(f"Rejection reason: {rejection_reason}")
        lines += [
            "",
            f"Sign in to review your application: {settings.app_url}",
            f"Questions? Contact {settings.support_email}.",
        ]
        return await self._deliver(
            recipient, f"Loan Application Status Update - {label}", "\n".join(lines)
        )

    async def send_document_request_notification(
        self,
        *,
        recipient: Recipient,
        loan_application_id: uuid.UUID | str,
        document_type: str,
        description: str,
        due_date: datetime | None = None,
    ) -> NotificationResult:
        document_label = document_type.replace("_", " ")
        lines = [
            f"Hello {recipient.first_name or 'Valued Customer'},",
            "",
            f"We need a {document_label} for loan application {loan_application_id}.",
            description,
        ]
        if due_date:
            lines.append(f"Please upload it by {due_date.date().isoformat()}.")
        lines += ["", f"Upload documents at {settings.app_url}"]
        return await self._deliver(
            recipient, f"Document Request - {document_label}", "\n".join(lines)
        )

"""Client for the DocuSign-style document-signing service."""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from app.core.errors import ExternalServiceError
from app.core.settings import settings

logger = logging.getLogger(__name__)

SIGNER_ROLE = "Borrower"
SIGNER_RECIPIENT_ID = "1"


@dataclass(frozen=True, slots=True)
class EnvelopeRequest:
    email_subject: str
    recipient_email: str
    recipient_name: str
    template_id: str | None = None
    email_blurb: str | None = None
    client_user_id: str | None = None
    text_fields: dict[str, str] | None = None


@dataclass(frozen=True, slots=True)
class Envelope:
    envelope_id: str
    status: str
    uri: str | None = None


class SigningClient:
    def __init__(
        self,
        *,
        base_url: str | None = None,
        account_id: str | None = None,
        access_token: str | None = None,
        template_id: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.signing_base_url).rstrip("/")
        self.account_id = account_id or settings.signing_account_id
        self.access_token = access_token or settings.signing_access_token
        self.template_id = template_id or settings.signing_template_id
        self.timeout = timeout or settings.signing_timeout_seconds
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.account_id and self.access_token)

    def _envelopes_url(self, *parts: str) -> str:
        suffix = "/".join(parts)
        url = f"{self.base_url}/v2.1/accounts/{self.account_id}/envelopes"
        return f"{url}/{suffix}" if suffix else url

    async def _request(self, method: str, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        if not self.configured:
            raise ExternalServiceError(
                "Signing service credentials are not configured", code="SIGNING_NOT_CONFIGURED"
            )
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(method, url, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Signing service returned %s for %s %s",
                exc.response.status_code,
                method,
                url,
            )
            raise ExternalServiceError(
                f"Signing service rejected the request ({exc.response.status_code})",
                code="SIGNING_SERVICE_ERROR",
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("Signing service unreachable: %s", exc)
            raise ExternalServiceError(
                "Signing service is unreachable", code="SIGNING_SERVICE_ERROR"
            ) from exc
        return response.json() if response.content else {}

    async def create_envelope(self, request: EnvelopeRequest) -> Envelope:
        role: dict[str, Any] = {
            "email": request.recipient_email,
            "name": request.recipient_name,
            "roleName": SIGNER_ROLE,
            "recipientId": SIGNER_RECIPIENT_ID,
        }
        if request.client_user_id:
            role["clientUserId"] = request.client_user_id
        if request.text_fields:
            role["tabs"] = {
                "textTabs": [
                    {"tabLabel": label, "value": value}
                    for label, value in request.text_fields.items()
                ]
            }
        payload: dict[str, Any] = {
            "emailSubject": request.email_subject,
            "templateId": request.template_id or self.template_id,
            "templateRoles": [role],
            # Created as a draft; ``send_envelope`` releases it
            "status": "created",
        }
        if request.email_blurb:
            payload["emailBlurb"] = request.email_blurb

        body = await self._request("POST", self._envelopes_url(), payload)
        envelope_id = body.get("envelopeId")
        if not envelope_id:
            raise ExternalServiceError(
                "Signing service did not return an envelope id", code="SIGNING_SERVICE_ERROR"
            )
        logger.info("Signing envelope created", extra={"fields": {"envelope_id": envelope_id}})
        return Envelope(envelope_id=envelope_id, status=body.get("status", "created"), uri=body.get("uri"))

    async def send_envelope(self, envelope_id: str) -> Envelope:
        body = await self._request("PUT", self._envelopes_url(envelope_id), {"status": "sent"})
        return Envelope(envelope_id=envelope_id, status=body.get("status", "sent"))

    async def get_signing_url(
        self,
        envelope_id: str,
        *,
        recipient_email: str,
        recipient_name: str,
        client_user_id: str,
        return_url: str | None = None,
    ) -> str:
        payload = {
            "returnUrl": return_url or f"{settings.app_url}/offer-letter-signed",
            "authenticationMethod": "none",
            "email": recipient_email,
            "userName": recipient_name,
            "recipientId": SIGNER_RECIPIENT_ID,
            "clientUserId": client_user_id,
        }
        body = await self._request(
            "POST", self._envelopes_url(envelope_id, "views", "recipient"), payload
        )
        url = body.get("url")
        if not url:
            raise ExternalServiceError(
                "Signing service did not return a signing URL", code="SIGNING_SERVICE_ERROR"
            )
        return url


def verify_webhook_signature(body: bytes, signature: str | None, key: str | None = None) -> bool:
    """Check a Connect-style ``base64(HMAC-SHA256(key, body))`` signature.

    When no key is configured every payload is accepted.
    """
    secret = key if key is not None else settings.signing_webhook_hmac_key
    if not secret:
        return True
    if not signature:
        return False
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    return hmac.compare_digest(expected, signature.strip())


def get_signing_client() -> SigningClient:
    return SigningClient()

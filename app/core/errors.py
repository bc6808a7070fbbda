from __future__ import annotations

import logging
import re
from http import HTTPStatus
from typing import Any, Iterable

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

_CODE_PATTERN = re.compile(r"^\[([A-Z0-9_]+)\]\s*")


class DomainError(Exception):
    """Base class for errors raised by the service layer.

    The machine-readable code is embedded in the message as ``[CODE] text`` so
    callers that only see ``str(exc)`` can still recover it.
    """

    status_code: int = 500
    default_code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.code = code or self.default_code
        self.text = message
        self.details = details or {}
        super().__init__(f"[{self.code}] {message}")

    @property
    def message(self) -> str:
        return str(self)


class UnauthorizedError(DomainError):
    status_code = 401
    default_code = "UNAUTHORIZED"


class ForbiddenError(DomainError):
    status_code = 403
    default_code = "FORBIDDEN"


class NotFoundError(DomainError):
    status_code = 404
    default_code = "NOT_FOUND"


class InvalidParametersError(DomainError):
    status_code = 400
    default_code = "INVALID_PARAMETERS"


class InvalidStatusTransitionError(DomainError):
    status_code = 400
    default_code = "INVALID_STATUS_TRANSITION"

    def __init__(
        self,
        message: str,
        *,
        allowed_transitions: Iterable[str] = (),
        code: str | None = None,
    ) -> None:
        self.allowed_transitions = sorted(str(item) for item in allowed_transitions)
        super().__init__(
            message,
            code=code,
            details={"allowed_transitions": self.allowed_transitions},
        )


class ConflictError(DomainError):
    status_code = 409
    default_code = "CONFLICT"


class PersistenceError(DomainError):
    status_code = 500
    default_code = "PERSISTENCE_ERROR"


class ExternalServiceError(DomainError):
    status_code = 502
    default_code = "EXTERNAL_SERVICE_ERROR"


def parse_error_code(message: str | Exception | None) -> str | None:
    """Return the ``CODE`` from a ``[CODE] text`` message, if present."""
    if message is None:
        return None
    match = _CODE_PATTERN.match(str(message))
    return match.group(1) if match else None


def strip_error_code(message: str) -> str:
    return _CODE_PATTERN.sub("", message, count=1)


def _default_code(status_code: int) -> str:
    mapping = {
        400: "bad_request",
        401: "unauthorized",
        403: "forbidden",
        404: "not_found",
        409: "conflict",
        422: "unprocessable_entity",
        429: "rate_limited",
    }
    return mapping.get(status_code, "http_error")


def _default_message(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Request failed"


def _normalize_details(details: Any) -> dict:
    if details is None:
        return {}
    if isinstance(details, dict):
        return details
    if isinstance(details, list):
        return {"errors": details}
    if isinstance(details, str):
        return {"detail": details}
    return {"detail": str(details)}


def _build_response(
    status_code: int,
    code: str,
    message: str,
    details: Any | None = None,
) -> JSONResponse:
    payload = {
        "code": code,
        "message": message,
        "data": None,
        "details": _normalize_details(details),
    }
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))


def _parse_http_exception_detail(detail: Any, status_code: int) -> tuple[str, str, dict]:
    code = _default_code(status_code)
    message = _default_message(status_code)

    if isinstance(detail, dict):
        code = detail.get("code") or code
        message = detail.get("message") or detail.get("detail") or message
        if "details" in detail:
            details = _normalize_details(detail.get("details"))
        else:
            remainder = {k: v for k, v in detail.items() if k not in {"code", "message", "detail"}}
            details = remainder or {"detail": message}
        return code, message, details

    if isinstance(detail, list):
        return code, message, {"errors": detail}

    if isinstance(detail, str):
        embedded = parse_error_code(detail)
        if embedded:
            return embedded.lower(), strip_error_code(detail), {"detail": detail}
        return code, detail, {"detail": detail}

    return code, message, {"detail": str(detail)}


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Domain error on %s %s: %s", request.method, request.url.path, exc)
    else:
        logger.info("Request rejected on %s %s: %s", request.method, request.url.path, exc)
    return _build_response(exc.status_code, exc.code.lower(), exc.text, exc.details)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code, message, details = _parse_http_exception_detail(exc.detail, exc.status_code)
    response = _build_response(exc.status_code, code, message, details)
    headers = getattr(exc, "headers", None)
    if isinstance(headers, dict):
        response.headers.update(headers)
    return response


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    message = "Validation failed"
    if errors:
        first = errors[0] or {}
        loc = first.get("loc") or []
        msg = first.get("msg") or "Validation failed"
        # Drop the request section (body/query/path) from the location
        loc_parts = [str(part) for part in loc if part not in {"body", "query", "path"}]
        message = f"{'.'.join(loc_parts)}: {msg}" if loc_parts else str(msg)
    return _build_response(
        status_code=422,
        code="validation_error",
        message=message,
        details={"errors": errors},
    )


async def rate_limit_exception_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    response = _build_response(
        status_code=429,
        code="rate_limited",
        message=_default_message(429),
        details=getattr(exc, "detail", None),
    )
    headers = getattr(exc, "headers", None)
    if isinstance(headers, dict):
        response.headers.update(headers)
    return response


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _build_response(
        status_code=500,
        code="internal_server_error",
        message="Internal server error",
        details={},
    )


def register_exception_handlers(app) -> None:
    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

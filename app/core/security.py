from __future__ import annotations

from functools import lru_cache
from typing import Any

from jose import JWTError, jwt

from app.core.settings import settings


class JWTKeyError(RuntimeError):
    pass


def _read_key(path: str) -> str:
    with open(path, "r", encoding="utf-8") as key_file:
        return key_file.read()


@lru_cache(maxsize=1)
def _load_identity_public_key() -> str:
    if settings.identity_jwt_public_key:
        return settings.identity_jwt_public_key
    if settings.identity_jwt_public_key_path:
        return _read_key(settings.identity_jwt_public_key_path)
    raise JWTKeyError("Identity provider public key not configured")


def decode_identity_token(token: str, *, key: str | None = None) -> dict[str, Any]:
    """Verify a session token issued by the identity provider.

    Returns the claims; ``sub`` carries the provider's stable user id.
    Raises ``ValueError`` when the token cannot be trusted.
    """
    verification_key = key or _load_identity_public_key()
    options = {"verify_aud": False}
    try:
        payload = jwt.decode(
            token,
            verification_key,
            algorithms=[settings.identity_jwt_algorithm],
            issuer=settings.identity_jwt_issuer,
            options=options,
        )
    except JWTError as exc:
        raise ValueError("Invalid token") from exc
    if not payload.get("sub"):
        raise ValueError("Token has no subject")
    return payload

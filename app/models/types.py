import base64
import hashlib
from functools import lru_cache
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken, MultiFernet
from sqlalchemy import LargeBinary
from sqlalchemy.types import TypeDecorator

from app.core.settings import settings


def _derive_key(secret: str) -> bytes:
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


@lru_cache(maxsize=8)
def _fernet_for(secrets: tuple[str, ...]) -> MultiFernet:
    return MultiFernet([Fernet(_derive_key(secret)) for secret in secrets])


def get_fernet(secret: Optional[str] = None) -> MultiFernet:
    """Fernet keyed by SECRET_KEY; PREVIOUS_SECRET_KEYS still decrypt."""
    if secret:
        return _fernet_for((secret,))
    return _fernet_for((settings.secret_key, *settings.previous_secret_keys))


class EncryptedString(TypeDecorator):
    """String column stored as a Fernet token."""

    impl = LargeBinary
    cache_ok = True

    def __init__(self, *, secret: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self._secret = secret

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return bytes(get_fernet(self._secret).encrypt(str(value).encode("utf-8")))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        try:
            return get_fernet(self._secret).decrypt(bytes(value)).decode("utf-8")
        except InvalidToken as exc:  # pragma: no cover - indicates corrupted data or lost key
            raise ValueError("Unable to decrypt value") from exc


__all__ = ["EncryptedString", "get_fernet"]

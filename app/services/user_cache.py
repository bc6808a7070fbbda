from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError
from app.models.user import STAFF_ROLES, User

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CachedUser:
    id: uuid.UUID
    external_id: str
    email: str
    first_name: str | None
    last_name: str | None
    role: str | None

    @property
    def full_name(self) -> str:
        parts = [part for part in (self.first_name, self.last_name) if part]
        return " ".join(parts) or self.email

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @classmethod
    def from_model(cls, user: User) -> "CachedUser":
        return cls(
            id=user.id,
            external_id=user.external_id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            role=user.role,
        )


class UserLookupCache:
    """Maps identity-provider user ids to internal users for a short TTL.

    One instance is created per application and handed to whoever needs it;
    role or profile changes become visible after ``invalidate`` or expiry.
    """

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] | None = None) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock or time.monotonic
        self._entries: dict[str, tuple[float, CachedUser]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, external_id: str) -> CachedUser | None:
        cached = self._entries.get(external_id)
        if cached is None:
            return None
        expires_at, user = cached
        if self._clock() >= expires_at:
            self._entries.pop(external_id, None)
            return None
        return user

    def put(self, user: CachedUser) -> CachedUser:
        self._entries[user.external_id] = (self._clock() + self.ttl_seconds, user)
        return user

    def invalidate(self, external_id: str) -> bool:
        return self._entries.pop(external_id, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    async def resolve(self, db: AsyncSession, external_id: str) -> CachedUser:
        cached = self.get(external_id)
        if cached is not None:
            return cached

        stmt = select(User).where(User.external_id == external_id, User.deleted_at.is_(None))
        user = (await db.execute(stmt)).scalar_one_or_none()
        if user is None:
            raise NotFoundError(
                f"No user found for identity '{external_id}'", code="USER_NOT_FOUND"
            )
        logger.debug("User cache miss for %s; loaded user %s", external_id, user.id)
        return self.put(CachedUser.from_model(user))

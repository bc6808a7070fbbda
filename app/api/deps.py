import logging

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.context import set_user_id
from app.core.errors import NotFoundError
from app.core.security import JWTKeyError, decode_identity_token
from app.db.session import get_db
from app.services.signing import SigningClient, get_signing_client as build_signing_client
from app.services.task_queue import TaskQueue
from app.services.user_cache import CachedUser, UserLookupCache

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


async def get_db_session(db: AsyncSession = Depends(get_db)) -> AsyncSession:
    return db


def get_user_cache(request: Request) -> UserLookupCache:
    return request.app.state.user_cache


def get_task_queue(request: Request) -> TaskQueue | None:
    return getattr(request.app.state, "task_queue", None)


def get_signing_client() -> SigningClient:
    return build_signing_client()


def get_token_subject(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = decode_identity_token(credentials.credentials)
    except JWTKeyError as exc:
        logger.error("Identity token verification unavailable: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication is not configured",
        ) from exc
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
    return payload["sub"]


async def get_current_user(
    subject: str = Depends(get_token_subject),
    db: AsyncSession = Depends(get_db_session),
    user_cache: UserLookupCache = Depends(get_user_cache),
) -> CachedUser:
    try:
        user = await user_cache.resolve(db, subject)
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found"
        ) from exc
    set_user_id(str(user.id))
    return user


async def require_authenticated_user(
    current_user: CachedUser = Depends(get_current_user),
) -> CachedUser:
    """Simple guard to require an authenticated user (no role checks)."""
    return current_user


async def require_staff_user(
    current_user: CachedUser = Depends(require_authenticated_user),
) -> CachedUser:
    if not current_user.is_staff:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Internal staff access required",
        )
    return current_user

import logging

from fastapi import FastAPI

from app.core.settings import settings
from app.services.notifications import EmailClient, NotificationService
from app.services.signing import get_signing_client
from app.services.task_queue import TaskQueue
from app.services.tasks import register_handlers
from app.services.user_cache import UserLookupCache
from app.utils.redis_client import close_redis_client

logger = logging.getLogger(__name__)


def build_task_queue() -> TaskQueue:
    queue = TaskQueue(
        max_attempts=settings.task_max_attempts,
        backoff_seconds=settings.task_retry_backoff_seconds,
        dead_letter_limit=settings.task_dead_letter_limit,
    )
    return register_handlers(
        queue,
        notification_service=NotificationService(EmailClient()),
        signing_client=get_signing_client(),
    )


def register_event_handlers(app: FastAPI) -> None:
    app.state.user_cache = UserLookupCache(ttl_seconds=settings.user_cache_ttl_seconds)
    app.state.task_queue = build_task_queue() if settings.task_queue_enabled else None

    @app.on_event("startup")
    async def on_startup() -> None:
        logger.info("Application startup")
        if app.state.task_queue is not None:
            await app.state.task_queue.start()
        else:
            logger.warning("Task queue disabled; notifications and offer dispatch will not run")

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        logger.info("Application shutdown")
        if app.state.task_queue is not None:
            await app.state.task_queue.stop()
        await close_redis_client()

from fastapi import APIRouter, Depends

from app.api import deps
from app.core.health import live_payload, ready_payload, status_summary_payload
from app.core.limiter import limiter
from app.services.task_queue import TaskQueue

router = APIRouter(tags=["health"])


@router.get("/health/live", summary="Service liveness check")
@limiter.exempt
async def health_live() -> dict:
    return await live_payload()


@router.get("/health/ready", summary="Service readiness check")
@limiter.exempt
async def health_ready(task_queue: TaskQueue | None = Depends(deps.get_task_queue)) -> dict:
    return await ready_payload(task_queue)


@router.get("/health", summary="Readiness check alias")
@limiter.exempt
async def read_health(task_queue: TaskQueue | None = Depends(deps.get_task_queue)) -> dict:
    return await ready_payload(task_queue)


@router.get("/status/summary", tags=["status"], summary="Service status summary")
@limiter.exempt
async def status_summary(task_queue: TaskQueue | None = Depends(deps.get_task_queue)) -> dict:
    return await status_summary_payload(task_queue)

"""In-process queue for side effects that run after a transaction commits.

Tasks are retried with linear backoff and parked in a bounded dead-letter list
once ``max_attempts`` is exhausted. Delivery is at-least-once within the life
of the process; pending tasks do not survive a restart.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

TaskHandler = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass(slots=True)
class Task:
    name: str
    payload: dict[str, Any]
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    attempts: int = 0
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_error: str | None = None


class UnknownTaskError(LookupError):
    pass


class TaskQueue:
    def __init__(
        self,
        *,
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
        dead_letter_limit: int = 500,
        workers: int = 1,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.workers = max(1, workers)
        self._sleep = sleep
        self._handlers: dict[str, TaskHandler] = {}
        self._queue: asyncio.Queue[Task] = asyncio.Queue()
        self._dead_letters: deque[Task] = deque(maxlen=dead_letter_limit)
        self._worker_tasks: list[asyncio.Task] = []
        self._processed = 0
        self._failed = 0

    @property
    def running(self) -> bool:
        return any(not worker.done() for worker in self._worker_tasks)

    @property
    def dead_letters(self) -> list[Task]:
        return list(self._dead_letters)

    def register(self, name: str, handler: TaskHandler) -> None:
        self._handlers[name] = handler

    def registered(self) -> list[str]:
        return sorted(self._handlers)

    def enqueue(self, name: str, payload: dict[str, Any] | None = None) -> Task:
        if name not in self._handlers:
            raise UnknownTaskError(f"No handler registered for task '{name}'")
        task = Task(name=name, payload=dict(payload or {}))
        self._queue.put_nowait(task)
        logger.info("Task enqueued", extra={"fields": {"task": name, "task_id": task.id}})
        return task

    def stats(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "pending": self._queue.qsize(),
            "processed": self._processed,
            "failed": self._failed,
            "dead_letters": len(self._dead_letters),
        }

    async def start(self) -> None:
        if self.running:
            return
        self._worker_tasks = [
            asyncio.create_task(self._worker(), name=f"task-queue-worker-{index}")
            for index in range(self.workers)
        ]
        logger.info("Task queue started with %s worker(s)", self.workers)

    async def stop(self, timeout: float = 10.0) -> None:
        if self._worker_tasks:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=timeout)
            except (TimeoutError, asyncio.TimeoutError):
                logger.warning(
                    "Task queue stopped with %s task(s) still pending", self._queue.qsize()
                )
            for worker in self._worker_tasks:
                worker.cancel()
            await asyncio.gather(*self._worker_tasks, return_exceptions=True)
            self._worker_tasks = []
        logger.info("Task queue stopped")

    async def drain(self) -> None:
        """Run every queued task to completion.

        Waits for the workers when they are running, otherwise processes the
        backlog inline.
        """
        if self.running:
            await self._queue.join()
            return
        while not self._queue.empty():
            task = self._queue.get_nowait()
            try:
                await self._run(task)
            finally:
                self._queue.task_done()

    async def _worker(self) -> None:
        while True:
            task = await self._queue.get()
            try:
                await self._run(task)
            finally:
                self._queue.task_done()

    async def _run(self, task: Task) -> None:
        handler = self._handlers[task.name]
        while task.attempts < self.max_attempts:
            task.attempts += 1
            try:
                await handler(task.payload)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                task.last_error = f"{type(exc).__name__}: {exc}"
                logger.warning(
                    "Task attempt failed",
                    extra={
                        "fields": {
                            "task": task.name,
                            "task_id": task.id,
                            "attempt": task.attempts,
                            "error": task.last_error,
                        }
                    },
                )
                if task.attempts < self.max_attempts:
                    await self._sleep(self.backoff_seconds * task.attempts)
                continue
            self._processed += 1
            return

        self._failed += 1
        self._dead_letters.append(task)
        logger.error(
            "Task moved to dead-letter list",
            extra={
                "fields": {
                    "task": task.name,
                    "task_id": task.id,
                    "attempts": task.attempts,
                    "error": task.last_error,
                }
            },
        )

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Set
from uuid import UUID


class BaseQueue:
    def enqueue(self, job_id: UUID) -> None: ...  # pragma: no cover


class LocalQueue(BaseQueue):
    """Runs each job as its own asyncio task on the current event loop.

    ``max_concurrent`` of 0 means no cap; otherwise a semaphore bounds how
    many pipelines run at once and the rest wait their turn.
    """

    def __init__(
        self,
        processor: Callable[[UUID], Awaitable[None]],
        max_concurrent: int = 0,
        logger: logging.Logger | None = None,
    ) -> None:
        self._processor = processor
        self._max_concurrent = max_concurrent
        self._semaphore: asyncio.Semaphore | None = None
        self._tasks: Set[asyncio.Task] = set()
        self.log = logger or logging.getLogger(__name__)

    def enqueue(self, job_id: UUID) -> None:
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._run(job_id), name=f"job-{job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._finished)

    async def _run(self, job_id: UUID) -> None:
        if self._max_concurrent <= 0:
            await self._processor(job_id)
            return
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self._max_concurrent)
        async with self._semaphore:
            await self._processor(job_id)

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            self.log.warning("job task cancelled", extra={"task": task.get_name()})
            return
        exc = task.exception()
        if exc is not None:
            self.log.error("job task crashed", extra={"task": task.get_name()}, exc_info=exc)

"""
Supervised background work.

``VerificationPool`` runs settlement verifications that must not block the
request that triggered them.  Concurrency is bounded by a semaphore and the
number of tracked tasks by ``max_pending``; ``shutdown`` cancels whatever is
still running so nothing outlives the application.
"""

import asyncio
import logging
from typing import Any, Awaitable, Set

logger = logging.getLogger(__name__)


class PoolSaturatedError(RuntimeError):
    """Raised by ``submit`` when ``max_pending`` jobs are already tracked."""


class VerificationPool:
    """Bounded, tracked set of asyncio tasks.

    Args:
        max_concurrent: Maximum number of jobs running at once; further jobs
            are scheduled immediately but wait on the semaphore.
        max_pending: Maximum number of tracked jobs, running or waiting
            (default: four times ``max_concurrent``).
    """

    def __init__(self, max_concurrent: int = 64, max_pending: int | None = None) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if max_pending is None:
            max_pending = max_concurrent * 4
        if max_pending < max_concurrent:
            raise ValueError("max_pending must be at least max_concurrent")
        self.max_concurrent = max_concurrent
        self.max_pending = max_pending
        self._semaphore: asyncio.Semaphore | None = None
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def active(self) -> int:
        """Number of tracked jobs that have not finished yet."""
        return len(self._tasks)

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, job: Awaitable[Any], name: str | None = None) -> asyncio.Task:
        """Schedule ``job`` on the running loop and return its task.

        Raises:
            PoolSaturatedError: If ``max_pending`` jobs are already tracked.
            RuntimeError: If the pool has been shut down.
        """
        if self._closed:
            if asyncio.iscoroutine(job):
                job.close()
            raise RuntimeError("VerificationPool is shut down")

        if len(self._tasks) >= self.max_pending:
            if asyncio.iscoroutine(job):
                job.close()
            logger.warning(
                "Background verification pool saturated",
                extra={"task_name": name, "active": len(self._tasks), "max_pending": self.max_pending},
            )
            raise PoolSaturatedError(f"{len(self._tasks)} background jobs already pending")

        # Created lazily so the semaphore binds to the serving loop
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_concurrent)

        task = asyncio.create_task(self._run(job), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    async def _run(self, job: Awaitable[Any]) -> Any:
        async with self._semaphore:
            return await job

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background job raised",
                extra={"task_name": task.get_name(), "error": repr(exc)},
            )

    async def join(self) -> None:
        """Wait until every job submitted so far has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Refuse new jobs, cancel running ones and wait for them to unwind."""
        self._closed = True
        pending = list(self._tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.info("Cancelled background verifications", extra={"count": len(pending)})

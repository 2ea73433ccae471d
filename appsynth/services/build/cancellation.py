"""Cooperative cancellation and the background job registry.

A :class:`CancellationToken` is polled at fixed boundaries (start of a
run, before every phase, step and stage attempt).  Raising it never
interrupts an in-flight provider call; the result of such a call is
simply discarded.

:class:`JobRegistry` is owned by whatever launches background builds.
It pairs each job id with its task and token, and forgets the job when
the task finishes.
"""

import asyncio
import logging
from typing import Awaitable, Callable

from appsynth.errors import Aborted

logger = logging.getLogger(__name__)


class CancellationToken:
    def __init__(self) -> None:
        self._cancelled = False
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "Build cancelled by user") -> None:
        if not self._cancelled:
            self._cancelled = True
            self.reason = reason

    def raise_if_cancelled(self) -> None:
        """Raise :class:`Aborted` once the token has been cancelled."""
        if self._cancelled:
            raise Aborted(self.reason or "Build cancelled")


class JobRegistry:
    """Background jobs keyed by id, each with its own cancellation token."""

    def __init__(self) -> None:
        self._jobs: dict[str, tuple[asyncio.Task, CancellationToken]] = {}

    def start(
        self,
        job_id: str,
        factory: Callable[[CancellationToken], Awaitable[None]],
    ) -> asyncio.Task:
        """Spawn ``factory(token)`` as a task registered under *job_id*.

        Raises:
            RuntimeError: a job with this id is still running.
        """
        if self.is_active(job_id):
            raise RuntimeError(f"Job {job_id} is already running")
        token = CancellationToken()
        task = asyncio.create_task(factory(token), name=f"job:{job_id}")
        self._jobs[job_id] = (task, token)
        task.add_done_callback(lambda t, jid=job_id: self._forget(jid, t))
        return task

    def _forget(self, job_id: str, task: asyncio.Task) -> None:
        entry = self._jobs.get(job_id)
        if entry is not None and entry[0] is task:
            del self._jobs[job_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error("Job %s crashed", job_id, exc_info=task.exception())

    def is_active(self, job_id: str) -> bool:
        entry = self._jobs.get(job_id)
        return entry is not None and not entry[0].done()

    def cancel(self, job_id: str, reason: str = "Build cancelled by user") -> bool:
        """Raise the job's token.  Returns False when no such job runs."""
        entry = self._jobs.get(job_id)
        if entry is None or entry[0].done():
            return False
        entry[1].cancel(reason)
        logger.info("Cancellation requested for job %s", job_id)
        return True

    def task(self, job_id: str) -> asyncio.Task | None:
        entry = self._jobs.get(job_id)
        return entry[0] if entry else None

    async def shutdown(self) -> None:
        """Cancel every running job and wait for the tasks to unwind."""
        tasks = []
        for task, token in list(self._jobs.values()):
            token.cancel("Server shutting down")
            task.cancel()
            tasks.append(task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._jobs.clear()

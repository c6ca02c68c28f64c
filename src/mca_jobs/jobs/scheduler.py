"""Detached task scheduling for job runs."""

import asyncio

from mca_jobs.core.logging import get_logger
from mca_jobs.jobs.engine import BatchJobEngine

logger = get_logger(__name__)


class JobScheduler:
    """Runs each job execution as its own asyncio task.

    Holds strong references to in-flight tasks so they are not garbage
    collected, and logs anything that escapes the engine.
    """

    def __init__(self, engine: BatchJobEngine):
        self.engine = engine
        self._tasks: dict[str, asyncio.Task] = {}

    def submit(self, job_id: str, resume_from_index: int = 0) -> asyncio.Task:
        """Schedule a job run and return immediately."""
        task = asyncio.create_task(
            self.engine.execute(job_id, resume_from_index), name=f"job:{job_id}"
        )
        self._tasks[job_id] = task
        task.add_done_callback(lambda t: self._on_done(job_id, t))
        logger.debug(f"Scheduled job {job_id} (offset={resume_from_index})")
        return task

    def _on_done(self, job_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(job_id) is task:
            del self._tasks[job_id]
        if task.cancelled():
            logger.warning(f"Run task for job {job_id} was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Run task for job {job_id} crashed: {exc}", exc_info=exc)

    async def wait(self, job_id: str, timeout: float | None = None) -> None:
        """Wait for the current run of a job, if any, to finish."""
        task = self._tasks.get(job_id)
        if task is None:
            return
        await asyncio.wait_for(asyncio.shield(task), timeout=timeout)

    async def wait_all(self, timeout: float | None = None) -> None:
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.wait(tasks, timeout=timeout)

    def active(self) -> list[str]:
        return [job_id for job_id, task in self._tasks.items() if not task.done()]

    async def shutdown(self, timeout: float = 30.0) -> None:
        """Wait for in-flight runs, then cancel whatever is left."""
        tasks = [t for t in self._tasks.values() if not t.done()]
        if not tasks:
            return
        logger.info(f"Waiting up to {timeout}s for {len(tasks)} job run(s) to stop")
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            logger.warning(f"Shutdown timeout reached, cancelling {len(pending)} job run(s)")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

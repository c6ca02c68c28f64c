"""Recovery of jobs orphaned by a process restart."""

import asyncio
from datetime import UTC, datetime, timedelta

from mca_jobs.core.logging import get_logger
from mca_jobs.jobs.models import JobError, JobFilter, JobRecord, JobStatus
from mca_jobs.jobs.registry import RunRegistry
from mca_jobs.repositories.base import JobRepository

logger = get_logger(__name__)

_REAPABLE = (JobStatus.PENDING, JobStatus.RUNNING)


class StaleJobReaper:
    """Marks running or pending jobs with an expired heartbeat as failed.

    A job is only reaped when this process has no live run for it and its
    last heartbeat (or creation time, if it never started) is older than
    ``stale_after``. Reaped jobs are not retried; an operator resumes them.
    """

    def __init__(
        self,
        repository: JobRepository,
        registry: RunRegistry,
        stale_after: timedelta,
    ):
        self.repository = repository
        self.registry = registry
        self.stale_after = stale_after

    def _is_stale(self, job: JobRecord, now: datetime) -> bool:
        last_seen = job.heartbeat_at or job.started_at or job.created_at
        return now - last_seen > self.stale_after

    async def sweep(self) -> list[str]:
        """Reap stale jobs once.

        Returns:
            list[str]: Ids of jobs that were marked failed.
        """
        now = datetime.now(UTC)
        candidates = await self.repository.find(JobFilter(statuses=list(_REAPABLE)))
        reaped: list[str] = []

        for job in candidates:
            if self.registry.is_live(job.job_id) or not self._is_stale(job, now):
                continue

            error = JobError(
                message=(
                    f"Job was {job.status.value} with no heartbeat since "
                    f"{(job.heartbeat_at or job.created_at).isoformat()}; "
                    "the process running it most likely stopped"
                ),
                type="StaleJob",
                occurred_at=now,
            )
            updated = await self.repository.update(
                job.job_id,
                {"status": JobStatus.FAILED, "error": error, "completed_at": now},
                expected_statuses=(job.status,),
            )
            if updated is not None:
                reaped.append(job.job_id)
                logger.warning(
                    f"Reaped stale job {job.job_id} ({job.kind.value}/{job.entity_type})"
                )

        if reaped:
            logger.info(f"Reaper marked {len(reaped)} stale job(s) as failed")
        return reaped

    async def run_forever(self, interval: float) -> None:
        """Sweep every ``interval`` seconds until cancelled."""
        logger.info(
            f"Stale job reaper started (interval={interval}s, stale_after={self.stale_after})"
        )
        while True:
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Reaper sweep failed: {e}", exc_info=True)
            await asyncio.sleep(interval)

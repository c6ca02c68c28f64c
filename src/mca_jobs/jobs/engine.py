"""Batch execution loop shared by import and sync jobs."""

import time
import traceback
from collections.abc import Iterable
from datetime import UTC, datetime

from mca_jobs.core.logging import get_logger
from mca_jobs.jobs.errors import (
    InterruptionKind,
    JobInterrupted,
    RunCapacityError,
    UnknownEntityTypeError,
)
from mca_jobs.jobs.models import JobError, JobProgress, JobRecord, JobStatus
from mca_jobs.jobs.operations import (
    EntityOperation,
    OperationContext,
    OperationRegistry,
    OperationResult,
    ProgressCallback,
)
from mca_jobs.jobs.registry import RunControl, RunRegistry
from mca_jobs.repositories.base import JobRepository

logger = get_logger(__name__)

_RUNNING = (JobStatus.RUNNING,)


def _percentage(processed: int, total: int) -> int:
    if total <= 0:
        return 0
    return min(100, round(processed / total * 100))


class BatchJobEngine:
    """Drives one job record from running to a terminal or paused state.

    Every status write is conditional on the job still being ``running`` so
    that a cancel or pause issued elsewhere is never overwritten. The run's
    control is released in ``finally`` regardless of outcome.
    """

    def __init__(
        self,
        repository: JobRepository,
        registry: RunRegistry,
        operations: OperationRegistry,
    ):
        self.repository = repository
        self.registry = registry
        self.operations = operations

    async def execute(self, job_id: str, resume_from_index: int = 0) -> JobRecord | None:
        """Run a job to completion, interruption or failure.

        Args:
            job_id: Job to execute. Must already be persisted.
            resume_from_index: Number of units already processed by earlier runs.

        Returns:
            JobRecord | None: The job as stored after the run, None if it vanished
                or another run of it is already live.
        """
        try:
            control = self.registry.register(job_id)
        except RunCapacityError as e:
            logger.error(f"Cannot start job {job_id}: {e.message}")
            return await self._mark_failed(job_id, e)
        except RuntimeError as e:
            logger.warning(f"Not starting job {job_id}: {e}")
            return None

        try:
            return await self._run(control, resume_from_index)
        finally:
            self.registry.release(control)

    async def _run(self, control: RunControl, resume_from_index: int) -> JobRecord | None:
        job_id = control.job_id
        job = await self.repository.get(job_id)
        if job is None:
            logger.warning(f"Job {job_id} not found, nothing to execute")
            return None

        try:
            operation = self._resolve_operation(job)
            job = await self._mark_started(control, job)
            job = await self._ensure_total(control, job, operation)
            await self._check_interrupted(control)

            logger.info(
                f"Executing {job.kind.value} job {job_id} for {job.entity_type} "
                f"(funder={job.funder}, offset={resume_from_index}, total={job.progress.total})"
            )
            callback = self._progress_callback(control, job.progress, resume_from_index)
            result = await operation.run(
                OperationContext(
                    job_id=job_id,
                    parameters=job.parameters,
                    resume_from_index=resume_from_index,
                    progress_callback=callback,
                )
            )
        except JobInterrupted as interrupt:
            return await self._handle_interruption(job_id, interrupt.kind)
        except Exception as e:
            logger.error(f"Job {job_id} failed: {e}", exc_info=True)
            return await self._mark_failed(job_id, e)

        return await self._mark_completed(job_id, result)

    def _resolve_operation(self, job: JobRecord) -> EntityOperation:
        operation = self.operations.get(job.kind, job.entity_type)
        if operation is None:
            raise UnknownEntityTypeError(job.entity_type, self.operations.entity_types(job.kind))
        return operation

    async def _mark_started(self, control: RunControl, job: JobRecord) -> JobRecord:
        now = datetime.now(UTC)
        if job.status == JobStatus.PENDING:
            started = await self.repository.update(
                job.job_id,
                {"status": JobStatus.RUNNING, "started_at": now, "heartbeat_at": now},
                expected_statuses=(JobStatus.PENDING,),
            )
            if started is not None:
                logger.info(f"Job {job.job_id} started")
                return started
        elif job.status == JobStatus.RUNNING:
            changes: dict = {"heartbeat_at": now}
            if job.started_at is None:
                changes["started_at"] = now
            renewed = await self.repository.update(job.job_id, changes, expected_statuses=_RUNNING)
            if renewed is not None:
                return renewed

        # Cancelled or paused before the loop got going
        await self._check_interrupted(control)
        raise JobInterrupted(InterruptionKind.SUPERSEDED, job.job_id)

    async def _ensure_total(
        self, control: RunControl, job: JobRecord, operation: EntityOperation
    ) -> JobRecord:
        # The total is a snapshot taken once per job; resumed runs keep it
        if job.progress.total_known:
            return job

        total = await operation.count(job.parameters)
        processed = min(job.progress.processed, total)
        progress = job.progress.model_copy(
            update={
                "total": total,
                "processed": processed,
                "percentage": _percentage(processed, total),
                "total_counted_at": datetime.now(UTC),
            }
        )
        updated = await self.repository.update(
            job.job_id, {"progress": progress}, expected_statuses=_RUNNING
        )
        if updated is None:
            await self._check_interrupted(control)
            raise JobInterrupted(InterruptionKind.SUPERSEDED, job.job_id)
        logger.info(f"Job {job.job_id} will process {total} {job.entity_type} record(s)")
        return updated

    async def _check_interrupted(self, control: RunControl) -> None:
        """Raise JobInterrupted if the run has been cancelled, paused or superseded.

        The in-process latch is consulted first, then a fresh durable read so
        a cancel issued from another process is honoured too.
        """
        job_id = control.job_id
        if control.cancelled:
            raise JobInterrupted(InterruptionKind.CANCELLED, job_id)
        if control.paused:
            raise JobInterrupted(InterruptionKind.PAUSED, job_id)

        job = await self.repository.get(job_id)
        if job is None:
            raise JobInterrupted(InterruptionKind.SUPERSEDED, job_id)
        if job.status == JobStatus.CANCELLED:
            control.request_cancel()
            raise JobInterrupted(InterruptionKind.CANCELLED, job_id)
        if job.status == JobStatus.PAUSED:
            control.request_pause()
            raise JobInterrupted(InterruptionKind.PAUSED, job_id)
        if job.status != JobStatus.RUNNING:
            raise JobInterrupted(InterruptionKind.SUPERSEDED, job_id)

    def _progress_callback(
        self, control: RunControl, snapshot: JobProgress, resume_from_index: int
    ) -> ProgressCallback:
        job_id = control.job_id
        total = snapshot.total
        run_started = time.monotonic()
        last_written = min(resume_from_index, total)

        async def on_progress(
            processed_so_far: int, _total: int, current_entity: str | None
        ) -> None:
            nonlocal last_written
            await self._check_interrupted(control)

            processed = max(last_written, min(resume_from_index + processed_so_far, total))
            done_this_run = processed - resume_from_index
            eta_ms = None
            if done_this_run > 0:
                elapsed = time.monotonic() - run_started
                eta_ms = int(elapsed / done_this_run * (total - processed) * 1000)

            now = datetime.now(UTC)
            progress = JobProgress(
                processed=processed,
                total=total,
                percentage=_percentage(processed, total),
                current_entity=current_entity,
                last_progress_update=now,
                estimated_time_remaining_ms=eta_ms,
                total_counted_at=snapshot.total_counted_at,
            )
            written = await self.repository.update(
                job_id, {"progress": progress, "heartbeat_at": now}, expected_statuses=_RUNNING
            )
            if written is None:
                await self._check_interrupted(control)
                raise JobInterrupted(InterruptionKind.SUPERSEDED, job_id)
            last_written = processed
            logger.debug(f"Job {job_id} progress {processed}/{total} ({current_entity})")

        return on_progress

    async def _mark_completed(self, job_id: str, result: OperationResult) -> JobRecord | None:
        now = datetime.now(UTC)
        current = await self.repository.get(job_id)
        if current is None:
            return None
        # processed stays at the last checkpoint; the counted total may exceed
        # what the operation actually enumerated
        processed = current.progress.processed
        total = current.progress.total
        progress = current.progress.model_copy(
            update={
                "processed": processed,
                "percentage": _percentage(processed, total) if total else 100,
                "estimated_time_remaining_ms": 0,
                "last_progress_update": now,
            }
        )
        results = result.to_results()
        completed = await self.repository.update(
            job_id,
            {
                "status": JobStatus.COMPLETED,
                "results": results,
                "progress": progress,
                "completed_at": now,
                "heartbeat_at": now,
            },
            expected_statuses=_RUNNING,
        )
        if completed is None:
            logger.warning(f"Job {job_id} left running state before completion was recorded")
            return await self.repository.get(job_id)

        logger.info(
            f"Job {job_id} completed: created={results.created}, updated={results.updated}, "
            f"skipped={results.skipped}, failed={results.failed}"
        )
        return completed

    async def _handle_interruption(self, job_id: str, kind: InterruptionKind) -> JobRecord | None:
        now = datetime.now(UTC)
        if kind == InterruptionKind.CANCELLED:
            await self.repository.update(
                job_id,
                {"status": JobStatus.CANCELLED, "completed_at": now},
                expected_statuses=_RUNNING,
            )
            logger.info(f"Job {job_id} cancelled")
        elif kind == InterruptionKind.PAUSED:
            await self.repository.update(
                job_id,
                {"status": JobStatus.PAUSED, "paused_at": now},
                expected_statuses=_RUNNING,
            )
            logger.info(f"Job {job_id} paused")
        else:
            logger.info(f"Job {job_id} was moved out of running elsewhere, stopping")
        return await self.repository.get(job_id)

    async def _mark_failed(
        self,
        job_id: str,
        exc: Exception,
        expected: Iterable[JobStatus] = (JobStatus.PENDING, JobStatus.RUNNING),
    ) -> JobRecord | None:
        now = datetime.now(UTC)
        error = JobError(
            message=str(exc) or exc.__class__.__name__,
            type=exc.__class__.__name__,
            traceback="".join(traceback.format_exception(exc)),
            occurred_at=now,
        )
        failed = await self.repository.update(
            job_id,
            {"status": JobStatus.FAILED, "error": error, "completed_at": now},
            expected_statuses=expected,
        )
        if failed is None:
            logger.warning(f"Job {job_id} failed but had already left an active state")
            return await self.repository.get(job_id)
        return failed

"""Lifecycle operations on batch jobs (create, cancel, pause, resume, query)."""

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from mca_jobs.clients.orgmeter import ExternalSourceFactory
from mca_jobs.core.constants import IMPORT_ORDER, SYNC_ORDER
from mca_jobs.core.exceptions import (
    AppException,
    ConflictException,
    ConnectivityException,
    ForbiddenException,
    NotFoundException,
    UnauthorizedException,
    ValidationException,
)
from mca_jobs.core.logging import get_logger
from mca_jobs.jobs.errors import (
    ActiveJobConflictError,
    InvalidJobStateError,
    JobNotFoundError,
    RunCapacityError,
    UnknownEntityTypeError,
)
from mca_jobs.jobs.models import (
    ACTIVE_STATUSES,
    RESUMABLE_STATUSES,
    Funder,
    JobFilter,
    JobKind,
    JobParameters,
    JobRecord,
    JobStatus,
    ParameterUpdate,
    ResumeFrom,
)
from mca_jobs.jobs.registry import RunRegistry
from mca_jobs.jobs.scheduler import JobScheduler
from mca_jobs.repositories.base import EntityMirrorRepository, FunderDirectory, JobRepository

logger = get_logger(__name__)


@dataclass(frozen=True)
class JobVariant:
    """Differences between the import and sync flavours of the engine."""

    kind: JobKind
    entity_order: tuple[str, ...]
    supports_pause: bool


IMPORT_VARIANT = JobVariant(
    kind=JobKind.IMPORT,
    entity_order=IMPORT_ORDER,
    supports_pause=True,
)
SYNC_VARIANT = JobVariant(
    kind=JobKind.SYNC,
    entity_order=SYNC_ORDER,
    supports_pause=False,
)


@dataclass
class JobStatusView:
    job: JobRecord
    is_live: bool


@dataclass
class CancelOutcome:
    job: JobRecord
    signalled_live_run: bool


@dataclass
class ResumeOutcome:
    job: JobRecord
    resume_from_index: int


@dataclass
class ResumeAllOutcome:
    resumed: list[ResumeOutcome] = field(default_factory=list)
    failures: list[dict[str, str]] = field(default_factory=list)


@dataclass
class JobPage:
    jobs: list[JobRecord]
    total: int
    page: int
    limit: int
    status_counts: dict[str, int]

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


@dataclass
class ActiveJobView:
    job: JobRecord
    is_live: bool
    can_cancel: bool
    can_pause: bool
    can_resume: bool


@dataclass
class ActiveJobs:
    jobs: list[ActiveJobView]
    live_runs: int
    capacity: int


@dataclass
class EntityJobStatus:
    entity_type: str
    funder: str
    can_create_new_job: bool
    active_job: JobRecord | None
    paused_job: JobRecord | None
    last_completed_job: JobRecord | None
    last_failed_job: JobRecord | None
    status_counts: dict[str, int]
    recent_jobs: list[JobRecord]
    mirrored_records: int | None


class JobLifecycleController:
    """Validates and applies lifecycle transitions for one job variant.

    The durable job record is the source of truth. The run registry is only
    used to signal a live run in this process and to report liveness.
    """

    def __init__(
        self,
        variant: JobVariant,
        repository: JobRepository,
        registry: RunRegistry,
        scheduler: JobScheduler,
        source_factory: ExternalSourceFactory,
        funders: FunderDirectory | None = None,
        mirror: EntityMirrorRepository | None = None,
        max_batch_size: int = 100,
    ):
        self.variant = variant
        self.repository = repository
        self.registry = registry
        self.scheduler = scheduler
        self.source_factory = source_factory
        self.funders = funders
        self.mirror = mirror
        self.max_batch_size = max_batch_size
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    @property
    def kind(self) -> JobKind:
        return self.variant.kind

    # ==================== Helpers ====================

    def _lock_for(self, entity_type: str, funder: str) -> asyncio.Lock:
        key = (entity_type, funder)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def validate_entity_type(self, entity_type: str) -> None:
        if entity_type not in self.variant.entity_order:
            raise UnknownEntityTypeError(entity_type, self.variant.entity_order)

    def _validate_batch_size(self, batch_size: int) -> None:
        if not 1 <= batch_size <= self.max_batch_size:
            raise ValidationException(
                f"batch_size must be between 1 and {self.max_batch_size}, got {batch_size}"
            )

    def _ensure_capacity(self) -> None:
        in_flight = max(len(self.registry), len(self.scheduler.active()))
        if in_flight >= self.registry.capacity:
            raise RunCapacityError(self.registry.capacity)

    async def _get(self, job_id: str) -> JobRecord:
        job = await self.repository.get(job_id)
        if job is None or job.kind != self.kind:
            raise JobNotFoundError(job_id)
        return job

    async def _find_active(
        self, entity_type: str, funder: str, exclude_job_id: str | None = None
    ) -> JobRecord | None:
        jobs = await self.repository.find(
            JobFilter(
                kind=self.kind,
                funder=funder,
                entity_type=entity_type,
                statuses=list(ACTIVE_STATUSES),
                exclude_job_id=exclude_job_id,
            ),
            limit=1,
        )
        return jobs[0] if jobs else None

    async def _check_connection(self, api_key: str) -> dict[str, Any]:
        client = self.source_factory(api_key)
        try:
            if not await client.test_connection():
                raise ConnectivityException()
            return client.get_api_info()
        finally:
            await client.aclose()

    # ==================== Credentials ====================

    async def validate_credential(self, api_key: str) -> dict[str, Any]:
        """Check the external API with a key and describe what can be run."""
        api_info = await self._check_connection(api_key)
        return {"api_info": api_info, "entity_order": list(self.variant.entity_order)}

    async def authorize_tenant(self, funder_id: str, api_key: str) -> Funder:
        """Check that an API key belongs to an active funder.

        Raises:
            NotFoundException: Unknown funder.
            UnauthorizedException: Missing, unconfigured or mismatching key,
                or inactive funder.
        """
        if not api_key:
            raise UnauthorizedException("API key is required")
        if self.funders is None:
            raise UnauthorizedException("No funder directory configured")
        funder = await self.funders.get(funder_id)
        if funder is None:
            raise NotFoundException("Funder not found")
        if not funder.api_key:
            raise UnauthorizedException("Funder does not have an API key configured")
        if funder.api_key != api_key:
            raise UnauthorizedException("Invalid API key for this funder")
        if funder.inactive:
            raise UnauthorizedException("Funder account is inactive")
        return funder

    @staticmethod
    def ensure_owned_by(job: JobRecord, funder_id: str) -> None:
        if job.funder != funder_id:
            raise ForbiddenException("Access denied: this job belongs to a different funder")

    # ==================== Lifecycle ====================

    async def create_job(
        self,
        entity_type: str,
        parameters: JobParameters,
        created_by: str | None = None,
    ) -> JobRecord:
        """Create a pending job and schedule its first run.

        Raises:
            UnknownEntityTypeError: Entity type not valid for this variant.
            ActiveJobConflictError: An active job already exists for the
                entity type and funder.
            ConnectivityException: The API key cannot reach OrgMeter.
            RunCapacityError: No free run slot in this process.
        """
        self.validate_entity_type(entity_type)
        self._validate_batch_size(parameters.batch_size)

        async with self._lock_for(entity_type, parameters.funder):
            existing = await self._find_active(entity_type, parameters.funder)
            if existing is not None:
                raise ActiveJobConflictError(entity_type, existing.job_id, existing.status.value)

            await self._check_connection(parameters.api_key)
            self._ensure_capacity()

            job = await self.repository.create(
                JobRecord.new(self.kind, entity_type, parameters, created_by=created_by)
            )
            self.scheduler.submit(job.job_id)

        logger.info(
            f"Created {self.kind.value} job {job.job_id} for {entity_type} "
            f"(funder={parameters.funder}, batch_size={parameters.batch_size})"
        )
        return job

    async def cancel_job(self, job_id: str) -> CancelOutcome:
        job = await self._get(job_id)
        if job.status not in ACTIVE_STATUSES:
            raise InvalidJobStateError(job_id, job.status.value, "cancel")

        signalled = self.registry.signal_cancel(job_id)
        updated = await self.repository.update(
            job_id,
            {"status": JobStatus.CANCELLED, "completed_at": datetime.now(UTC)},
            expected_statuses=ACTIVE_STATUSES,
        )
        if updated is None:
            current = await self._get(job_id)
            raise InvalidJobStateError(job_id, current.status.value, "cancel")

        logger.info(f"Cancelled job {job_id} (live run signalled: {signalled})")
        return CancelOutcome(job=updated, signalled_live_run=signalled)

    async def pause_job(self, job_id: str) -> JobRecord:
        job = await self._get(job_id)
        if not self.variant.supports_pause:
            raise ValidationException(f"{self.kind.value} jobs cannot be paused")
        if job.status != JobStatus.RUNNING:
            raise InvalidJobStateError(job_id, job.status.value, "pause")

        self.registry.signal_pause(job_id)
        updated = await self.repository.update(
            job_id,
            {"status": JobStatus.PAUSED, "paused_at": datetime.now(UTC)},
            expected_statuses=(JobStatus.RUNNING,),
        )
        if updated is None:
            current = await self._get(job_id)
            raise InvalidJobStateError(job_id, current.status.value, "pause")

        logger.info(f"Paused job {job_id} at {updated.progress.processed}/{updated.progress.total}")
        return updated

    def _resolve_offset(
        self,
        job: JobRecord,
        resume_from_index: int | None,
        resume_from: ResumeFrom | None,
    ) -> int:
        if resume_from_index is not None:
            offset = resume_from_index
        elif resume_from == ResumeFrom.CURRENT:
            offset = job.progress.processed
        else:
            offset = 0

        if offset < 0:
            raise ValidationException("resume_from_index must not be negative")
        if job.progress.total_known and offset > job.progress.total:
            raise ValidationException(
                f"resume_from_index {offset} exceeds job total {job.progress.total}"
            )
        return offset

    async def resume_job(
        self,
        job_id: str,
        resume_from_index: int | None = None,
        resume_from: ResumeFrom | None = None,
        updated_parameters: ParameterUpdate | None = None,
    ) -> ResumeOutcome:
        """Put a paused or failed job back to running and schedule a new run.

        ``resume_from_index`` wins over ``resume_from``; with neither the job
        restarts at 0.
        """
        job = await self._get(job_id)
        if job.status not in RESUMABLE_STATUSES:
            raise InvalidJobStateError(job_id, job.status.value, "resume")
        if self.registry.is_live(job_id):
            raise ConflictException(
                f"Job {job_id} is still stopping, try again shortly",
                job_id=job_id,
                job_status=job.status.value,
            )

        async with self._lock_for(job.entity_type, job.funder):
            other = await self._find_active(job.entity_type, job.funder, exclude_job_id=job_id)
            if other is not None:
                raise ActiveJobConflictError(job.entity_type, other.job_id, other.status.value)

            offset = self._resolve_offset(job, resume_from_index, resume_from)
            parameters = job.parameters
            if updated_parameters is not None:
                changes = updated_parameters.model_dump(exclude_unset=True, exclude_none=True)
                parameters = parameters.model_copy(update=changes)
            self._validate_batch_size(parameters.batch_size)
            self._ensure_capacity()

            progress = job.progress.model_copy(
                update={
                    "processed": offset,
                    "percentage": (
                        round(offset / job.progress.total * 100) if job.progress.total else 0
                    ),
                    "estimated_time_remaining_ms": None,
                    "last_progress_update": datetime.now(UTC),
                }
            )
            updated = await self.repository.update(
                job_id,
                {
                    "status": JobStatus.RUNNING,
                    "parameters": parameters,
                    "progress": progress,
                    "error": None,
                    "results": None,
                    "completed_at": None,
                    "paused_at": None,
                    "heartbeat_at": datetime.now(UTC),
                },
                expected_statuses=(job.status,),
            )
            if updated is None:
                current = await self._get(job_id)
                raise InvalidJobStateError(job_id, current.status.value, "resume")
            self.scheduler.submit(job_id, offset)

        logger.info(f"Resumed job {job_id} from index {offset}")
        return ResumeOutcome(job=updated, resume_from_index=offset)

    async def resume_all(
        self,
        funder: str,
        entity_types: list[str] | None = None,
        updated_parameters: ParameterUpdate | None = None,
    ) -> ResumeAllOutcome:
        """Resume every paused job of a funder, in entity order.

        A job that cannot be resumed is reported and skipped.
        """
        for entity_type in entity_types or []:
            self.validate_entity_type(entity_type)

        paused = await self.repository.find(
            JobFilter(
                kind=self.kind,
                funder=funder,
                entity_types=entity_types,
                statuses=[JobStatus.PAUSED],
            )
        )
        paused.sort(key=lambda j: self.variant.entity_order.index(j.entity_type))

        outcome = ResumeAllOutcome()
        for job in paused:
            try:
                outcome.resumed.append(
                    await self.resume_job(
                        job.job_id,
                        resume_from=ResumeFrom.CURRENT,
                        updated_parameters=updated_parameters,
                    )
                )
            except AppException as e:
                logger.warning(f"Could not resume job {job.job_id}: {e.message}")
                outcome.failures.append(
                    {"job_id": job.job_id, "entity_type": job.entity_type, "error": e.message}
                )
        logger.info(
            f"Resume-all for funder {funder}: {len(outcome.resumed)} resumed, "
            f"{len(outcome.failures)} failed"
        )
        return outcome

    # ==================== Queries ====================

    async def get_status(self, job_id: str) -> JobStatusView:
        job = await self._get(job_id)
        return JobStatusView(job=job, is_live=self.registry.is_live(job_id))

    async def list_jobs(self, job_filter: JobFilter, page: int = 1, limit: int = 20) -> JobPage:
        """Page through jobs of this variant, newest first."""
        if page < 1 or limit < 1:
            raise ValidationException("page and limit must be positive")
        scoped = job_filter.model_copy(update={"kind": self.kind})
        jobs = await self.repository.find(scoped, offset=(page - 1) * limit, limit=limit)
        total = await self.repository.count(scoped)
        # Counts by status ignore the status filter so the caller sees the full picture
        counts = await self.repository.count_by_status(scoped.model_copy(update={"statuses": None}))
        return JobPage(jobs=jobs, total=total, page=page, limit=limit, status_counts=counts)

    async def active_jobs(self, funder: str | None = None) -> ActiveJobs:
        jobs = await self.repository.find(
            JobFilter(kind=self.kind, funder=funder, statuses=list(ACTIVE_STATUSES))
        )
        views = [
            ActiveJobView(
                job=job,
                is_live=self.registry.is_live(job.job_id),
                can_cancel=True,
                can_pause=self.variant.supports_pause and job.status == JobStatus.RUNNING,
                can_resume=job.status in RESUMABLE_STATUSES,
            )
            for job in jobs
        ]
        return ActiveJobs(jobs=views, live_runs=len(self.registry), capacity=self.registry.capacity)

    async def _latest(self, base: JobFilter, statuses: list[JobStatus]) -> JobRecord | None:
        jobs = await self.repository.find(base.model_copy(update={"statuses": statuses}), limit=1)
        return jobs[0] if jobs else None

    async def entity_job_status(self, entity_type: str, funder: str) -> EntityJobStatus:
        """Summarise the job history of one entity type for a funder."""
        self.validate_entity_type(entity_type)
        base = JobFilter(kind=self.kind, funder=funder, entity_type=entity_type)

        active = await self._latest(base, list(ACTIVE_STATUSES))
        mirrored = None
        if self.mirror is not None:
            mirrored = await self.mirror.count(funder, entity_type)

        return EntityJobStatus(
            entity_type=entity_type,
            funder=funder,
            can_create_new_job=active is None,
            active_job=active,
            paused_job=await self._latest(base, [JobStatus.PAUSED]),
            last_completed_job=await self._latest(base, [JobStatus.COMPLETED]),
            last_failed_job=await self._latest(base, [JobStatus.FAILED]),
            status_counts=await self.repository.count_by_status(base),
            recent_jobs=await self.repository.find(base, limit=10),
            mirrored_records=mirrored,
        )

    # ==================== Shutdown ====================

    async def pause_live_runs(self) -> list[str]:
        """Durably pause every live run of this variant so it can be resumed later."""
        paused: list[str] = []
        for job_id in self.registry.job_ids():
            job = await self.repository.get(job_id)
            if job is None or job.kind != self.kind:
                continue
            self.registry.signal_pause(job_id)
            updated = await self.repository.update(
                job_id,
                {"status": JobStatus.PAUSED, "paused_at": datetime.now(UTC)},
                expected_statuses=(JobStatus.RUNNING,),
            )
            if updated is not None:
                paused.append(job_id)
        if paused:
            logger.info(f"Paused {len(paused)} live {self.kind.value} job(s) for shutdown")
        return paused

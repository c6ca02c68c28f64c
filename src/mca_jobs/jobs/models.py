"""Pydantic models for batch job tracking."""

import secrets
import time
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class JobKind(str, Enum):
    """Which flavour of batch job a record belongs to."""

    IMPORT = "import"
    SYNC = "sync"


class JobStatus(str, Enum):
    """Job status enum."""

    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Statuses that count towards the one-active-job-per-entity-per-funder rule.
ACTIVE_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.PENDING, JobStatus.RUNNING, JobStatus.PAUSED}
)
TERMINAL_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.COMPLETED, JobStatus.CANCELLED}
)
RESUMABLE_STATUSES: frozenset[JobStatus] = frozenset({JobStatus.PAUSED, JobStatus.FAILED})


class ResumeFrom(str, Enum):
    """Where a resumed job restarts when no explicit offset is given."""

    CURRENT = "current"
    BEGINNING = "beginning"


class ReviewStatus(str, Enum):
    """Sync state filter used when reviewing mirrored records."""

    ALL = "all"
    PENDING = "pending"  # selected and not yet synced
    SYNCED = "synced"
    IGNORED = "ignored"  # deselected, synced or not


class JobParameters(BaseModel):
    """Configuration captured when the job is created."""

    api_key: str = Field(..., repr=False, description="OrgMeter credential")
    funder: str = Field(..., description="Tenant (funder) identifier")
    batch_size: int = Field(20, ge=1)
    update_existing: bool = True
    only_selected: bool = True  # sync only
    dry_run: bool = False


class ParameterUpdate(BaseModel):
    """Caller-supplied keys merged into parameters on resume."""

    batch_size: int | None = Field(None, ge=1)
    update_existing: bool | None = None
    only_selected: bool | None = None
    dry_run: bool | None = None


class JobProgress(BaseModel):
    """Checkpointed progress of a job."""

    processed: int = 0
    total: int = 0
    percentage: int = 0
    current_entity: str | None = None
    last_progress_update: datetime | None = None
    estimated_time_remaining_ms: int | None = None
    total_counted_at: datetime | None = None

    @property
    def total_known(self) -> bool:
        return self.total_counted_at is not None


class JobResults(BaseModel):
    """Final counts attached to a completed job."""

    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    details: dict[str, Any] | None = None

    @property
    def accounted(self) -> int:
        return self.created + self.updated + self.skipped + self.failed


class JobError(BaseModel):
    """Failure captured when a job terminates as failed."""

    message: str
    type: str | None = None
    traceback: str | None = None
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


def generate_job_id(kind: JobKind, entity_type: str) -> str:
    """Build a sortable, human-scannable job id."""
    return f"{kind.value}_{entity_type}_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}"


class JobRecord(BaseModel):
    """Represents one batch operation instance."""

    job_id: str
    kind: JobKind
    entity_type: str
    status: JobStatus = JobStatus.PENDING
    parameters: JobParameters
    progress: JobProgress = Field(default_factory=JobProgress)
    results: JobResults | None = None
    error: JobError | None = None
    created_by: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    paused_at: datetime | None = None
    completed_at: datetime | None = None
    heartbeat_at: datetime | None = None

    @classmethod
    def new(
        cls,
        kind: JobKind,
        entity_type: str,
        parameters: JobParameters,
        created_by: str | None = None,
    ) -> "JobRecord":
        return cls(
            job_id=generate_job_id(kind, entity_type),
            kind=kind,
            entity_type=entity_type,
            parameters=parameters,
            created_by=created_by,
        )

    @property
    def funder(self) -> str:
        return self.parameters.funder

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def can_resume(self) -> bool:
        return self.status in RESUMABLE_STATUSES


class JobFilter(BaseModel):
    """Query filter over job records. Unset fields match everything."""

    kind: JobKind | None = None
    funder: str | None = None
    entity_type: str | None = None
    entity_types: list[str] | None = None
    statuses: list[JobStatus] | None = None
    exclude_job_id: str | None = None

    def matches(self, job: JobRecord) -> bool:
        if self.kind is not None and job.kind != self.kind:
            return False
        if self.funder is not None and job.funder != self.funder:
            return False
        if self.entity_type is not None and job.entity_type != self.entity_type:
            return False
        if self.entity_types and job.entity_type not in self.entity_types:
            return False
        if self.statuses is not None and job.status not in self.statuses:
            return False
        if self.exclude_job_id is not None and job.job_id == self.exclude_job_id:
            return False
        return True


class EntityMirrorRecord(BaseModel):
    """Local copy of one OrgMeter entity, owned by a funder."""

    funder: str
    entity_type: str
    external_id: str
    data: dict[str, Any] = Field(default_factory=dict)
    deleted: bool = False
    needs_sync: bool = True
    sync_id: str | None = None
    imported_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime | None = None
    last_synced_at: datetime | None = None
    last_synced_by: str | None = None

    @property
    def sync_status(self) -> str:
        if self.sync_id:
            return ReviewStatus.SYNCED.value
        return ReviewStatus.PENDING.value if self.needs_sync else ReviewStatus.IGNORED.value

    def matches(self, sync_status: ReviewStatus) -> bool:
        if sync_status == ReviewStatus.PENDING:
            return self.needs_sync and not self.sync_id
        if sync_status == ReviewStatus.SYNCED:
            return bool(self.sync_id)
        if sync_status == ReviewStatus.IGNORED:
            return not self.needs_sync
        return True


class MirrorStats(BaseModel):
    """Sync coverage of one entity type for a funder."""

    total: int = 0
    synced: int = 0
    selected: int = 0
    ignored: int = 0

    @property
    def pending(self) -> int:
        return max(self.selected - self.synced, 0)


class Funder(BaseModel):
    """Tenant directory entry."""

    id: str
    name: str
    api_key: str | None = Field(None, repr=False)
    inactive: bool = False

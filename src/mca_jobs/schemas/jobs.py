"""Request and response schemas for the import and sync job endpoints."""

from datetime import datetime
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

from mca_jobs.jobs.models import (
    JobError,
    JobKind,
    JobProgress,
    JobRecord,
    JobResults,
    JobStatus,
    MirrorStats,
    ParameterUpdate,
    ResumeFrom,
    ReviewStatus,
)

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Standard success envelope."""

    success: bool = Field(True, description="Whether the request succeeded")
    message: str | None = Field(None, description="Human readable summary")
    data: T = Field(..., description="Response payload")


# ==================== Requests ====================


class ValidateApiRequest(BaseModel):
    api_key: str = Field(..., min_length=1, description="OrgMeter API key")


class CreateImportJobRequest(BaseModel):
    """Request to start an import job."""

    entity_type: str = Field(..., description="Entity type to import")
    api_key: str = Field(..., min_length=1, description="OrgMeter API key")
    funder: str = Field(..., min_length=1, description="Funder (tenant) id")
    batch_size: int = Field(20, ge=1, le=100, description="Units per checkpoint")
    update_existing: bool = Field(True, description="Overwrite already imported records")
    dry_run: bool = Field(False, description="Classify records without writing")
    created_by: str | None = Field(None, description="Who requested the job")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "entity_type": "merchant",
                    "api_key": "om_live_xxx",
                    "funder": "funder-1",
                    "batch_size": 20,
                    "update_existing": True,
                }
            ]
        }
    }


class ResumeJobRequest(BaseModel):
    resume_from: ResumeFrom = Field(
        ResumeFrom.CURRENT, description="Restart at the stored checkpoint or at 0"
    )
    resume_from_index: int | None = Field(
        None, ge=0, description="Explicit offset; overrides resume_from"
    )
    parameters: ParameterUpdate | None = Field(None, description="Parameters to change")


class ResumeAllRequest(BaseModel):
    funder: str = Field(..., min_length=1, description="Funder (tenant) id")
    entity_types: list[str] | None = Field(None, description="Restrict to these entity types")
    parameters: ParameterUpdate | None = Field(None, description="Parameters to change")


class SyncCredentials(BaseModel):
    """Funder credential carried in every sync request body."""

    funder_id: str = Field(..., min_length=1, description="Funder (tenant) id")
    api_key: str = Field(..., min_length=1, description="Funder's OrgMeter API key")


class StartSyncRequest(SyncCredentials):
    batch_size: int = Field(20, ge=1, le=100, description="Units per checkpoint")
    update_existing: bool = Field(True, description="Overwrite CRM records already synced")
    only_selected: bool = Field(True, description="Only sync records selected for sync")
    dry_run: bool = Field(False, description="Classify records without writing")


class SyncJobsRequest(SyncCredentials):
    status: str | None = Field(None, description="Comma separated list of statuses")
    entity_type: str | None = Field(None, description="Filter by entity type")
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)


class ContinueSyncRequest(SyncCredentials):
    resume_from_index: int = Field(0, ge=0, description="Offset to restart from")
    update_parameters: ParameterUpdate | None = Field(None, description="Parameters to change")


class ReviewRecordsRequest(SyncCredentials):
    sync_status: ReviewStatus = Field(ReviewStatus.ALL, description="Filter by sync state")
    search: str | None = Field(
        None, max_length=100, description="Case insensitive match on name, email and similar"
    )
    page: int = Field(1, ge=1)
    limit: int = Field(50, ge=1, le=500)


class SelectionRequest(SyncCredentials):
    external_ids: list[str] = Field(..., description="Mirrored OrgMeter ids to update")
    selected: bool = Field(..., description="Whether the records should be synced")


# ==================== Responses ====================


class JobParametersView(BaseModel):
    """Job parameters without the credential."""

    funder: str
    batch_size: int
    update_existing: bool
    only_selected: bool
    dry_run: bool


class JobView(BaseModel):
    """Public representation of a job record."""

    job_id: str
    kind: JobKind
    entity_type: str
    status: JobStatus
    parameters: JobParametersView
    progress: JobProgress
    results: JobResults | None = None
    error: JobError | None = None
    created_by: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    paused_at: datetime | None = None
    completed_at: datetime | None = None
    heartbeat_at: datetime | None = None
    is_live: bool | None = Field(None, description="A run is executing in this process")

    @classmethod
    def from_record(cls, job: JobRecord, is_live: bool | None = None) -> "JobView":
        data = job.model_dump(exclude={"parameters": {"api_key"}})
        return cls.model_validate({**data, "is_live": is_live})


class ValidateApiData(BaseModel):
    api_info: dict[str, Any]
    entity_order: list[str]


class CancelData(BaseModel):
    job: JobView
    signalled_live_run: bool


class ResumeData(BaseModel):
    job: JobView
    resume_from_index: int


class ResumeAllData(BaseModel):
    resumed: list[ResumeData]
    failures: list[dict[str, str]]


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class JobListData(BaseModel):
    jobs: list[JobView]
    pagination: Pagination
    status_counts: dict[str, int]
    filters: dict[str, Any]


class ActiveJobView(JobView):
    can_cancel: bool
    can_pause: bool
    can_resume: bool


class ActiveJobsData(BaseModel):
    jobs: list[ActiveJobView]
    live_runs: int
    capacity: int


class EntityJobStatusData(BaseModel):
    entity_type: str
    funder: str
    can_create_new_job: bool
    active_job: JobView | None
    paused_job: JobView | None
    last_completed_job: JobView | None
    last_failed_job: JobView | None
    status_counts: dict[str, int]
    recent_jobs: list[JobView]
    mirrored_records: int | None


class SelectionData(BaseModel):
    entity_type: str
    updated: int
    selected: bool


def to_public(value: Any) -> Any:
    """Recursively convert service payloads into JSON-safe public data."""
    if isinstance(value, JobRecord):
        return JobView.from_record(value).model_dump(mode="json")
    if isinstance(value, MirrorStats):
        return {**value.model_dump(), "pending": value.pending}
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: to_public(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [to_public(item) for item in value]
    return value

"""Resumable batch job engine shared by the import and sync flows."""

from mca_jobs.jobs.models import (
    ACTIVE_STATUSES,
    RESUMABLE_STATUSES,
    JobFilter,
    JobKind,
    JobParameters,
    JobProgress,
    JobRecord,
    JobResults,
    JobStatus,
    ParameterUpdate,
    ResumeFrom,
    ReviewStatus,
)
from mca_jobs.jobs.operations import (
    EntityOperation,
    OperationContext,
    OperationRegistry,
    OperationResult,
    OperationStats,
)
from mca_jobs.jobs.registry import RunControl, RunRegistry

__all__ = [
    # Models
    "ACTIVE_STATUSES",
    "RESUMABLE_STATUSES",
    "JobFilter",
    "JobKind",
    "JobParameters",
    "JobProgress",
    "JobRecord",
    "JobResults",
    "JobStatus",
    "ParameterUpdate",
    "ResumeFrom",
    "ReviewStatus",
    # Operations
    "EntityOperation",
    "OperationContext",
    "OperationRegistry",
    "OperationResult",
    "OperationStats",
    # Run registry
    "RunControl",
    "RunRegistry",
]

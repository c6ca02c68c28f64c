"""Job domain exceptions."""

from enum import Enum

from mca_jobs.core.exceptions import (
    AppException,
    ConflictException,
    NotFoundException,
    ServiceUnavailableException,
    ValidationException,
)


class JobNotFoundError(NotFoundException):
    """No job record with the given id."""

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class InvalidJobStateError(ConflictException):
    """The requested transition is not allowed from the job's current status."""

    def __init__(self, job_id: str, job_status: str, action: str):
        super().__init__(
            f"Cannot {action} job {job_id} with status '{job_status}'",
            job_id=job_id,
            job_status=job_status,
        )
        self.action = action


class ActiveJobConflictError(ConflictException):
    """Another job for the same entity type and funder is still active."""

    def __init__(self, entity_type: str, job_id: str, job_status: str):
        super().__init__(
            f"An active {entity_type} job already exists ({job_id}, {job_status})",
            job_id=job_id,
            job_status=job_status,
        )
        self.entity_type = entity_type

    def extra(self) -> dict:
        data = super().extra()
        data["can_resume"] = self.job_status == "paused"
        data["can_cancel"] = True
        return data


class UnknownEntityTypeError(ValidationException):
    """Entity type is not valid for the job kind."""

    def __init__(self, entity_type: str, valid: tuple[str, ...] | list[str]):
        super().__init__(
            f"Invalid entity type '{entity_type}'. Must be one of: {', '.join(valid)}"
        )
        self.entity_type = entity_type


class RunCapacityError(ServiceUnavailableException):
    """The run registry has no free slot."""

    def __init__(self, capacity: int):
        super().__init__(f"Job runner is at capacity ({capacity} live runs); try again later")
        self.capacity = capacity


class ExternalSourceError(AppException):
    """The OrgMeter API returned an error or could not be reached."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message, status_code=502)
        self.status = status


class InterruptionKind(str, Enum):
    """Why a run stopped early."""

    CANCELLED = "cancelled"
    PAUSED = "paused"
    SUPERSEDED = "superseded"  # durable state moved on without us


class JobInterrupted(Exception):
    """Raised inside a run to unwind to the engine at a batch boundary.

    Not an error: the engine translates it into the matching terminal or
    paused state.
    """

    def __init__(self, kind: InterruptionKind, job_id: str | None = None):
        self.kind = kind
        self.job_id = job_id
        super().__init__(f"Job {job_id or ''} interrupted: {kind.value}")

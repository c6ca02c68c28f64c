"""Entity operation protocol and dispatch table."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from mca_jobs.core.logging import get_logger
from mca_jobs.jobs.models import JobKind, JobParameters, JobResults

logger = get_logger(__name__)

# (processed_since_resume, total, current_entity) -> None; may raise JobInterrupted
ProgressCallback = Callable[[int, int, str | None], Awaitable[None]]


@dataclass
class OperationContext:
    """Everything an operation needs for one invocation."""

    job_id: str
    parameters: JobParameters
    resume_from_index: int
    progress_callback: ProgressCallback


@dataclass
class EntityError:
    entity_id: str
    message: str


@dataclass
class OperationStats:
    """Running counts produced while processing units."""

    total_saved: int = 0
    total_updated: int = 0
    total_skipped: int = 0
    total_failed: int = 0
    errors: list[EntityError] = field(default_factory=list)

    def record_error(self, entity_id: str, message: str) -> None:
        self.total_failed += 1
        self.errors.append(EntityError(entity_id=entity_id, message=message))

    @property
    def processed(self) -> int:
        return self.total_saved + self.total_updated + self.total_skipped + self.total_failed


@dataclass
class OperationResult:
    stats: OperationStats
    details: dict[str, Any] | None = None

    def to_results(self) -> JobResults:
        """Map operation counts onto the persisted results shape."""
        details = dict(self.details or {})
        if self.stats.errors:
            details["errors"] = [
                {"entity_id": e.entity_id, "message": e.message} for e in self.stats.errors
            ]
        return JobResults(
            created=self.stats.total_saved,
            updated=self.stats.total_updated,
            skipped=self.stats.total_skipped,
            failed=self.stats.total_failed,
            details=details or None,
        )


class EntityOperation(Protocol):
    """Protocol for per-entity-type batch operations.

    Implementations must enumerate units in the same order (``order_key``)
    on every invocation, skip the first ``resume_from_index`` units, and call
    the progress callback at every batch boundary.
    """

    kind: JobKind
    entity_type: str
    order_key: str

    async def count(self, parameters: JobParameters) -> int:
        """Return the number of units the job will process."""
        ...

    async def run(self, context: OperationContext) -> OperationResult:
        """Process units starting at ``context.resume_from_index``."""
        ...


class OperationRegistry:
    """Registry mapping (kind, entity type) to its operation."""

    def __init__(self, operations: list[EntityOperation] | None = None):
        self._operations: dict[tuple[JobKind, str], EntityOperation] = {}
        for operation in operations or []:
            self.register(operation)

    def get(self, kind: JobKind, entity_type: str) -> EntityOperation | None:
        return self._operations.get((kind, entity_type))

    def register(self, operation: EntityOperation) -> None:
        """Register an operation, replacing any existing one for the same key."""
        self._operations[(operation.kind, operation.entity_type)] = operation
        logger.debug(f"Registered {operation.kind.value} operation for {operation.entity_type}")

    def entity_types(self, kind: JobKind) -> list[str]:
        return [entity for (k, entity) in self._operations if k == kind]

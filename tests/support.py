"""Test doubles and builders shared by the test suite."""

import asyncio
import time
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from mca_jobs.jobs.errors import ExternalSourceError
from mca_jobs.jobs.models import (
    EntityMirrorRecord,
    JobKind,
    JobParameters,
    JobProgress,
    JobRecord,
    JobStatus,
)
from mca_jobs.jobs.operations import OperationContext, OperationResult, OperationStats
from mca_jobs.repositories.memory_store import InMemoryJobRepository

API_KEY = "om_test_key"
FUNDER_ID = "funder-1"


class RecordingJobRepository(InMemoryJobRepository):
    """In-memory job store that remembers every successful write."""

    def __init__(self) -> None:
        super().__init__()
        self.history: list[tuple[str, JobStatus, int]] = []

    async def update(
        self,
        job_id: str,
        changes: dict[str, Any],
        expected_statuses: Iterable[JobStatus] | None = None,
    ) -> JobRecord | None:
        updated = await super().update(job_id, changes, expected_statuses)
        if updated is not None:
            self.history.append((job_id, updated.status, updated.progress.processed))
        return updated

    def processed_history(self, job_id: str) -> list[int]:
        return [processed for jid, _, processed in self.history if jid == job_id]


class FakeSource:
    """Stands in for the OrgMeter client; records are grouped by entity type."""

    def __init__(self, records: dict[str, list[dict[str, Any]]] | None = None, reachable=True):
        self.records = records or {}
        self.reachable = reachable
        self.details: dict[tuple[str, str], dict[str, Any]] = {}
        self.failing_ids: set[str] = set()
        self.count_override: int | None = None
        self.closed = 0

    async def test_connection(self) -> bool:
        return self.reachable

    async def get_total_count(self, entity_type: str) -> int:
        if self.count_override is not None:
            return self.count_override
        return len(self.records.get(entity_type, []))

    async def fetch_all_entities(self, entity_type: str) -> list[dict[str, Any]]:
        return [dict(r) for r in self.records.get(entity_type, [])]

    async def fetch_entity_by_id(self, entity_type: str, entity_id: str) -> dict[str, Any]:
        if entity_id in self.failing_ids:
            raise ExternalSourceError(f"HTTP 500 for {entity_type} {entity_id}", status=500)
        if (entity_type, entity_id) in self.details:
            return dict(self.details[(entity_type, entity_id)])
        for record in self.records.get(entity_type, []):
            if str(record.get("id")) == entity_id:
                return {**record, "detailed": True}
        raise ExternalSourceError(f"{entity_type} {entity_id} not found", status=404)

    def get_api_info(self) -> dict[str, Any]:
        return {"base_url": "http://orgmeter.test", "has_api_key": True, "timeout": 30.0}

    async def aclose(self) -> None:
        self.closed += 1


class FakeOperation:
    """Deterministic operation over numbered units.

    After its first batch it sets ``first_batch_done`` and, when ``gate`` is
    given, waits for it before continuing.
    """

    order_key = "id"

    def __init__(
        self,
        entity_type: str = "merchant",
        units: int = 10,
        kind: JobKind = JobKind.IMPORT,
        fail_at: int | None = None,
        count_error: Exception | None = None,
        skip_every: int | None = None,
        count_override: int | None = None,
    ):
        self.kind = kind
        self.entity_type = entity_type
        self.units = [f"unit-{i:03d}" for i in range(units)]
        self.fail_at = fail_at
        self.count_error = count_error
        self.skip_every = skip_every
        self.count_override = count_override
        self.count_calls = 0
        self.invocations: list[int] = []
        self.seen: list[str] = []
        self.first_batch_done = asyncio.Event()
        self.gate: asyncio.Event | None = None

    async def count(self, parameters: JobParameters) -> int:
        self.count_calls += 1
        if self.count_error is not None:
            raise self.count_error
        if self.count_override is not None:
            return self.count_override
        return len(self.units)

    async def run(self, context: OperationContext) -> OperationResult:
        self.invocations.append(context.resume_from_index)
        stats = OperationStats()
        pending = self.units[context.resume_from_index :]
        batch_size = context.parameters.batch_size
        processed = 0
        for start in range(0, len(pending), batch_size):
            batch = pending[start : start + batch_size]
            for unit in batch:
                index = self.units.index(unit)
                if self.fail_at is not None and index == self.fail_at:
                    raise RuntimeError(f"storage exploded at {unit}")
                self.seen.append(unit)
                if self.skip_every and index % self.skip_every == 0:
                    stats.total_skipped += 1
                else:
                    stats.total_saved += 1
                processed += 1
            await context.progress_callback(processed, len(self.units), batch[-1])
            self.first_batch_done.set()
            if self.gate is not None:
                await self.gate.wait()
        return OperationResult(stats=stats, details={"seen": len(self.seen)})


def make_parameters(**overrides: Any) -> JobParameters:
    values: dict[str, Any] = {"api_key": API_KEY, "funder": FUNDER_ID, "batch_size": 5}
    values.update(overrides)
    return JobParameters(**values)


async def persist_job(
    repository: InMemoryJobRepository,
    entity_type: str = "merchant",
    kind: JobKind = JobKind.IMPORT,
    **overrides: Any,
) -> JobRecord:
    return await repository.create(JobRecord.new(kind, entity_type, make_parameters(**overrides)))


def mirror_record(external_id: str, entity_type: str = "merchant", **overrides: Any):
    values: dict[str, Any] = {
        "funder": FUNDER_ID,
        "entity_type": entity_type,
        "external_id": external_id,
        "data": {"id": external_id, "businessName": f"Business {external_id}"},
    }
    values.update(overrides)
    return EntityMirrorRecord(**values)


def wait_for_job(fetch, statuses=("completed", "failed", "cancelled", "paused"), attempts=300):
    """Poll ``fetch()`` (returning a job dict) until the job settles."""
    for _ in range(attempts):
        job = fetch()
        if job["status"] in statuses:
            return job
        time.sleep(0.01)
    raise AssertionError(f"job never reached {statuses}: {job}")


def seed_job(
    client,
    repository: InMemoryJobRepository,
    status: JobStatus,
    entity_type: str = "merchant",
    kind: JobKind = JobKind.IMPORT,
    processed: int = 0,
    total: int = 3,
    **overrides: Any,
) -> JobRecord:
    """Store a job in ``status`` from a test running next to a live TestClient."""

    async def _seed() -> JobRecord:
        job = await persist_job(repository, entity_type=entity_type, kind=kind, **overrides)
        progress = JobProgress(processed=processed, total=total, total_counted_at=datetime.now(UTC))
        return await repository.update(job.job_id, {"status": status, "progress": progress})

    return client.portal.call(_seed)

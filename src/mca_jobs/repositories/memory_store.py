"""In-process implementations of the storage protocols.

Used for local development and tests. Every read returns a copy so callers
never mutate stored state by accident. None of the methods await between
read and write, which makes each conditional update atomic on the event loop.
"""

import uuid
from collections import Counter
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from mca_jobs.core.constants import DEFAULT_REVIEW_SEARCH_FIELDS, REVIEW_SEARCH_FIELDS
from mca_jobs.core.logging import get_logger
from mca_jobs.jobs.models import (
    EntityMirrorRecord,
    Funder,
    JobFilter,
    JobRecord,
    JobStatus,
    MirrorStats,
    ReviewStatus,
)

logger = get_logger(__name__)


class InMemoryJobRepository:
    """Job records held in a dict keyed by job id."""

    def __init__(self) -> None:
        self._jobs: dict[str, JobRecord] = {}

    async def create(self, job: JobRecord) -> JobRecord:
        if job.job_id in self._jobs:
            raise ValueError(f"Job {job.job_id} already exists")
        self._jobs[job.job_id] = job.model_copy(deep=True)
        return job.model_copy(deep=True)

    async def get(self, job_id: str) -> JobRecord | None:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    def _matching(self, job_filter: JobFilter) -> list[JobRecord]:
        jobs = [job for job in self._jobs.values() if job_filter.matches(job)]
        jobs.sort(key=lambda j: (j.created_at, j.job_id), reverse=True)
        return jobs

    async def find(
        self, job_filter: JobFilter, offset: int = 0, limit: int | None = None
    ) -> list[JobRecord]:
        jobs = self._matching(job_filter)
        end = None if limit is None else offset + limit
        return [job.model_copy(deep=True) for job in jobs[offset:end]]

    async def count(self, job_filter: JobFilter) -> int:
        return len(self._matching(job_filter))

    async def count_by_status(self, job_filter: JobFilter) -> dict[str, int]:
        return dict(Counter(job.status.value for job in self._matching(job_filter)))

    async def update(
        self,
        job_id: str,
        changes: dict[str, Any],
        expected_statuses: Iterable[JobStatus] | None = None,
    ) -> JobRecord | None:
        current = self._jobs.get(job_id)
        if current is None:
            return None
        if expected_statuses is not None and current.status not in set(expected_statuses):
            return None
        updated = JobRecord.model_validate({**current.model_dump(), **changes})
        self._jobs[job_id] = updated
        return updated.model_copy(deep=True)


class InMemoryEntityMirrorRepository:
    """Mirror records keyed by (funder, entity type, external id)."""

    def __init__(self) -> None:
        self._records: dict[tuple[str, str, str], EntityMirrorRecord] = {}

    def _scoped(
        self, funder: str, entity_type: str, only_selected: bool = False
    ) -> list[EntityMirrorRecord]:
        records = [
            r
            for (f, e, _), r in self._records.items()
            if f == funder and e == entity_type and (r.needs_sync or not only_selected)
        ]
        records.sort(key=lambda r: r.external_id)
        return records

    async def get(
        self, funder: str, entity_type: str, external_id: str
    ) -> EntityMirrorRecord | None:
        record = self._records.get((funder, entity_type, external_id))
        return record.model_copy(deep=True) if record else None

    async def upsert(self, record: EntityMirrorRecord) -> EntityMirrorRecord:
        key = (record.funder, record.entity_type, record.external_id)
        self._records[key] = record.model_copy(deep=True)
        return record

    async def count(self, funder: str, entity_type: str, only_selected: bool = False) -> int:
        return len(self._scoped(funder, entity_type, only_selected))

    async def list_page(
        self,
        funder: str,
        entity_type: str,
        offset: int,
        limit: int,
        only_selected: bool = False,
    ) -> list[EntityMirrorRecord]:
        records = self._scoped(funder, entity_type, only_selected)[offset : offset + limit]
        return [r.model_copy(deep=True) for r in records]

    async def mark_synced(
        self, funder: str, entity_type: str, external_id: str, sync_id: str, job_id: str
    ) -> None:
        record = self._records.get((funder, entity_type, external_id))
        if record is None:
            return
        record.sync_id = sync_id
        record.last_synced_at = datetime.now(UTC)
        record.last_synced_by = job_id

    async def set_selection(
        self, funder: str, entity_type: str, external_ids: list[str], selected: bool
    ) -> int:
        changed = 0
        for external_id in external_ids:
            record = self._records.get((funder, entity_type, external_id))
            if record is not None:
                record.needs_sync = selected
                record.updated_at = datetime.now(UTC)
                changed += 1
        return changed

    async def stats(self, funder: str, entity_type: str) -> MirrorStats:
        records = self._scoped(funder, entity_type)
        return MirrorStats(
            total=len(records),
            synced=sum(1 for r in records if r.sync_id),
            selected=sum(1 for r in records if r.needs_sync),
            ignored=sum(1 for r in records if not r.needs_sync),
        )

    async def list_for_review(
        self,
        funder: str,
        entity_type: str,
        sync_status: ReviewStatus = ReviewStatus.ALL,
        search: str | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[EntityMirrorRecord], int]:
        fields = REVIEW_SEARCH_FIELDS.get(entity_type, DEFAULT_REVIEW_SEARCH_FIELDS)
        needle = search.lower() if search else None
        records = [
            r
            for r in self._scoped(funder, entity_type)
            if r.matches(sync_status)
            and (
                needle is None
                or any(needle in str(r.data.get(field) or "").lower() for field in fields)
            )
        ]
        records.sort(key=lambda r: r.imported_at, reverse=True)
        page = records[offset : offset + limit]
        return [r.model_copy(deep=True) for r in page], len(records)


class InMemoryCrmRepository:
    """CRM documents keyed by (funder, collection, external id)."""

    def __init__(self) -> None:
        self.documents: dict[tuple[str, str, str], dict[str, Any]] = {}

    async def find_by_external_id(
        self, funder: str, collection: str, external_id: str
    ) -> dict[str, Any] | None:
        doc = self.documents.get((funder, collection, external_id))
        return dict(doc) if doc else None

    async def upsert(
        self, funder: str, collection: str, external_id: str, data: dict[str, Any]
    ) -> tuple[str, bool]:
        key = (funder, collection, external_id)
        existing = self.documents.get(key)
        if existing is not None:
            existing.update(data)
            return existing["id"], False
        crm_id = str(uuid.uuid4())
        self.documents[key] = {**data, "id": crm_id}
        return crm_id, True


class InMemoryFunderDirectory:
    def __init__(self, funders: list[Funder] | None = None) -> None:
        self._funders = {f.id: f for f in funders or []}

    def add(self, funder: Funder) -> None:
        self._funders[funder.id] = funder

    async def get(self, funder_id: str) -> Funder | None:
        return self._funders.get(funder_id)

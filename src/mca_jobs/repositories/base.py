"""Storage protocols used by the job engine and the concrete operations."""

from collections.abc import Iterable
from typing import Any, Protocol

from mca_jobs.jobs.models import (
    EntityMirrorRecord,
    Funder,
    JobFilter,
    JobRecord,
    JobStatus,
    MirrorStats,
    ReviewStatus,
)


class JobRepository(Protocol):
    """Durable store of job records.

    ``update`` is a conditional write: when ``expected_statuses`` is given the
    change is applied only if the stored status is one of them, and ``None``
    is returned otherwise. Callers rely on this to never overwrite a
    concurrent cancel or pause.
    """

    async def create(self, job: JobRecord) -> JobRecord: ...

    async def get(self, job_id: str) -> JobRecord | None: ...

    async def find(
        self, job_filter: JobFilter, offset: int = 0, limit: int | None = None
    ) -> list[JobRecord]:
        """Return matching jobs, newest first."""
        ...

    async def count(self, job_filter: JobFilter) -> int: ...

    async def count_by_status(self, job_filter: JobFilter) -> dict[str, int]: ...

    async def update(
        self,
        job_id: str,
        changes: dict[str, Any],
        expected_statuses: Iterable[JobStatus] | None = None,
    ) -> JobRecord | None: ...


class EntityMirrorRepository(Protocol):
    """Local copy of OrgMeter entities, scoped by funder and entity type.

    ``list_page`` orders by ``external_id`` so enumeration is stable across
    invocations.
    """

    async def get(
        self, funder: str, entity_type: str, external_id: str
    ) -> EntityMirrorRecord | None: ...

    async def upsert(self, record: EntityMirrorRecord) -> EntityMirrorRecord: ...

    async def count(self, funder: str, entity_type: str, only_selected: bool = False) -> int: ...

    async def list_page(
        self,
        funder: str,
        entity_type: str,
        offset: int,
        limit: int,
        only_selected: bool = False,
    ) -> list[EntityMirrorRecord]: ...

    async def mark_synced(
        self, funder: str, entity_type: str, external_id: str, sync_id: str, job_id: str
    ) -> None: ...

    async def set_selection(
        self, funder: str, entity_type: str, external_ids: list[str], selected: bool
    ) -> int: ...

    async def stats(self, funder: str, entity_type: str) -> MirrorStats: ...

    async def list_for_review(
        self,
        funder: str,
        entity_type: str,
        sync_status: ReviewStatus = ReviewStatus.ALL,
        search: str | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[EntityMirrorRecord], int]:
        """Newest imports first, plus the total matching the filters."""
        ...


class CrmRepository(Protocol):
    """Target store written to by sync jobs."""

    async def find_by_external_id(
        self, funder: str, collection: str, external_id: str
    ) -> dict[str, Any] | None: ...

    async def upsert(
        self, funder: str, collection: str, external_id: str, data: dict[str, Any]
    ) -> tuple[str, bool]:
        """Insert or update a CRM document; returns (crm id, created)."""
        ...


class FunderDirectory(Protocol):
    async def get(self, funder_id: str) -> Funder | None: ...

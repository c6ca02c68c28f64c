"""Supabase-backed implementations of the storage protocols."""

import re
from collections import Counter
from collections.abc import Iterable
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from postgrest import CountMethod
from pydantic import BaseModel
from supabase import AsyncClient

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

# Characters with meaning inside a PostgREST or=(...) filter
_OR_FILTER_RESERVED = re.compile(r"[,()*%\\]")


def _to_column(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class SupabaseJobRepository:
    """Job records stored one row per job.

    Nested parts (parameters, progress, results, error) live in jsonb
    columns. ``funder`` is duplicated into its own column for filtering.
    """

    def __init__(self, client: AsyncClient, table: str = "batch_job"):
        self.client = client
        self.table = table

    def _apply_filter(self, query: Any, job_filter: JobFilter) -> Any:
        if job_filter.kind is not None:
            query = query.eq("kind", job_filter.kind.value)
        if job_filter.funder is not None:
            query = query.eq("funder", job_filter.funder)
        if job_filter.entity_type is not None:
            query = query.eq("entity_type", job_filter.entity_type)
        if job_filter.entity_types:
            query = query.in_("entity_type", job_filter.entity_types)
        if job_filter.statuses is not None:
            query = query.in_("status", [s.value for s in job_filter.statuses])
        if job_filter.exclude_job_id is not None:
            query = query.neq("job_id", job_filter.exclude_job_id)
        return query

    # ==================== Job Operations ====================

    async def create(self, job: JobRecord) -> JobRecord:
        row = job.model_dump(mode="json")
        row["funder"] = job.funder
        response = await self.client.table(self.table).insert(row).execute()
        created = JobRecord.model_validate(response.data[0])
        logger.info(f"Created job row {created.job_id}")
        return created

    async def get(self, job_id: str) -> JobRecord | None:
        response = await (
            self.client.table(self.table).select("*").eq("job_id", job_id).limit(1).execute()
        )
        if not response.data:
            return None
        return JobRecord.model_validate(response.data[0])

    async def find(
        self, job_filter: JobFilter, offset: int = 0, limit: int | None = None
    ) -> list[JobRecord]:
        query = self._apply_filter(self.client.table(self.table).select("*"), job_filter)
        query = query.order("created_at", desc=True)
        if limit is not None:
            query = query.range(offset, offset + limit - 1)
        elif offset:
            query = query.range(offset, offset + 999)
        response = await query.execute()
        return [JobRecord.model_validate(row) for row in response.data]

    async def count(self, job_filter: JobFilter) -> int:
        query = self._apply_filter(
            self.client.table(self.table).select("job_id", count=CountMethod.exact), job_filter
        )
        response = await query.limit(1).execute()
        return response.count or 0

    async def count_by_status(self, job_filter: JobFilter) -> dict[str, int]:
        query = self._apply_filter(self.client.table(self.table).select("status"), job_filter)
        response = await query.execute()
        return dict(Counter(row["status"] for row in response.data))

    async def update(
        self,
        job_id: str,
        changes: dict[str, Any],
        expected_statuses: Iterable[JobStatus] | None = None,
    ) -> JobRecord | None:
        """Apply changes, conditionally on the current status.

        The status condition is part of the UPDATE's WHERE clause, so the
        check and the write are a single statement.
        """
        data = {key: _to_column(value) for key, value in changes.items()}
        query = self.client.table(self.table).update(data).eq("job_id", job_id)
        if expected_statuses is not None:
            query = query.in_("status", [s.value for s in expected_statuses])
        response = await query.execute()
        if not response.data:
            logger.debug(f"Conditional update of job {job_id} matched no row")
            return None
        return JobRecord.model_validate(response.data[0])


class SupabaseEntityMirrorRepository:
    """Mirror rows unique on (funder, entity_type, external_id)."""

    def __init__(self, client: AsyncClient, table: str = "orgmeter_entity"):
        self.client = client
        self.table = table

    def _scoped(self, query: Any, funder: str, entity_type: str) -> Any:
        return query.eq("funder", funder).eq("entity_type", entity_type)

    async def get(
        self, funder: str, entity_type: str, external_id: str
    ) -> EntityMirrorRecord | None:
        query = self._scoped(self.client.table(self.table).select("*"), funder, entity_type)
        response = await query.eq("external_id", external_id).limit(1).execute()
        if not response.data:
            return None
        return EntityMirrorRecord.model_validate(response.data[0])

    async def upsert(self, record: EntityMirrorRecord) -> EntityMirrorRecord:
        await (
            self.client.table(self.table)
            .upsert(record.model_dump(mode="json"), on_conflict="funder,entity_type,external_id")
            .execute()
        )
        return record

    async def count(self, funder: str, entity_type: str, only_selected: bool = False) -> int:
        query = self._scoped(
            self.client.table(self.table).select("external_id", count=CountMethod.exact),
            funder,
            entity_type,
        )
        if only_selected:
            query = query.eq("needs_sync", True)
        response = await query.limit(1).execute()
        return response.count or 0

    async def list_page(
        self,
        funder: str,
        entity_type: str,
        offset: int,
        limit: int,
        only_selected: bool = False,
    ) -> list[EntityMirrorRecord]:
        query = self._scoped(self.client.table(self.table).select("*"), funder, entity_type)
        if only_selected:
            query = query.eq("needs_sync", True)
        response = await query.order("external_id").range(offset, offset + limit - 1).execute()
        return [EntityMirrorRecord.model_validate(row) for row in response.data]

    async def mark_synced(
        self, funder: str, entity_type: str, external_id: str, sync_id: str, job_id: str
    ) -> None:
        data = {
            "sync_id": sync_id,
            "last_synced_at": datetime.now(UTC).isoformat(),
            "last_synced_by": job_id,
        }
        query = self._scoped(self.client.table(self.table).update(data), funder, entity_type)
        await query.eq("external_id", external_id).execute()

    async def set_selection(
        self, funder: str, entity_type: str, external_ids: list[str], selected: bool
    ) -> int:
        if not external_ids:
            return 0
        data = {"needs_sync": selected, "updated_at": datetime.now(UTC).isoformat()}
        query = self._scoped(self.client.table(self.table).update(data), funder, entity_type)
        response = await query.in_("external_id", external_ids).execute()
        return len(response.data or [])

    async def _count_where(self, funder: str, entity_type: str, **conditions: Any) -> int:
        query = self._scoped(
            self.client.table(self.table).select("external_id", count=CountMethod.exact),
            funder,
            entity_type,
        )
        if conditions.get("synced"):
            query = query.not_.is_("sync_id", "null")
        if "needs_sync" in conditions:
            query = query.eq("needs_sync", conditions["needs_sync"])
        response = await query.limit(1).execute()
        return response.count or 0

    async def stats(self, funder: str, entity_type: str) -> MirrorStats:
        return MirrorStats(
            total=await self._count_where(funder, entity_type),
            synced=await self._count_where(funder, entity_type, synced=True),
            selected=await self._count_where(funder, entity_type, needs_sync=True),
            ignored=await self._count_where(funder, entity_type, needs_sync=False),
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
        query = self._scoped(
            self.client.table(self.table).select("*", count=CountMethod.exact),
            funder,
            entity_type,
        )
        if sync_status == ReviewStatus.PENDING:
            query = query.eq("needs_sync", True).is_("sync_id", "null")
        elif sync_status == ReviewStatus.SYNCED:
            query = query.not_.is_("sync_id", "null")
        elif sync_status == ReviewStatus.IGNORED:
            query = query.eq("needs_sync", False)

        term = _OR_FILTER_RESERVED.sub("", search or "").strip()
        if term:
            fields = REVIEW_SEARCH_FIELDS.get(entity_type, DEFAULT_REVIEW_SEARCH_FIELDS)
            query = query.or_(",".join(f"data->>{field}.ilike.*{term}*" for field in fields))

        response = await (
            query.order("imported_at", desc=True).range(offset, offset + limit - 1).execute()
        )
        records = [EntityMirrorRecord.model_validate(row) for row in response.data]
        return records, response.count or 0


class SupabaseCrmRepository:
    """CRM documents stored as jsonb rows keyed by collection and external id."""

    def __init__(self, client: AsyncClient, table: str = "crm_entity"):
        self.client = client
        self.table = table

    async def find_by_external_id(
        self, funder: str, collection: str, external_id: str
    ) -> dict[str, Any] | None:
        response = await (
            self.client.table(self.table)
            .select("*")
            .eq("funder", funder)
            .eq("collection", collection)
            .eq("external_id", external_id)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    async def upsert(
        self, funder: str, collection: str, external_id: str, data: dict[str, Any]
    ) -> tuple[str, bool]:
        existing = await self.find_by_external_id(funder, collection, external_id)
        now = datetime.now(UTC).isoformat()
        if existing is not None:
            await (
                self.client.table(self.table)
                .update({"data": data, "updated_at": now})
                .eq("id", existing["id"])
                .execute()
            )
            return existing["id"], False

        response = await (
            self.client.table(self.table)
            .insert(
                {
                    "funder": funder,
                    "collection": collection,
                    "external_id": external_id,
                    "data": data,
                    "created_at": now,
                }
            )
            .execute()
        )
        return response.data[0]["id"], True


class SupabaseFunderDirectory:
    def __init__(self, client: AsyncClient, table: str = "funder"):
        self.client = client
        self.table = table

    async def get(self, funder_id: str) -> Funder | None:
        response = await (
            self.client.table(self.table).select("*").eq("id", funder_id).limit(1).execute()
        )
        if not response.data:
            return None
        return Funder.model_validate(response.data[0])

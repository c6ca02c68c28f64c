"""Tests for the Supabase repositories against a mocked query builder."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from mca_jobs.jobs.models import (
    JobFilter,
    JobKind,
    JobProgress,
    JobRecord,
    JobStatus,
    ReviewStatus,
)
from mca_jobs.repositories.supabase_store import (
    SupabaseCrmRepository,
    SupabaseEntityMirrorRepository,
    SupabaseFunderDirectory,
    SupabaseJobRepository,
)

from support import FUNDER_ID, make_parameters

pytestmark = pytest.mark.asyncio

CHAIN_METHODS = (
    "select",
    "insert",
    "update",
    "upsert",
    "eq",
    "neq",
    "in_",
    "or_",
    "is_",
    "order",
    "range",
    "limit",
)


def mock_client(*responses: MagicMock) -> tuple[MagicMock, MagicMock]:
    """Client whose query builder returns itself and yields ``responses`` in order."""
    query = MagicMock()
    for method in CHAIN_METHODS:
        getattr(query, method).return_value = query
    query.not_ = query
    query.execute = AsyncMock(side_effect=list(responses))
    client = MagicMock()
    client.table.return_value = query
    return client, query


def response(data=None, count=None) -> MagicMock:
    return MagicMock(data=data if data is not None else [], count=count)


def job_row(**overrides) -> dict:
    job = JobRecord.new(JobKind.IMPORT, "merchant", make_parameters())
    row = job.model_dump(mode="json")
    row["funder"] = FUNDER_ID
    row.update(overrides)
    return row


async def test_create_adds_funder_column() -> None:
    row = job_row()
    client, query = mock_client(response([row]))

    created = await SupabaseJobRepository(client).create(JobRecord.model_validate(row))

    client.table.assert_called_with("batch_job")
    inserted = query.insert.call_args.args[0]
    assert inserted["funder"] == FUNDER_ID
    assert inserted["parameters"]["api_key"] == "om_test_key"
    assert created.job_id == row["job_id"]


async def test_conditional_update_filters_on_status() -> None:
    row = job_row(status="running")
    client, query = mock_client(response([row]))
    now = datetime.now(UTC)

    updated = await SupabaseJobRepository(client).update(
        row["job_id"],
        {
            "status": JobStatus.RUNNING,
            "progress": JobProgress(processed=4, total=8),
            "heartbeat_at": now,
        },
        expected_statuses=(JobStatus.PENDING, JobStatus.PAUSED),
    )

    data = query.update.call_args.args[0]
    assert data["status"] == "running"
    assert data["progress"]["processed"] == 4
    assert data["heartbeat_at"] == now.isoformat()
    query.eq.assert_any_call("job_id", row["job_id"])
    query.in_.assert_called_with("status", ["pending", "paused"])
    assert updated.status == JobStatus.RUNNING


async def test_conditional_update_miss_returns_none() -> None:
    client, _ = mock_client(response([]))

    result = await SupabaseJobRepository(client).update(
        "job-1", {"status": JobStatus.PAUSED}, expected_statuses=(JobStatus.RUNNING,)
    )

    assert result is None


async def test_find_applies_filter_and_range() -> None:
    client, query = mock_client(response([job_row()]))

    jobs = await SupabaseJobRepository(client).find(
        JobFilter(
            kind=JobKind.IMPORT,
            funder=FUNDER_ID,
            statuses=[JobStatus.PAUSED],
            exclude_job_id="job-x",
        ),
        offset=20,
        limit=10,
    )

    assert len(jobs) == 1
    query.eq.assert_any_call("kind", "import")
    query.eq.assert_any_call("funder", FUNDER_ID)
    query.in_.assert_called_with("status", ["paused"])
    query.neq.assert_called_with("job_id", "job-x")
    query.order.assert_called_with("created_at", desc=True)
    query.range.assert_called_with(20, 29)


async def test_counts() -> None:
    client, _ = mock_client(
        response(count=7),
        response([{"status": "completed"}, {"status": "failed"}, {"status": "completed"}]),
    )
    repo = SupabaseJobRepository(client)

    assert await repo.count(JobFilter()) == 7
    assert await repo.count_by_status(JobFilter()) == {"completed": 2, "failed": 1}


async def test_get_missing_job() -> None:
    client, _ = mock_client(response([]))
    assert await SupabaseJobRepository(client).get("nope") is None


async def test_mirror_stats_counts() -> None:
    client, query = mock_client(
        response(count=10), response(count=4), response(count=6), response(count=4)
    )

    stats = await SupabaseEntityMirrorRepository(client).stats(FUNDER_ID, "merchant")

    assert (stats.total, stats.synced, stats.selected, stats.ignored) == (10, 4, 6, 4)
    assert stats.pending == 2
    query.is_.assert_called_with("sync_id", "null")


async def test_mirror_list_page_is_ordered() -> None:
    row = {"funder": FUNDER_ID, "entity_type": "merchant", "external_id": "m-1", "data": {}}
    client, query = mock_client(response([row]))

    records = await SupabaseEntityMirrorRepository(client).list_page(
        FUNDER_ID, "merchant", offset=5, limit=5, only_selected=True
    )

    assert records[0].external_id == "m-1"
    query.eq.assert_any_call("needs_sync", True)
    query.order.assert_called_with("external_id")
    query.range.assert_called_with(5, 9)


async def test_mirror_review_query() -> None:
    row = {"funder": FUNDER_ID, "entity_type": "merchant", "external_id": "m-2", "data": {}}
    client, query = mock_client(response([row], count=7))

    records, total = await SupabaseEntityMirrorRepository(client).list_for_review(
        FUNDER_ID, "merchant", ReviewStatus.PENDING, search="Joe's (Deli)", offset=10, limit=5
    )

    assert [r.external_id for r in records] == ["m-2"]
    assert total == 7
    query.eq.assert_any_call("needs_sync", True)
    query.is_.assert_called_with("sync_id", "null")
    query.or_.assert_called_once_with(
        "data->>businessName.ilike.*Joe's Deli*,data->>businessDba.ilike.*Joe's Deli*"
    )
    query.order.assert_called_with("imported_at", desc=True)
    query.range.assert_called_with(10, 14)


async def test_mirror_review_without_search_skips_text_filter() -> None:
    client, query = mock_client(response([], count=None))

    records, total = await SupabaseEntityMirrorRepository(client).list_for_review(
        FUNDER_ID, "lender", ReviewStatus.SYNCED, search="  "
    )

    assert (records, total) == ([], 0)
    query.or_.assert_not_called()
    query.is_.assert_called_with("sync_id", "null")


async def test_set_selection_without_ids_is_noop() -> None:
    client, query = mock_client()

    assert await SupabaseEntityMirrorRepository(client).set_selection(
        FUNDER_ID, "merchant", [], True
    ) == 0
    query.execute.assert_not_called()


async def test_crm_upsert_inserts_then_updates() -> None:
    client, query = mock_client(response([]), response([{"id": "crm-1"}]))
    repo = SupabaseCrmRepository(client)

    assert await repo.upsert(FUNDER_ID, "funding", "a-1", {"name": "A"}) == ("crm-1", True)

    query.execute.side_effect = [response([{"id": "crm-1"}]), response([{"id": "crm-1"}])]
    assert await repo.upsert(FUNDER_ID, "funding", "a-1", {"name": "B"}) == ("crm-1", False)
    query.update.assert_called_once()


async def test_funder_directory() -> None:
    client, _ = mock_client(response([{"id": "f-1", "name": "Acme", "api_key": "k"}]))

    funder = await SupabaseFunderDirectory(client).get("f-1")

    assert funder.api_key == "k"
    assert not funder.inactive

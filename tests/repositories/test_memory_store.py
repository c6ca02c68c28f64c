"""Tests for the in-memory repositories."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from mca_jobs.jobs.models import Funder, JobFilter, JobKind, JobRecord, JobStatus, ReviewStatus
from mca_jobs.repositories.memory_store import (
    InMemoryCrmRepository,
    InMemoryEntityMirrorRepository,
    InMemoryFunderDirectory,
    InMemoryJobRepository,
)

from support import FUNDER_ID, make_parameters, mirror_record

pytestmark = pytest.mark.asyncio


def job_created_at(minutes_ago: int, entity_type: str = "merchant") -> JobRecord:
    job = JobRecord.new(JobKind.IMPORT, entity_type, make_parameters())
    return job.model_copy(update={"created_at": datetime.now(UTC) - timedelta(minutes=minutes_ago)})


async def test_conditional_update() -> None:
    repo = InMemoryJobRepository()
    job = await repo.create(job_created_at(0))

    assert await repo.update(
        job.job_id, {"status": JobStatus.RUNNING}, expected_statuses=(JobStatus.PAUSED,)
    ) is None
    assert (await repo.get(job.job_id)).status == JobStatus.PENDING

    updated = await repo.update(
        job.job_id, {"status": JobStatus.RUNNING}, expected_statuses=(JobStatus.PENDING,)
    )
    assert updated.status == JobStatus.RUNNING
    assert await repo.update("missing", {"status": JobStatus.RUNNING}) is None


async def test_update_validates_nested_changes() -> None:
    repo = InMemoryJobRepository()
    job = await repo.create(job_created_at(0))

    updated = await repo.update(job.job_id, {"progress": {"processed": 3, "total": 9}})

    assert updated.progress.processed == 3
    assert updated.progress.total == 9


async def test_reads_are_copies() -> None:
    repo = InMemoryJobRepository()
    job = await repo.create(job_created_at(0))

    fetched = await repo.get(job.job_id)
    fetched.progress.processed = 99

    assert (await repo.get(job.job_id)).progress.processed == 0


async def test_duplicate_create_is_rejected() -> None:
    repo = InMemoryJobRepository()
    job = await repo.create(job_created_at(0))

    with pytest.raises(ValueError):
        await repo.create(job)


async def test_find_orders_newest_first_and_pages() -> None:
    repo = InMemoryJobRepository()
    oldest = await repo.create(job_created_at(30))
    middle = await repo.create(job_created_at(20, entity_type="lender"))
    newest = await repo.create(job_created_at(10))

    everything = await repo.find(JobFilter())
    assert [j.job_id for j in everything] == [newest.job_id, middle.job_id, oldest.job_id]

    page = await repo.find(JobFilter(), offset=1, limit=1)
    assert [j.job_id for j in page] == [middle.job_id]

    assert await repo.count(JobFilter(entity_type="merchant")) == 2
    assert await repo.count_by_status(JobFilter()) == {"pending": 3}


async def test_mirror_listing_is_stable_and_scoped() -> None:
    mirror = InMemoryEntityMirrorRepository()
    for external_id in ("c", "a", "b"):
        await mirror.upsert(mirror_record(external_id))
    await mirror.upsert(mirror_record("d", needs_sync=False))
    await mirror.upsert(mirror_record("a", entity_type="lender"))
    await mirror.upsert(mirror_record("z", funder="funder-2"))

    page = await mirror.list_page(FUNDER_ID, "merchant", offset=0, limit=10, only_selected=True)
    assert [r.external_id for r in page] == ["a", "b", "c"]

    page = await mirror.list_page(FUNDER_ID, "merchant", offset=2, limit=10)
    assert [r.external_id for r in page] == ["c", "d"]
    assert await mirror.count(FUNDER_ID, "merchant") == 4
    assert await mirror.count(FUNDER_ID, "merchant", only_selected=True) == 3


async def test_mirror_sync_bookkeeping() -> None:
    mirror = InMemoryEntityMirrorRepository()
    await mirror.upsert(mirror_record("a"))
    await mirror.upsert(mirror_record("b"))

    await mirror.mark_synced(FUNDER_ID, "merchant", "a", "crm-a", "sync_merchant_1_x")
    await mirror.mark_synced(FUNDER_ID, "merchant", "ghost", "crm-g", "sync_merchant_1_x")
    changed = await mirror.set_selection(FUNDER_ID, "merchant", ["b"], False)

    assert changed == 1
    stats = await mirror.stats(FUNDER_ID, "merchant")
    assert (stats.total, stats.synced, stats.selected, stats.ignored) == (2, 1, 1, 1)
    assert (await mirror.get(FUNDER_ID, "merchant", "a")).last_synced_by == "sync_merchant_1_x"


async def test_crm_upsert_reports_creation() -> None:
    crm = InMemoryCrmRepository()

    crm_id, created = await crm.upsert(FUNDER_ID, "funding", "a-1", {"name": "first"})
    same_id, created_again = await crm.upsert(FUNDER_ID, "funding", "a-1", {"name": "second"})

    assert created is True and created_again is False
    assert same_id == crm_id
    assert (await crm.find_by_external_id(FUNDER_ID, "funding", "a-1"))["name"] == "second"
    assert await crm.find_by_external_id("funder-2", "funding", "a-1") is None


async def test_funder_directory() -> None:
    directory = InMemoryFunderDirectory()
    directory.add(Funder(id="f-1", name="Acme"))

    assert (await directory.get("f-1")).name == "Acme"
    assert await directory.get("f-2") is None


async def test_mirror_review_filters_and_search() -> None:
    mirror = InMemoryEntityMirrorRepository()
    now = datetime.now(UTC)
    for minutes_ago, external_id, name in [
        (3, "a", "Corner Deli"),
        (2, "b", "Main St Auto"),
        (1, "c", "Deli Express"),
    ]:
        await mirror.upsert(
            mirror_record(
                external_id,
                data={"id": external_id, "businessName": name},
                imported_at=now - timedelta(minutes=minutes_ago),
            )
        )
    await mirror.upsert(mirror_record("d", needs_sync=False))
    await mirror.mark_synced(FUNDER_ID, "merchant", "b", "crm-b", "sync_merchant_1_x")

    records, total = await mirror.list_for_review(FUNDER_ID, "merchant", limit=2)
    assert total == 4
    assert [r.external_id for r in records] == ["d", "c"]

    pending, total = await mirror.list_for_review(FUNDER_ID, "merchant", ReviewStatus.PENDING)
    assert {r.external_id for r in pending} == {"a", "c"}
    synced, _ = await mirror.list_for_review(FUNDER_ID, "merchant", ReviewStatus.SYNCED)
    assert [r.external_id for r in synced] == ["b"]
    ignored, _ = await mirror.list_for_review(FUNDER_ID, "merchant", ReviewStatus.IGNORED)
    assert [r.sync_status for r in ignored] == ["ignored"]

    found, total = await mirror.list_for_review(FUNDER_ID, "merchant", search="deli")
    assert total == 2
    assert [r.external_id for r in found] == ["c", "a"]

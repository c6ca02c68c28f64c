"""Tests for the mirror to CRM sync operations."""

import pytest
import pytest_asyncio

from mca_jobs.core.constants import SYNC_ORDER
from mca_jobs.jobs.models import JobKind
from mca_jobs.jobs.operations import OperationContext
from mca_jobs.repositories.memory_store import InMemoryCrmRepository
from mca_jobs.services.sync_operations import (
    MirrorSyncOperation,
    build_sync_operations,
    to_crm_document,
)

from support import FUNDER_ID, make_parameters, mirror_record

JOB_ID = "sync_merchant_1_abc"


def context_for(calls, resume_from_index=0, **overrides):
    async def on_progress(processed, total, current):
        calls.append((processed, current))

    return OperationContext(
        job_id=JOB_ID,
        parameters=make_parameters(**overrides),
        resume_from_index=resume_from_index,
        progress_callback=on_progress,
    )


class FlakyCrm(InMemoryCrmRepository):
    async def upsert(self, funder, collection, external_id, data):
        if external_id == "m-02":
            raise ConnectionError("crm timeout")
        return await super().upsert(funder, collection, external_id, data)


@pytest_asyncio.fixture
async def seeded_mirror(mirror):
    for index in range(5):
        await mirror.upsert(mirror_record(f"m-{index:02d}"))
    await mirror.upsert(mirror_record("m-99", needs_sync=False))
    return mirror


@pytest.mark.asyncio
async def test_syncs_selected_records(seeded_mirror, crm):
    operation = MirrorSyncOperation("merchant", seeded_mirror, crm)
    calls = []

    result = await operation.run(context_for(calls, batch_size=2))

    assert result.stats.total_saved == 5
    assert [c[0] for c in calls] == [2, 4, 5]
    assert len(crm.documents) == 5
    assert (FUNDER_ID, "merchant", "m-99") not in crm.documents
    stored = await seeded_mirror.get(FUNDER_ID, "merchant", "m-00")
    assert stored.sync_id == crm.documents[(FUNDER_ID, "merchant", "m-00")]["id"]
    assert stored.last_synced_by == JOB_ID
    assert stored.needs_sync is True


@pytest.mark.asyncio
async def test_resume_starts_at_offset(seeded_mirror, crm):
    operation = MirrorSyncOperation("merchant", seeded_mirror, crm)

    result = await operation.run(context_for([], resume_from_index=3, batch_size=10))

    assert result.stats.total_saved == 2
    assert sorted(key[2] for key in crm.documents) == ["m-03", "m-04"]


@pytest.mark.asyncio
async def test_all_records_when_not_only_selected(seeded_mirror, crm):
    operation = MirrorSyncOperation("merchant", seeded_mirror, crm)

    assert await operation.count(make_parameters(only_selected=False)) == 6
    assert await operation.count(make_parameters()) == 5


@pytest.mark.asyncio
async def test_existing_crm_documents_are_skipped(seeded_mirror, crm):
    crm_id, _ = await crm.upsert(FUNDER_ID, "merchant", "m-01", {"name": "already there"})
    operation = MirrorSyncOperation("merchant", seeded_mirror, crm)

    result = await operation.run(context_for([], batch_size=10, update_existing=False))

    assert result.stats.total_skipped == 1
    assert result.stats.total_saved == 4
    assert (await seeded_mirror.get(FUNDER_ID, "merchant", "m-01")).sync_id == crm_id


@pytest.mark.asyncio
async def test_resync_updates_documents(seeded_mirror, crm):
    operation = MirrorSyncOperation("merchant", seeded_mirror, crm)
    await operation.run(context_for([], batch_size=10))

    result = await operation.run(context_for([], batch_size=10))

    assert result.stats.total_updated == 5
    assert len(crm.documents) == 5


@pytest.mark.asyncio
async def test_dry_run_writes_nothing(seeded_mirror, crm):
    operation = MirrorSyncOperation("merchant", seeded_mirror, crm)

    result = await operation.run(context_for([], batch_size=10, dry_run=True))

    assert result.stats.total_saved == 5
    assert crm.documents == {}
    assert (await seeded_mirror.get(FUNDER_ID, "merchant", "m-00")).sync_id is None


@pytest.mark.asyncio
async def test_entity_errors_are_recorded(seeded_mirror):
    operation = MirrorSyncOperation("merchant", seeded_mirror, FlakyCrm())

    result = await operation.run(context_for([], batch_size=10))

    assert result.stats.total_saved == 4
    assert result.stats.total_failed == 1
    assert result.stats.errors[0].entity_id == "m-02"


@pytest.mark.asyncio
async def test_entity_types_map_to_crm_collections(mirror, crm):
    await mirror.upsert(mirror_record("a-1", entity_type="advance"))
    operation = MirrorSyncOperation("advance", mirror, crm)

    await operation.run(context_for([], batch_size=10))

    assert operation.collection == "funding"
    assert (FUNDER_ID, "funding", "a-1") in crm.documents
    assert MirrorSyncOperation("underwriter", mirror, crm).collection == "user"


def test_crm_document_shape():
    document = to_crm_document(mirror_record("m-01"))

    assert document["source"] == "orgmeter"
    assert document["external_id"] == "m-01"
    assert document["name"] == "Business m-01"
    assert document["data"]["id"] == "m-01"


def test_build_sync_operations(mirror, crm):
    operations = build_sync_operations(mirror, crm)

    assert [op.entity_type for op in operations] == list(SYNC_ORDER)
    assert all(op.kind == JobKind.SYNC for op in operations)

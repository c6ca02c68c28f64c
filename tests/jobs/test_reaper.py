"""Tests for the stale job reaper."""

from datetime import UTC, datetime, timedelta

import pytest

from mca_jobs.jobs.models import JobStatus
from mca_jobs.jobs.reaper import StaleJobReaper
from mca_jobs.jobs.registry import RunRegistry

from support import persist_job

AN_HOUR_AGO = datetime.now(UTC) - timedelta(hours=1)


@pytest.fixture
def reaper(job_repository, run_registry) -> StaleJobReaper:
    return StaleJobReaper(job_repository, run_registry, stale_after=timedelta(minutes=15))


@pytest.mark.asyncio
async def test_reaps_running_job_with_old_heartbeat(reaper, job_repository):
    job = await persist_job(job_repository)
    await job_repository.update(
        job.job_id,
        {"status": JobStatus.RUNNING, "started_at": AN_HOUR_AGO, "heartbeat_at": AN_HOUR_AGO},
    )

    assert await reaper.sweep() == [job.job_id]

    stored = await job_repository.get(job.job_id)
    assert stored.status == JobStatus.FAILED
    assert stored.error.type == "StaleJob"
    assert stored.completed_at is not None
    assert stored.can_resume


@pytest.mark.asyncio
async def test_reaps_pending_job_never_started(reaper, job_repository):
    job = await persist_job(job_repository)
    await job_repository.update(job.job_id, {"created_at": AN_HOUR_AGO})

    assert await reaper.sweep() == [job.job_id]


@pytest.mark.asyncio
async def test_keeps_fresh_and_live_jobs(reaper, job_repository, run_registry: RunRegistry):
    fresh = await persist_job(job_repository)
    await job_repository.update(
        fresh.job_id, {"status": JobStatus.RUNNING, "heartbeat_at": datetime.now(UTC)}
    )
    live = await persist_job(job_repository, entity_type="lender")
    await job_repository.update(
        live.job_id, {"status": JobStatus.RUNNING, "heartbeat_at": AN_HOUR_AGO}
    )
    run_registry.register(live.job_id)

    assert await reaper.sweep() == []
    assert (await job_repository.get(live.job_id)).status == JobStatus.RUNNING


@pytest.mark.asyncio
async def test_ignores_paused_jobs(reaper, job_repository):
    job = await persist_job(job_repository)
    await job_repository.update(
        job.job_id, {"status": JobStatus.PAUSED, "created_at": AN_HOUR_AGO}
    )

    assert await reaper.sweep() == []

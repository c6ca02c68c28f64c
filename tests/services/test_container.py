"""Tests for job service wiring and shutdown."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from mca_jobs.repositories.memory_store import (
    InMemoryCrmRepository,
    InMemoryEntityMirrorRepository,
    InMemoryJobRepository,
)
from mca_jobs.services.container import assemble_job_services, build_job_services


@pytest.mark.asyncio
async def test_shutdown_closes_supabase_client(test_settings, fake_source, funder_directory):
    supabase = MagicMock()
    supabase.postgrest.aclose = AsyncMock()
    services = assemble_job_services(
        test_settings,
        jobs=InMemoryJobRepository(),
        mirror=InMemoryEntityMirrorRepository(),
        crm=InMemoryCrmRepository(),
        funders=funder_directory,
        source_factory=lambda api_key: fake_source,
        supabase=supabase,
    )

    await services.shutdown(timeout=1)

    supabase.postgrest.aclose.assert_awaited_once()


@pytest.mark.asyncio
async def test_memory_backend_has_no_supabase_client(test_settings, fake_source):
    services = await build_job_services(test_settings, source_factory=lambda api_key: fake_source)

    assert services.supabase is None
    assert isinstance(services.jobs, InMemoryJobRepository)
    await services.shutdown(timeout=1)

# conftest.py
import pytest
import pytest_asyncio
from support import API_KEY, FUNDER_ID, FakeOperation, FakeSource, RecordingJobRepository

from mca_jobs.config import Settings
from mca_jobs.jobs.controller import IMPORT_VARIANT, SYNC_VARIANT, JobLifecycleController
from mca_jobs.jobs.engine import BatchJobEngine
from mca_jobs.jobs.models import Funder, JobKind
from mca_jobs.jobs.operations import OperationRegistry
from mca_jobs.jobs.registry import RunRegistry
from mca_jobs.jobs.scheduler import JobScheduler
from mca_jobs.repositories.memory_store import (
    InMemoryCrmRepository,
    InMemoryEntityMirrorRepository,
    InMemoryFunderDirectory,
    InMemoryJobRepository,
)
from mca_jobs.services.container import JobServices, assemble_job_services


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        job_store_backend="memory",
        run_registry_capacity=4,
        reaper_enabled=False,
        reap_on_startup=False,
        orgmeter_request_delay_seconds=0,
    )


@pytest.fixture
def job_repository() -> RecordingJobRepository:
    return RecordingJobRepository()


@pytest.fixture
def run_registry() -> RunRegistry:
    return RunRegistry(capacity=4)


@pytest.fixture
def fake_operation() -> FakeOperation:
    return FakeOperation()


@pytest.fixture
def engine(job_repository, run_registry, fake_operation) -> BatchJobEngine:
    return BatchJobEngine(job_repository, run_registry, OperationRegistry([fake_operation]))


@pytest.fixture
def fake_source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def funder_directory() -> InMemoryFunderDirectory:
    return InMemoryFunderDirectory(
        [
            Funder(id=FUNDER_ID, name="Acme Capital", api_key=API_KEY),
            Funder(id="funder-2", name="Other Funding", api_key="om_other_key"),
            Funder(id="funder-idle", name="Idle Funding", api_key="om_idle_key", inactive=True),
            Funder(id="funder-nokey", name="Keyless Funding"),
        ]
    )


@pytest.fixture
def mirror() -> InMemoryEntityMirrorRepository:
    return InMemoryEntityMirrorRepository()


@pytest.fixture
def crm() -> InMemoryCrmRepository:
    return InMemoryCrmRepository()


@pytest_asyncio.fixture
async def import_controller(job_repository, run_registry, fake_operation, fake_source):
    """Import controller driving ``fake_operation`` through a real engine."""
    scheduler = JobScheduler(
        BatchJobEngine(job_repository, run_registry, OperationRegistry([fake_operation]))
    )
    controller = JobLifecycleController(
        variant=IMPORT_VARIANT,
        repository=job_repository,
        registry=run_registry,
        scheduler=scheduler,
        source_factory=lambda api_key: fake_source,
    )
    yield controller
    await scheduler.shutdown(timeout=1)


@pytest_asyncio.fixture
async def sync_controller(job_repository, run_registry, funder_directory, fake_source):
    operation = FakeOperation(kind=JobKind.SYNC)
    scheduler = JobScheduler(
        BatchJobEngine(job_repository, run_registry, OperationRegistry([operation]))
    )
    controller = JobLifecycleController(
        variant=SYNC_VARIANT,
        repository=job_repository,
        registry=run_registry,
        scheduler=scheduler,
        source_factory=lambda api_key: fake_source,
        funders=funder_directory,
    )
    yield controller
    await scheduler.shutdown(timeout=1)


@pytest_asyncio.fixture
async def job_services(test_settings, fake_source, funder_directory):
    """Fully wired in-memory services backed by ``fake_source``."""
    services: JobServices = assemble_job_services(
        test_settings,
        jobs=InMemoryJobRepository(),
        mirror=InMemoryEntityMirrorRepository(),
        crm=InMemoryCrmRepository(),
        funders=funder_directory,
        source_factory=lambda api_key: fake_source,
    )
    yield services
    await services.scheduler.shutdown(timeout=1)


@pytest.fixture
def api_services(test_settings, fake_source, funder_directory) -> JobServices:
    return assemble_job_services(
        test_settings,
        jobs=InMemoryJobRepository(),
        mirror=InMemoryEntityMirrorRepository(),
        crm=InMemoryCrmRepository(),
        funders=funder_directory,
        source_factory=lambda api_key: fake_source,
    )


@pytest.fixture
def api_client(api_services, monkeypatch):
    """TestClient with the lifespan running on top of ``api_services``."""
    from fastapi.testclient import TestClient

    from mca_jobs import main

    async def build_services(settings, source_factory=None):
        return api_services

    monkeypatch.setattr(main, "build_job_services", build_services)
    with TestClient(main.app) as client:
        yield client

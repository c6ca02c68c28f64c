"""Builds the job engine object graph from settings."""

from dataclasses import dataclass
from datetime import timedelta

from supabase import AsyncClient, acreate_client

from mca_jobs.clients.orgmeter import ExternalSourceFactory, orgmeter_client_factory
from mca_jobs.config import Settings
from mca_jobs.core.logging import get_logger
from mca_jobs.jobs.controller import (
    IMPORT_VARIANT,
    SYNC_VARIANT,
    JobLifecycleController,
    JobVariant,
)
from mca_jobs.jobs.engine import BatchJobEngine
from mca_jobs.jobs.operations import OperationRegistry
from mca_jobs.jobs.reaper import StaleJobReaper
from mca_jobs.jobs.registry import RunRegistry
from mca_jobs.jobs.scheduler import JobScheduler
from mca_jobs.repositories.base import (
    CrmRepository,
    EntityMirrorRepository,
    FunderDirectory,
    JobRepository,
)
from mca_jobs.repositories.memory_store import (
    InMemoryCrmRepository,
    InMemoryEntityMirrorRepository,
    InMemoryFunderDirectory,
    InMemoryJobRepository,
)
from mca_jobs.repositories.supabase_store import (
    SupabaseCrmRepository,
    SupabaseEntityMirrorRepository,
    SupabaseFunderDirectory,
    SupabaseJobRepository,
)
from mca_jobs.services.import_operations import build_import_operations
from mca_jobs.services.progress_service import SyncProgressService
from mca_jobs.services.sync_operations import build_sync_operations

logger = get_logger(__name__)


@dataclass
class JobServices:
    """Everything the HTTP layer and the lifespan need, wired together."""

    settings: Settings
    jobs: JobRepository
    mirror: EntityMirrorRepository
    crm: CrmRepository
    funders: FunderDirectory
    registry: RunRegistry
    operations: OperationRegistry
    engine: BatchJobEngine
    scheduler: JobScheduler
    imports: JobLifecycleController
    syncs: JobLifecycleController
    progress: SyncProgressService
    reaper: StaleJobReaper
    supabase: AsyncClient | None = None

    async def shutdown(self, timeout: float | None = None) -> None:
        """Pause live runs durably, wait for them, then close the Supabase session."""
        await self.imports.pause_live_runs()
        await self.syncs.pause_live_runs()
        await self.scheduler.shutdown(
            timeout if timeout is not None else self.settings.shutdown_timeout_seconds
        )
        if self.supabase is not None:
            await self.supabase.postgrest.aclose()
            logger.info("Closed Supabase client")


def assemble_job_services(
    settings: Settings,
    jobs: JobRepository,
    mirror: EntityMirrorRepository,
    crm: CrmRepository,
    funders: FunderDirectory,
    source_factory: ExternalSourceFactory,
    supabase: AsyncClient | None = None,
) -> JobServices:
    registry = RunRegistry(capacity=settings.run_registry_capacity)
    operations = OperationRegistry(
        [
            *build_import_operations(source_factory, mirror),
            *build_sync_operations(mirror, crm),
        ]
    )
    engine = BatchJobEngine(jobs, registry, operations)
    scheduler = JobScheduler(engine)

    def controller(variant: JobVariant) -> JobLifecycleController:
        return JobLifecycleController(
            variant=variant,
            repository=jobs,
            registry=registry,
            scheduler=scheduler,
            source_factory=source_factory,
            funders=funders,
            mirror=mirror,
            max_batch_size=settings.max_batch_size,
        )

    return JobServices(
        settings=settings,
        jobs=jobs,
        mirror=mirror,
        crm=crm,
        funders=funders,
        registry=registry,
        operations=operations,
        engine=engine,
        scheduler=scheduler,
        imports=controller(IMPORT_VARIANT),
        syncs=controller(SYNC_VARIANT),
        progress=SyncProgressService(jobs, mirror, registry),
        reaper=StaleJobReaper(
            jobs, registry, stale_after=timedelta(seconds=settings.job_heartbeat_stale_seconds)
        ),
        supabase=supabase,
    )


async def build_job_services(
    settings: Settings, source_factory: ExternalSourceFactory | None = None
) -> JobServices:
    """Create repositories for the configured backend and wire the engine.

    Args:
        settings: Application settings.
        source_factory: Optional override for the OrgMeter client factory.

    Returns:
        JobServices: The assembled services.
    """
    source_factory = source_factory or orgmeter_client_factory(settings)

    if settings.job_store_backend == "supabase":
        if not settings.supabase_url or not settings.supabase_key:
            raise ValueError("Supabase URL and key must be set")
        client = await acreate_client(settings.supabase_url, settings.supabase_key)
        logger.info("Using Supabase job storage")
        return assemble_job_services(
            settings,
            jobs=SupabaseJobRepository(client, settings.supabase_job_table),
            mirror=SupabaseEntityMirrorRepository(client, settings.supabase_mirror_table),
            crm=SupabaseCrmRepository(client, settings.supabase_crm_table),
            funders=SupabaseFunderDirectory(client, settings.supabase_funder_table),
            source_factory=source_factory,
            supabase=client,
        )

    logger.info("Using in-memory job storage")
    return assemble_job_services(
        settings,
        jobs=InMemoryJobRepository(),
        mirror=InMemoryEntityMirrorRepository(),
        crm=InMemoryCrmRepository(),
        funders=InMemoryFunderDirectory(),
        source_factory=source_factory,
    )

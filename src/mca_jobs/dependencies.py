"""FastAPI dependency injection utilities."""

from typing import Annotated

from fastapi import Depends, Request

from mca_jobs.config import Settings, get_settings
from mca_jobs.core.exceptions import ServiceUnavailableException
from mca_jobs.jobs.controller import JobLifecycleController
from mca_jobs.services.container import JobServices
from mca_jobs.services.progress_service import SyncProgressService

# Common dependencies that can be injected into route handlers
SettingsDep = Annotated[Settings, Depends(get_settings)]


def get_job_services(request: Request) -> JobServices:
    """Get the job services built during application startup.

    Returns:
        JobServices instance stored on the application state.
    """
    services = getattr(request.app.state, "job_services", None)
    if services is None:
        raise ServiceUnavailableException("Job services are not initialised")
    return services


JobServicesDep = Annotated[JobServices, Depends(get_job_services)]


def get_import_controller(services: JobServicesDep) -> JobLifecycleController:
    return services.imports


def get_sync_controller(services: JobServicesDep) -> JobLifecycleController:
    return services.syncs


def get_sync_progress_service(services: JobServicesDep) -> SyncProgressService:
    return services.progress


# Type aliases for dependency injection
ImportControllerDep = Annotated[JobLifecycleController, Depends(get_import_controller)]
SyncControllerDep = Annotated[JobLifecycleController, Depends(get_sync_controller)]
SyncProgressDep = Annotated[SyncProgressService, Depends(get_sync_progress_service)]

"""Health check endpoint."""

from fastapi import APIRouter, Request

from mca_jobs.dependencies import SettingsDep
from mca_jobs.schemas.health import HealthResponse

router = APIRouter(tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health Check",
    description="Returns the health status of the API and job engine occupancy",
)
async def health_check(request: Request, settings: SettingsDep) -> HealthResponse:
    """Check API health and return status.

    Engine occupancy is only reported once the lifespan has built the job
    services.

    Args:
        request: The incoming request.
        settings: Injected application settings.

    Returns:
        HealthResponse: Health status information.
    """
    services = getattr(request.app.state, "job_services", None)
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        environment=settings.environment,
        job_store=settings.job_store_backend,
        live_runs=len(services.registry) if services is not None else None,
        run_capacity=services.registry.capacity if services is not None else None,
    )

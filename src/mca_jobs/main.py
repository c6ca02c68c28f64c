"""Main FastAPI application."""

import asyncio
import contextlib
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from mca_jobs.api.v1.router import api_router
from mca_jobs.config import get_settings
from mca_jobs.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
)
from mca_jobs.core.logging import get_logger, setup_logging
from mca_jobs.core.security import security_headers_middleware
from mca_jobs.services.container import build_job_services

# Setup logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan events.

    Builds the job services, reaps runs orphaned by a previous process and
    starts the periodic reaper. On shutdown live runs are paused so they can
    be resumed from their last checkpoint.

    Args:
        app: The FastAPI application instance.

    Yields:
        None
    """
    # Startup
    settings = get_settings()
    logger.info("Starting up MCA Jobs API")
    services = await build_job_services(settings)
    app.state.job_services = services

    if settings.reap_on_startup:
        reaped = await services.reaper.sweep()
        if reaped:
            logger.warning(f"Marked {len(reaped)} orphaned job(s) as failed on startup")

    reaper_task: asyncio.Task | None = None
    if settings.reaper_enabled:
        reaper_task = asyncio.create_task(
            services.reaper.run_forever(settings.reaper_interval_seconds)
        )

    yield

    # Shutdown
    logger.info("Shutting down MCA Jobs API")
    if reaper_task is not None:
        reaper_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await reaper_task
    await services.shutdown()
    app.state.job_services = None


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured FastAPI application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Resumable OrgMeter import and CRM sync jobs",
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_credentials,
        allow_methods=settings.cors_methods,
        allow_headers=settings.cors_headers,
    )

    # Add security headers middleware
    app.middleware("http")(security_headers_middleware)

    # Register exception handlers
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # Include API router with versioning
    app.include_router(api_router, prefix=settings.api_v1_prefix)

    return app


app = create_app()

"""Main API v1 router that combines all endpoint routers."""

from fastapi import APIRouter

from mca_jobs.api.v1.endpoints import health, imports, syncs

api_router = APIRouter()

# Include all endpoint routers
api_router.include_router(health.router)
api_router.include_router(imports.router)
api_router.include_router(syncs.router)

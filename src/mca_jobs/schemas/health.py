"""Health check schemas."""

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Health check response schema."""

    status: str = Field(..., description="Health status")
    version: str = Field(..., description="Application version")
    environment: str = Field(..., description="Environment name")
    job_store: str = Field(..., description="Configured job storage backend")
    live_runs: int | None = Field(None, description="Job runs executing in this process")
    run_capacity: int | None = Field(None, description="Maximum concurrently live job runs")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "status": "healthy",
                    "version": "0.1.0",
                    "environment": "development",
                    "job_store": "memory",
                    "live_runs": 2,
                    "run_capacity": 64,
                }
            ]
        }
    }

"""Health check endpoints."""

import shutil

from fastapi import APIRouter
from pydantic import BaseModel

from codestory.api.deps import AppSettings, Catalog, Registry

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    agent: str
    catalog: str
    generations: int


@router.get("/health", response_model=HealthResponse)
async def health_check(settings: AppSettings, catalog: Catalog, registry: Registry) -> HealthResponse:
    """Check application health status.

    Returns:
        Health status including agent availability and catalog state.
    """
    # Check agent
    if settings.agent_backend == "cli":
        agent_status = "healthy" if shutil.which(settings.agent_executable) else "not found"
    else:
        agent_status = "healthy"

    # Check catalog
    catalog_status = "healthy" if catalog.root.is_dir() else "not initialized"

    return HealthResponse(
        status="healthy" if agent_status == "healthy" and catalog_status == "healthy" else "degraded",
        version=settings.app_version,
        agent=agent_status,
        catalog=catalog_status,
        generations=len(registry),
    )


@router.get("/ready")
async def readiness_check() -> dict:
    """Kubernetes readiness probe.

    Returns:
        Simple ready status.
    """
    return {"ready": True}


@router.get("/live")
async def liveness_check() -> dict:
    """Kubernetes liveness probe.

    Returns:
        Simple alive status.
    """
    return {"alive": True}

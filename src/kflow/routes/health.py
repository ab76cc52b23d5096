"""Health check endpoints for Kubernetes probes and monitoring."""

from datetime import UTC, datetime

from fastapi import APIRouter
from pydantic import BaseModel, Field

from kflow import __version__
from kflow.core.deps import SessionManagerDep, SettingsDep

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    version: str
    environment: str
    authenticated: bool
    cluster_url: str = Field(alias="clusterUrl")

    class Config:
        populate_by_name = True


@router.get("/health", response_model=HealthResponse)
async def health_check(settings: SettingsDep, session_manager: SessionManagerDep) -> HealthResponse:
    """Basic health check for liveness probe.

    Also reports whether a Kubeflow session is active; the cluster itself is
    not contacted.
    """
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=__version__,
        environment=settings.environment,
        authenticated=session_manager.is_authenticated,
        cluster_url=session_manager.base_url,
    )


@router.get("/startup")
async def startup_check() -> dict[str, str]:
    """Startup check for Kubernetes startup probe."""
    return {"status": "started"}

"""API route modules."""

from kflow.routes.health import router as health_router
from kflow.routes.jobs import router as jobs_router
from kflow.routes.jobs import volumes_router
from kflow.routes.session import router as session_router

__all__ = [
    "health_router",
    "jobs_router",
    "session_router",
    "volumes_router",
]

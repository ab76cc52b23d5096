"""Main FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from kflow import __version__
from kflow.core.config import get_settings
from kflow.core.errors import AuthError
from kflow.core.telemetry import setup_telemetry, shutdown_telemetry
from kflow.routes import health_router, jobs_router, session_router, volumes_router
from kflow.services.session import get_session_manager

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def _log_session_expired(error: AuthError) -> None:
    logger.warning(f"Kubeflow session ended: {error.message}")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager for startup and shutdown events."""
    settings = get_settings()
    session_manager = get_session_manager()

    # Startup
    logger.info(f"Starting {settings.app_name} in {settings.environment} mode")

    settings.ensure_data_dirs()
    logger.info(f"Data directory: {settings.data_dir}")

    # Restore any persisted session and arm its refresh timer
    session_manager.add_listener(_log_session_expired)
    await session_manager.initialize()

    yield

    # Shutdown
    logger.info("Shutting down...")
    session_manager.remove_listener(_log_session_expired)
    await session_manager.close()
    shutdown_telemetry(app.state.tracer_provider)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Submit and manage Kubeflow PyTorch training jobs",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Setup OpenTelemetry
    app.state.tracer_provider = setup_telemetry(app, settings)

    # Include routers
    app.include_router(health_router)
    app.include_router(session_router)
    app.include_router(jobs_router)
    app.include_router(volumes_router)

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("kflow.main:create_app", factory=True, reload=get_settings().debug)

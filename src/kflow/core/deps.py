"""FastAPI dependencies and error translation for the route modules."""

from typing import Annotated

from fastapi import Depends, HTTPException, status

from kflow.core.config import Settings, get_settings
from kflow.core.errors import (
    ApiError,
    AuthError,
    NotFoundError,
    ValidationError,
)
from kflow.services.orchestrator import JobOrchestrator, get_job_orchestrator
from kflow.services.session import SessionManager, get_session_manager


def to_http_exception(error: Exception) -> HTTPException:
    """Translate a service error into the matching HTTP error.

    The cluster's own status is passed through for ``ApiError``; a request that
    never got an answer becomes 502.
    """
    if isinstance(error, AuthError):
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error.message,
            headers={"WWW-Authenticate": "Bearer"},
        )
    if isinstance(error, ApiError):
        return HTTPException(
            status_code=error.status if error.status >= 400 else status.HTTP_502_BAD_GATEWAY,
            detail=str(error),
        )
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, ValidationError | FileNotFoundError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    # ConfigError, ArtifactError and anything unexpected
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))


# Type aliases for common dependencies
SettingsDep = Annotated[Settings, Depends(get_settings)]

# Service dependencies
SessionManagerDep = Annotated[SessionManager, Depends(get_session_manager)]
JobOrchestratorDep = Annotated[JobOrchestrator, Depends(get_job_orchestrator)]

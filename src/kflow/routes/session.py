"""Session routes: log in to Kubeflow, log out and inspect the current session."""

from datetime import datetime

from fastapi import APIRouter
from pydantic import BaseModel, Field

from kflow.core.deps import SessionManagerDep, to_http_exception
from kflow.core.errors import AuthError, ConfigError
from kflow.services.session import SessionManager

router = APIRouter(prefix="/api/v1/session", tags=["session"])


class LoginRequest(BaseModel):
    """Request body for a password login."""

    url: str = Field(default="", description="Kubeflow URL; the configured URL when empty")
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class SessionResponse(BaseModel):
    """Current session state. Tokens are never returned."""

    authenticated: bool
    expires_at: datetime | None = Field(default=None, alias="expiresAt")
    refresh_scheduled: bool = Field(default=False, alias="refreshScheduled")

    class Config:
        populate_by_name = True


def _session_response(session_manager: SessionManager) -> SessionResponse:
    session = session_manager.session
    return SessionResponse(
        authenticated=session is not None,
        expires_at=session.expires_at_datetime if session else None,
        refresh_scheduled=session_manager.refresh_scheduled,
    )


@router.post("/login", response_model=SessionResponse)
async def login(request: LoginRequest, session_manager: SessionManagerDep) -> SessionResponse:
    """Log in with username and password and start automatic refresh."""
    try:
        await session_manager.login_interactive(request.url, request.username, request.password)
    except (AuthError, ConfigError) as e:
        raise to_http_exception(e) from e
    return _session_response(session_manager)


@router.post("/logout", response_model=SessionResponse)
async def logout(session_manager: SessionManagerDep) -> SessionResponse:
    """Sign out and forget the stored session."""
    await session_manager.sign_out()
    return _session_response(session_manager)


@router.get("", response_model=SessionResponse)
async def get_session(session_manager: SessionManagerDep) -> SessionResponse:
    """Report whether a session is active and when it expires."""
    return _session_response(session_manager)

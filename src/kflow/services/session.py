"""OAuth2 session lifecycle against a Keycloak (OpenID Connect) token endpoint."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

import httpx

from kflow.core.config import Settings, get_settings
from kflow.core.errors import AuthError, ConfigError
from kflow.core.interfaces import InteractiveInput, SecretStore
from kflow.core.secret_store import get_secret_store
from kflow.core.telemetry import get_tracer, record_http_status
from kflow.models.session import Session, TokenResponse

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

# Secret store keys
ACCESS_TOKEN_KEY = "kflow.accessToken"
REFRESH_TOKEN_KEY = "kflow.refreshToken"
EXPIRES_AT_KEY = "kflow.expiresAt"
BASE_URL_KEY = "kflow.url"

# Refresh this long before the access token expires
REFRESH_WINDOW_SECONDS = 5 * 60
# Never arm the background refresh sooner than this
MIN_REFRESH_DELAY_SECONDS = 10

DEFAULT_REALM = "kubeflow"
TOKEN_ENDPOINT_PATH = "/protocol/openid-connect/token"

# Actionable text for OAuth2 error codes returned by the token endpoint
ERROR_GUIDANCE = {
    "invalid_client": (
        "The identity provider does not recognise the client id. "
        "Check the client_id setting and that the realm is correct."
    ),
    "unauthorized_client": (
        "The client is not allowed to use this grant. "
        "Enable 'Direct access grants' for the client in the realm."
    ),
    "invalid_grant": (
        "The username or password is wrong, or the refresh token has expired. "
        "Log in again."
    ),
}

RefreshListener = Callable[[AuthError], Any]


def _is_absolute_url(value: str) -> bool:
    return value.lower().startswith(("http://", "https://"))


def resolve_token_endpoint(url: str, realm: str = "", token_url: str = "") -> str:
    """Resolve the token endpoint URL.

    Priority:
        1. ``token_url``, a full endpoint override, used verbatim
        2. ``realm`` given as a full realm URL, with the token path appended
        3. ``<url>/realms/<realm or "kubeflow">/protocol/openid-connect/token``

    Raises:
        ConfigError: If the override is not an absolute http(s) URL, or no base
            URL is available for composition
    """
    override = (token_url or "").strip()
    if override:
        if not _is_absolute_url(override):
            raise ConfigError(
                f"Token URL override must start with http:// or https://, got '{override}'"
            )
        return override.rstrip("/")

    realm_value = (realm or "").strip()
    if _is_absolute_url(realm_value):
        return f"{realm_value.rstrip('/')}{TOKEN_ENDPOINT_PATH}"

    base = (url or "").strip().rstrip("/")
    if not base:
        raise ConfigError("Kubeflow URL is empty; set KFLOW_URL or pass a URL to log in")
    return f"{base}/realms/{realm_value or DEFAULT_REALM}{TOKEN_ENDPOINT_PATH}"


class SessionManager:
    """Owns the OAuth2 session: login, proactive refresh, sign-out and persistence.

    The session is persisted in a ``SecretStore`` (tokens, expiry and the Kubeflow URL) and restored
    by ``initialize()``. A background task refreshes the access token five
    minutes before it expires; if that refresh fails the session is signed out
    and listeners are told, with no retry. Concurrent callers that find the
    token about to expire share a single in-flight refresh.

    Example:
        ```python
        manager = SessionManager(secret_store, settings)
        await manager.initialize()
        if not manager.is_authenticated:
            await manager.login_interactive(settings.url, "alice", password)
        await manager.ensure_valid_session()
        token = manager.access_token
        ```
    """

    def __init__(
        self,
        secret_store: SecretStore,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the session manager.

        Args:
            secret_store: Where the session is persisted
            settings: Application settings (uses default if not provided)
            transport: Optional httpx transport, used by tests
            clock: Returns the current time in epoch seconds
        """
        self.settings = settings or get_settings()
        self.secret_store = secret_store
        self._transport = transport
        self._clock = clock
        self._session: Session | None = None
        self._base_url: str | None = None
        self._refresh_timer: asyncio.Task | None = None
        self._refresh_task: asyncio.Task | None = None
        self._generation = 0
        self._listeners: list[RefreshListener] = []
        self.refresh_window_seconds: float = REFRESH_WINDOW_SECONDS
        self.min_refresh_delay_seconds: float = MIN_REFRESH_DELAY_SECONDS
        self.refresh_delay_seconds: float | None = None

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def access_token(self) -> str | None:
        return self._session.access_token if self._session else None

    @property
    def base_url(self) -> str:
        """Kubeflow URL of the current session, or the configured one."""
        return self._base_url or self.settings.url

    @property
    def is_authenticated(self) -> bool:
        return self._session is not None

    @property
    def refresh_scheduled(self) -> bool:
        return self._refresh_timer is not None and not self._refresh_timer.done()

    def add_listener(self, listener: RefreshListener) -> None:
        """Register a callback receiving refresh failures."""
        self._listeners.append(listener)

    def remove_listener(self, listener: RefreshListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Restore a persisted session, if any, and arm the refresh timer.

        Makes no network call. A missing or unreadable expiry is treated as
        already expired so the first API call refreshes.
        """
        access_token = await self.secret_store.get(ACCESS_TOKEN_KEY)
        if not access_token:
            return

        refresh_token = await self.secret_store.get(REFRESH_TOKEN_KEY)
        expires_raw = await self.secret_store.get(EXPIRES_AT_KEY)
        self._base_url = await self.secret_store.get(BASE_URL_KEY) or None
        try:
            expires_at = int(expires_raw) if expires_raw else self._now_ms()
        except ValueError:
            logger.warning("Ignoring malformed stored session expiry")
            expires_at = self._now_ms()

        self._session = Session(
            access_token=access_token,
            refresh_token=refresh_token or None,
            expires_at=expires_at,
        )
        logger.info(f"Restored session expiring at {self._session.expires_at_datetime}")
        self._schedule_refresh()

    async def login_interactive(self, url: str, username: str, password: str) -> Session:
        """Log in with the resource-owner password grant.

        Args:
            url: Kubeflow base URL (falls back to settings when empty)
            username: Identity provider username
            password: Identity provider password

        Returns:
            The new session

        Raises:
            AuthError: If the identity provider rejects the login
            ConfigError: If the token endpoint cannot be resolved
        """
        base_url = url or self.settings.url
        endpoint = resolve_token_endpoint(base_url, self.settings.realm, self.settings.token_url)
        token = await self._request_token(
            endpoint,
            {
                "grant_type": "password",
                "client_id": self.settings.client_id,
                "username": username,
                "password": password,
            },
        )

        self._start_generation()
        self._base_url = base_url
        session = Session.from_token_response(token, self._now_ms())
        await self._set_session(session)
        logger.info(f"Logged in via {endpoint}")
        return session

    async def login_prompted(self, prompt: InteractiveInput) -> Session | None:
        """Ask for URL, username and password, then log in.

        Returns None without side effects if any prompt is dismissed.
        """
        url = await prompt.prompt_text("Kubeflow URL", self.settings.url)
        if not url:
            return None
        username = await prompt.prompt_text("Username")
        if not username:
            return None
        password = await prompt.prompt_secret("Password")
        if not password:
            return None
        return await self.login_interactive(url, username, password)

    async def ensure_valid_session(self) -> None:
        """Make sure the access token is valid for at least the refresh window.

        Raises:
            AuthError: If there is no session or the refresh fails
        """
        if self._session is None:
            raise AuthError("Not logged in. Log in to Kubeflow first.")
        if self._now_ms() + self.refresh_window_seconds * 1000 < self._session.expires_at:
            return
        await self.refresh_session()

    async def refresh_session(self) -> Session:
        """Refresh the access token, sharing one in-flight refresh between callers.

        Raises:
            AuthError: If the refresh fails; the session is signed out first
        """
        if self._refresh_task is None:
            task = asyncio.create_task(self._do_refresh())
            task.add_done_callback(self._on_refresh_done)
            self._refresh_task = task
        return await asyncio.shield(self._refresh_task)

    def _start_generation(self) -> None:
        # An in-flight refresh belongs to the previous session; later callers must not join it.
        self._generation += 1
        self._refresh_task = None

    def _on_refresh_done(self, task: asyncio.Task) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        # Mark the result retrieved even if every awaiting caller was cancelled.
        if not task.cancelled():
            task.exception()

    async def _do_refresh(self) -> Session:
        generation = self._generation
        current = self._session
        try:
            if current is None or not current.refresh_token:
                raise AuthError("Session expired and no refresh token is available. Log in again.")

            endpoint = resolve_token_endpoint(
                self.base_url,
                self.settings.realm,
                self.settings.token_url,
            )
            token = await self._request_token(
                endpoint,
                {
                    "grant_type": "refresh_token",
                    "client_id": self.settings.client_id,
                    "refresh_token": current.refresh_token,
                },
            )
        except (AuthError, ConfigError) as e:
            error = e if isinstance(e, AuthError) else AuthError(f"Session refresh failed: {e}")
            if generation == self._generation:
                await self.sign_out()
                self._notify(error)
            if error is e:
                raise
            raise error from e

        if generation != self._generation:
            # Signed out or logged in again while the refresh was in flight.
            raise AuthError("Session changed while refreshing")

        session = Session.from_token_response(
            token,
            self._now_ms(),
            fallback_refresh_token=current.refresh_token,
        )
        await self._set_session(session)
        logger.info(f"Session refreshed, expires at {session.expires_at_datetime}")
        return session

    async def sign_out(self) -> None:
        """Forget the session, stop the refresh timer and delete persisted keys."""
        self._start_generation()
        self._session = None
        self._base_url = None
        self._cancel_timer()
        await asyncio.gather(
            self.secret_store.delete(ACCESS_TOKEN_KEY),
            self.secret_store.delete(REFRESH_TOKEN_KEY),
            self.secret_store.delete(EXPIRES_AT_KEY),
            self.secret_store.delete(BASE_URL_KEY),
        )
        logger.info("Signed out")

    async def close(self) -> None:
        """Stop background work without touching the persisted session."""
        self._cancel_timer()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _set_session(self, session: Session) -> None:
        self._session = session
        await self.secret_store.store(ACCESS_TOKEN_KEY, session.access_token)
        if session.refresh_token:
            await self.secret_store.store(REFRESH_TOKEN_KEY, session.refresh_token)
        else:
            await self.secret_store.delete(REFRESH_TOKEN_KEY)
        await self.secret_store.store(EXPIRES_AT_KEY, str(session.expires_at))
        if self._base_url:
            await self.secret_store.store(BASE_URL_KEY, self._base_url)
        self._schedule_refresh()

    def _schedule_refresh(self) -> None:
        if self._session is None:
            return
        self._cancel_timer()
        remaining = (self._session.expires_at - self._now_ms()) / 1000
        delay = max(self.min_refresh_delay_seconds, remaining - self.refresh_window_seconds)
        self.refresh_delay_seconds = delay
        self._refresh_timer = asyncio.create_task(self._refresh_after(delay))
        logger.debug(f"Session refresh scheduled in {delay:.0f} seconds")

    def _cancel_timer(self) -> None:
        timer = self._refresh_timer
        self._refresh_timer = None
        self.refresh_delay_seconds = None
        if timer is not None and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()

    async def _refresh_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        logger.info("Refreshing session ahead of expiry")
        try:
            await self.refresh_session()
        except AuthError as e:
            # Already signed out and reported by the refresh itself.
            logger.warning(f"Background session refresh failed: {e}")

    def _notify(self, error: AuthError) -> None:
        for listener in list(self._listeners):
            try:
                listener(error)
            except Exception:
                logger.exception("Session listener raised")

    async def _request_token(self, endpoint: str, form: dict[str, str]) -> TokenResponse:
        grant_type = form["grant_type"]
        with tracer.start_as_current_span("oidc.token") as span:
            span.set_attribute("oidc.grant_type", grant_type)
            span.set_attribute("http.url", endpoint)
            try:
                async with httpx.AsyncClient(
                    verify=self.settings.verify_ssl,
                    timeout=self.settings.request_timeout_seconds,
                    transport=self._transport,
                ) as client:
                    response = await client.post(
                        endpoint,
                        data=form,
                        headers={"Accept": "application/json"},
                    )
            except httpx.HTTPError as e:
                raise AuthError(
                    f"Could not reach token endpoint {endpoint}: {e.__class__.__name__}",
                    endpoint=endpoint,
                ) from e

            record_http_status(span, response.status_code)
            if not response.is_success:
                raise self._error_from_response(response, endpoint, grant_type)

            try:
                return TokenResponse.model_validate(response.json())
            except ValueError as e:
                raise AuthError(
                    f"Token endpoint {endpoint} returned an unusable response",
                    status_code=response.status_code,
                    endpoint=endpoint,
                ) from e

    def _error_from_response(
        self,
        response: httpx.Response,
        endpoint: str,
        grant_type: str,
    ) -> AuthError:
        error_code: str | None = None
        description: str | None = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            error_code = body.get("error")
            description = body.get("error_description")

        action = "Authentication" if grant_type == "password" else "Session refresh"
        status = response.status_code

        if error_code in ERROR_GUIDANCE:
            detail = f"{error_code}: {description}" if description else error_code
            message = f"{action} failed ({status}): {ERROR_GUIDANCE[error_code]} [{detail}]"
        else:
            message = f"{action} failed ({status}) at {endpoint}"
            if error_code:
                message += f": {error_code}"
                if description:
                    message += f" - {description}"
            if status == 403:
                message += (
                    ". Check that the realm setting is the realm name, not a UI URL, "
                    "or set the token URL override directly."
                )

        logger.warning(f"{action} failed with status {status} at {endpoint}")
        return AuthError(message, error_code=error_code, status_code=status, endpoint=endpoint)


# Global service instance
_session_manager: SessionManager | None = None


def get_session_manager() -> SessionManager:
    """Get the global SessionManager instance."""
    global _session_manager
    if _session_manager is None:
        _session_manager = SessionManager(get_secret_store())
    return _session_manager

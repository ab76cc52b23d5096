"""Tests for ResourceClient."""

import json

import httpx
import pytest
from conftest import KUBEFLOW_URL, FakeClock, token_payload

from kflow.core.config import Settings
from kflow.core.errors import ApiError, AuthError, ConfigError
from kflow.core.interfaces import InMemorySecretStore
from kflow.services.resource_client import JOB_NAME_LABEL, ResourceClient
from kflow.services.session import (
    ACCESS_TOKEN_KEY,
    BASE_URL_KEY,
    EXPIRES_AT_KEY,
    REFRESH_TOKEN_KEY,
    SessionManager,
)


class ClusterApi:
    """Fake API server recording every request."""

    def __init__(self, response: httpx.Response | None = None) -> None:
        self.response = response or httpx.Response(200, json={"kind": "Status"})
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response


@pytest.fixture
def session_manager(settings: Settings, clock: FakeClock) -> SessionManager:
    """A session manager holding a stored token valid for an hour."""
    store = InMemorySecretStore(
        {
            ACCESS_TOKEN_KEY: "tok-123",
            EXPIRES_AT_KEY: str(int(clock.now * 1000) + 3_600_000),
        }
    )
    return SessionManager(store, settings=settings, clock=clock)


async def _logged_in(session_manager: SessionManager) -> SessionManager:
    await session_manager.initialize()
    return session_manager


def _client(session_manager: SessionManager, settings: Settings, api: ClusterApi) -> ResourceClient:
    return ResourceClient(session_manager, settings=settings, transport=httpx.MockTransport(api))


class TestPaths:
    """Tests for resource path construction."""

    def test_custom_path(self):
        """Test custom resource collection and item paths."""
        assert (
            ResourceClient.custom_path("kubeflow.org", "v1", "team-a", "pytorchjobs")
            == "/apis/kubeflow.org/v1/namespaces/team-a/pytorchjobs"
        )
        assert (
            ResourceClient.custom_path("kubeflow.org", "v1", "team-a", "pytorchjobs", "job-1")
            == "/apis/kubeflow.org/v1/namespaces/team-a/pytorchjobs/job-1"
        )

    def test_core_path(self):
        """Test core resource paths."""
        assert ResourceClient.core_path("team-a", "configmaps") == "/api/v1/namespaces/team-a/configmaps"
        assert (
            ResourceClient.core_path("team-a", "pods", "p-0")
            == "/api/v1/namespaces/team-a/pods/p-0"
        )


class TestRequests:
    """Tests for authenticated requests."""

    @pytest.mark.asyncio
    async def test_create_custom_object(self, session_manager, settings):
        """Test POSTing a custom object with the bearer token."""
        api = ClusterApi(httpx.Response(201, json={"metadata": {"name": "job-1"}}))
        client = _client(await _logged_in(session_manager), settings, api)

        result = await client.create_custom_object(
            "kubeflow.org", "v1", "team-a", "pytorchjobs", {"kind": "PyTorchJob"}
        )

        assert result == {"metadata": {"name": "job-1"}}
        request = api.requests[0]
        assert request.method == "POST"
        assert str(request.url) == f"{KUBEFLOW_URL}/apis/kubeflow.org/v1/namespaces/team-a/pytorchjobs"
        assert request.headers["authorization"] == "Bearer tok-123"
        assert request.headers["content-type"] == "application/json"
        assert json.loads(request.content) == {"kind": "PyTorchJob"}
        await session_manager.close()

    @pytest.mark.asyncio
    async def test_uses_session_url(self, settings, clock):
        """Test that requests go to the URL the session was opened against."""
        store = InMemorySecretStore(
            {
                ACCESS_TOKEN_KEY: "tok-123",
                EXPIRES_AT_KEY: str(int(clock.now * 1000) + 3_600_000),
                BASE_URL_KEY: "https://other-kubeflow.example.com/",
            }
        )
        session_manager = SessionManager(store, settings=settings, clock=clock)
        api = ClusterApi(httpx.Response(200, json={"items": []}))
        client = _client(await _logged_in(session_manager), settings, api)

        await client.list_core_objects("team-a", "pods")

        assert str(api.requests[0].url) == "https://other-kubeflow.example.com/api/v1/namespaces/team-a/pods"
        await session_manager.close()

    @pytest.mark.asyncio
    async def test_list_pods_by_job(self, session_manager, settings):
        """Test that pods are selected by the training operator's job label."""
        api = ClusterApi(httpx.Response(200, json={"items": []}))
        client = _client(await _logged_in(session_manager), settings, api)

        await client.list_pods_by_job("team-a", "job-1")

        request = api.requests[0]
        assert request.url.path == "/api/v1/namespaces/team-a/pods"
        assert request.url.params["labelSelector"] == f"{JOB_NAME_LABEL}=job-1"
        assert "content-type" not in request.headers
        await session_manager.close()

    @pytest.mark.asyncio
    async def test_get_pod_logs_returns_text(self, session_manager, settings):
        """Test fetching the trailing log lines as plain text."""
        api = ClusterApi(httpx.Response(200, text="epoch 1\nepoch 2\n"))
        client = _client(await _logged_in(session_manager), settings, api)

        text = await client.get_pod_logs("team-a", "job-1-master-0", container="pytorch")

        assert text == "epoch 1\nepoch 2\n"
        request = api.requests[0]
        assert request.url.path == "/api/v1/namespaces/team-a/pods/job-1-master-0/log"
        assert request.url.params["tailLines"] == "200"
        assert request.url.params["container"] == "pytorch"
        assert request.headers["accept"] == "text/plain"
        await session_manager.close()

    @pytest.mark.asyncio
    async def test_delete_with_empty_body(self, session_manager, settings):
        """Test that an empty success response yields an empty dict."""
        api = ClusterApi(httpx.Response(204))
        client = _client(await _logged_in(session_manager), settings, api)

        result = await client.delete_custom_object(
            "kubeflow.org", "v1", "team-a", "pytorchjobs", "job-1"
        )

        assert result == {}
        assert api.requests[0].method == "DELETE"
        await session_manager.close()


class TestErrors:
    """Tests for error reporting."""

    @pytest.mark.asyncio
    async def test_non_2xx_raises_api_error(self, session_manager, settings):
        """Test that the status and body are carried on ApiError."""
        api = ClusterApi(httpx.Response(409, text='{"reason":"AlreadyExists"}'))
        client = _client(await _logged_in(session_manager), settings, api)

        with pytest.raises(ApiError) as exc_info:
            await client.create_core_object("team-a", "persistentvolumeclaims", {})

        error = exc_info.value
        assert error.status == 409
        assert "AlreadyExists" in error.body
        assert error.method == "POST"
        assert error.path == "/api/v1/namespaces/team-a/persistentvolumeclaims"
        await session_manager.close()

    @pytest.mark.asyncio
    async def test_transport_failure(self, session_manager, settings):
        """Test that connection errors become ApiError with status 0."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        await _logged_in(session_manager)
        client = ResourceClient(
            session_manager, settings=settings, transport=httpx.MockTransport(handler)
        )

        with pytest.raises(ApiError) as exc_info:
            await client.get_core_object("team-a", "configmaps", "job-1-artifact")

        assert exc_info.value.status == 0
        await session_manager.close()

    @pytest.mark.asyncio
    async def test_requires_session(self, settings, secret_store, clock):
        """Test that no request is sent without a session."""
        api = ClusterApi()
        session_manager = SessionManager(secret_store, settings=settings, clock=clock)
        client = _client(session_manager, settings, api)

        with pytest.raises(AuthError):
            await client.list_custom_objects("kubeflow.org", "v1", "team-a", "pytorchjobs")

        assert api.requests == []

    @pytest.mark.asyncio
    async def test_requires_url(self, temp_data_dir, clock):
        """Test that an empty cluster URL is a configuration error."""
        settings = Settings(data_dir=temp_data_dir, url="")
        store = InMemorySecretStore(
            {ACCESS_TOKEN_KEY: "tok-123", EXPIRES_AT_KEY: str(int(clock.now * 1000) + 3_600_000)}
        )
        session_manager = SessionManager(store, settings=settings, clock=clock)
        api = ClusterApi()
        client = _client(await _logged_in(session_manager), settings, api)

        with pytest.raises(ConfigError):
            await client.list_core_objects("team-a", "pods")

        assert api.requests == []
        await session_manager.close()

    @pytest.mark.asyncio
    async def test_refreshes_expiring_token_first(self, settings, secret_store, clock):
        """Test that a token about to expire is refreshed before the call."""
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.url.path.endswith("/token"):
                return httpx.Response(200, json=token_payload("fresh-token", expires_in=3600))
            return httpx.Response(200, json={"items": []})

        transport = httpx.MockTransport(handler)
        await secret_store.store(ACCESS_TOKEN_KEY, "stale-token")
        await secret_store.store(REFRESH_TOKEN_KEY, "refresh-1")
        await secret_store.store(EXPIRES_AT_KEY, str(int(clock.now * 1000) + 60_000))
        session_manager = SessionManager(
            secret_store, settings=settings, transport=transport, clock=clock
        )
        await session_manager.initialize()
        client = ResourceClient(session_manager, settings=settings, transport=transport)

        await client.list_custom_objects("kubeflow.org", "v1", "team-a", "pytorchjobs")

        assert [r.url.path.rsplit("/", 1)[-1] for r in requests] == ["token", "pytorchjobs"]
        assert requests[1].headers["authorization"] == "Bearer fresh-token"
        await session_manager.close()

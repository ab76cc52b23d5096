"""Authenticated REST client for the Kubernetes API behind the Kubeflow gateway."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from kflow.core.config import Settings, get_settings
from kflow.core.errors import ApiError, ConfigError
from kflow.core.telemetry import get_tracer, record_http_status
from kflow.services.session import SessionManager

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

JOB_NAME_LABEL = "training.kubeflow.org/job-name"
DEFAULT_TAIL_LINES = 200


class ResourceClient:
    """Generic async client for namespaced core and custom resources.

    Every request first makes sure the session is valid (refreshing it if it is
    about to expire) and then sends the access token as a bearer token. Any
    non-2xx response raises ``ApiError``.

    Example:
        ```python
        client = ResourceClient(session_manager, settings)
        await client.create_core_object("team-a", "configmaps", config_map)
        jobs = await client.list_custom_objects("kubeflow.org", "v1", "team-a", "pytorchjobs")
        ```
    """

    def __init__(
        self,
        session_manager: SessionManager,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the resource client.

        Args:
            session_manager: Provides a valid access token
            settings: Application settings (uses default if not provided)
            transport: Optional httpx transport, used by tests
        """
        self.settings = settings or get_settings()
        self.session_manager = session_manager
        self._transport = transport

    # ------------------------------------------------------------------
    # Path helpers
    # ------------------------------------------------------------------

    @staticmethod
    def custom_path(
        group: str,
        version: str,
        namespace: str,
        plural: str,
        name: str | None = None,
    ) -> str:
        path = f"/apis/{group}/{version}/namespaces/{namespace}/{plural}"
        return f"{path}/{name}" if name else path

    @staticmethod
    def core_path(namespace: str, plural: str, name: str | None = None) -> str:
        path = f"/api/v1/namespaces/{namespace}/{plural}"
        return f"{path}/{name}" if name else path

    # ------------------------------------------------------------------
    # Custom resources
    # ------------------------------------------------------------------

    async def create_custom_object(
        self,
        group: str,
        version: str,
        namespace: str,
        plural: str,
        body: dict[str, Any],
    ) -> dict[str, Any]:
        return await self._request_json(
            "POST", self.custom_path(group, version, namespace, plural), body=body
        )

    async def list_custom_objects(
        self,
        group: str,
        version: str,
        namespace: str,
        plural: str,
        label_selector: str | None = None,
    ) -> dict[str, Any]:
        params = {"labelSelector": label_selector} if label_selector else None
        return await self._request_json(
            "GET", self.custom_path(group, version, namespace, plural), params=params
        )

    async def get_custom_object(
        self,
        group: str,
        version: str,
        namespace: str,
        plural: str,
        name: str,
    ) -> dict[str, Any]:
        return await self._request_json(
            "GET", self.custom_path(group, version, namespace, plural, name)
        )

    async def delete_custom_object(
        self,
        group: str,
        version: str,
        namespace: str,
        plural: str,
        name: str,
    ) -> dict[str, Any]:
        return await self._request_json(
            "DELETE", self.custom_path(group, version, namespace, plural, name)
        )

    # ------------------------------------------------------------------
    # Core resources
    # ------------------------------------------------------------------

    async def create_core_object(
        self,
        namespace: str,
        plural: str,
        body: dict[str, Any],
    ) -> dict[str, Any]:
        return await self._request_json("POST", self.core_path(namespace, plural), body=body)

    async def list_core_objects(
        self,
        namespace: str,
        plural: str,
        label_selector: str | None = None,
    ) -> dict[str, Any]:
        params = {"labelSelector": label_selector} if label_selector else None
        return await self._request_json("GET", self.core_path(namespace, plural), params=params)

    async def get_core_object(self, namespace: str, plural: str, name: str) -> dict[str, Any]:
        return await self._request_json("GET", self.core_path(namespace, plural, name))

    async def delete_core_object(self, namespace: str, plural: str, name: str) -> dict[str, Any]:
        return await self._request_json("DELETE", self.core_path(namespace, plural, name))

    # ------------------------------------------------------------------
    # Pods
    # ------------------------------------------------------------------

    async def list_pods_by_job(self, namespace: str, job_name: str) -> dict[str, Any]:
        """List the pods the training operator created for ``job_name``."""
        return await self.list_core_objects(
            namespace, "pods", label_selector=f"{JOB_NAME_LABEL}={job_name}"
        )

    async def get_pod_logs(
        self,
        namespace: str,
        pod: str,
        container: str | None = None,
        tail_lines: int = DEFAULT_TAIL_LINES,
    ) -> str:
        """Fetch the trailing lines of a pod's log as text."""
        params: dict[str, Any] = {"tailLines": tail_lines}
        if container:
            params["container"] = container
        path = f"{self.core_path(namespace, 'pods', pod)}/log"
        response = await self._send("GET", path, params=params, accept="text/plain")
        return response.text

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _base_url(self) -> str:
        base = self.session_manager.base_url.strip().rstrip("/")
        if not base:
            raise ConfigError("Kubeflow URL is empty; set KFLOW_URL or log in with a URL")
        return base

    async def _request_json(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        response = await self._send(method, path, body=body, params=params)
        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ApiError(response.status_code, response.text, method, path) from e

    async def _send(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        accept: str = "application/json",
    ) -> httpx.Response:
        await self.session_manager.ensure_valid_session()
        base_url = self._base_url()

        headers = {
            "Authorization": f"Bearer {self.session_manager.access_token}",
            "Accept": accept,
        }
        if body is not None:
            headers["Content-Type"] = "application/json"

        with tracer.start_as_current_span("k8s.request") as span:
            span.set_attribute("http.method", method)
            span.set_attribute("k8s.path", path)
            try:
                async with httpx.AsyncClient(
                    base_url=base_url,
                    verify=self.settings.verify_ssl,
                    timeout=self.settings.request_timeout_seconds,
                    transport=self._transport,
                ) as client:
                    response = await client.request(
                        method,
                        path,
                        json=body,
                        params=params,
                        headers=headers,
                    )
            except httpx.HTTPError as e:
                logger.error(f"Kubernetes API request {method} {path} failed: {e}")
                raise ApiError(0, f"{e.__class__.__name__}: {e}", method, path) from e

            record_http_status(span, response.status_code)

        if not response.is_success:
            logger.warning(f"Kubernetes API {method} {path} returned {response.status_code}")
            raise ApiError(response.status_code, response.text, method, path)

        logger.debug(f"Kubernetes API {method} {path} -> {response.status_code}")
        return response


# Global client instance
_resource_client: ResourceClient | None = None


def get_resource_client() -> ResourceClient:
    """Get the global ResourceClient instance."""
    global _resource_client
    if _resource_client is None:
        from kflow.services.session import get_session_manager

        _resource_client = ResourceClient(get_session_manager())
    return _resource_client

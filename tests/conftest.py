"""Pytest configuration and shared fixtures for kflow tests."""

import tempfile
from collections.abc import Iterator
from pathlib import Path

import httpx
import pytest

from kflow.core.config import Settings
from kflow.core.interfaces import InMemorySecretStore

KUBEFLOW_URL = "https://kubeflow.example.com"
TOKEN_ENDPOINT = f"{KUBEFLOW_URL}/realms/kubeflow/protocol/openid-connect/token"


class FakeClock:
    """Settable clock returning epoch seconds."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def token_payload(
    access_token: str = "access-1",
    refresh_token: str | None = "refresh-1",
    expires_in: int | None = 3600,
) -> dict:
    """Build a token endpoint success body."""
    payload: dict = {"access_token": access_token, "token_type": "Bearer"}
    if refresh_token is not None:
        payload["refresh_token"] = refresh_token
    if expires_in is not None:
        payload["expires_in"] = expires_in
    return payload


def form_of(request: httpx.Request) -> dict[str, str]:
    """Decode the urlencoded form posted to the token endpoint."""
    return dict(httpx.QueryParams(request.content.decode()))


@pytest.fixture
def temp_data_dir() -> Iterator[Path]:
    """Create a temporary data directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def settings(temp_data_dir: Path) -> Settings:
    """Create test settings pointing at a fake Kubeflow deployment."""
    settings = Settings(
        data_dir=temp_data_dir,
        url=KUBEFLOW_URL,
        secret_key="test-secret-key",
    )
    settings.ensure_data_dirs()
    return settings


@pytest.fixture
def clock() -> FakeClock:
    """Create a fake clock."""
    return FakeClock()


@pytest.fixture
def secret_store() -> InMemorySecretStore:
    """Create an empty in-memory secret store."""
    return InMemorySecretStore()


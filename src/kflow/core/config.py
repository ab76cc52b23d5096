"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables.

    A ``Settings`` instance is handed to each service explicitly; services never
    read process-wide configuration on their own.
    """

    model_config = SettingsConfigDict(
        env_prefix="KFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = "kflow"
    debug: bool = False
    environment: Literal["development", "staging", "production"] = "development"

    # Storage for the encrypted session file
    data_dir: Path = Path("data")
    secret_key: str = "dev-secret-key-change-in-production"

    # Cluster / Kubeflow endpoint
    url: str = ""
    verify_ssl: bool = True
    request_timeout_seconds: float = 30.0

    # Keycloak
    realm: str = ""
    token_url: str = ""  # Full token endpoint override
    client_id: str = "kubeflow-vscode"

    # Job defaults
    default_namespace: str = "kubeflow-user"
    default_image: str = "pytorch/pytorch:2.1.0-cuda12.1-cudnn8-runtime"
    default_pvc_size: str = "10Gi"
    auto_pvc_for_pip: bool = True
    templates_file: Path | None = None

    # OpenTelemetry
    otel_enabled: bool = False
    otel_service_name: str = "kflow"
    otel_exporter_endpoint: str = "http://localhost:4317"

    def ensure_data_dirs(self) -> None:
        """Create the data directory if it doesn't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

"""Business logic services."""

from kflow.services.artifacts import ArtifactPackager
from kflow.services.manifests import ManifestFactory, build_startup_command
from kflow.services.orchestrator import JobOrchestrator, get_job_orchestrator
from kflow.services.resource_client import ResourceClient, get_resource_client
from kflow.services.session import SessionManager, get_session_manager, resolve_token_endpoint
from kflow.services.templates import find_template, load_templates

__all__ = [
    "ArtifactPackager",
    "JobOrchestrator",
    "ManifestFactory",
    "ResourceClient",
    "SessionManager",
    "build_startup_command",
    "find_template",
    "get_job_orchestrator",
    "get_resource_client",
    "get_session_manager",
    "load_templates",
    "resolve_token_endpoint",
]

"""Training run workflows: submit, restart, inspect and read logs."""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from kflow.core.config import Settings, get_settings
from kflow.core.errors import ApiError, NotFoundError, ValidationError
from kflow.core.interfaces import InteractiveInput
from kflow.models.job import JobOptions, JobSummary, LogSnapshot, Template, split_csv
from kflow.services.artifacts import ArtifactPackager
from kflow.services.manifests import (
    PIP_CACHE_PVC_NAME,
    TRAINING_JOB_GROUP,
    TRAINING_JOB_PLURAL,
    TRAINING_JOB_VERSION,
    Manifest,
    ManifestFactory,
)
from kflow.services.resource_client import ResourceClient, get_resource_client

logger = logging.getLogger(__name__)

# A ConfigMap object may not exceed 1 MiB
MAX_ARTIFACT_PAYLOAD_BYTES = 1024 * 1024
LOG_TAIL_LINES = 200

# Server-populated metadata that must not be sent back on create
RESTART_STRIPPED_METADATA = ("resourceVersion", "uid", "creationTimestamp")
SERVER_ONLY_METADATA = ("managedFields", "generation", "selfLink")

DEFAULT_GPU = 1
DEFAULT_CPU = "2"
DEFAULT_MEMORY = "16Gi"
JOB_NAME_PREFIX = "ptjob"


def annotate_log_lines(text: str) -> list[str]:
    """Split a log into lines, tagging errors and warnings.

    Lines containing ``ERROR`` or ``Traceback`` get an ``[ERROR]`` prefix,
    lines containing ``WARN`` get ``[WARN]``; order and content are otherwise kept.
    """
    annotated: list[str] = []
    for line in text.splitlines():
        if "ERROR" in line or "Traceback" in line:
            annotated.append(f"[ERROR] {line}")
        elif "WARN" in line:
            annotated.append(f"[WARN] {line}")
        else:
            annotated.append(line)
    return annotated


def clone_for_restart(manifest: Manifest, suffix: str) -> Manifest:
    """Deep-copy a submitted manifest under a new ``<name>-restart-<suffix>`` name."""
    clone = copy.deepcopy(manifest)
    metadata = clone.setdefault("metadata", {})
    for key in RESTART_STRIPPED_METADATA:
        metadata.pop(key, None)
    metadata["name"] = f"{metadata.get('name', JOB_NAME_PREFIX)}-restart-{suffix}"
    return clone


def summarize_job(item: dict[str, Any]) -> JobSummary:
    """Condense a PyTorchJob object into a ``JobSummary``."""
    metadata = item.get("metadata") or {}
    conditions = (item.get("status") or {}).get("conditions") or []
    created = metadata.get("creationTimestamp")
    return JobSummary(
        name=metadata.get("name", ""),
        namespace=metadata.get("namespace", ""),
        status=conditions[-1].get("type") if conditions else None,
        created_at=datetime.fromisoformat(created.replace("Z", "+00:00")) if created else None,
    )


class JobOrchestrator:
    """Runs the training job workflows on top of the resource client.

    Keeps the manifest of the most recent submission (one slot, no history) so
    the run can be restarted under a new name.

    Example:
        ```python
        orchestrator = JobOrchestrator(resource_client, settings)
        manifest = await orchestrator.submit_run(options)
        restarted = await orchestrator.restart_last_run()
        snapshot = await orchestrator.stream_logs("team-a", manifest["metadata"]["name"])
        ```
    """

    def __init__(
        self,
        resource_client: ResourceClient,
        settings: Settings | None = None,
        packager: ArtifactPackager | None = None,
        manifest_factory: ManifestFactory | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            resource_client: Authenticated cluster client
            settings: Application settings (uses default if not provided)
            packager: Code archive packager
            manifest_factory: Resource body builder
            clock: Returns the current time in epoch seconds
        """
        self.settings = settings or get_settings()
        self.resource_client = resource_client
        self.packager = packager or ArtifactPackager(clock=clock)
        self.manifest_factory = manifest_factory or ManifestFactory()
        self._clock = clock
        self._last_manifest: Manifest | None = None

    # ------------------------------------------------------------------
    # Last manifest cache
    # ------------------------------------------------------------------

    @property
    def last_manifest(self) -> Manifest | None:
        """Manifest of the most recent submission, if any."""
        return self._last_manifest

    def set_last_manifest(self, manifest: Manifest | None) -> None:
        self._last_manifest = manifest

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def default_job_name(self) -> str:
        return f"{JOB_NAME_PREFIX}-{str(self._now_ms())[-6:]}"

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit_run(self, options: JobOptions, source_path: str | Path | None = None) -> Manifest:
        """Package the code, create supporting resources and submit the job.

        Steps: archive and encode the sources, create the ``<job>-artifact``
        ConfigMap, create the shared pip cache claim when requested (a conflict
        means it already exists), then build, cache and submit the PyTorchJob.
        Resources created before a failure are left in place.

        Args:
            options: Job parameters
            source_path: Local file or directory to package (defaults to
                ``options.script_path``)

        Returns:
            The submitted manifest
        """
        namespace = options.namespace
        config_map_name = f"{options.name}-artifact"
        artifact = await asyncio.to_thread(
            self.packager.package,
            source_path or options.script_path,
            config_map_name,
        )

        try:
            if len(artifact.base64_payload) > MAX_ARTIFACT_PAYLOAD_BYTES:
                raise ValidationError(
                    f"Encoded code archive is {len(artifact.base64_payload)} bytes; "
                    f"ConfigMaps are limited to {MAX_ARTIFACT_PAYLOAD_BYTES} bytes"
                )
            config_map = self.manifest_factory.build_artifact_config_map(
                namespace, config_map_name, artifact.base64_payload
            )
            await self.resource_client.create_core_object(namespace, "configmaps", config_map)
            logger.info(f"Uploaded code artifact {namespace}/{config_map_name}")
        finally:
            artifact.archive_path.unlink(missing_ok=True)

        if options.auto_pvc_for_pip:
            await self._create_pip_cache(namespace)

        manifest = self.manifest_factory.build_training_job(options, config_map_name)
        self._last_manifest = manifest
        await self._submit_manifest(namespace, manifest)
        return manifest

    async def _create_pip_cache(self, namespace: str) -> None:
        pvc = self.manifest_factory.build_pvc(
            PIP_CACHE_PVC_NAME, namespace, self.settings.default_pvc_size
        )
        try:
            await self.resource_client.create_core_object(namespace, "persistentvolumeclaims", pvc)
            logger.info(f"Created pip cache claim {namespace}/{PIP_CACHE_PVC_NAME}")
        except ApiError as e:
            if e.status != 409:
                raise
            logger.debug(f"Pip cache claim {namespace}/{PIP_CACHE_PVC_NAME} already exists")

    async def _submit_manifest(self, namespace: str, manifest: Manifest) -> None:
        await self.resource_client.create_custom_object(
            TRAINING_JOB_GROUP,
            TRAINING_JOB_VERSION,
            namespace,
            TRAINING_JOB_PLURAL,
            manifest,
        )
        logger.info(f"Submitted training job {namespace}/{manifest['metadata']['name']}")

    async def restart_last_run(self) -> Manifest:
        """Resubmit the cached manifest as ``<name>-restart-<4 digits>``.

        Raises:
            ValidationError: If nothing has been submitted yet
        """
        if self._last_manifest is None:
            raise ValidationError("No previous run to restart. Submit a job first.")

        manifest = clone_for_restart(self._last_manifest, str(self._now_ms())[-4:])
        namespace = manifest["metadata"].get("namespace") or self.settings.default_namespace
        await self._submit_manifest(namespace, manifest)
        self._last_manifest = manifest
        return manifest

    async def restart_job(self, namespace: str, name: str) -> Manifest:
        """Fetch a job from the cluster and restart it under a new name."""
        current = await self.describe_job(namespace, name)
        current.pop("status", None)
        metadata = current.setdefault("metadata", {})
        for key in SERVER_ONLY_METADATA:
            metadata.pop(key, None)
        self._last_manifest = current
        return await self.restart_last_run()

    # ------------------------------------------------------------------
    # Pass-through CRUD
    # ------------------------------------------------------------------

    async def list_jobs(self, namespace: str) -> list[dict[str, Any]]:
        result = await self.resource_client.list_custom_objects(
            TRAINING_JOB_GROUP, TRAINING_JOB_VERSION, namespace, TRAINING_JOB_PLURAL
        )
        return result.get("items") or []

    async def describe_job(self, namespace: str, name: str) -> dict[str, Any]:
        return await self.resource_client.get_custom_object(
            TRAINING_JOB_GROUP, TRAINING_JOB_VERSION, namespace, TRAINING_JOB_PLURAL, name
        )

    async def delete_job(self, namespace: str, name: str) -> dict[str, Any]:
        result = await self.resource_client.delete_custom_object(
            TRAINING_JOB_GROUP, TRAINING_JOB_VERSION, namespace, TRAINING_JOB_PLURAL, name
        )
        logger.info(f"Deleted training job {namespace}/{name}")
        return result

    async def create_pvc(self, namespace: str, name: str, size: str | None = None) -> dict[str, Any]:
        pvc = self.manifest_factory.build_pvc(name, namespace, size or self.settings.default_pvc_size)
        return await self.resource_client.create_core_object(namespace, "persistentvolumeclaims", pvc)

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    async def stream_logs(
        self,
        namespace: str,
        job_name: str,
        prompt: InteractiveInput | None = None,
    ) -> LogSnapshot | None:
        """Fetch a tagged snapshot of the last lines logged by one of the job's pods.

        Args:
            namespace: Job namespace
            job_name: Training job name
            prompt: Chooses among several pods; the first pod is used without one

        Returns:
            The log snapshot, or None if the pod choice was dismissed

        Raises:
            NotFoundError: If the job has no pods
        """
        result = await self.resource_client.list_pods_by_job(namespace, job_name)
        pods = result.get("items") or []
        if not pods:
            raise NotFoundError(f"No pods found for job {job_name} in namespace {namespace}")

        names = [pod["metadata"]["name"] for pod in pods]
        if prompt is not None:
            chosen = await prompt.select_one(names)
            if chosen is None:
                return None
        else:
            chosen = names[0]

        pod = pods[names.index(chosen)]
        containers = (pod.get("spec") or {}).get("containers") or []
        container = containers[0].get("name") if containers else None

        text = await self.resource_client.get_pod_logs(
            namespace, chosen, container=container, tail_lines=LOG_TAIL_LINES
        )
        return LogSnapshot(
            job_name=job_name,
            namespace=namespace,
            pod=chosen,
            container=container,
            lines=annotate_log_lines(text),
        )

    # ------------------------------------------------------------------
    # Runs from templates and prompts
    # ------------------------------------------------------------------

    def _require_source_file(self, source_path: str | Path | None) -> Path:
        if source_path is None:
            raise ValidationError("Open a Python file first.")
        source = Path(source_path)
        if source.suffix != ".py" or not source.is_file():
            raise ValidationError(f"{source} is not an existing Python file")
        return source

    def _build_options(self, **values: Any) -> JobOptions:
        try:
            return JobOptions(**values)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid job options: {e}") from e

    def options_from_template(self, template: Template, source: Path) -> JobOptions:
        """Merge a template over the configured defaults."""
        name = f"{template.name}-{str(self._now_ms())[-6:]}" if template.name else None
        return self._build_options(
            name=name or self.default_job_name(),
            namespace=template.namespace or self.settings.default_namespace,
            image=template.image or self.settings.default_image,
            gpu=template.gpu if template.gpu is not None else DEFAULT_GPU,
            cpu=template.cpu or DEFAULT_CPU,
            memory=template.mem or DEFAULT_MEMORY,
            script_path=str(source),
            pip=template.pip or [],
            apt=template.apt or [],
            auto_pvc_for_pip=(
                template.auto_pvc_for_pip
                if template.auto_pvc_for_pip is not None
                else self.settings.auto_pvc_for_pip
            ),
        )

    async def run_from_template(self, template: Template, source_path: str | Path | None) -> Manifest:
        """Submit the active Python file with parameters taken from ``template``.

        Raises:
            ValidationError: If there is no eligible source file
        """
        source = self._require_source_file(source_path)
        options = self.options_from_template(template, source)
        return await self.submit_run(options)

    async def run_interactive(
        self,
        source_path: str | Path | None,
        prompt: InteractiveInput,
    ) -> Manifest | None:
        """Ask for the job parameters, then submit the active Python file.

        Blank answers take the defaults. Returns None if any prompt is dismissed.
        """
        source = self._require_source_file(source_path)

        questions = [
            ("name", "Job name", self.default_job_name()),
            ("image", "Container image", self.settings.default_image),
            ("gpu", "GPU count", str(DEFAULT_GPU)),
            ("cpu", "CPU", DEFAULT_CPU),
            ("memory", "RAM", DEFAULT_MEMORY),
            ("namespace", "Namespace", self.settings.default_namespace),
            ("pip", "pip dependencies (comma-separated)", ""),
            ("apt", "apt dependencies (comma-separated)", ""),
        ]
        answers: dict[str, str] = {}
        for key, label, default in questions:
            answer = await prompt.prompt_text(label, default)
            if answer is None:
                logger.info(f"Run cancelled at prompt '{label}'")
                return None
            answers[key] = answer.strip() or default

        try:
            gpu = int(answers["gpu"])
        except ValueError as e:
            raise ValidationError(f"GPU count must be a whole number, got '{answers['gpu']}'") from e

        options = self._build_options(
            name=answers["name"],
            namespace=answers["namespace"],
            image=answers["image"],
            gpu=gpu,
            cpu=answers["cpu"],
            memory=answers["memory"],
            script_path=str(source),
            pip=split_csv(answers["pip"]),
            apt=split_csv(answers["apt"]),
            auto_pvc_for_pip=self.settings.auto_pvc_for_pip,
        )
        return await self.submit_run(options)


# Global service instance
_job_orchestrator: JobOrchestrator | None = None


def get_job_orchestrator() -> JobOrchestrator:
    """Get the global JobOrchestrator instance."""
    global _job_orchestrator
    if _job_orchestrator is None:
        _job_orchestrator = JobOrchestrator(get_resource_client())
    return _job_orchestrator

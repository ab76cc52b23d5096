"""Training job routes: submit, restart, inspect, delete and read logs."""

from typing import Any

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field

from kflow.core.deps import JobOrchestratorDep, SettingsDep, to_http_exception
from kflow.core.errors import KflowError, ValidationError
from kflow.core.interfaces import PresetInput
from kflow.models.job import JobOptions, JobSummary, LogSnapshot, Template
from kflow.services.orchestrator import summarize_job
from kflow.services.templates import find_template, load_templates

router = APIRouter(prefix="/api/v1/jobs", tags=["jobs"])
volumes_router = APIRouter(prefix="/api/v1/volumes", tags=["volumes"])

ServiceErrors = (KflowError, FileNotFoundError)


class SubmitJobRequest(BaseModel):
    """Request body for submitting a job with explicit options."""

    options: JobOptions
    source_path: str | None = Field(
        default=None,
        alias="sourcePath",
        description="Local file or directory to package; defaults to the script path",
    )

    class Config:
        populate_by_name = True


class TemplateRunRequest(BaseModel):
    """Request body for running a file with a template.

    Either an inline ``template`` or the ``templateName`` of an entry in the
    configured template file.
    """

    source_path: str = Field(alias="sourcePath", description="Python file to run")
    template: Template | None = None
    template_name: str | None = Field(default=None, alias="templateName")

    class Config:
        populate_by_name = True


class PromptedRunRequest(BaseModel):
    """Request body for a run built from prompt answers.

    ``answers`` maps prompt labels (e.g. "Job name", "GPU count") to values;
    missing labels take their defaults and a null value cancels the run.
    """

    source_path: str = Field(alias="sourcePath")
    answers: dict[str, str | None] = Field(default_factory=dict)

    class Config:
        populate_by_name = True


class RestartRequest(BaseModel):
    """Request body for a restart; empty to restart the last submission."""

    namespace: str | None = None
    name: str | None = None


class CreateVolumeRequest(BaseModel):
    """Request body for creating a persistent volume claim."""

    namespace: str = Field(min_length=1)
    name: str = Field(min_length=1)
    size: str | None = Field(default=None, description="Storage request; the configured default when empty")


class ManifestResponse(BaseModel):
    """Response wrapper for submitted manifests."""

    manifest: dict[str, Any]


class JobsListResponse(BaseModel):
    """Response for list jobs operation."""

    jobs: list[JobSummary]
    total: int


@router.get("", response_model=JobsListResponse)
async def list_jobs(
    orchestrator: JobOrchestratorDep,
    settings: SettingsDep,
    namespace: str | None = Query(default=None, description="Namespace; the configured default when empty"),
) -> JobsListResponse:
    """List the training jobs in a namespace."""
    try:
        items = await orchestrator.list_jobs(namespace or settings.default_namespace)
    except ServiceErrors as e:
        raise to_http_exception(e) from e
    jobs = [summarize_job(item) for item in items]
    return JobsListResponse(jobs=jobs, total=len(jobs))


@router.post("", response_model=ManifestResponse, status_code=status.HTTP_201_CREATED)
async def submit_job(request: SubmitJobRequest, orchestrator: JobOrchestratorDep) -> ManifestResponse:
    """Package the sources and submit a training job."""
    try:
        manifest = await orchestrator.submit_run(request.options, source_path=request.source_path)
    except ServiceErrors as e:
        raise to_http_exception(e) from e
    return ManifestResponse(manifest=manifest)


@router.post("/from-template", response_model=ManifestResponse, status_code=status.HTTP_201_CREATED)
async def run_from_template(
    request: TemplateRunRequest,
    orchestrator: JobOrchestratorDep,
    settings: SettingsDep,
) -> ManifestResponse:
    """Submit a Python file with parameters taken from a template."""
    try:
        template = request.template
        if template is None:
            if not request.template_name:
                raise ValidationError("Provide a template or a templateName")
            if settings.templates_file is None:
                raise ValidationError("No template file configured; set KFLOW_TEMPLATES_FILE")
            templates = load_templates(settings.templates_file)
            template = find_template(templates, request.template_name)
        manifest = await orchestrator.run_from_template(template, request.source_path)
    except ServiceErrors as e:
        raise to_http_exception(e) from e
    return ManifestResponse(manifest=manifest)


@router.post("/prompted", response_model=ManifestResponse, status_code=status.HTTP_201_CREATED)
async def run_prompted(request: PromptedRunRequest, orchestrator: JobOrchestratorDep) -> ManifestResponse:
    """Submit a Python file using the interactive run questions, answered up front."""
    try:
        manifest = await orchestrator.run_interactive(request.source_path, PresetInput(request.answers))
    except ServiceErrors as e:
        raise to_http_exception(e) from e
    if manifest is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Run cancelled")
    return ManifestResponse(manifest=manifest)


@router.post("/restart", response_model=ManifestResponse, status_code=status.HTTP_201_CREATED)
async def restart_job(
    orchestrator: JobOrchestratorDep,
    request: RestartRequest | None = None,
) -> ManifestResponse:
    """Resubmit a job under a new name.

    Restarts the named job when ``namespace`` and ``name`` are given, otherwise
    the last job submitted by this service.
    """
    try:
        if request is not None and request.namespace and request.name:
            manifest = await orchestrator.restart_job(request.namespace, request.name)
        else:
            manifest = await orchestrator.restart_last_run()
    except ServiceErrors as e:
        raise to_http_exception(e) from e
    return ManifestResponse(manifest=manifest)


@router.get("/last-manifest", response_model=ManifestResponse)
async def get_last_manifest(orchestrator: JobOrchestratorDep) -> ManifestResponse:
    """Return the manifest of the most recent submission."""
    manifest = orchestrator.last_manifest
    if manifest is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No job submitted yet")
    return ManifestResponse(manifest=manifest)


@router.get("/{namespace}/{name}")
async def describe_job(namespace: str, name: str, orchestrator: JobOrchestratorDep) -> dict[str, Any]:
    """Return the full training job object."""
    try:
        return await orchestrator.describe_job(namespace, name)
    except ServiceErrors as e:
        raise to_http_exception(e) from e


@router.delete("/{namespace}/{name}")
async def delete_job(namespace: str, name: str, orchestrator: JobOrchestratorDep) -> dict[str, Any]:
    """Delete a training job."""
    try:
        return await orchestrator.delete_job(namespace, name)
    except ServiceErrors as e:
        raise to_http_exception(e) from e


@router.get("/{namespace}/{name}/logs", response_model=LogSnapshot)
async def get_job_logs(
    namespace: str,
    name: str,
    orchestrator: JobOrchestratorDep,
    pod: str | None = Query(default=None, description="Pod to read; the job's first pod when empty"),
) -> LogSnapshot:
    """Return the last lines logged by one of the job's pods, with severity tags."""
    prompt = PresetInput(selection=pod) if pod else None
    try:
        snapshot = await orchestrator.stream_logs(namespace, name, prompt=prompt)
    except ServiceErrors as e:
        raise to_http_exception(e) from e
    if snapshot is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Pod {pod} does not belong to job {name}",
        )
    return snapshot


@volumes_router.post("", status_code=status.HTTP_201_CREATED)
async def create_volume(request: CreateVolumeRequest, orchestrator: JobOrchestratorDep) -> dict[str, Any]:
    """Create a ReadWriteOnce persistent volume claim."""
    try:
        return await orchestrator.create_pvc(request.namespace, request.name, request.size)
    except ServiceErrors as e:
        raise to_http_exception(e) from e

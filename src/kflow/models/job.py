"""Training job models: submission options, templates, artifacts and log snapshots."""

import re
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

# DNS-1123 label, the naming rule for PyTorchJob and ConfigMap names
RESOURCE_NAME_PATTERN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
MAX_RESOURCE_NAME_LENGTH = 63


def split_csv(value: str) -> list[str]:
    """Split a comma-separated dependency list, dropping blanks."""
    return [item.strip() for item in value.split(",") if item.strip()]


def _coerce_dependency_list(value: object) -> object:
    if isinstance(value, str):
        return split_csv(value)
    return value


def _coerce_quantity(value: object) -> object:
    if isinstance(value, int | float) and not isinstance(value, bool):
        return str(value)
    return value


class JobOptions(BaseModel):
    """Parameters of one training run.

    Immutable once built; the manifest factory reads it but never changes it.

    Attributes:
        name: Job name, also used to derive the artifact ConfigMap name
        namespace: Target namespace
        image: Container image for the master replica
        gpu: Number of GPUs to request (limit only)
        cpu: CPU quantity, e.g. "2" or "500m"
        memory: Memory quantity, e.g. "16Gi"
        script_path: Script passed to ``python`` in the container
        pip: pip packages installed before the script runs, in order
        apt: apt packages installed before pip, in order
        auto_pvc_for_pip: Mount the shared pip cache claim
    """

    name: str
    namespace: str = Field(min_length=1)
    image: str = Field(min_length=1)
    gpu: int = Field(default=1, ge=0)
    cpu: str = "2"
    memory: str = "16Gi"
    script_path: str = Field(alias="scriptPath", min_length=1)
    pip: list[str] = Field(default_factory=list)
    apt: list[str] = Field(default_factory=list)
    auto_pvc_for_pip: bool = Field(default=True, alias="autoPVCforPip")

    class Config:
        frozen = True
        populate_by_name = True

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        if len(value) > MAX_RESOURCE_NAME_LENGTH or not RESOURCE_NAME_PATTERN.match(value):
            raise ValueError(
                f"'{value}' is not a valid resource name: use at most "
                f"{MAX_RESOURCE_NAME_LENGTH} lowercase letters, digits or '-', "
                "starting and ending with a letter or digit"
            )
        return value

    @field_validator("pip", "apt", mode="before")
    @classmethod
    def split_dependencies(cls, value: object) -> object:
        return _coerce_dependency_list(value)

    @field_validator("cpu", "memory", mode="before")
    @classmethod
    def quantity_as_string(cls, value: object) -> object:
        return _coerce_quantity(value)


class Template(BaseModel):
    """A saved set of job parameters; every field is optional."""

    name: str | None = None
    namespace: str | None = None
    image: str | None = None
    gpu: int | None = Field(default=None, ge=0)
    cpu: str | None = None
    mem: str | None = None
    pip: list[str] | None = None
    apt: list[str] | None = None
    auto_pvc_for_pip: bool | None = Field(default=None, alias="autoPVCforPip")

    class Config:
        populate_by_name = True
        extra = "ignore"

    @field_validator("pip", "apt", mode="before")
    @classmethod
    def split_dependencies(cls, value: object) -> object:
        return _coerce_dependency_list(value)

    @field_validator("cpu", "mem", mode="before")
    @classmethod
    def quantity_as_string(cls, value: object) -> object:
        return _coerce_quantity(value)


class ArtifactReference(BaseModel):
    """A packaged code archive ready to be uploaded as a ConfigMap."""

    archive_path: Path
    base64_payload: str
    config_map_name: str


class JobSummary(BaseModel):
    """Condensed view of a training job for listings."""

    name: str
    namespace: str
    status: str | None = None  # Type of the most recent condition
    created_at: datetime | None = Field(default=None, alias="createdAt")

    class Config:
        populate_by_name = True


class LogSnapshot(BaseModel):
    """Point-in-time tail of a training pod's log, with severity tags applied."""

    job_name: str = Field(alias="jobName")
    namespace: str
    pod: str
    container: str | None = None
    lines: list[str] = Field(default_factory=list)

    class Config:
        populate_by_name = True

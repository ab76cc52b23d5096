"""Pydantic models for sessions and training jobs."""

from kflow.models.job import (
    ArtifactReference,
    JobOptions,
    JobSummary,
    LogSnapshot,
    Template,
)
from kflow.models.session import Session, TokenResponse

__all__ = [
    "ArtifactReference",
    "JobOptions",
    "JobSummary",
    "LogSnapshot",
    "Session",
    "Template",
    "TokenResponse",
]

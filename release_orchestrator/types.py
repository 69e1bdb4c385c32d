"""Shared type definitions for release_orchestrator.

This module contains enums, dataclasses and result models shared across
subpackages to avoid circular imports.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Kind of event that invoked the release run."""

    PULL_REQUEST = "pull_request"
    PUSH = "push"
    WORKFLOW_DISPATCH = "workflow_dispatch"


class StepStatus(str, Enum):
    """Status of a pipeline step or image build."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    BLOCKED = "blocked"


class PipelineName(str, Enum):
    """The two independent pipelines of a release run."""

    PACKAGE = "package"
    IMAGES = "images"


@dataclass
class ArtifactInfo:
    """Information about a package build artifact."""

    filename: str
    relative_path: str
    size_bytes: int
    sha256: str
    kind: str | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StepRecord(BaseModel):
    """Outcome of a single pipeline step."""

    name: str
    status: StepStatus = StepStatus.PENDING
    started_at: datetime | None = None
    finished_at: datetime | None = None
    log_path: str | None = None
    error_code: str | None = None
    message: str | None = None
    details: dict[str, object] = Field(default_factory=dict)

    def mark_running(self) -> None:
        """Mark this step as running."""
        self.status = StepStatus.RUNNING
        self.started_at = _utcnow()

    def mark_succeeded(self, message: str | None = None) -> None:
        """Mark this step as succeeded."""
        self.status = StepStatus.SUCCEEDED
        self.finished_at = _utcnow()
        if message:
            self.message = message

    def mark_skipped(self, message: str) -> None:
        """Mark this step as intentionally not executed."""
        self.status = StepStatus.SKIPPED
        self.finished_at = _utcnow()
        self.message = message

    def mark_failed(
        self, error_code: str | None = None, message: str | None = None
    ) -> None:
        """Mark this step as failed.

        Args:
            error_code: Stable error code of the failure.
            message: Error message details.
        """
        self.status = StepStatus.FAILED
        self.finished_at = _utcnow()
        if error_code:
            self.error_code = error_code
        if message:
            self.message = message


class ImageBuildResult(BaseModel):
    """Outcome of building and pushing one container image."""

    name: str
    status: StepStatus = StepStatus.PENDING
    platforms: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    build_args: dict[str, str] = Field(default_factory=dict)
    log_path: str | None = None
    error_code: str | None = None
    message: str | None = None


class PipelineResult(BaseModel):
    """Outcome of one pipeline run."""

    pipeline: PipelineName
    success: bool = False
    steps: list[StepRecord] = Field(default_factory=list)
    images: list[ImageBuildResult] = Field(default_factory=list)
    artifacts: list[dict[str, object]] = Field(default_factory=list)
    failed_step: str | None = None
    error_code: str | None = None
    error_message: str | None = None

    def step(self, name: str) -> StepRecord | None:
        """Return the record of the named step, if it ran."""
        for record in self.steps:
            if record.name == name:
                return record
        return None


__all__ = [
    "ArtifactInfo",
    "EventType",
    "ImageBuildResult",
    "PipelineName",
    "PipelineResult",
    "StepRecord",
    "StepStatus",
]

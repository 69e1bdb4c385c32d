"""Error definitions for release pipelines.

Every failure raised by a pipeline step carries a stable code that ends up
in the step record and in JSON output, plus the name of the step it
originated from.
"""

from __future__ import annotations

# Error code constants
TOOLCHAIN_ERROR = "toolchain_error"
BUILD_TOOL_ERROR = "build_failed"
VERIFICATION_ERROR = "verification_failed"
ISOLATION_CHECK_ERROR = "isolated_install_failed"
PUBLISH_ERROR = "publish_failed"
IMAGE_BUILD_ERROR = "image_build_failed"
IMAGE_BLOCKED = "upstream_image_failed"
STEP_EXECUTION_ERROR = "execution_error"
STEP_TIMEOUT = "step_timeout"
PIPELINE_ERROR = "pipeline_error"
SOURCE_ERROR = "source_error"
ARTIFACT_UPLOAD_ERROR = "artifact_upload_failed"
TAG_CALCULATION_ERROR = "tag_calculation_failed"
REGISTRY_ERROR = "registry_error"
CONFIG_ERROR = "config_error"


class ReleaseError(Exception):
    """Base error for release pipeline operations."""

    default_code = "release_error"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        step: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.step = step


class StepExecutionError(ReleaseError):
    """Raised when a step command cannot be started or times out."""

    default_code = STEP_EXECUTION_ERROR

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str | None = None,
        step: str | None = None,
    ) -> None:
        super().__init__(message, code=code, step=step)
        self.exit_code = exit_code


class SourceError(ReleaseError):
    """Raised when the source tree cannot be acquired."""

    default_code = SOURCE_ERROR


class ToolchainError(ReleaseError):
    """Raised when the build toolchain is missing or fails to install."""

    default_code = TOOLCHAIN_ERROR


class BuildToolError(ReleaseError):
    """Raised when the build tool fails or produces no artifacts."""

    default_code = BUILD_TOOL_ERROR


class VerificationError(ReleaseError):
    """Raised when an artifact verification script reports a mismatch."""

    default_code = VERIFICATION_ERROR


class IsolationCheckError(ReleaseError):
    """Raised when the source archive does not install in isolation."""

    default_code = ISOLATION_CHECK_ERROR


class ArtifactUploadError(ReleaseError):
    """Raised when build artifacts cannot be retained."""

    default_code = ARTIFACT_UPLOAD_ERROR


class PublishError(ReleaseError):
    """Raised when publishing to the package index fails."""

    default_code = PUBLISH_ERROR


class TagCalculationError(ReleaseError):
    """Raised when image tags cannot be calculated."""

    default_code = TAG_CALCULATION_ERROR


class RegistryError(ReleaseError):
    """Raised when the registry target cannot be prepared."""

    default_code = REGISTRY_ERROR


class ImageBuildError(ReleaseError):
    """Raised when building or pushing an image fails on any platform."""

    default_code = IMAGE_BUILD_ERROR


class ReleaseConfigError(ReleaseError):
    """Raised when a release configuration file is invalid."""

    default_code = CONFIG_ERROR


__all__ = [
    "ARTIFACT_UPLOAD_ERROR",
    "BUILD_TOOL_ERROR",
    "CONFIG_ERROR",
    "IMAGE_BLOCKED",
    "IMAGE_BUILD_ERROR",
    "ISOLATION_CHECK_ERROR",
    "PIPELINE_ERROR",
    "PUBLISH_ERROR",
    "REGISTRY_ERROR",
    "SOURCE_ERROR",
    "STEP_EXECUTION_ERROR",
    "STEP_TIMEOUT",
    "TAG_CALCULATION_ERROR",
    "TOOLCHAIN_ERROR",
    "VERIFICATION_ERROR",
    "ArtifactUploadError",
    "BuildToolError",
    "ImageBuildError",
    "IsolationCheckError",
    "PublishError",
    "RegistryError",
    "ReleaseConfigError",
    "ReleaseError",
    "SourceError",
    "StepExecutionError",
    "TagCalculationError",
    "ToolchainError",
    "VerificationError",
]

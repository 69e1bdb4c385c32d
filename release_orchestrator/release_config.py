"""Pydantic models and loaders for release configuration files.

A release configuration holds the per-project facts of a release: the
distribution name and its verification commands, trigger filters, and the
ordered catalog of container images with their platform allowlists and
build-argument dependencies.

Files are YAML or JSON; when none is given the built-in configuration is
used.
"""

import json
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from release_orchestrator.errors import ReleaseConfigError

IMAGE_NAME_PATTERN = re.compile(
    r"^[a-z0-9]+([._-][a-z0-9]+)*(/[a-z0-9]+([._-][a-z0-9]+)*)*$"
)
PLATFORM_PATTERN = re.compile(r"^[a-z0-9]+/[a-z0-9_]+(/[a-z0-9]+)?$")
BUILD_ARG_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

DEFAULT_BRANCH_REGEX = r"^\w[\w.-]*$"
DEFAULT_TAG = "noref"
RELEASE_WORKFLOW_PATH = ".github/workflows/release.yml"


class PackageSpec(BaseModel):
    """Schema for the Python distribution built by the package pipeline.

    Attributes:
        name: Distribution name; sdists are matched as `<name>-*.tar.gz`.
        required_tools: Executables that must be present before installing
            build requirements.
        toolchain_commands: Commands installing secondary tooling.
        build_requirements: pip requirements for building.
        sdist_check: Verifier invoked with the sdist path appended.
        installed_data_check: Verifier run after installing the wheel.
        isolation_image: Minimal container image without the secondary
            toolchain, used to prove the sdist is self-contained.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(description="Distribution name")
    required_tools: list[str] = Field(
        default_factory=lambda: ["python", "node", "npm"]
    )
    toolchain_commands: list[list[str]] = Field(
        default_factory=lambda: [["npm", "install", "-g", "yarn"]]
    )
    build_requirements: list[str] = Field(default_factory=lambda: ["build"])
    sdist_check: list[str] | None = Field(default=None)
    installed_data_check: list[str] | None = Field(default=None)
    isolation_image: str | None = Field(
        default="docker.io/library/python:3.9-slim-bullseye"
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate the distribution name is a plausible project name."""
        if not re.match(r"^[A-Za-z0-9]([A-Za-z0-9._-]*[A-Za-z0-9])?$", v):
            raise ValueError(f"invalid distribution name '{v}'")
        return v

    @property
    def normalized_name(self) -> str:
        """Name as it appears in built filenames."""
        return re.sub(r"[-_.]+", "_", self.name).lower()


class TriggerSpec(BaseModel):
    """Schema for trigger filters.

    Attributes:
        paths_ignore: Ordered path globs; a leading '!' re-includes.
        branches_ignore: Branch globs whose pushes never run.
        main_branch: Branch whose pushes publish to the public registry.
    """

    model_config = ConfigDict(extra="forbid")

    paths_ignore: list[str] = Field(
        default_factory=lambda: [
            "docs/**",
            "**.md",
            "**.rst",
            ".github/workflows/*",
            f"!{RELEASE_WORKFLOW_PATH}",
        ]
    )
    branches_ignore: list[str] = Field(
        default_factory=lambda: ["dependabot/**", "pre-commit-ci-update-config"]
    )
    main_branch: str = Field(default="main")


class ImageSpec(BaseModel):
    """Schema for one container image.

    Attributes:
        name: Repository name without registry or tag.
        context: Build context directory relative to the source tree.
        platforms: Platform allowlist for this image.
        base_image_from: Earlier image whose first tag is passed as the
            BASE_IMAGE build argument.
        base_image_arg: Name of that build argument.
        version_arg: Build argument receiving the release version string.
        build_args: Extra static build arguments.
        note: Free-form comment, e.g. why a platform is excluded.
    """

    model_config = ConfigDict(extra="forbid")

    name: str
    context: str = "."
    platforms: list[str] = Field(
        default_factory=lambda: ["linux/amd64", "linux/arm64"], min_length=1
    )
    base_image_from: str | None = None
    base_image_arg: str = "BASE_IMAGE"
    version_arg: str | None = None
    build_args: dict[str, str] = Field(default_factory=dict)
    note: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate image repository name."""
        if not IMAGE_NAME_PATTERN.match(v):
            raise ValueError(f"invalid image name '{v}'")
        return v

    @field_validator("platforms")
    @classmethod
    def validate_platforms(cls, v: list[str]) -> list[str]:
        """Validate platform strings and reject duplicates."""
        for platform in v:
            if not PLATFORM_PATTERN.match(platform):
                raise ValueError(f"invalid platform '{platform}'")
        if len(set(v)) != len(v):
            raise ValueError("platforms must not contain duplicates")
        return v

    @field_validator("build_args")
    @classmethod
    def validate_build_args(cls, v: dict[str, str]) -> dict[str, str]:
        """Validate build argument names."""
        for key in v:
            if not BUILD_ARG_PATTERN.match(key):
                raise ValueError(f"invalid build argument name '{key}'")
        return v


class ReleaseConfig(BaseModel):
    """Schema for a complete release configuration."""

    model_config = ConfigDict(extra="forbid")

    package: PackageSpec
    triggers: TriggerSpec = Field(default_factory=TriggerSpec)
    images: list[ImageSpec] = Field(default_factory=list)
    default_tag: str = Field(default=DEFAULT_TAG, min_length=1)
    branch_regex: str = Field(default=DEFAULT_BRANCH_REGEX)

    @field_validator("branch_regex")
    @classmethod
    def validate_branch_regex(cls, v: str) -> str:
        """Validate branch_regex compiles."""
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"branch_regex does not compile: {e}") from e
        return v

    @model_validator(mode="after")
    def validate_image_order(self) -> "ReleaseConfig":
        """Image names are unique and dependencies point to earlier images."""
        seen: set[str] = set()
        for image in self.images:
            if image.name in seen:
                raise ValueError(f"duplicate image '{image.name}'")
            if image.base_image_from is not None and image.base_image_from not in seen:
                raise ValueError(
                    f"image '{image.name}' depends on '{image.base_image_from}', "
                    "which must be declared before it"
                )
            seen.add(image.name)
        return self

    def dependents_of(self, name: str) -> list[str]:
        """Return every image depending, directly or transitively, on name."""
        blocked = {name}
        result: list[str] = []
        for image in self.images:
            if image.base_image_from in blocked:
                blocked.add(image.name)
                result.append(image.name)
        return result


def default_release_config() -> ReleaseConfig:
    """Return the built-in release configuration.

    Publishes the `jupyterhub` distribution and four images: the base
    image, an onbuild variant built on it, a demo image built on the
    onbuild variant, and an independent single-user image.
    """
    return ReleaseConfig(
        package=PackageSpec(
            name="jupyterhub",
            sdist_check=["./ci/check_sdist.py"],
            installed_data_check=["./ci/check_installed_data.py"],
        ),
        images=[
            ImageSpec(name="jupyterhub/jupyterhub", context="."),
            ImageSpec(
                name="jupyterhub/jupyterhub-onbuild",
                context="onbuild",
                base_image_from="jupyterhub/jupyterhub",
            ),
            ImageSpec(
                name="jupyterhub/jupyterhub-demo",
                context="demo-image",
                base_image_from="jupyterhub/jupyterhub-onbuild",
                platforms=["linux/amd64"],
                note="linux/arm64 fails building wheels for argon2-cffi",
            ),
            ImageSpec(
                name="jupyterhub/singleuser",
                context="singleuser",
                version_arg="JUPYTERHUB_VERSION",
            ),
        ],
    )


def _load_mapping(path: Path) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        if path.suffix.lower() == ".json":
            data = json.load(f)
        else:
            data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a mapping, got {type(data).__name__}")
    return data


def load_release_config(path: Path | None = None) -> ReleaseConfig:
    """Load and validate a release configuration.

    Args:
        path: YAML or JSON file; None selects the built-in configuration.

    Returns:
        Validated ReleaseConfig.

    Raises:
        ReleaseConfigError: If the file is missing, unparsable or invalid.
    """
    if path is None:
        return default_release_config()

    if not path.exists():
        raise ReleaseConfigError(f"Release config not found: {path}")

    try:
        data = _load_mapping(path)
        return ReleaseConfig.model_validate(data)
    except ValidationError as e:
        raise ReleaseConfigError(f"Invalid release config {path}:\n{e}") from e
    except (yaml.YAMLError, json.JSONDecodeError, ValueError) as e:
        raise ReleaseConfigError(f"Cannot parse release config {path}: {e}") from e


def release_config_to_yaml(config: ReleaseConfig) -> str:
    """Render a release configuration as YAML."""
    data = config.model_dump(exclude_none=True)
    return yaml.safe_dump(data, sort_keys=False, default_flow_style=False)


__all__ = [
    "DEFAULT_BRANCH_REGEX",
    "DEFAULT_TAG",
    "RELEASE_WORKFLOW_PATH",
    "ImageSpec",
    "PackageSpec",
    "ReleaseConfig",
    "TriggerSpec",
    "default_release_config",
    "load_release_config",
    "release_config_to_yaml",
]

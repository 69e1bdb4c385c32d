"""Configuration settings for release_orchestrator.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.

Secrets accept the names the CI platform exposes them under
(GITHUB_TOKEN, PYPI_PASSWORD, DOCKERHUB_USERNAME, DOCKERHUB_TOKEN) as well
as their RELORCH_-prefixed forms.
"""

import json
from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

SECRET_FIELDS = frozenset(
    {"github_token", "pypi_password", "dockerhub_username", "dockerhub_token"}
)


def _default_state_dir() -> Path:
    """Return the default directory for logs and retained artifacts."""
    return Path.home() / ".local" / "share" / "release-orchestrator"


def _default_artifacts_dir() -> Path:
    """Return the default retained artifacts directory."""
    return _default_state_dir() / "artifacts"


def _default_logs_dir() -> Path:
    """Return the default step log directory."""
    return _default_state_dir() / "logs"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the RELORCH_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="RELORCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Paths
    source_dir: Path = Field(
        default_factory=Path.cwd,
        description="Source tree the pipelines operate on",
    )
    dist_dir: Path = Field(
        default=Path("dist"),
        description="Build output directory (relative to source_dir if not absolute)",
    )
    artifacts_dir: Path = Field(
        default_factory=_default_artifacts_dir,
        description="Root directory for retained build artifacts",
    )
    logs_dir: Path = Field(
        default_factory=_default_logs_dir,
        description="Root directory for per-step logs",
    )
    release_config: Path | None = Field(
        default=None,
        description="Release configuration file (YAML/JSON); built-in default if unset",
    )
    repository_url: str | None = Field(
        default=None,
        description="Clone URL used when source_dir does not exist yet",
    )

    # Operational modes
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    dry_run: bool = Field(
        default=False,
        description="Log commands instead of executing them",
    )
    parallel_pipelines: bool = Field(
        default=False,
        description="Run the package and image pipelines concurrently",
    )

    # Registries and services
    local_registry: str = Field(
        default="localhost:5000/",
        description="Image prefix used for untrusted (non-tag, non-main) runs",
    )
    local_registry_image: str = Field(
        default="registry:2",
        description="Container image for the ephemeral local registry",
    )
    local_registry_port: int = Field(
        default=5000,
        ge=1,
        le=65535,
        description="Host port the local registry listens on",
    )
    github_api_url: str = Field(
        default="https://api.github.com",
        validation_alias=AliasChoices("RELORCH_GITHUB_API_URL", "GITHUB_API_URL"),
        description="GitHub REST API base URL",
    )
    github_repository: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "RELORCH_GITHUB_REPOSITORY", "GITHUB_REPOSITORY"
        ),
        description="owner/name of the repository being released",
    )
    package_index_url: str = Field(
        default="https://pypi.org/pypi",
        description="Package index JSON API base URL",
    )
    package_index_username: str = Field(
        default="__token__",
        validation_alias=AliasChoices(
            "RELORCH_PACKAGE_INDEX_USERNAME", "TWINE_USERNAME"
        ),
        description="Package index upload username",
    )

    # Secrets
    github_token: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("RELORCH_GITHUB_TOKEN", "GITHUB_TOKEN"),
    )
    pypi_password: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("RELORCH_PYPI_PASSWORD", "PYPI_PASSWORD"),
    )
    dockerhub_username: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "RELORCH_DOCKERHUB_USERNAME", "DOCKERHUB_USERNAME"
        ),
    )
    dockerhub_token: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("RELORCH_DOCKERHUB_TOKEN", "DOCKERHUB_TOKEN"),
    )

    # Timeouts (in seconds)
    step_timeout: int = Field(
        default=3600,
        ge=60,
        description="Timeout for a single pipeline step",
    )
    http_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for GitHub and package index API requests",
    )

    def resolved_dist_dir(self) -> Path:
        """Return dist_dir anchored at source_dir."""
        if self.dist_dir.is_absolute():
            return self.dist_dir
        return self.source_dir / self.dist_dir

    def secret_values(self) -> list[str]:
        """Return the configured secret values, for log redaction."""
        values: list[str] = []
        for name in sorted(SECRET_FIELDS):
            secret = getattr(self, name)
            if secret is not None and secret.get_secret_value():
                values.append(secret.get_secret_value())
        return values


def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Secret values are never rendered; each secret is reported as a boolean
    telling whether it is configured.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    data = settings.model_dump(mode="json", exclude=set(SECRET_FIELDS))
    data["secrets_configured"] = {
        name: getattr(settings, name) is not None for name in sorted(SECRET_FIELDS)
    }
    return json.dumps(data, indent=2)


__all__ = ["SECRET_FIELDS", "Settings", "get_settings", "print_settings_json"]

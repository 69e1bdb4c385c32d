"""Registry target resolution and preparation.

Trusted runs (tag builds and pushes to the main branch) push to the public
registry; everything else pushes to an ephemeral local registry that only
exists for the duration of the run.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from release_orchestrator.errors import RegistryError, ReleaseError
from release_orchestrator.runner import CommandRunner
from release_orchestrator.trigger.models import TriggerContext

logger = logging.getLogger(__name__)

PUBLIC_REGISTRY_PREFIX = ""
LOCAL_REGISTRY_CONTAINER = "relorch-local-registry"
REGISTRY_CONTAINER_PORT = 5000


@dataclass(frozen=True)
class RegistryTarget:
    """Where images of a run are pushed.

    Attributes:
        prefix: Prepended to image names; empty means the default public
            registry.
        is_local: Whether the target is the ephemeral local registry.
    """

    prefix: str
    is_local: bool

    def image_ref(self, name: str) -> str:
        """Return the repository reference for an image name."""
        return f"{self.prefix}{name}"

    def tag_prefix(self, name: str) -> str:
        """Return the prefix tags of an image are built from."""
        return f"{self.image_ref(name)}:"

    @property
    def display(self) -> str:
        return self.prefix or "(default public registry)"


def resolve_registry_target(
    context: TriggerContext,
    local_registry: str = "localhost:5000/",
) -> RegistryTarget:
    """Resolve the registry target for a run.

    Args:
        context: Trigger context.
        local_registry: Prefix of the local registry.

    Returns:
        Public target for tag and main-branch builds, local otherwise.
    """
    if context.is_tag or context.is_main_branch:
        return RegistryTarget(prefix=PUBLIC_REGISTRY_PREFIX, is_local=False)
    prefix = local_registry if local_registry.endswith("/") else f"{local_registry}/"
    return RegistryTarget(prefix=prefix, is_local=True)


@contextmanager
def local_registry(
    runner: CommandRunner,
    image: str = "registry:2",
    port: int = REGISTRY_CONTAINER_PORT,
    container_name: str = LOCAL_REGISTRY_CONTAINER,
) -> Iterator[str]:
    """Run an ephemeral registry container for the duration of the block.

    Yields:
        The container name.

    Raises:
        RegistryError: If the registry container cannot be started.
    """
    step = "local-registry"
    result = runner.run(
        step,
        [
            "docker",
            "run",
            "-d",
            "--rm",
            "-p",
            f"{port}:{REGISTRY_CONTAINER_PORT}",
            "--name",
            container_name,
            image,
        ],
    )
    if not result.success:
        raise RegistryError(
            f"Failed to start local registry ({image}) on port {port}", step=step
        )
    logger.info("Local registry %s listening on port %d", container_name, port)
    try:
        yield container_name
    finally:
        _stop_registry(runner, step, container_name)


def _stop_registry(runner: CommandRunner, step: str, container_name: str) -> None:
    try:
        stop = runner.run(step, ["docker", "stop", container_name])
    except ReleaseError as e:
        logger.warning(
            "Failed to stop local registry %s: %s", container_name, e.message
        )
        return
    if not stop.success:
        logger.warning("Failed to stop local registry %s", container_name)


def docker_login(
    runner: CommandRunner,
    username: str | None,
    token: str | None,
    registry: str | None = None,
) -> None:
    """Log in to the public registry, passing the token on stdin.

    Raises:
        RegistryError: If credentials are missing or login fails.
    """
    step = "registry-login"
    if not username or not token:
        raise RegistryError("Registry credentials are not configured", step=step)
    runner.add_secret(username)
    runner.add_secret(token)

    cmd = ["docker", "login", "--username", username, "--password-stdin"]
    if registry:
        cmd.append(registry)
    result = runner.run(step, cmd, input_text=token)
    if not result.success:
        raise RegistryError("Registry login failed", step=step)


__all__ = [
    "PUBLIC_REGISTRY_PREFIX",
    "RegistryTarget",
    "docker_login",
    "local_registry",
    "resolve_registry_target",
]

"""Multi-architecture image builds with docker buildx.

Every image is built for all of its platforms in a single buildx invocation
that pushes one manifest list, so an image is either published for every
platform or not at all.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from release_orchestrator.errors import ImageBuildError, ReleaseError
from release_orchestrator.runner import CommandResult, CommandRunner

logger = logging.getLogger(__name__)

QEMU_IMAGE = "tonistiigi/binfmt"
BUILDER_NAME = "relorch-builder"
BUILDER_STEP = "setup-builder"

# Platforms the runner executes natively; anything else needs emulation
NATIVE_PLATFORMS = frozenset({"linux/amd64"})


@dataclass
class ImagePlan:
    """Everything needed to build and push one image.

    Attributes:
        name: Image repository name.
        context: Build context, relative to the source tree.
        platforms: Target platforms.
        tags: Fully qualified tags, first one is the canonical reference.
        build_args: Build arguments in declaration order.
        depends_on: Upstream image name, if any.
    """

    name: str
    context: str
    platforms: list[str]
    tags: list[str]
    build_args: dict[str, str] = field(default_factory=dict)
    depends_on: str | None = None

    @property
    def primary_tag(self) -> str:
        return self.tags[0]


def emulated_platforms(platforms: Iterable[str]) -> list[str]:
    """Return the platforms that need QEMU emulation, sorted."""
    return sorted({p for p in platforms if p not in NATIVE_PLATFORMS})


def compose_qemu_command(platforms: Sequence[str]) -> list[str]:
    """Compose the command registering QEMU binfmt handlers."""
    arches = ",".join(p.split("/", 1)[1] for p in platforms)
    return ["docker", "run", "--privileged", "--rm", QEMU_IMAGE, "--install", arches]


def compose_builder_create_command(name: str = BUILDER_NAME) -> list[str]:
    """Compose the command creating and selecting the buildx builder.

    The builder shares the host network so a registry on localhost is
    reachable from inside it.
    """
    return [
        "docker",
        "buildx",
        "create",
        "--name",
        name,
        "--driver-opt",
        "network=host",
        "--use",
    ]


def compose_build_command(
    plan: ImagePlan,
    context_dir: Path,
    builder: str | None = BUILDER_NAME,
    push: bool = True,
) -> list[str]:
    """Compose the buildx command for one image.

    Args:
        plan: Image plan.
        context_dir: Resolved build context directory.
        builder: Builder instance to use, None for the current one.
        push: Whether to push the resulting manifest list.

    Returns:
        Command as list of strings.
    """
    cmd = ["docker", "buildx", "build"]
    if builder:
        cmd.extend(["--builder", builder])
    cmd.extend(["--platform", ",".join(plan.platforms)])
    if push:
        cmd.append("--push")
    for tag in plan.tags:
        cmd.extend(["--tag", tag])
    for key, value in plan.build_args.items():
        cmd.extend(["--build-arg", f"{key}={value}"])
    cmd.append(str(context_dir))
    return cmd


def setup_builder(
    runner: CommandRunner,
    platforms: Iterable[str],
    name: str = BUILDER_NAME,
) -> str:
    """Install emulation for foreign platforms and create the builder.

    Args:
        runner: Command runner.
        platforms: Union of all platforms that will be built.
        name: Builder name.

    Returns:
        The builder name.

    Raises:
        ImageBuildError: If emulation or builder creation fails.
    """
    foreign = emulated_platforms(platforms)
    if foreign:
        result = runner.run(BUILDER_STEP, compose_qemu_command(foreign))
        if not result.success:
            raise ImageBuildError(
                f"Failed to install QEMU emulation for {', '.join(foreign)}",
                step=BUILDER_STEP,
            )

    result = runner.run(BUILDER_STEP, compose_builder_create_command(name))
    if not result.success:
        raise ImageBuildError(
            f"Failed to create buildx builder {name}:\n{result.output_tail}".rstrip(),
            step=BUILDER_STEP,
        )
    logger.info("Using buildx builder %s", name)
    return name


def teardown_builder(runner: CommandRunner, name: str = BUILDER_NAME) -> None:
    """Remove the buildx builder, logging rather than raising on failure."""
    try:
        result = runner.run(BUILDER_STEP, ["docker", "buildx", "rm", name])
    except ReleaseError as e:
        logger.warning("Failed to remove buildx builder %s: %s", name, e.message)
        return
    if not result.success:
        logger.warning("Failed to remove buildx builder %s", name)


def build_image(
    runner: CommandRunner,
    plan: ImagePlan,
    source_dir: Path,
    builder: str | None = BUILDER_NAME,
) -> CommandResult:
    """Build and push one image for all of its platforms.

    Raises:
        ImageBuildError: If the build or push fails on any platform.
    """
    step = f"build-{plan.name}"
    cmd = compose_build_command(plan, source_dir / plan.context, builder=builder)
    result = runner.run(step, cmd, cwd=source_dir)
    if not result.success:
        raise ImageBuildError(
            f"Build of {plan.name} failed with exit code {result.exit_code}\n"
            f"{result.output_tail}".rstrip(),
            step=step,
        )
    logger.info("Pushed %s", ", ".join(plan.tags))
    return result


__all__ = [
    "BUILDER_NAME",
    "ImagePlan",
    "build_image",
    "compose_build_command",
    "compose_builder_create_command",
    "compose_qemu_command",
    "emulated_platforms",
    "setup_builder",
    "teardown_builder",
]

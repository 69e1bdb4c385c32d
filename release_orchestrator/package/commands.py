"""Command composition for the package pipeline.

Every external tool the package pipeline drives is composed here as an
argv list, so the service only sequences steps and interprets results.
"""

from __future__ import annotations

import sys
from collections.abc import Sequence
from pathlib import Path

from release_orchestrator.release_config import PackageSpec

ISOLATION_MOUNT = "/dist"


def python_command(*args: str, python: str | None = None) -> list[str]:
    """Compose a command running the current interpreter."""
    return [python or sys.executable, *args]


def compose_clone_command(repository_url: str, dest: Path) -> list[str]:
    """Compose the clone command for a missing source tree."""
    return ["git", "clone", "--no-checkout", repository_url, str(dest)]


def compose_checkout_command(sha: str, force: bool = False) -> list[str]:
    """Compose the checkout command pinning the tree to the triggering commit.

    Args:
        sha: Commit to check out.
        force: Discard local changes; only for trees cloned by the pipeline.
    """
    cmd = ["git", "checkout"]
    if force:
        cmd.append("--force")
    return [*cmd, "--detach", sha]


def compose_toolchain_commands(
    package: PackageSpec,
    python: str | None = None,
) -> list[list[str]]:
    """Compose the toolchain installation commands.

    Secondary tooling commands run first, then pip is upgraded, the build
    requirements installed and the resulting environment frozen for the log.

    Args:
        package: Package specification.
        python: Interpreter to use (defaults to the running one).

    Returns:
        Commands in execution order.
    """
    commands = [list(cmd) for cmd in package.toolchain_commands]
    commands.append(
        python_command("-m", "pip", "install", "--upgrade", "pip", python=python)
    )
    if package.build_requirements:
        commands.append(
            python_command(
                "-m", "pip", "install", *package.build_requirements, python=python
            )
        )
    commands.append(python_command("-m", "pip", "freeze", python=python))
    return commands


def compose_build_command(outdir: Path, python: str | None = None) -> list[str]:
    """Compose the command building an sdist and a wheel into outdir."""
    return python_command(
        "-m",
        "build",
        "--sdist",
        "--wheel",
        "--outdir",
        str(outdir),
        ".",
        python=python,
    )


def compose_sdist_check_command(package: PackageSpec, sdist: Path) -> list[str]:
    """Compose the sdist verification command.

    Raises:
        ValueError: If the package has no sdist check configured.
    """
    if not package.sdist_check:
        raise ValueError(f"No sdist check configured for {package.name}")
    return [*package.sdist_check, str(sdist)]


def compose_install_command(
    targets: Sequence[Path | str],
    python: str | None = None,
) -> list[str]:
    """Compose a pip install of local distribution files."""
    return python_command(
        "-m", "pip", "install", *(str(t) for t in targets), python=python
    )


def compose_isolation_command(
    image: str,
    dist_dir: Path,
    sdist_name: str,
) -> list[str]:
    """Compose the isolated install check.

    The dist directory is mounted read-only into a disposable container
    that lacks the secondary toolchain, and the sdist is installed there.

    Args:
        image: Minimal container image.
        dist_dir: Host directory holding the sdist.
        sdist_name: Filename (or glob) of the sdist inside dist_dir.

    Returns:
        docker run command.
    """
    target = f"{ISOLATION_MOUNT}/{sdist_name}"
    return [
        "docker",
        "run",
        "--rm",
        "-v",
        f"{dist_dir.resolve()}:{ISOLATION_MOUNT}:ro",
        image,
        "bash",
        "-c",
        f"pip install {target}",
    ]


def compose_publish_commands(
    files: Sequence[Path],
    python: str | None = None,
) -> list[list[str]]:
    """Compose the upload commands.

    `--skip-existing` makes re-uploading a version that is already on the
    index a no-op.
    """
    return [
        python_command("-m", "pip", "install", "twine", python=python),
        python_command(
            "-m",
            "twine",
            "upload",
            "--non-interactive",
            "--skip-existing",
            *(str(f) for f in files),
            python=python,
        ),
    ]


__all__ = [
    "ISOLATION_MOUNT",
    "compose_build_command",
    "compose_checkout_command",
    "compose_clone_command",
    "compose_install_command",
    "compose_isolation_command",
    "compose_publish_commands",
    "compose_sdist_check_command",
    "compose_toolchain_commands",
    "python_command",
]

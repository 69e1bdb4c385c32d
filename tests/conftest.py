"""Shared fixtures for release_orchestrator tests."""

import shlex
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

import pytest

from release_orchestrator.config import Settings
from release_orchestrator.release_config import (
    ImageSpec,
    PackageSpec,
    ReleaseConfig,
    default_release_config,
)
from release_orchestrator.runner import CommandResult, CommandRunner
from release_orchestrator.trigger.models import TriggerContext, TriggerEvent

# Variables that would leak the invoking CI environment into Settings
CI_ENV_VARS = (
    "GITHUB_TOKEN",
    "GITHUB_REPOSITORY",
    "GITHUB_API_URL",
    "GITHUB_EVENT_NAME",
    "GITHUB_REF",
    "GITHUB_SHA",
    "GITHUB_HEAD_REF",
    "PYPI_PASSWORD",
    "TWINE_USERNAME",
    "DOCKERHUB_USERNAME",
    "DOCKERHUB_TOKEN",
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Run every test without CI variables or a stray .env file."""
    for name in CI_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
        monkeypatch.delenv(f"RELORCH_{name}", raising=False)
    monkeypatch.chdir(tmp_path)


class FakeRunner(CommandRunner):
    """CommandRunner that records commands instead of executing them.

    Args:
        logs_dir: Log directory; a line is appended per command so log
            paths exist like they would for real runs.
        fail_on: Substrings; a command whose joined argv contains one of
            them exits with status 1.
        hooks: Substring to callback; the callback runs when a matching
            command is executed, e.g. to create build output.
    """

    def __init__(
        self,
        logs_dir: Path,
        fail_on: tuple[str, ...] = (),
        hooks: dict[str, Callable[[list[str]], None]] | None = None,
        dry_run: bool = False,
    ) -> None:
        super().__init__(logs_dir, dry_run=dry_run)
        self.fail_on = fail_on
        self.hooks = hooks or {}
        self.calls: list[dict] = []

    def run(self, step, cmd, cwd=None, env=None, input_text=None):
        argv = list(cmd)
        joined = shlex.join(argv)
        self.calls.append(
            {
                "step": step,
                "cmd": argv,
                "cwd": cwd,
                "env": env,
                "input_text": input_text,
            }
        )
        self.logs_dir.mkdir(parents=True, exist_ok=True)
        log_path = self.log_path_for(step)
        with log_path.open("a", encoding="utf-8") as f:
            f.write(f"# Command: {joined}\n")

        failed = any(pattern in joined for pattern in self.fail_on)
        if not failed:
            for pattern, hook in self.hooks.items():
                if pattern in joined:
                    hook(argv)
        now = datetime.now(timezone.utc)
        return CommandResult(
            success=not failed,
            exit_code=1 if failed else 0,
            command=joined,
            log_path=log_path,
            output="simulated failure" if failed else "",
            started_at=now,
            finished_at=now,
        )

    def commands(self, step: str | None = None) -> list[list[str]]:
        """Return recorded argv lists, optionally for one step."""
        return [c["cmd"] for c in self.calls if step is None or c["step"] == step]

    def steps(self) -> list[str]:
        """Return step names in first-seen order."""
        seen: list[str] = []
        for call in self.calls:
            if call["step"] not in seen:
                seen.append(call["step"])
        return seen


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings rooted in a temporary directory."""
    source_dir = tmp_path / "src"
    source_dir.mkdir()
    return Settings(
        source_dir=source_dir,
        artifacts_dir=tmp_path / "artifacts",
        logs_dir=tmp_path / "logs",
    )


@pytest.fixture
def release() -> ReleaseConfig:
    """The built-in release configuration."""
    return default_release_config()


@pytest.fixture
def package_release() -> ReleaseConfig:
    """A release configuration without runtime tool checks."""
    return ReleaseConfig(
        package=PackageSpec(
            name="jupyterhub",
            required_tools=[],
            sdist_check=["./ci/check_sdist.py"],
            installed_data_check=["./ci/check_installed_data.py"],
        ),
        images=[ImageSpec(name="jupyterhub/jupyterhub")],
    )


def _make_context(
    ref: str,
    event_name: str = "push",
    sha: str = "abc1234",
) -> TriggerContext:
    """Build a TriggerContext for a ref."""
    return TriggerContext.from_event(
        TriggerEvent(event_name=event_name, ref=ref, sha=sha)
    )


@pytest.fixture
def make_context():
    """Factory building a TriggerContext for a ref."""
    return _make_context


@pytest.fixture
def tag_context() -> TriggerContext:
    """Context of a push of tag 3.0.0."""
    return _make_context("refs/tags/3.0.0")


@pytest.fixture
def main_context() -> TriggerContext:
    """Context of a push to the main branch."""
    return _make_context("refs/heads/main")


@pytest.fixture
def pr_context() -> TriggerContext:
    """Context of a pull request."""
    return _make_context("refs/pull/42/merge", event_name="pull_request")


@pytest.fixture
def fake_runner(tmp_path):
    """Factory building FakeRunner instances logging under tmp_path."""

    def factory(name: str = "fake", **kwargs) -> FakeRunner:
        return FakeRunner(tmp_path / "logs" / name, **kwargs)

    return factory

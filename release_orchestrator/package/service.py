"""Package pipeline service.

Runs the package pipeline steps strictly in order, aborting on the first
failure:

1. checkout - acquire the source tree at the triggering commit
2. toolchain - install the build toolchain
3. build - build the sdist and wheel
4. verify-sdist - run the sdist verifier
5. verify-installed-data - install the wheel, run the data-files verifier
6. verify-isolated-install - install the sdist in a minimal container
7. upload-artifact - retain the output directory keyed by commit SHA
8. publish - upload to the package index (tag builds only, idempotent)
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from pathlib import Path

import httpx

from release_orchestrator.config import Settings
from release_orchestrator.errors import (
    BuildToolError,
    IsolationCheckError,
    PublishError,
    ReleaseError,
    SourceError,
    ToolchainError,
    VerificationError,
)
from release_orchestrator.package.artifacts import (
    artifact_version,
    bundle_name_for,
    discover_artifacts,
    find_sdist,
    find_wheels,
    format_listing,
    upload_build_artifact,
)
from release_orchestrator.package.commands import (
    compose_build_command,
    compose_checkout_command,
    compose_clone_command,
    compose_install_command,
    compose_isolation_command,
    compose_publish_commands,
    compose_sdist_check_command,
    compose_toolchain_commands,
)
from release_orchestrator.package.index import (
    PackageIndexClient,
    select_files_to_publish,
)
from release_orchestrator.release_config import ReleaseConfig
from release_orchestrator.runner import CommandResult, CommandRunner, require_tools
from release_orchestrator.trigger.models import TriggerContext
from release_orchestrator.types import (
    ArtifactInfo,
    PipelineName,
    PipelineResult,
    StepRecord,
    StepStatus,
)

logger = logging.getLogger(__name__)

PACKAGE_STEPS = (
    "checkout",
    "toolchain",
    "build",
    "verify-sdist",
    "verify-installed-data",
    "verify-isolated-install",
    "upload-artifact",
    "publish",
)


@dataclass
class PackageBuildState:
    """Values produced by earlier steps and consumed by later ones."""

    source_dir: Path
    dist_dir: Path
    artifacts: list[ArtifactInfo] = field(default_factory=list)
    sdist: Path | None = None
    wheels: list[Path] = field(default_factory=list)
    bundle_dir: Path | None = None


def _run_checked(
    runner: CommandRunner,
    step: str,
    cmd: list[str],
    error_cls: type[ReleaseError],
    cwd: Path | None = None,
    env: dict[str, str] | None = None,
) -> CommandResult:
    """Run a command and raise error_cls on a non-zero exit."""
    result = runner.run(step, cmd, cwd=cwd, env=env)
    if not result.success:
        raise error_cls(
            f"Command failed with exit code {result.exit_code}: {result.command}\n"
            f"{result.output_tail}".rstrip(),
            step=step,
        )
    return result


class PackagePipeline:
    """Builds, verifies, retains and publishes the Python distribution."""

    def __init__(
        self,
        context: TriggerContext,
        release: ReleaseConfig,
        settings: Settings,
        runner: CommandRunner | None = None,
        index_client: PackageIndexClient | None = None,
    ) -> None:
        self.context = context
        self.release = release
        self.package = release.package
        self.settings = settings
        self.runner = runner or CommandRunner(
            settings.logs_dir / PipelineName.PACKAGE.value,
            dry_run=settings.dry_run,
            timeout=settings.step_timeout,
            secrets=settings.secret_values(),
        )
        self.index_client = index_client
        self.state = PackageBuildState(
            source_dir=settings.source_dir,
            dist_dir=settings.resolved_dist_dir(),
        )

    @property
    def dry_run(self) -> bool:
        return self.runner.dry_run

    def steps(self) -> list[tuple[str, Callable[[StepRecord], None]]]:
        """Return the ordered (name, callable) step list."""
        handlers = [
            self.acquire_source,
            self.install_toolchain,
            self.build_distributions,
            self.verify_sdist,
            self.verify_installed_data,
            self.verify_isolated_install,
            self.upload_artifact,
            self.publish,
        ]
        return list(zip(PACKAGE_STEPS, handlers))

    def run(self) -> PipelineResult:
        """Run every step in order, stopping at the first failure."""
        result = PipelineResult(pipeline=PipelineName.PACKAGE)
        logger.info(
            "Package pipeline for %s at %s (%s)",
            self.package.name,
            self.context.ref,
            self.context.sha or "no sha",
        )

        for name, handler in self.steps():
            record = StepRecord(name=name)
            result.steps.append(record)
            record.mark_running()
            try:
                handler(record)
            except ReleaseError as e:
                e.step = e.step or name
                record.mark_failed(e.code, e.message)
                result.failed_step = name
                result.error_code = e.code
                result.error_message = e.message
                logger.error(
                    "Package pipeline failed at step %s: %s", name, e.message
                )
                break
            finally:
                log_path = self.runner.log_path_for(name)
                if log_path.exists():
                    record.log_path = str(log_path)

            if record.status is StepStatus.RUNNING:
                record.mark_succeeded()
        else:
            result.success = True

        result.artifacts = [asdict(a) for a in self.state.artifacts]
        return result

    # Steps

    def acquire_source(self, record: StepRecord) -> None:
        """Ensure the source tree exists and sits at the triggering commit."""
        source_dir = self.state.source_dir
        cloned = False
        if not source_dir.exists():
            if not self.settings.repository_url:
                raise SourceError(
                    f"Source directory {source_dir} does not exist and no "
                    "repository URL is configured"
                )
            try:
                source_dir.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise SourceError(f"Cannot create {source_dir.parent}: {e}") from e
            _run_checked(
                self.runner,
                record.name,
                compose_clone_command(self.settings.repository_url, source_dir),
                SourceError,
                cwd=source_dir.parent,
            )
            cloned = True

        if not self.context.sha:
            record.mark_succeeded("no commit SHA given, using the tree as is")
            return

        _run_checked(
            self.runner,
            record.name,
            compose_checkout_command(self.context.sha, force=cloned),
            SourceError,
            cwd=source_dir,
        )

    def install_toolchain(self, record: StepRecord) -> None:
        """Check the runtimes and install build requirements."""
        if not self.dry_run:
            require_tools(self.package.required_tools, step=record.name)
        for cmd in compose_toolchain_commands(self.package):
            _run_checked(
                self.runner,
                record.name,
                cmd,
                ToolchainError,
                cwd=self.state.source_dir,
            )

    def build_distributions(self, record: StepRecord) -> None:
        """Build sdist and wheel and record the produced files."""
        dist_dir = self.state.dist_dir
        if dist_dir.exists() and not self.dry_run:
            logger.info("Removing previous build output %s", dist_dir)
            try:
                shutil.rmtree(dist_dir)
            except OSError as e:
                raise BuildToolError(
                    f"Cannot remove previous build output {dist_dir}: {e}"
                ) from e

        _run_checked(
            self.runner,
            record.name,
            compose_build_command(dist_dir),
            BuildToolError,
            cwd=self.state.source_dir,
        )

        if self.dry_run:
            self.state.sdist = dist_dir / f"{self.package.name}-*.tar.gz"
            self.state.wheels = [dist_dir / "*.whl"]
            return

        artifacts = discover_artifacts(dist_dir)
        if not artifacts:
            raise BuildToolError(f"Build produced no files in {dist_dir}")
        logger.info("Build output:\n%s", format_listing(artifacts))

        self.state.artifacts = artifacts
        self.state.sdist = find_sdist(artifacts, dist_dir, self.package.name)
        self.state.wheels = find_wheels(artifacts, dist_dir)
        if self.state.sdist is None:
            raise BuildToolError(
                f"Build produced no source archive for {self.package.name}"
            )
        if not self.state.wheels:
            raise BuildToolError("Build produced no wheel")
        record.details["files"] = [a.filename for a in artifacts]

    def verify_sdist(self, record: StepRecord) -> None:
        """Assert the source archive contents match expectations."""
        if not self.package.sdist_check:
            record.mark_skipped("no sdist check configured")
            return
        if self.state.sdist is None:
            raise VerificationError("No source archive to verify")
        _run_checked(
            self.runner,
            record.name,
            compose_sdist_check_command(self.package, self.state.sdist),
            VerificationError,
            cwd=self.state.source_dir,
        )

    def verify_installed_data(self, record: StepRecord) -> None:
        """Install the wheel and assert data files landed where expected."""
        if not self.package.installed_data_check:
            record.mark_skipped("no installed-data check configured")
            return
        _run_checked(
            self.runner,
            record.name,
            compose_install_command(self.state.wheels),
            VerificationError,
            cwd=self.state.source_dir,
        )
        _run_checked(
            self.runner,
            record.name,
            list(self.package.installed_data_check),
            VerificationError,
            cwd=self.state.source_dir,
        )

    def verify_isolated_install(self, record: StepRecord) -> None:
        """Install the sdist in a container lacking the secondary toolchain."""
        if not self.package.isolation_image:
            record.mark_skipped("no isolation image configured")
            return
        if self.state.sdist is None:
            raise IsolationCheckError("No source archive to install")
        _run_checked(
            self.runner,
            record.name,
            compose_isolation_command(
                self.package.isolation_image,
                self.state.dist_dir,
                self.state.sdist.name,
            ),
            IsolationCheckError,
        )

    def upload_artifact(self, record: StepRecord) -> None:
        """Retain the build output as a bundle keyed by commit SHA."""
        bundle_name = bundle_name_for(self.package.name, self.context.sha)
        record.details["bundle"] = bundle_name
        if self.dry_run:
            logger.info(
                "(dry-run) would retain %s as %s", self.state.dist_dir, bundle_name
            )
            return
        bundle_dir, _ = upload_build_artifact(
            self.state.dist_dir,
            self.settings.artifacts_dir,
            bundle_name,
            commit_sha=self.context.sha or None,
        )
        self.state.bundle_dir = bundle_dir
        record.details["path"] = str(bundle_dir)

    def publish(self, record: StepRecord) -> None:
        """Upload all artifacts to the package index on tag builds."""
        if not self.context.is_tag:
            record.mark_skipped("not a tag build")
            return

        if self.dry_run:
            files = [self.state.dist_dir / "*"]
        else:
            files = [
                self.state.dist_dir / a.relative_path for a in self.state.artifacts
            ]
            files = self._drop_published(files, record)
            if not files:
                record.mark_succeeded("all files already published")
                return

        password = self.settings.pypi_password
        if password is None or not password.get_secret_value():
            if self.dry_run:
                record.mark_skipped("(dry-run) no package index credentials")
                return
            raise PublishError("No package index credentials configured")
        token = password.get_secret_value()
        self.runner.add_secret(token)

        env = {
            "TWINE_USERNAME": self.settings.package_index_username,
            "TWINE_PASSWORD": token,
        }
        for cmd in compose_publish_commands(files):
            _run_checked(
                self.runner,
                record.name,
                cmd,
                PublishError,
                cwd=self.state.source_dir,
                env=env,
            )
        record.details["uploaded"] = [f.name for f in files]

    def _drop_published(self, files: list[Path], record: StepRecord) -> list[Path]:
        """Filter out files the index already has for this version."""
        if self.state.sdist is None:
            return files
        version = artifact_version(self.state.sdist.name)
        if version is None:
            return files

        if self.index_client is not None:
            published = self.index_client.published_files(self.package.name, version)
        else:
            with httpx.Client() as client:
                index = PackageIndexClient(
                    client,
                    base_url=self.settings.package_index_url,
                    timeout=self.settings.http_timeout,
                )
                published = index.published_files(self.package.name, version)

        to_upload, skipped = select_files_to_publish(files, published)
        if skipped:
            logger.info(
                "Skipping %d file(s) already on the index: %s",
                len(skipped),
                ", ".join(p.name for p in skipped),
            )
            record.details["skipped_existing"] = [p.name for p in skipped]
        return to_upload


def run_package_pipeline(
    context: TriggerContext,
    release: ReleaseConfig,
    settings: Settings,
    runner: CommandRunner | None = None,
    index_client: PackageIndexClient | None = None,
) -> PipelineResult:
    """Run the package pipeline.

    Args:
        context: Trigger context of the run.
        release: Release configuration.
        settings: Application settings.
        runner: Command runner (a default one logging under
            `logs_dir/package` is created if omitted).
        index_client: Package index client used for the idempotence check.

    Returns:
        PipelineResult with one record per executed step.
    """
    return PackagePipeline(
        context, release, settings, runner=runner, index_client=index_client
    ).run()


__all__ = [
    "PACKAGE_STEPS",
    "PackageBuildState",
    "PackagePipeline",
    "run_package_pipeline",
]

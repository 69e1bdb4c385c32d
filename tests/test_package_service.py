"""Tests for package/service.py module.

Tests the package pipeline step sequence with a recording runner.
"""

import shutil
from pathlib import Path

import pytest
from pydantic import SecretStr

from release_orchestrator.errors import (
    ARTIFACT_UPLOAD_ERROR,
    BUILD_TOOL_ERROR,
    ISOLATION_CHECK_ERROR,
    PUBLISH_ERROR,
    SOURCE_ERROR,
    TOOLCHAIN_ERROR,
    VERIFICATION_ERROR,
)
from release_orchestrator.package.service import PACKAGE_STEPS, run_package_pipeline
from release_orchestrator.release_config import PackageSpec, ReleaseConfig
from release_orchestrator.types import PipelineName, StepStatus

SDIST = "jupyterhub-3.0.0.tar.gz"
WHEEL = "jupyterhub-3.0.0-py3-none-any.whl"


def fake_build(*filenames: str):
    """Return a hook writing the given files into the --outdir directory."""
    names = filenames or (SDIST, WHEEL)

    def hook(argv: list[str]) -> None:
        outdir = Path(argv[argv.index("--outdir") + 1])
        outdir.mkdir(parents=True, exist_ok=True)
        for name in names:
            (outdir / name).write_bytes(name.encode())

    return hook


class StubIndex:
    """Package index client returning a fixed set of published files."""

    def __init__(self, published: set[str] | None = None) -> None:
        self.published = published or set()
        self.queries: list[tuple[str, str]] = []

    def published_files(self, name: str, version: str) -> set[str]:
        self.queries.append((name, version))
        return self.published


@pytest.fixture
def publish_settings(settings):
    """Settings with package index credentials."""
    return settings.model_copy(update={"pypi_password": SecretStr("pypi-token")})


def statuses(result) -> dict[str, StepStatus]:
    return {step.name: step.status for step in result.steps}


class TestPackagePipelineSuccess:
    """Tests for successful package pipeline runs."""

    def test_tag_build_runs_every_step(
        self, tag_context, package_release, publish_settings, fake_runner
    ):
        """A tag build performs all steps in order and publishes."""
        runner = fake_runner("package", hooks={"-m build": fake_build()})
        index = StubIndex()

        result = run_package_pipeline(
            tag_context, package_release, publish_settings, runner, index
        )

        assert result.success is True
        assert result.pipeline is PipelineName.PACKAGE
        assert [s.name for s in result.steps] == list(PACKAGE_STEPS)
        assert all(s.status is StepStatus.SUCCEEDED for s in result.steps)
        assert runner.steps() == [
            "checkout",
            "toolchain",
            "build",
            "verify-sdist",
            "verify-installed-data",
            "verify-isolated-install",
            "publish",
        ]
        assert index.queries == [("jupyterhub", "3.0.0")]
        assert result.step("publish").details["uploaded"] == [WHEEL, SDIST]
        assert {a["filename"] for a in result.artifacts} == {SDIST, WHEEL}

    def test_checkout_pins_commit(
        self, tag_context, package_release, publish_settings, fake_runner
    ):
        """An existing tree is checked out without discarding changes."""
        runner = fake_runner("package", hooks={"-m build": fake_build()})

        run_package_pipeline(
            tag_context, package_release, publish_settings, runner, StubIndex()
        )

        assert runner.commands("checkout") == [
            ["git", "checkout", "--detach", "abc1234"]
        ]

    def test_cloned_tree_checkout_is_forced(
        self, tag_context, package_release, publish_settings, fake_runner, tmp_path
    ):
        """A tree the pipeline cloned itself is checked out with --force."""
        settings = publish_settings.model_copy(
            update={
                "source_dir": tmp_path / "clone" / "src",
                "repository_url": "https://github.com/jupyterhub/jupyterhub.git",
            }
        )
        runner = fake_runner("package")

        run_package_pipeline(tag_context, package_release, settings, runner)

        clone, checkout = runner.commands("checkout")
        assert clone[:2] == ["git", "clone"]
        assert checkout == ["git", "checkout", "--force", "--detach", "abc1234"]

    def test_verifiers_receive_artifacts(
        self, tag_context, package_release, publish_settings, fake_runner
    ):
        """The sdist check gets the sdist; the wheel is installed first."""
        runner = fake_runner("package", hooks={"-m build": fake_build()})
        dist = publish_settings.resolved_dist_dir()

        run_package_pipeline(
            tag_context, package_release, publish_settings, runner, StubIndex()
        )

        assert runner.commands("verify-sdist") == [
            ["./ci/check_sdist.py", str(dist / SDIST)]
        ]
        install, check = runner.commands("verify-installed-data")
        assert install[-1] == str(dist / WHEEL)
        assert check == ["./ci/check_installed_data.py"]
        (isolated,) = runner.commands("verify-isolated-install")
        assert isolated[-1] == f"pip install /dist/{SDIST}"

    def test_artifact_retained_by_sha(
        self, tag_context, package_release, publish_settings, fake_runner
    ):
        """The output directory is retained as <package>-<sha>."""
        runner = fake_runner("package", hooks={"-m build": fake_build()})

        result = run_package_pipeline(
            tag_context, package_release, publish_settings, runner, StubIndex()
        )

        bundle = publish_settings.artifacts_dir / "jupyterhub-abc1234"
        assert (bundle / SDIST).exists()
        assert (bundle / WHEEL).exists()
        assert result.step("upload-artifact").details["bundle"] == "jupyterhub-abc1234"

    def test_credentials_travel_in_env(
        self, tag_context, package_release, publish_settings, fake_runner
    ):
        """The index token is passed through the environment only."""
        runner = fake_runner("package", hooks={"-m build": fake_build()})

        run_package_pipeline(
            tag_context, package_release, publish_settings, runner, StubIndex()
        )

        upload = [c for c in runner.calls if "upload" in c["cmd"]]
        assert len(upload) == 1
        assert upload[0]["env"] == {
            "TWINE_USERNAME": "__token__",
            "TWINE_PASSWORD": "pypi-token",
        }
        assert "pypi-token" not in upload[0]["cmd"]
        assert "pypi-token" in runner.secrets

    def test_branch_build_does_not_publish(
        self, main_context, package_release, settings, fake_runner
    ):
        """Non-tag builds skip publishing and still succeed."""
        runner = fake_runner("package", hooks={"-m build": fake_build()})

        result = run_package_pipeline(main_context, package_release, settings, runner)

        assert result.success is True
        assert result.step("publish").status is StepStatus.SKIPPED
        assert "publish" not in runner.steps()

    def test_unconfigured_checks_are_skipped(
        self, main_context, settings, fake_runner
    ):
        """Verifiers without configuration are skipped, not failed."""
        release = ReleaseConfig(
            package=PackageSpec(
                name="jupyterhub", required_tools=[], isolation_image=None
            )
        )
        runner = fake_runner("package", hooks={"-m build": fake_build()})

        result = run_package_pipeline(main_context, release, settings, runner)

        assert result.success is True
        steps = statuses(result)
        assert steps["verify-sdist"] is StepStatus.SKIPPED
        assert steps["verify-installed-data"] is StepStatus.SKIPPED
        assert steps["verify-isolated-install"] is StepStatus.SKIPPED

    def test_step_logs_recorded(
        self, main_context, package_release, settings, fake_runner
    ):
        """Steps that ran commands point at their log file."""
        runner = fake_runner("package", hooks={"-m build": fake_build()})

        result = run_package_pipeline(main_context, package_release, settings, runner)

        assert result.step("build").log_path == str(runner.log_path_for("build"))
        assert result.step("upload-artifact").log_path is None


class TestIdempotentPublish:
    """Tests for re-publishing an existing version."""

    def test_all_files_already_published(
        self, tag_context, package_release, publish_settings, fake_runner
    ):
        """Re-publishing an identical version is a successful no-op."""
        runner = fake_runner("package", hooks={"-m build": fake_build()})
        index = StubIndex({SDIST, WHEEL})

        result = run_package_pipeline(
            tag_context, package_release, publish_settings, runner, index
        )

        assert result.success is True
        publish = result.step("publish")
        assert publish.status is StepStatus.SUCCEEDED
        assert publish.message == "all files already published"
        assert "publish" not in runner.steps()

    def test_partially_published(
        self, tag_context, package_release, publish_settings, fake_runner
    ):
        """Only files missing from the index are uploaded."""
        runner = fake_runner("package", hooks={"-m build": fake_build()})
        index = StubIndex({SDIST})

        result = run_package_pipeline(
            tag_context, package_release, publish_settings, runner, index
        )

        assert result.success is True
        publish = result.step("publish")
        assert publish.details["uploaded"] == [WHEEL]
        assert publish.details["skipped_existing"] == [SDIST]
        upload = runner.commands("publish")[-1]
        assert upload[-1].endswith(WHEEL)
        assert not any(arg.endswith(SDIST) for arg in upload)


class TestPackagePipelineFailures:
    """Tests for failing steps."""

    def test_build_failure_stops_pipeline(
        self, tag_context, package_release, publish_settings, fake_runner
    ):
        """A build failure aborts before verification and publishing."""
        runner = fake_runner("package", fail_on=("-m build",))

        result = run_package_pipeline(
            tag_context, package_release, publish_settings, runner, StubIndex()
        )

        assert result.success is False
        assert result.failed_step == "build"
        assert result.error_code == BUILD_TOOL_ERROR
        assert [s.name for s in result.steps] == ["checkout", "toolchain", "build"]
        assert result.step("build").status is StepStatus.FAILED
        assert not publish_settings.artifacts_dir.exists()

    def test_toolchain_failure(
        self, tag_context, package_release, publish_settings, fake_runner
    ):
        """A failing toolchain command fails the toolchain step."""
        runner = fake_runner("package", fail_on=("yarn",))

        result = run_package_pipeline(
            tag_context, package_release, publish_settings, runner, StubIndex()
        )

        assert result.failed_step == "toolchain"
        assert result.error_code == TOOLCHAIN_ERROR

    def test_missing_wheel(
        self, tag_context, package_release, publish_settings, fake_runner
    ):
        """A build without a wheel is a build failure."""
        runner = fake_runner("package", hooks={"-m build": fake_build(SDIST)})

        result = run_package_pipeline(
            tag_context, package_release, publish_settings, runner, StubIndex()
        )

        assert result.failed_step == "build"
        assert result.error_code == BUILD_TOOL_ERROR
        assert "no wheel" in result.error_message

    def test_sdist_verification_failure(
        self, tag_context, package_release, publish_settings, fake_runner
    ):
        """A failing sdist check stops before publishing."""
        runner = fake_runner(
            "package",
            hooks={"-m build": fake_build()},
            fail_on=("check_sdist.py",),
        )

        result = run_package_pipeline(
            tag_context, package_release, publish_settings, runner, StubIndex()
        )

        assert result.failed_step == "verify-sdist"
        assert result.error_code == VERIFICATION_ERROR
        assert "publish" not in runner.steps()

    def test_isolated_install_failure(
        self, tag_context, package_release, publish_settings, fake_runner
    ):
        """An sdist that needs the secondary toolchain fails isolation."""
        runner = fake_runner(
            "package",
            hooks={"-m build": fake_build()},
            fail_on=("docker run",),
        )

        result = run_package_pipeline(
            tag_context, package_release, publish_settings, runner, StubIndex()
        )

        assert result.failed_step == "verify-isolated-install"
        assert result.error_code == ISOLATION_CHECK_ERROR
        assert result.step("upload-artifact") is None

    def test_missing_credentials(
        self, tag_context, package_release, settings, fake_runner
    ):
        """Publishing a tag without credentials fails the publish step."""
        runner = fake_runner("package", hooks={"-m build": fake_build()})

        result = run_package_pipeline(
            tag_context, package_release, settings, runner, StubIndex()
        )

        assert result.success is False
        assert result.failed_step == "publish"
        assert result.error_code == PUBLISH_ERROR

    def test_upload_rejected(
        self, tag_context, package_release, publish_settings, fake_runner
    ):
        """A rejected upload fails the publish step."""
        runner = fake_runner(
            "package",
            hooks={"-m build": fake_build()},
            fail_on=("twine upload",),
        )

        result = run_package_pipeline(
            tag_context, package_release, publish_settings, runner, StubIndex()
        )

        assert result.failed_step == "publish"
        assert result.error_code == PUBLISH_ERROR

    def test_missing_source_without_url(
        self, tag_context, package_release, settings, fake_runner, tmp_path
    ):
        """A missing tree without a clone URL fails checkout."""
        settings = settings.model_copy(update={"source_dir": tmp_path / "absent"})
        runner = fake_runner("package")

        result = run_package_pipeline(tag_context, package_release, settings, runner)

        assert result.failed_step == "checkout"
        assert result.error_code == SOURCE_ERROR

    def test_unwritable_artifacts_dir(
        self, tag_context, package_release, publish_settings, fake_runner, tmp_path
    ):
        """A bundle that cannot be written fails the upload step."""
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        settings = publish_settings.model_copy(
            update={"artifacts_dir": blocker / "artifacts"}
        )
        runner = fake_runner("package", hooks={"-m build": fake_build()})

        result = run_package_pipeline(
            tag_context, package_release, settings, runner, StubIndex()
        )

        assert result.success is False
        assert result.failed_step == "upload-artifact"
        assert result.error_code == ARTIFACT_UPLOAD_ERROR
        assert result.step("publish") is None

    def test_stale_output_not_removable(
        self, tag_context, package_release, publish_settings, fake_runner, monkeypatch
    ):
        """Old build output that cannot be removed fails the build step."""
        publish_settings.resolved_dist_dir().mkdir()

        def refuse(path, *args, **kwargs):
            raise PermissionError(13, "Permission denied", str(path))

        monkeypatch.setattr(shutil, "rmtree", refuse)
        runner = fake_runner("package")

        result = run_package_pipeline(
            tag_context, package_release, publish_settings, runner, StubIndex()
        )

        assert result.failed_step == "build"
        assert result.error_code == BUILD_TOOL_ERROR
        assert "build" not in runner.steps()


class TestPackagePipelineDryRun:
    """Tests for dry-run mode."""

    def test_dry_run_sequence(
        self, tag_context, package_release, settings, fake_runner
    ):
        """Dry-run walks every step without real artifacts."""
        runner = fake_runner("package", dry_run=True)

        result = run_package_pipeline(
            tag_context, package_release, settings, runner, StubIndex()
        )

        assert result.success is True
        assert [s.name for s in result.steps] == list(PACKAGE_STEPS)
        assert not settings.artifacts_dir.exists()
        assert result.step("publish").status is StepStatus.SKIPPED

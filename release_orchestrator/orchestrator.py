"""Release orchestration.

Evaluates the trigger once, then runs the package and image pipelines.
The pipelines share nothing but the immutable TriggerContext, so they may
run one after the other or concurrently.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor

from pydantic import BaseModel

from release_orchestrator.config import Settings
from release_orchestrator.errors import PIPELINE_ERROR, ReleaseError
from release_orchestrator.images.service import run_image_pipeline
from release_orchestrator.images.tags import TagResolver
from release_orchestrator.package.index import PackageIndexClient
from release_orchestrator.package.service import run_package_pipeline
from release_orchestrator.release_config import ReleaseConfig
from release_orchestrator.runner import CommandRunner
from release_orchestrator.trigger.evaluator import evaluate
from release_orchestrator.trigger.models import (
    TriggerContext,
    TriggerDecision,
    TriggerEvent,
)
from release_orchestrator.types import PipelineName, PipelineResult

logger = logging.getLogger(__name__)

ALL_PIPELINES = (PipelineName.PACKAGE, PipelineName.IMAGES)


class ReleaseResult(BaseModel):
    """Outcome of a release run.

    Attributes:
        decision: Trigger decision the run was based on.
        skipped: Whether the trigger decided not to run.
        success: True if skipped or every pipeline that ran succeeded.
        package: Package pipeline result, if it ran.
        images: Image pipeline result, if it ran.
    """

    decision: TriggerDecision
    skipped: bool = False
    success: bool = False
    package: PipelineResult | None = None
    images: PipelineResult | None = None

    def pipeline_results(self) -> list[PipelineResult]:
        return [r for r in (self.package, self.images) if r is not None]


def run_release(
    event: TriggerEvent,
    release: ReleaseConfig,
    settings: Settings,
    pipelines: Sequence[PipelineName] = ALL_PIPELINES,
    package_runner: CommandRunner | None = None,
    image_runner: CommandRunner | None = None,
    index_client: PackageIndexClient | None = None,
    resolver: TagResolver | None = None,
) -> ReleaseResult:
    """Evaluate the trigger and run the selected pipelines.

    Args:
        event: Invoking event.
        release: Release configuration.
        settings: Application settings; `parallel_pipelines` selects
            concurrent execution.
        pipelines: Pipelines to run.
        package_runner: Command runner for the package pipeline.
        image_runner: Command runner for the image pipeline.
        index_client: Package index client for the publish pre-check.
        resolver: Tag resolver for the image pipeline.

    Returns:
        ReleaseResult; a failure of one pipeline never stops the other.
    """
    decision = evaluate(event, release.triggers)
    if not decision.should_run or decision.context is None:
        logger.info("Release skipped: %s", decision.reason)
        return ReleaseResult(decision=decision, skipped=True, success=True)

    context = decision.context
    logger.info(
        "Release run for %s (%s): %s",
        context.ref,
        context.event_type.value,
        decision.reason,
    )

    jobs: dict[PipelineName, Callable[[], PipelineResult]] = {}
    if PipelineName.PACKAGE in pipelines:
        jobs[PipelineName.PACKAGE] = lambda: run_package_pipeline(
            context,
            release,
            settings,
            runner=package_runner,
            index_client=index_client,
        )
    if PipelineName.IMAGES in pipelines:
        jobs[PipelineName.IMAGES] = lambda: run_image_pipeline(
            context, release, settings, runner=image_runner, resolver=resolver
        )

    results = _run_jobs(jobs, parallel=settings.parallel_pipelines)

    result = ReleaseResult(
        decision=decision,
        package=results.get(PipelineName.PACKAGE),
        images=results.get(PipelineName.IMAGES),
    )
    result.success = all(r.success for r in result.pipeline_results())
    _log_summary(context, result)
    return result


def _run_job(
    name: PipelineName, job: Callable[[], PipelineResult]
) -> PipelineResult:
    """Run one pipeline, turning an escaped exception into a failed result."""
    try:
        return job()
    except ReleaseError as e:
        logger.error("%s pipeline aborted: %s", name.value, e.message)
        return PipelineResult(
            pipeline=name,
            failed_step=e.step,
            error_code=e.code,
            error_message=e.message,
        )
    except Exception as e:
        logger.exception("%s pipeline aborted", name.value)
        return PipelineResult(
            pipeline=name,
            error_code=PIPELINE_ERROR,
            error_message=f"{type(e).__name__}: {e}",
        )


def _run_jobs(
    jobs: dict[PipelineName, Callable[[], PipelineResult]],
    parallel: bool,
) -> dict[PipelineName, PipelineResult]:
    if not parallel or len(jobs) < 2:
        return {name: _run_job(name, job) for name, job in jobs.items()}

    with ThreadPoolExecutor(
        max_workers=len(jobs), thread_name_prefix="pipeline"
    ) as pool:
        futures = {
            name: pool.submit(_run_job, name, job) for name, job in jobs.items()
        }
        return {name: future.result() for name, future in futures.items()}


def _log_summary(context: TriggerContext, result: ReleaseResult) -> None:
    for pipeline in result.pipeline_results():
        if pipeline.success:
            logger.info("%s pipeline succeeded", pipeline.pipeline.value)
        else:
            logger.error(
                "%s pipeline failed at %s: %s",
                pipeline.pipeline.value,
                pipeline.failed_step,
                pipeline.error_message,
            )
    logger.info(
        "Release run for %s %s",
        context.ref,
        "succeeded" if result.success else "failed",
    )


__all__ = ["ALL_PIPELINES", "ReleaseResult", "run_release"]

"""Image pipeline service.

Resolves the registry target once, prepares it (an ephemeral local
registry, or a login to the public one), sets up a multi-platform buildx
builder, then builds the configured images in declaration order.

An image whose upstream image failed is not built and is reported as
blocked; images that do not depend on it are still built. The pipeline
fails if any image did not build.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from contextlib import ExitStack

import httpx

from release_orchestrator.config import Settings
from release_orchestrator.errors import (
    IMAGE_BLOCKED,
    RegistryError,
    ReleaseError,
    TagCalculationError,
)
from release_orchestrator.images.builder import (
    ImagePlan,
    build_image,
    setup_builder,
    teardown_builder,
)
from release_orchestrator.images.registry import (
    RegistryTarget,
    docker_login,
    local_registry,
    resolve_registry_target,
)
from release_orchestrator.images.tags import GitHubTagResolver, TagResolver
from release_orchestrator.release_config import ImageSpec, ReleaseConfig
from release_orchestrator.runner import CommandRunner
from release_orchestrator.trigger.models import TriggerContext
from release_orchestrator.types import (
    ImageBuildResult,
    PipelineName,
    PipelineResult,
    StepRecord,
    StepStatus,
)

logger = logging.getLogger(__name__)

IMAGE_SETUP_STEPS = ("resolve-registry", "prepare-registry", "setup-builder")


def make_tag_resolver(
    settings: Settings,
    client: httpx.Client,
    repository: str | None = None,
) -> GitHubTagResolver:
    """Create the GitHub-backed tag resolver from settings."""
    token = settings.github_token.get_secret_value() if settings.github_token else None
    return GitHubTagResolver(
        client,
        repository=settings.github_repository or repository,
        token=token or None,
        api_url=settings.github_api_url,
        timeout=settings.http_timeout,
    )


def plan_image(
    image: ImageSpec,
    context: TriggerContext,
    release: ReleaseConfig,
    registry: RegistryTarget,
    resolver: TagResolver,
    upstream: Mapping[str, ImagePlan],
) -> ImagePlan:
    """Resolve the tags and build arguments of one image.

    Args:
        image: Image to plan.
        context: Trigger context.
        release: Release configuration.
        registry: Registry target of the run.
        resolver: Tag resolver.
        upstream: Plans of already planned images, by name.

    Returns:
        ImagePlan with at least one tag.

    Raises:
        TagCalculationError: If no tag could be resolved, or the upstream
            image has not been planned.
    """
    prefix = registry.tag_prefix(image.name)
    default_tag = f"{prefix}{release.default_tag}"
    tags = resolver.resolve_tags(
        context.ref, prefix, default_tag, release.branch_regex
    )
    if not tags:
        raise TagCalculationError(f"No tags resolved for {image.name}")

    build_args: dict[str, str] = {}
    if image.base_image_from is not None:
        base = upstream.get(image.base_image_from)
        if base is None:
            raise TagCalculationError(
                f"Upstream image {image.base_image_from} of {image.name} "
                "has no resolved tags"
            )
        build_args[image.base_image_arg] = base.primary_tag
    if image.version_arg is not None:
        build_args[image.version_arg] = context.version_string
    build_args.update(image.build_args)

    return ImagePlan(
        name=image.name,
        context=image.context,
        platforms=list(image.platforms),
        tags=tags,
        build_args=build_args,
        depends_on=image.base_image_from,
    )


def plan_images(
    context: TriggerContext,
    release: ReleaseConfig,
    registry: RegistryTarget,
    resolver: TagResolver,
) -> list[ImagePlan]:
    """Plan every configured image in declaration order, without building."""
    plans: dict[str, ImagePlan] = {}
    for image in release.images:
        plans[image.name] = plan_image(
            image, context, release, registry, resolver, plans
        )
    return list(plans.values())


class ImagePipeline:
    """Builds and pushes the configured container images."""

    def __init__(
        self,
        context: TriggerContext,
        release: ReleaseConfig,
        settings: Settings,
        runner: CommandRunner | None = None,
        resolver: TagResolver | None = None,
    ) -> None:
        self.context = context
        self.release = release
        self.settings = settings
        self.runner = runner or CommandRunner(
            settings.logs_dir / PipelineName.IMAGES.value,
            dry_run=settings.dry_run,
            timeout=settings.step_timeout,
            secrets=settings.secret_values(),
        )
        self.resolver = resolver
        self.registry: RegistryTarget | None = None
        self.builder: str | None = None

    def run(self) -> PipelineResult:
        """Run the setup steps, then build every image."""
        result = PipelineResult(pipeline=PipelineName.IMAGES)
        result.images = [
            ImageBuildResult(name=image.name, platforms=list(image.platforms))
            for image in self.release.images
        ]
        logger.info(
            "Image pipeline for %d image(s) at %s", len(result.images), self.context.ref
        )

        with ExitStack() as stack:
            handlers: list[tuple[str, Callable[[StepRecord], None]]] = [
                ("resolve-registry", self.resolve_registry),
                ("prepare-registry", lambda r: self.prepare_registry(r, stack)),
                ("setup-builder", lambda r: self.prepare_builder(r, stack)),
            ]
            for name, handler in handlers:
                if not self._run_step(result, name, handler):
                    for build in result.images:
                        build.status = StepStatus.BLOCKED
                        build.message = f"not built: pipeline failed at {name}"
                    return result

            if self.resolver is None:
                client = stack.enter_context(httpx.Client())
                self.resolver = make_tag_resolver(
                    self.settings, client, self.context.repository
                )
            self.build_images(result)

        result.success = all(b.status is StepStatus.SUCCEEDED for b in result.images)
        return result

    def _run_step(
        self,
        result: PipelineResult,
        name: str,
        handler: Callable[[StepRecord], None],
    ) -> bool:
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
            logger.error("Image pipeline failed at step %s: %s", name, e.message)
            return False
        finally:
            log_path = self.runner.log_path_for(name)
            if log_path.exists():
                record.log_path = str(log_path)

        if record.status is StepStatus.RUNNING:
            record.mark_succeeded()
        return True

    # Steps

    def resolve_registry(self, record: StepRecord) -> None:
        """Decide where this run's images are pushed."""
        self.registry = resolve_registry_target(
            self.context, self.settings.local_registry
        )
        record.details["registry"] = self.registry.display
        record.details["local"] = self.registry.is_local
        logger.info("Registry target: %s", self.registry.display)

    def prepare_registry(self, record: StepRecord, stack: ExitStack) -> None:
        """Start the local registry, or log in to the public one."""
        if self.registry is None:
            raise RegistryError("Registry target has not been resolved")

        if self.registry.is_local:
            container = stack.enter_context(
                local_registry(
                    self.runner,
                    image=self.settings.local_registry_image,
                    port=self.settings.local_registry_port,
                )
            )
            record.details["container"] = container
            return

        username = self.settings.dockerhub_username
        token = self.settings.dockerhub_token
        if self.runner.dry_run and (username is None or token is None):
            record.mark_skipped("(dry-run) registry credentials not configured")
            return
        docker_login(
            self.runner,
            username.get_secret_value() if username else None,
            token.get_secret_value() if token else None,
        )

    def prepare_builder(self, record: StepRecord, stack: ExitStack) -> None:
        """Set up emulation and a buildx builder for all platforms."""
        if not self.release.images:
            record.mark_skipped("no images configured")
            return
        platforms = {p for image in self.release.images for p in image.platforms}
        self.builder = setup_builder(self.runner, platforms)
        stack.callback(teardown_builder, self.runner, self.builder)
        record.details["platforms"] = sorted(platforms)

    def build_images(self, result: PipelineResult) -> None:
        """Plan and build each image, blocking dependents of failures."""
        if self.registry is None or self.resolver is None:
            raise RegistryError("Image pipeline is not prepared")

        plans: dict[str, ImagePlan] = {}
        blocked: dict[str, str] = {}
        for image, build in zip(self.release.images, result.images):
            if image.name in blocked:
                build.status = StepStatus.BLOCKED
                build.error_code = IMAGE_BLOCKED
                build.message = f"upstream image {blocked[image.name]} was not built"
                logger.warning("Skipping %s: %s", image.name, build.message)
                continue

            build.status = StepStatus.RUNNING
            try:
                plan = plan_image(
                    image,
                    self.context,
                    self.release,
                    self.registry,
                    self.resolver,
                    plans,
                )
                build.tags = plan.tags
                build.build_args = plan.build_args
                build_image(
                    self.runner,
                    plan,
                    self.settings.source_dir,
                    builder=self.builder,
                )
            except ReleaseError as e:
                e.step = e.step or f"build-{image.name}"
                build.status = StepStatus.FAILED
                build.error_code = e.code
                build.message = e.message
                for name in self.release.dependents_of(image.name):
                    blocked.setdefault(name, image.name)
                if result.failed_step is None:
                    result.failed_step = e.step
                    result.error_code = e.code
                    result.error_message = e.message
                logger.error("Image %s failed: %s", image.name, e.message)
            else:
                build.status = StepStatus.SUCCEEDED
                plans[image.name] = plan
            finally:
                log_path = self.runner.log_path_for(f"build-{image.name}")
                if log_path.exists():
                    build.log_path = str(log_path)


def run_image_pipeline(
    context: TriggerContext,
    release: ReleaseConfig,
    settings: Settings,
    runner: CommandRunner | None = None,
    resolver: TagResolver | None = None,
) -> PipelineResult:
    """Run the image pipeline.

    Args:
        context: Trigger context of the run.
        release: Release configuration.
        settings: Application settings.
        runner: Command runner (a default one logging under
            `logs_dir/images` is created if omitted).
        resolver: Tag resolver; defaults to the GitHub API resolver.

    Returns:
        PipelineResult with the setup steps and one entry per image.
    """
    return ImagePipeline(
        context, release, settings, runner=runner, resolver=resolver
    ).run()


__all__ = [
    "IMAGE_SETUP_STEPS",
    "ImagePipeline",
    "make_tag_resolver",
    "plan_image",
    "plan_images",
    "run_image_pipeline",
]

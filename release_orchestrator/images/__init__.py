"""Container image pipeline: registry targets, tag calculation and buildx builds."""

from release_orchestrator.images.registry import (
    RegistryTarget,
    resolve_registry_target,
)
from release_orchestrator.images.service import plan_images, run_image_pipeline
from release_orchestrator.images.tags import (
    GitHubTagResolver,
    StaticTagResolver,
    TagResolver,
    calculate_tags,
)

__all__ = [
    "GitHubTagResolver",
    "RegistryTarget",
    "StaticTagResolver",
    "TagResolver",
    "calculate_tags",
    "plan_images",
    "resolve_registry_target",
    "run_image_pipeline",
]

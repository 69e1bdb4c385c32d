"""Models describing why a release run was invoked."""

from __future__ import annotations

from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field

from release_orchestrator.types import EventType

TAG_PREFIX = "refs/tags/"
BRANCH_PREFIX = "refs/heads/"
PULL_PREFIX = "refs/pull/"


class TriggerEvent(BaseModel):
    """Raw event metadata handed over by the invoking CI platform.

    Attributes:
        event_name: Event type name (pull_request, push, workflow_dispatch).
        ref: Full git ref, e.g. refs/tags/1.2.3 or refs/heads/main.
        sha: Commit SHA being built.
        changed_files: Paths changed by the event; None when unknown.
        repository: owner/name of the repository.
        head_ref: Source branch of a pull request.
    """

    model_config = ConfigDict(frozen=True)

    event_name: str
    ref: str
    sha: str = ""
    changed_files: tuple[str, ...] | None = None
    repository: str | None = None
    head_ref: str | None = None

    @classmethod
    def from_env(
        cls,
        env: Mapping[str, str],
        changed_files: tuple[str, ...] | None = None,
    ) -> TriggerEvent:
        """Build an event from GitHub Actions environment variables.

        Args:
            env: Environment mapping (usually os.environ).
            changed_files: Changed paths, if known.

        Raises:
            ValueError: If GITHUB_EVENT_NAME or GITHUB_REF is missing.
        """
        event_name = env.get("GITHUB_EVENT_NAME")
        ref = env.get("GITHUB_REF")
        if not event_name or not ref:
            raise ValueError("GITHUB_EVENT_NAME and GITHUB_REF must be set")
        return cls(
            event_name=event_name,
            ref=ref,
            sha=env.get("GITHUB_SHA", ""),
            changed_files=changed_files,
            repository=env.get("GITHUB_REPOSITORY") or None,
            head_ref=env.get("GITHUB_HEAD_REF") or None,
        )


class TriggerContext(BaseModel):
    """Immutable facts about the run, computed once at start.

    Attributes:
        event_type: Kind of invoking event.
        ref: Full git ref.
        sha: Commit SHA.
        ref_name: Short ref name (tag name, branch name, or PR ref).
        ref_type: 'tag' or 'branch'.
        is_tag: Whether this is a tag build.
        is_main_branch: Whether the ref is the main branch.
    """

    model_config = ConfigDict(frozen=True)

    event_type: EventType
    ref: str
    sha: str = ""
    ref_name: str
    ref_type: str
    is_tag: bool = False
    is_main_branch: bool = False
    repository: str | None = None

    @property
    def is_trusted(self) -> bool:
        """Whether outputs of this run may go to public destinations."""
        return self.is_tag or self.is_main_branch

    @property
    def version_string(self) -> str:
        """Release version passed into images: tag name or git:<sha>."""
        if self.is_tag:
            return self.ref_name
        return f"git:{self.sha}"

    @classmethod
    def from_event(
        cls, event: TriggerEvent, main_branch: str = "main"
    ) -> TriggerContext:
        """Derive the context from a raw event."""
        ref = event.ref
        if ref.startswith(TAG_PREFIX):
            ref_name = ref[len(TAG_PREFIX) :]
            ref_type = "tag"
        elif ref.startswith(BRANCH_PREFIX):
            ref_name = ref[len(BRANCH_PREFIX) :]
            ref_type = "branch"
        else:
            ref_name = ref[len(PULL_PREFIX) :] if ref.startswith(PULL_PREFIX) else ref
            ref_type = "branch"
        return cls(
            event_type=EventType(event.event_name),
            ref=ref,
            sha=event.sha,
            ref_name=ref_name,
            ref_type=ref_type,
            is_tag=ref_type == "tag",
            is_main_branch=ref == f"{BRANCH_PREFIX}{main_branch}",
            repository=event.repository,
        )


class TriggerDecision(BaseModel):
    """Outcome of trigger evaluation."""

    should_run: bool
    reason: str
    context: TriggerContext | None = None
    ignored_files: list[str] = Field(default_factory=list)


__all__ = [
    "BRANCH_PREFIX",
    "TAG_PREFIX",
    "TriggerContext",
    "TriggerDecision",
    "TriggerEvent",
]

"""Trigger evaluation.

Decides from the invoking event whether a release run executes at all and
computes the TriggerContext consumed by both pipelines. Evaluation is pure;
only `list_changed_files` touches git.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from release_orchestrator.release_config import TriggerSpec
from release_orchestrator.trigger.models import (
    TriggerContext,
    TriggerDecision,
    TriggerEvent,
)
from release_orchestrator.trigger.patterns import is_filtered
from release_orchestrator.types import EventType

logger = logging.getLogger(__name__)


def evaluate(event: TriggerEvent, triggers: TriggerSpec) -> TriggerDecision:
    """Decide whether a release run should execute.

    Rules:
    - manual dispatch always runs;
    - tag pushes always run, path filters do not apply to tags;
    - branch pushes matching `branches_ignore` never run;
    - when every changed file is filtered by `paths_ignore` the run is
      skipped (a '!' pattern, such as the release workflow's own file,
      re-includes a path so changes to it always run).

    Args:
        event: Raw event metadata.
        triggers: Trigger filters from the release configuration.

    Returns:
        TriggerDecision with the context populated when the event is known.
    """
    try:
        event_type = EventType(event.event_name)
    except ValueError:
        return TriggerDecision(
            should_run=False,
            reason=f"event '{event.event_name}' does not trigger releases",
        )

    context = TriggerContext.from_event(event, main_branch=triggers.main_branch)

    if event_type is EventType.WORKFLOW_DISPATCH:
        return TriggerDecision(
            should_run=True, reason="manual dispatch", context=context
        )

    if event_type is EventType.PUSH and context.is_tag:
        return TriggerDecision(
            should_run=True, reason=f"tag {context.ref_name}", context=context
        )

    if event_type is EventType.PUSH and is_filtered(
        context.ref_name, triggers.branches_ignore
    ):
        logger.info("Branch %s is ignored by branch filters", context.ref_name)
        return TriggerDecision(
            should_run=False,
            reason=f"branch '{context.ref_name}' is ignored",
            context=context,
        )

    if event.changed_files is not None:
        ignored = [
            path
            for path in event.changed_files
            if is_filtered(path, triggers.paths_ignore)
        ]
        if event.changed_files and len(ignored) == len(event.changed_files):
            logger.info(
                "All %d changed files are ignored by path filters", len(ignored)
            )
            return TriggerDecision(
                should_run=False,
                reason="only ignored paths changed",
                context=context,
                ignored_files=ignored,
            )
        relevant = len(event.changed_files) - len(ignored)
        return TriggerDecision(
            should_run=True,
            reason=f"{relevant} relevant changed file(s)",
            context=context,
            ignored_files=ignored,
        )

    return TriggerDecision(
        should_run=True, reason=f"{event_type.value} on {event.ref}", context=context
    )


def list_changed_files(
    source_dir: Path,
    base: str,
    head: str = "HEAD",
    timeout: int = 60,
) -> tuple[str, ...]:
    """List paths changed between two commits with `git diff --name-only`.

    Args:
        source_dir: Git working tree.
        base: Base revision.
        head: Head revision.
        timeout: Command timeout in seconds.

    Returns:
        Changed paths relative to the repository root.

    Raises:
        ValueError: If git fails.
    """
    try:
        result = subprocess.run(
            ["git", "diff", "--name-only", f"{base}...{head}"],
            cwd=source_dir,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=True,
        )
    except subprocess.CalledProcessError as e:
        raise ValueError(f"git diff failed: {e.stderr.strip()}") from e
    except (OSError, subprocess.TimeoutExpired) as e:
        raise ValueError(f"Failed to run git diff: {e}") from e

    return tuple(line.strip() for line in result.stdout.splitlines() if line.strip())


__all__ = ["evaluate", "list_changed_files"]

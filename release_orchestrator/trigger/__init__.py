"""Trigger evaluation module.

This module handles:
- Parsing invoking event metadata into an immutable TriggerContext
- Path and branch filter patterns
- Deciding whether a release run executes
"""

from release_orchestrator.trigger.evaluator import evaluate, list_changed_files
from release_orchestrator.trigger.models import (
    TriggerContext,
    TriggerDecision,
    TriggerEvent,
)

__all__ = [
    "TriggerContext",
    "TriggerDecision",
    "TriggerEvent",
    "evaluate",
    "list_changed_files",
]

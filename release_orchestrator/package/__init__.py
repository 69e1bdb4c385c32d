"""Package pipeline module.

This module handles:
- Composing build, verification and upload commands
- Artifact discovery, manifests and retention keyed by commit SHA
- Idempotent publishing to the package index
- Running the ordered package pipeline

Access submodules via release_orchestrator.package.service, etc.
"""

from release_orchestrator.package.service import PACKAGE_STEPS, run_package_pipeline

__all__ = ["PACKAGE_STEPS", "run_package_pipeline"]

"""Release Orchestrator - package and container image release pipelines.

This package reimplements a CI release workflow as an explicit process:
a package pipeline that builds, verifies and publishes Python distributions,
and an image pipeline that builds and pushes multi-architecture container
images with calculated version tags.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]

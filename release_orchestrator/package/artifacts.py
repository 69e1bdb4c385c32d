"""Package artifact discovery, manifests and retention.

This module handles:
- Discovering distribution files produced by the build tool
- Classifying them (sdist, wheel)
- Computing checksums
- Retaining the output directory as a bundle keyed by commit SHA
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
import shutil
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from release_orchestrator.errors import ArtifactUploadError
from release_orchestrator.types import ArtifactInfo

logger = logging.getLogger(__name__)

SDIST_SUFFIXES = (".tar.gz", ".zip")
WHEEL_SUFFIX = ".whl"
MANIFEST_FILENAME = "manifest.json"

# Default chunk size for hashing
HASH_CHUNK_SIZE = 64 * 1024  # 64KB

_SDIST_VERSION = re.compile(
    r"^(?P<name>.+?)-(?P<version>\d[^-]*?)(\.tar\.gz|\.zip)$"
)
_WHEEL_VERSION = re.compile(r"^(?P<name>[^-]+)-(?P<version>[^-]+)-.+\.whl$")


def classify_artifact(filename: str) -> str:
    """Classify a distribution file by its name.

    Args:
        filename: The artifact filename.

    Returns:
        Artifact kind (sdist, wheel, other).
    """
    lower = filename.lower()
    if lower.endswith(WHEEL_SUFFIX):
        return "wheel"
    if lower.endswith(SDIST_SUFFIXES):
        return "sdist"
    return "other"


def compute_file_hash(file_path: Path, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    """Compute SHA-256 hash of a file."""
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def discover_artifacts(dist_dir: Path) -> list[ArtifactInfo]:
    """Discover distribution files in a build output directory.

    Args:
        dist_dir: Directory the build tool wrote to.

    Returns:
        ArtifactInfo for every regular file, sorted by name.
    """
    if not dist_dir.exists():
        logger.warning("Build output directory does not exist: %s", dist_dir)
        return []

    artifacts: list[ArtifactInfo] = []
    for path in sorted(dist_dir.iterdir()):
        if not path.is_file():
            continue
        kind = classify_artifact(path.name)
        artifacts.append(
            ArtifactInfo(
                filename=path.name,
                relative_path=path.relative_to(dist_dir).as_posix(),
                size_bytes=path.stat().st_size,
                sha256=compute_file_hash(path),
                kind=kind,
            )
        )
        logger.debug("Discovered artifact: %s (kind=%s)", path.name, kind)

    logger.info("Discovered %d artifacts in %s", len(artifacts), dist_dir)
    return artifacts


def format_listing(artifacts: list[ArtifactInfo]) -> str:
    """Render an `ls -l` style listing of artifacts."""
    return "\n".join(f"{a.size_bytes:>12}  {a.filename}" for a in artifacts)


def _normalize(name: str) -> str:
    return re.sub(r"[-_.]+", "_", name).lower()


def _matches_distribution(filename: str, name: str) -> bool:
    match = _SDIST_VERSION.match(filename)
    return match is not None and _normalize(match.group("name")) == _normalize(name)


def find_sdist(
    artifacts: list[ArtifactInfo], dist_dir: Path, name: str
) -> Path | None:
    """Return the sdist of the named distribution, if present."""
    for artifact in artifacts:
        if artifact.kind == "sdist" and _matches_distribution(
            artifact.filename, name
        ):
            return dist_dir / artifact.relative_path
    return None


def find_wheels(artifacts: list[ArtifactInfo], dist_dir: Path) -> list[Path]:
    """Return all wheels among the artifacts."""
    return [dist_dir / a.relative_path for a in artifacts if a.kind == "wheel"]


def artifact_version(filename: str) -> str | None:
    """Extract the version from an sdist or wheel filename."""
    for pattern in (_WHEEL_VERSION, _SDIST_VERSION):
        match = pattern.match(filename)
        if match:
            return match.group("version")
    return None


def generate_manifest(
    artifacts: list[ArtifactInfo],
    bundle_name: str,
    commit_sha: str | None = None,
) -> dict[str, Any]:
    """Generate an artifact bundle manifest.

    Args:
        artifacts: Artifacts in the bundle.
        bundle_name: Name of the retained bundle.
        commit_sha: Commit the artifacts were built from.

    Returns:
        Manifest dictionary suitable for JSON serialization.
    """
    manifest: dict[str, Any] = {
        "version": "1.0",
        "bundle": bundle_name,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "artifacts": [asdict(a) for a in artifacts],
    }
    if commit_sha:
        manifest["commit_sha"] = commit_sha

    manifest["summary"] = {
        "total_artifacts": len(artifacts),
        "total_size_bytes": sum(a.size_bytes for a in artifacts),
        "kinds": sorted({a.kind for a in artifacts if a.kind}),
    }
    return manifest


def write_manifest(manifest: dict[str, Any], output_path: Path) -> Path:
    """Write manifest to a JSON file."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2, sort_keys=True)
    logger.info("Wrote manifest to %s", output_path)
    return output_path


def bundle_name_for(package_name: str, commit_sha: str) -> str:
    """Return the retained bundle name, keyed by commit SHA."""
    return f"{package_name}-{commit_sha or 'unknown'}"


def upload_build_artifact(
    dist_dir: Path,
    artifacts_root: Path,
    bundle_name: str,
    commit_sha: str | None = None,
) -> tuple[Path, list[ArtifactInfo]]:
    """Retain the contents of the output directory as a named bundle.

    Files are copied into `artifacts_root/bundle_name/` alongside a
    manifest. An existing bundle with the same name is replaced.

    Args:
        dist_dir: Build output directory.
        artifacts_root: Root of retained bundles.
        bundle_name: Bundle name.
        commit_sha: Commit the artifacts were built from.

    Returns:
        Tuple of (bundle directory, retained artifacts).

    Raises:
        ArtifactUploadError: If no files are found in dist_dir, or the
            bundle cannot be written.
    """
    artifacts = discover_artifacts(dist_dir)
    if not artifacts:
        raise ArtifactUploadError(
            f"No files were found with the provided path: {dist_dir}/*. "
            "No artifacts will be uploaded.",
            step="upload-artifact",
        )

    bundle_dir = artifacts_root / bundle_name
    manifest = generate_manifest(artifacts, bundle_name, commit_sha=commit_sha)
    try:
        if bundle_dir.exists():
            logger.info("Replacing existing artifact bundle %s", bundle_dir)
            shutil.rmtree(bundle_dir)
        bundle_dir.mkdir(parents=True)
        for artifact in artifacts:
            shutil.copy2(
                dist_dir / artifact.relative_path, bundle_dir / artifact.filename
            )
        write_manifest(manifest, bundle_dir / MANIFEST_FILENAME)
    except OSError as e:
        raise ArtifactUploadError(
            f"Failed to retain artifacts in {bundle_dir}: {e}", step="upload-artifact"
        ) from e
    logger.info("Retained %d artifacts as %s", len(artifacts), bundle_name)
    return bundle_dir, artifacts


__all__ = [
    "HASH_CHUNK_SIZE",
    "MANIFEST_FILENAME",
    "artifact_version",
    "bundle_name_for",
    "classify_artifact",
    "compute_file_hash",
    "discover_artifacts",
    "find_sdist",
    "find_wheels",
    "format_listing",
    "generate_manifest",
    "upload_build_artifact",
    "write_manifest",
]

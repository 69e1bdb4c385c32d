"""Package index queries.

Publishing is idempotent: before uploading, the index JSON API is asked
which files of the version already exist, and those are skipped. Uploads
additionally pass `--skip-existing`, so a race with another publisher is
still not an error.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

import httpx

from release_orchestrator.errors import PublishError

logger = logging.getLogger(__name__)

DEFAULT_INDEX_URL = "https://pypi.org/pypi"


class PackageIndexClient:
    """Read-only client for a package index JSON API."""

    def __init__(
        self,
        client: httpx.Client,
        base_url: str = DEFAULT_INDEX_URL,
        timeout: float = 30.0,
    ) -> None:
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def release_url(self, name: str, version: str) -> str:
        """Return the JSON API URL for one release."""
        return f"{self.base_url}/{name}/{version}/json"

    def published_files(self, name: str, version: str) -> set[str]:
        """Return filenames already published for a release.

        Args:
            name: Distribution name.
            version: Release version.

        Returns:
            Set of filenames; empty if the release does not exist.

        Raises:
            PublishError: If the index cannot be queried.
        """
        url = self.release_url(name, version)
        logger.debug("Querying package index: %s", url)
        try:
            response = self.client.get(url, timeout=self.timeout)
            if response.status_code == 404:
                return set()
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise PublishError(
                f"HTTP error querying package index: {e.response.status_code}",
                step="publish",
            ) from e
        except httpx.TimeoutException as e:
            raise PublishError(
                f"Timeout querying package index at {url}", step="publish"
            ) from e
        except httpx.RequestError as e:
            raise PublishError(
                f"Network error querying package index: {e}", step="publish"
            ) from e
        except ValueError as e:
            raise PublishError(
                f"Invalid JSON from package index at {url}", step="publish"
            ) from e

        return {
            entry["filename"]
            for entry in data.get("urls", [])
            if isinstance(entry, dict) and "filename" in entry
        }


def select_files_to_publish(
    files: Sequence[Path],
    published: set[str],
) -> tuple[list[Path], list[Path]]:
    """Split files into those to upload and those already on the index.

    Returns:
        Tuple of (to_upload, already_published).
    """
    to_upload: list[Path] = []
    skipped: list[Path] = []
    for path in files:
        if path.name in published:
            skipped.append(path)
        else:
            to_upload.append(path)
    return to_upload, skipped


__all__ = ["DEFAULT_INDEX_URL", "PackageIndexClient", "select_files_to_publish"]

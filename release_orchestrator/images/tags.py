"""Image tag calculation.

Given a git ref, computes the fully qualified tags an image is pushed
under:

- a release tag `X.Y.Z` yields `X.Y.Z`, plus the floating `X.Y`, `X` and
  `latest` tags for each line in which it is the newest release, so a
  backport to an older line never moves the newer floating tags;
- a pre-release tag yields only itself;
- a branch matching the branch pattern yields the branch name;
- anything else, or a run without an API token, yields no tags, and the
  default tag is used instead.

Deciding whether a tag is a backport requires the repository's existing
tags, so resolvers are pluggable: `GitHubTagResolver` asks the GitHub REST
API, `StaticTagResolver` works from an in-memory list.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Protocol

import httpx

from release_orchestrator.errors import TagCalculationError
from release_orchestrator.release_config import DEFAULT_BRANCH_REGEX
from release_orchestrator.trigger.models import BRANCH_PREFIX, TAG_PREFIX

logger = logging.getLogger(__name__)

SEMVER_PATTERN = re.compile(
    r"^v?(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<prerelease>[0-9A-Za-z.-]+))?"
    r"(?:\+(?P<build>[0-9A-Za-z.-]+))?$"
)

LATEST_TAG = "latest"
GITHUB_PAGE_SIZE = 100


@dataclass(frozen=True)
class Version:
    """A parsed semantic version."""

    major: int
    minor: int
    patch: int
    prerelease: str | None = None

    @property
    def key(self) -> tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    @property
    def is_prerelease(self) -> bool:
        return self.prerelease is not None


def parse_version(tag: str) -> Version | None:
    """Parse a semantic version tag, with an optional leading 'v'.

    Returns:
        Version, or None if the tag is not a semantic version.
    """
    match = SEMVER_PATTERN.match(tag)
    if match is None:
        return None
    return Version(
        major=int(match.group("major")),
        minor=int(match.group("minor")),
        patch=int(match.group("patch")),
        prerelease=match.group("prerelease"),
    )


def floating_tags(version: Version, existing_tags: Iterable[str]) -> list[str]:
    """Return the floating tags a release should move.

    Args:
        version: The release being tagged (not a pre-release).
        existing_tags: Other tags of the repository.

    Returns:
        Subset of ['X.Y', 'X', 'latest'] in that order.
    """
    releases = [version.key]
    for tag in existing_tags:
        other = parse_version(tag)
        if other is not None and not other.is_prerelease:
            releases.append(other.key)

    same_minor = [k for k in releases if k[:2] == version.key[:2]]
    same_major = [k for k in releases if k[0] == version.major]

    tags: list[str] = []
    if version.key >= max(same_minor):
        tags.append(f"{version.major}.{version.minor}")
    if version.key >= max(same_major):
        tags.append(f"{version.major}")
    if version.key >= max(releases):
        tags.append(LATEST_TAG)
    return tags


def calculate_tags(
    ref: str,
    prefix: str,
    existing_tags: Iterable[str] = (),
    branch_regex: str = DEFAULT_BRANCH_REGEX,
) -> list[str]:
    """Calculate image tags for a git ref.

    Args:
        ref: Full git ref.
        prefix: Prepended to every tag, e.g. 'localhost:5000/org/image:'.
        existing_tags: Existing repository tags, used to detect backports.
        branch_regex: Pattern a branch name must match to be used as a tag.

    Returns:
        Ordered list of fully qualified tags, possibly empty.
    """
    if ref.startswith(TAG_PREFIX):
        tag = ref[len(TAG_PREFIX) :]
        version = parse_version(tag)
        if version is None:
            logger.debug("Tag %s is not a semantic version", tag)
            return []
        tags = [tag]
        if not version.is_prerelease:
            tags.extend(floating_tags(version, (t for t in existing_tags if t != tag)))
        return [f"{prefix}{t}" for t in tags]

    if ref.startswith(BRANCH_PREFIX):
        branch = ref[len(BRANCH_PREFIX) :]
        if re.match(branch_regex, branch):
            return [f"{prefix}{branch}"]
        logger.debug("Branch %s does not match %s", branch, branch_regex)

    return []


def with_default(tags: Sequence[str], default_tag: str) -> list[str]:
    """Return tags, or [default_tag] if there are none."""
    return list(tags) if tags else [default_tag]


class TagResolver(Protocol):
    """Resolves the tags an image is pushed under."""

    def resolve_tags(
        self,
        ref: str,
        prefix: str,
        default_tag: str,
        branch_regex: str = DEFAULT_BRANCH_REGEX,
    ) -> list[str]:
        """Return a non-empty ordered list of fully qualified tags."""
        ...


class StaticTagResolver:
    """In-memory resolver working from a fixed list of existing tags.

    Args:
        existing_tags: Tags considered already present in the repository.
        token_available: When False, behaves like a run without API
            access and yields only the default tag.
    """

    def __init__(
        self,
        existing_tags: Iterable[str] = (),
        token_available: bool = True,
    ) -> None:
        self.existing_tags = list(existing_tags)
        self.token_available = token_available

    def resolve_tags(
        self,
        ref: str,
        prefix: str,
        default_tag: str,
        branch_regex: str = DEFAULT_BRANCH_REGEX,
    ) -> list[str]:
        if not self.token_available:
            return [default_tag]
        tags = calculate_tags(ref, prefix, self.existing_tags, branch_regex)
        return with_default(tags, default_tag)


class GitHubTagResolver:
    """Resolver listing existing tags through the GitHub REST API.

    The tag list is fetched at most once per resolver, so all images of a
    run are tagged against the same view of the repository.
    """

    def __init__(
        self,
        client: httpx.Client,
        repository: str | None,
        token: str | None,
        api_url: str = "https://api.github.com",
        timeout: float = 30.0,
    ) -> None:
        self.client = client
        self.repository = repository
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._existing: list[str] | None = None

    def list_repository_tags(self) -> list[str]:
        """List all tag names of the repository.

        Raises:
            TagCalculationError: If the repository is unknown or the API
                request fails.
        """
        if self._existing is not None:
            return self._existing
        if not self.repository:
            raise TagCalculationError("Repository is not set; cannot list tags")

        url = f"{self.api_url}/repos/{self.repository}/tags"
        headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {self.token}",
        }
        names: list[str] = []
        page = 1
        try:
            while True:
                response = self.client.get(
                    url,
                    params={"per_page": GITHUB_PAGE_SIZE, "page": page},
                    headers=headers,
                    timeout=self.timeout,
                )
                response.raise_for_status()
                batch = response.json()
                names.extend(item["name"] for item in batch)
                if len(batch) < GITHUB_PAGE_SIZE:
                    break
                page += 1
        except httpx.HTTPStatusError as e:
            raise TagCalculationError(
                f"HTTP error listing tags of {self.repository}: "
                f"{e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise TagCalculationError(
                f"Timeout listing tags of {self.repository}"
            ) from e
        except httpx.RequestError as e:
            raise TagCalculationError(
                f"Network error listing tags of {self.repository}: {e}"
            ) from e
        except (KeyError, TypeError, ValueError) as e:
            raise TagCalculationError(
                f"Unexpected tag listing response for {self.repository}"
            ) from e

        logger.info("Found %d existing tags in %s", len(names), self.repository)
        self._existing = names
        return names

    def resolve_tags(
        self,
        ref: str,
        prefix: str,
        default_tag: str,
        branch_regex: str = DEFAULT_BRANCH_REGEX,
    ) -> list[str]:
        if not self.token:
            logger.info("No API token available, using default tag %s", default_tag)
            return [default_tag]
        existing = self.list_repository_tags() if ref.startswith(TAG_PREFIX) else []
        tags = calculate_tags(ref, prefix, existing, branch_regex)
        return with_default(tags, default_tag)


__all__ = [
    "LATEST_TAG",
    "GitHubTagResolver",
    "StaticTagResolver",
    "TagResolver",
    "Version",
    "calculate_tags",
    "floating_tags",
    "parse_version",
    "with_default",
]

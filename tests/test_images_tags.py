"""Tests for images/tags.py module.

Tests tag calculation and tag resolvers, with mocked GitHub API responses.
"""

import httpx
import pytest
import respx

from release_orchestrator.errors import TAG_CALCULATION_ERROR, TagCalculationError
from release_orchestrator.images.tags import (
    GitHubTagResolver,
    StaticTagResolver,
    Version,
    calculate_tags,
    floating_tags,
    parse_version,
    with_default,
)

PREFIX = "jupyterhub/jupyterhub:"
TAGS_URL = "https://api.github.com/repos/jupyterhub/jupyterhub/tags"


class TestParseVersion:
    """Tests for parse_version function."""

    def test_release(self):
        """Should parse a plain release."""
        assert parse_version("2.5.0") == Version(2, 5, 0)

    def test_leading_v(self):
        """A leading v is accepted."""
        assert parse_version("v1.2.3") == Version(1, 2, 3)

    def test_prerelease(self):
        """Should capture the pre-release part."""
        version = parse_version("3.0.0-beta.1")
        assert version is not None
        assert version.prerelease == "beta.1"
        assert version.is_prerelease is True

    def test_not_semver(self):
        """Non-semantic tags are rejected."""
        assert parse_version("nightly") is None
        assert parse_version("1.2") is None
        assert parse_version("01.2.3") is None


class TestFloatingTags:
    """Tests for floating_tags function."""

    def test_newest_release(self):
        """The newest release moves every floating tag."""
        assert floating_tags(Version(2, 5, 0), ["2.4.0", "1.9.9"]) == [
            "2.5",
            "2",
            "latest",
        ]

    def test_backport_to_older_minor(self):
        """A backport only moves the tags of its own line."""
        assert floating_tags(Version(2, 3, 9), ["2.4.0", "2.3.8"]) == ["2.3"]

    def test_backport_to_older_major(self):
        """A backport to an older major line keeps latest in place."""
        assert floating_tags(Version(1, 9, 1), ["2.0.0", "1.9.0"]) == [
            "1.9",
            "1",
        ]

    def test_prereleases_ignored(self):
        """Newer pre-releases do not hold back floating tags."""
        assert floating_tags(Version(2, 5, 0), ["3.0.0-rc.1"]) == [
            "2.5",
            "2",
            "latest",
        ]


class TestCalculateTags:
    """Tests for calculate_tags function."""

    def test_release_tag(self):
        """A release tag gets itself plus floating tags."""
        tags = calculate_tags("refs/tags/2.5.0", PREFIX, ["2.4.0", "2.5.0"])
        assert tags == [
            f"{PREFIX}2.5.0",
            f"{PREFIX}2.5",
            f"{PREFIX}2",
            f"{PREFIX}latest",
        ]

    def test_backport(self):
        """A backport keeps newer lines' floating tags in place."""
        tags = calculate_tags("refs/tags/2.3.9", PREFIX, ["2.4.0", "2.3.8"])
        assert tags == [f"{PREFIX}2.3.9", f"{PREFIX}2.3"]

    def test_prerelease(self):
        """A pre-release gets only its own tag."""
        tags = calculate_tags("refs/tags/3.0.0-beta.1", PREFIX, ["2.5.0"])
        assert tags == [f"{PREFIX}3.0.0-beta.1"]

    def test_non_semver_tag(self):
        """A non-semantic tag yields nothing."""
        assert calculate_tags("refs/tags/nightly", PREFIX) == []

    def test_matching_branch(self):
        """A branch matching the pattern is used as tag."""
        assert calculate_tags("refs/heads/main", PREFIX) == [f"{PREFIX}main"]

    def test_branch_not_matching(self):
        """A branch not matching the pattern yields nothing."""
        assert calculate_tags("refs/heads/feature", PREFIX, branch_regex="^main$") == []

    def test_pull_request_ref(self):
        """Pull request refs yield nothing."""
        assert calculate_tags("refs/pull/42/merge", PREFIX) == []

    def test_local_prefix(self):
        """The prefix is applied to every tag."""
        tags = calculate_tags("refs/heads/main", "localhost:5000/org/img:")
        assert tags == ["localhost:5000/org/img:main"]


class TestWithDefault:
    """Tests for with_default function."""

    def test_default_when_empty(self):
        assert with_default([], "img:noref") == ["img:noref"]

    def test_tags_kept(self):
        assert with_default(["img:main"], "img:noref") == ["img:main"]


class TestStaticTagResolver:
    """Tests for StaticTagResolver."""

    def test_resolves_from_existing(self):
        """Uses the given tags for backport detection."""
        resolver = StaticTagResolver(["2.4.0"])
        tags = resolver.resolve_tags("refs/tags/2.3.9", PREFIX, f"{PREFIX}noref")
        assert tags == [f"{PREFIX}2.3.9", f"{PREFIX}2.3"]

    def test_without_token(self):
        """Without API access only the default tag is used."""
        resolver = StaticTagResolver(token_available=False)
        tags = resolver.resolve_tags("refs/tags/2.5.0", PREFIX, f"{PREFIX}noref")
        assert tags == [f"{PREFIX}noref"]

    def test_falls_back_to_default(self):
        """Refs yielding no tags get the default tag."""
        resolver = StaticTagResolver()
        tags = resolver.resolve_tags("refs/pull/1/merge", PREFIX, f"{PREFIX}noref")
        assert tags == [f"{PREFIX}noref"]


class TestGitHubTagResolver:
    """Tests for GitHubTagResolver."""

    @respx.mock
    def test_lists_tags(self):
        """Should list tag names with authentication."""
        route = respx.get(TAGS_URL).mock(
            return_value=httpx.Response(200, json=[{"name": "2.4.0"}])
        )

        with httpx.Client() as client:
            resolver = GitHubTagResolver(client, "jupyterhub/jupyterhub", "tok")
            assert resolver.list_repository_tags() == ["2.4.0"]

        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer tok"
        assert request.url.params["per_page"] == "100"

    @respx.mock
    def test_paginates(self):
        """Should follow pages until a short page."""
        route = respx.get(TAGS_URL).mock(
            side_effect=[
                httpx.Response(
                    200, json=[{"name": f"1.0.{i}"} for i in range(100)]
                ),
                httpx.Response(200, json=[{"name": "2.0.0"}]),
            ]
        )

        with httpx.Client() as client:
            resolver = GitHubTagResolver(client, "jupyterhub/jupyterhub", "tok")
            names = resolver.list_repository_tags()

        assert len(names) == 101
        assert names[-1] == "2.0.0"
        assert [c.request.url.params["page"] for c in route.calls] == ["1", "2"]

    @respx.mock
    def test_listing_cached(self):
        """Tags are listed once per resolver."""
        route = respx.get(TAGS_URL).mock(
            return_value=httpx.Response(200, json=[{"name": "2.4.0"}])
        )

        with httpx.Client() as client:
            resolver = GitHubTagResolver(client, "jupyterhub/jupyterhub", "tok")
            resolver.resolve_tags("refs/tags/2.5.0", PREFIX, f"{PREFIX}noref")
            resolver.resolve_tags("refs/tags/2.5.0", "other:", "other:noref")

        assert route.call_count == 1

    @respx.mock
    def test_resolves_backport(self):
        """Existing tags from the API drive backport detection."""
        respx.get(TAGS_URL).mock(
            return_value=httpx.Response(
                200, json=[{"name": "2.4.0"}, {"name": "2.3.9"}]
            )
        )

        with httpx.Client() as client:
            resolver = GitHubTagResolver(client, "jupyterhub/jupyterhub", "tok")
            tags = resolver.resolve_tags("refs/tags/2.3.9", PREFIX, f"{PREFIX}noref")

        assert tags == [f"{PREFIX}2.3.9", f"{PREFIX}2.3"]

    @respx.mock
    def test_branch_does_not_list(self):
        """Branch refs need no tag listing."""
        route = respx.get(TAGS_URL).mock(return_value=httpx.Response(200, json=[]))

        with httpx.Client() as client:
            resolver = GitHubTagResolver(client, "jupyterhub/jupyterhub", "tok")
            tags = resolver.resolve_tags("refs/heads/main", PREFIX, f"{PREFIX}noref")

        assert tags == [f"{PREFIX}main"]
        assert route.call_count == 0

    def test_without_token(self):
        """Without a token the default tag is used and nothing is fetched."""
        with httpx.Client() as client:
            resolver = GitHubTagResolver(client, "jupyterhub/jupyterhub", None)
            tags = resolver.resolve_tags("refs/tags/2.5.0", PREFIX, f"{PREFIX}noref")
        assert tags == [f"{PREFIX}noref"]

    def test_without_repository(self):
        """Listing tags needs a repository."""
        with httpx.Client() as client:
            resolver = GitHubTagResolver(client, None, "tok")
            with pytest.raises(TagCalculationError) as exc_info:
                resolver.list_repository_tags()
        assert exc_info.value.code == TAG_CALCULATION_ERROR

    @respx.mock
    def test_http_error(self):
        """API errors should raise TagCalculationError."""
        respx.get(TAGS_URL).mock(return_value=httpx.Response(403))

        with httpx.Client() as client:
            resolver = GitHubTagResolver(client, "jupyterhub/jupyterhub", "tok")
            with pytest.raises(TagCalculationError, match="403"):
                resolver.list_repository_tags()

    @respx.mock
    def test_network_error(self):
        """Connection failures should raise TagCalculationError."""
        respx.get(TAGS_URL).mock(side_effect=httpx.ConnectError("refused"))

        with httpx.Client() as client:
            resolver = GitHubTagResolver(client, "jupyterhub/jupyterhub", "tok")
            with pytest.raises(TagCalculationError, match="Network error"):
                resolver.list_repository_tags()

    @respx.mock
    def test_unexpected_payload(self):
        """A payload without tag names should raise TagCalculationError."""
        respx.get(TAGS_URL).mock(
            return_value=httpx.Response(200, json=[{"label": "x"}])
        )

        with httpx.Client() as client:
            resolver = GitHubTagResolver(client, "jupyterhub/jupyterhub", "tok")
            with pytest.raises(TagCalculationError, match="Unexpected"):
                resolver.list_repository_tags()

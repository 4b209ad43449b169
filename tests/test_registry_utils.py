"""Tests for dependency rewriting, tarball naming and location rewriting."""
from __future__ import annotations

from gitmirror.domain.registry_utils import (
    WILDCARD_CONSTRAINT,
    decode_revision,
    is_internal_constraint,
    parse_tarball_filename,
    rewrite_internal_dependencies,
    rewrite_location,
    tarball_filename,
    tarball_url,
)

REMOTES = {
    "web-config": "ssh://git@stash.example.com:7999/has/web-config.git",
    "web-data-queue": "ssh://git@stash.example.com:7999/has/web-data-queue.git",
}
PATTERNS = [r"git@stash\.example\.com", r"git@github\.example\.com"]


class TestDecodeRevision:
    def test_placeholder_becomes_slash(self) -> None:
        assert decode_revision("release---2.x") == "release/2.x"

    def test_plain_revision_is_unchanged(self) -> None:
        assert decode_revision("v1.2.3") == "v1.2.3"

    def test_custom_placeholder(self) -> None:
        assert decode_revision("feature__x", placeholder="__") == "feature/x"


class TestInternalConstraint:
    def test_pattern_match_on_known_package(self) -> None:
        assert is_internal_constraint(
            "web-config", "git+ssh://git@stash.example.com:7999/has/web-config.git#v2", REMOTES, PATTERNS
        )

    def test_either_pattern_matches(self) -> None:
        assert is_internal_constraint(
            "web-config", "git+ssh://git@github.example.com/has/web-config.git", REMOTES, PATTERNS
        )

    def test_unknown_package_is_never_internal(self) -> None:
        assert not is_internal_constraint(
            "other-lib", "git+ssh://git@stash.example.com:7999/has/other-lib.git", REMOTES, PATTERNS
        )

    def test_semver_range_is_not_internal(self) -> None:
        assert not is_internal_constraint("web-config", "^1.2.0", REMOTES, PATTERNS)

    def test_own_remote_matches_without_patterns(self) -> None:
        assert is_internal_constraint(
            "web-config", "git+ssh://git@stash.example.com:7999/has/web-config.git#master", REMOTES
        )

    def test_other_remote_does_not_match_without_patterns(self) -> None:
        assert not is_internal_constraint(
            "web-config", "git+ssh://git@stash.example.com:7999/has/web-data-queue.git", REMOTES
        )


class TestRewriteInternalDependencies:
    def test_rewrites_only_internal_constraints(self) -> None:
        manifest = {
            "name": "web-api-ad",
            "dependencies": {
                "web-config": "git+ssh://git@stash.example.com:7999/has/web-config.git",
                "lodash": "^4.17.0",
                "web-data-queue": "git+ssh://git@stash.example.com:7999/has/web-data-queue.git#v1",
            },
        }

        rewritten = rewrite_internal_dependencies(manifest, REMOTES, PATTERNS)

        assert sorted(rewritten) == ["web-config", "web-data-queue"]
        assert manifest["dependencies"] == {
            "web-config": WILDCARD_CONSTRAINT,
            "lodash": "^4.17.0",
            "web-data-queue": WILDCARD_CONSTRAINT,
        }

    def test_manifest_without_dependencies(self) -> None:
        manifest = {"name": "leaf"}
        assert rewrite_internal_dependencies(manifest, REMOTES, PATTERNS) == []
        assert "dependencies" not in manifest

    def test_wildcard_is_left_alone(self) -> None:
        manifest = {"dependencies": {"web-config": "*"}}
        assert rewrite_internal_dependencies(manifest, REMOTES, PATTERNS) == []


class TestTarballNames:
    def test_filename_and_url(self) -> None:
        assert tarball_filename("web-config", "abc123") == "web-config-abc123.tgz"
        assert (
            tarball_url("http://registry.example.com/", "web-config", "abc123")
            == "http://registry.example.com/web-config/-/web-config-abc123.tgz"
        )

    def test_parse_roundtrip_with_hyphenated_name(self) -> None:
        filename = tarball_filename("web-data-queue", "release---2.x")
        assert parse_tarball_filename("web-data-queue", filename) == "release---2.x"

    def test_parse_rejects_foreign_file(self) -> None:
        assert parse_tarball_filename("web-config", "web-data-queue-abc.tgz") is None
        assert parse_tarball_filename("web-config", "web-config-abc.zip") is None
        assert parse_tarball_filename("web-config", "web-config-.tgz") is None


class TestRewriteLocation:
    def test_reroots_tarball(self) -> None:
        descriptor = {
            "name": "web-config",
            "dist": {"tarball": "http://somewhere/web-config/-/web-config-abc.tgz", "shasum": "00"},
        }

        result = rewrite_location(descriptor, "https://npm.internal/mirror/")

        assert result["dist"]["tarball"] == "https://npm.internal/mirror/web-config/-/web-config-abc.tgz"
        assert result["dist"]["shasum"] == "00"
        # The input is not modified.
        assert descriptor["dist"]["tarball"].startswith("http://somewhere/")

    def test_descriptor_without_dist(self) -> None:
        assert rewrite_location({"name": "x"}, "http://h") == {"name": "x"}

"""Unit tests for runner config schema validation and merge semantics."""

from __future__ import annotations

from synapse_orchestrator.config import (
    DEFAULT_CONFIG,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    validate_config,
)


def test_defaults_are_valid_and_copied() -> None:
    config = default_config()
    assert assert_valid_config(config) == DEFAULT_CONFIG

    config["denylist_substrings"].append("shutdown")
    assert "shutdown" not in DEFAULT_CONFIG["denylist_substrings"]


def test_merge_replaces_lists_and_deep_merges_objects() -> None:
    merged = merge_config(
        default_config(),
        {"denylist_substrings": ["mkfs"], "locks": {"takeover_grace_ms": 0}},
    )

    assert merged["denylist_substrings"] == ["mkfs"]
    assert merged["locks"]["takeover_grace_ms"] == 0
    assert merged["locks"]["ttl_ms"] == 20_000


def test_validation_reports_every_issue_with_paths() -> None:
    config = merge_config(
        default_config(),
        {
            "checks": {"BACKEND": ["pytest", ""], "DEPLOY": []},
            "adapters": {"gemini": {"mode": "remote"}},
            "locks": {"ttl_ms": 0},
        },
    )

    result = validate_config(config)

    assert not result.is_valid
    paths = [issue.path for issue in result.issues]
    assert "checks.DEPLOY" in paths
    assert "checks.BACKEND[1]" in paths
    assert "adapters.gemini.mode" in paths
    assert "locks.ttl_ms" in paths


def test_non_object_root_is_rejected() -> None:
    result = validate_config(["not", "a", "mapping"])
    assert result.config is None
    assert result.issues[0].path == "<root>"


def test_migration_guidance_mentions_direction() -> None:
    assert "newer" in migration_guidance(2)
    assert "older" in migration_guidance(0)
    assert migration_guidance(1) == "schema version is current"

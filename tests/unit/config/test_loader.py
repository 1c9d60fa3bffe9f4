"""
synapse-orchestrator — unit tests for config loader

File: tests/unit/config/test_loader.py
Last updated: 2026-10-19

Purpose
- Validate deterministic config loading from defaults, ``config.json``, and env overrides.

What this test file should cover
- First-run materialization of the default file.
- Precedence: env > file > defaults.
- Structured CONFIG_INVALID / UNSUPPORTED_VERSION failures.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from synapse_orchestrator.config import default_config, env_name_for_path, load_runner_config
from synapse_orchestrator.domain.errors import ErrorCode, SynapseError


def _write(path: Path, payload: object) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload), encoding="utf-8")


def test_missing_file_is_written_with_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"

    loaded = load_runner_config(config_path, environ={})

    assert loaded == default_config()
    assert json.loads(config_path.read_text(encoding="utf-8")) == default_config()
    assert config_path.read_text(encoding="utf-8").endswith("\n")


def test_missing_file_without_write_defaults_leaves_disk_untouched(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    assert load_runner_config(config_path, environ={}, write_defaults=False) == default_config()
    assert not config_path.exists()


def test_partial_file_is_merged_over_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    _write(
        config_path,
        {"schema_version": 1, "checks": {"BACKEND": ["pytest -q"]}, "locks": {"ttl_ms": 60000}},
    )

    loaded = load_runner_config(config_path, environ={})

    assert loaded["checks"]["BACKEND"] == ["pytest -q"]
    assert loaded["checks"]["FRONTEND"] == []
    assert loaded["locks"] == {"ttl_ms": 60000, "heartbeat_ms": 5000, "takeover_grace_ms": 2000}
    assert loaded["adapters"]["gemini"]["mode"] == "stub"


def test_env_overrides_take_precedence_over_file(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    _write(config_path, {"schema_version": 1, "adapters": {"gemini": {"mode": "stub"}}})

    loaded = load_runner_config(
        config_path,
        environ={
            "SYNAPSE_LOCKS_TTL_MS": "40000",
            "SYNAPSE_ADAPTERS_GEMINI_MODE": "cli",
            "SYNAPSE_REQUIRE_CHANGES_BACKEND": "off",
        },
    )

    assert loaded["locks"]["ttl_ms"] == 40000
    assert loaded["adapters"]["gemini"]["mode"] == "cli"
    assert loaded["require_changes"]["BACKEND"] is False
    assert env_name_for_path(("adapters", "codexExec", "command")) == (
        "SYNAPSE_ADAPTERS_CODEXEXEC_COMMAND"
    )


def test_bad_env_value_is_config_invalid(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    with pytest.raises(SynapseError, match="must be an integer") as excinfo:
        load_runner_config(config_path, environ={"SYNAPSE_LOCKS_TTL_MS": "soon"})
    assert excinfo.value.code is ErrorCode.CONFIG_INVALID


def test_invalid_json_is_config_invalid(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{not json", encoding="utf-8")

    with pytest.raises(SynapseError, match="invalid JSON") as excinfo:
        load_runner_config(config_path, environ={})

    assert excinfo.value.code is ErrorCode.CONFIG_INVALID
    assert excinfo.value.details["path"] == str(config_path)


def test_schema_violations_are_itemized(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    _write(
        config_path,
        {
            "schema_version": 1,
            "locks": {"ttl_ms": 1000, "heartbeat_ms": 1000, "takeover_grace_ms": 0},
            "typo": True,
        },
    )

    with pytest.raises(SynapseError) as excinfo:
        load_runner_config(config_path, environ={})

    error = excinfo.value
    assert error.code is ErrorCode.CONFIG_INVALID
    paths = {issue["path"] for issue in error.details["issues"]}
    assert {"typo", "locks.heartbeat_ms"} <= paths


def test_newer_schema_version_is_unsupported(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    _write(config_path, {"schema_version": 7})

    with pytest.raises(SynapseError, match="upgrade the synapse-orchestrator runtime") as excinfo:
        load_runner_config(config_path, environ={})

    assert excinfo.value.code is ErrorCode.UNSUPPORTED_VERSION
    assert excinfo.value.details["found"] == 7
    assert excinfo.value.details["supported"] == 1

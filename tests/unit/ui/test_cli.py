"""
synapse-orchestrator — unit tests for the CLI router and exit-code contract

File: tests/unit/ui/test_cli.py
Last updated: 2026-10-19

Purpose
- Drive ``cli_entrypoint`` end to end against a temporary repository.

What this test file should cover
- JSON output for every subcommand and the table renderers.
- Exit codes: 0 success, 1 domain error, 2 usage/config error.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from synapse_orchestrator.main import ExitCode, cli_entrypoint
from synapse_orchestrator.ui.cli import build_parser


def _invoke(
    capsys: pytest.CaptureFixture[str], repo: Path, *argv: str
) -> tuple[int, str, str]:
    code = cli_entrypoint(
        [*argv, "--repo-root", str(repo), "--log-dir", str(repo / "logs"), "--no-color"]
    )
    captured = capsys.readouterr()
    return code, captured.out, captured.err


def _last_json_line(text: str) -> dict[str, object]:
    lines = [line for line in text.splitlines() if line.strip()]
    return json.loads(lines[-1])


def test_orchestrate_status_cancel_roundtrip(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code, out, _ = _invoke(
        capsys, tmp_path, "orchestrate", "Add search", "--phases", "FRONTEND, BACKEND",
        "--constraint", "no new deps",
    )
    assert code == ExitCode.SUCCESS
    created = json.loads(out)
    cycle_id = str(created["cycle_id"])
    phases = created["phases"]
    assert isinstance(phases, list)
    assert [phase["type"] for phase in phases] == ["FRONTEND", "BACKEND"]

    code, out, _ = _invoke(capsys, tmp_path, "status", cycle_id)
    assert code == 0
    assert json.loads(out)["status"] == "QUEUED"

    code, out, _ = _invoke(capsys, tmp_path, "cancel", cycle_id, "--reason", "not now")
    assert code == 0
    assert json.loads(out) == {"cycle_id": cycle_id, "status": "CANCELED"}

    code, out, _ = _invoke(capsys, tmp_path, "logs", cycle_id, "--tail", "1")
    assert code == 0
    assert json.loads(out)["entries"][0]["message"] == "Cycle canceled"


def test_start_once_runs_stub_frontend_cycle(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    _invoke(capsys, tmp_path, "orchestrate", "Polish header", "--phases", "FRONTEND")

    code, out, _ = _invoke(capsys, tmp_path, "start", "--once", "--runner-id", "runner-cli")

    assert code == 0
    payload = json.loads(out)
    assert payload["runner_id"] == "runner-cli"
    assert [item["outcome"] for item in payload["outcomes"]] == ["DONE"]

    code, out, _ = _invoke(capsys, tmp_path, "list", "--status", "DONE")
    assert code == 0
    assert len(json.loads(out)["cycles"]) == 1


def test_list_table_output(
    tmp_path: Path, capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("COLUMNS", "200")
    code, out, _ = _invoke(capsys, tmp_path, "list", "--format", "table")
    assert code == 0
    assert "No cycles found." in out

    _invoke(capsys, tmp_path, "orchestrate", "Table me")
    code, out, _ = _invoke(capsys, tmp_path, "list", "--format", "table")
    assert code == 0
    assert "QUEUED" in out
    assert "Table me" in out


def test_structured_log_file_is_written(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    _invoke(capsys, tmp_path, "orchestrate", "Logged request")

    log_files = list((tmp_path / "logs").glob("run-*/synapse.jsonl"))
    assert len(log_files) == 1
    events = [json.loads(line) for line in log_files[0].read_text(encoding="utf-8").splitlines()]
    assert any(event["message"] == "cycle created" for event in events)


def test_unknown_cycle_exits_with_domain_error(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code, _, err = _invoke(capsys, tmp_path, "status", "20260101T000000Z_missing_000000")

    assert code == ExitCode.DOMAIN_ERROR
    assert _last_json_line(err)["code"] == "CYCLE_NOT_FOUND"


def test_invalid_config_exits_with_config_error(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    config = tmp_path / ".synapse" / "config.json"
    config.parent.mkdir(parents=True)
    config.write_text('{"schema_version": 1, "locks": {"ttl_ms": -1}}', encoding="utf-8")

    code, _, err = _invoke(capsys, tmp_path, "orchestrate", "Blocked by config")

    assert code == ExitCode.CONFIG_ERROR
    assert _last_json_line(err)["code"] == "CONFIG_INVALID"


def test_newer_config_version_exits_with_config_error(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    config = tmp_path / ".synapse" / "config.json"
    config.parent.mkdir(parents=True)
    config.write_text('{"schema_version": 9}', encoding="utf-8")

    code, _, err = _invoke(capsys, tmp_path, "orchestrate", "Too new")

    assert code == ExitCode.CONFIG_ERROR
    failure = _last_json_line(err)
    assert failure["code"] == "UNSUPPORTED_VERSION"
    assert failure["details"]["found"] == 9  # type: ignore[index]
    assert failure["details"]["supported"] == 1  # type: ignore[index]


def test_status_table_output(
    tmp_path: Path, capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("COLUMNS", "200")
    _, out, _ = _invoke(capsys, tmp_path, "orchestrate", "Show me", "--phases", "BACKEND")
    cycle_id = str(json.loads(out)["cycle_id"])

    code, out, _ = _invoke(capsys, tmp_path, "status", cycle_id, "--format", "table")

    assert code == 0
    assert f"cycle {cycle_id}" in out
    assert "BACKEND" in out
    assert "QUEUED" in out


def test_missing_repo_root_is_usage_error(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code, _, err = _invoke(capsys, tmp_path / "nope", "list")
    assert code == ExitCode.CONFIG_ERROR
    assert "repo root is not a directory" in err


def test_argparse_errors_exit_two(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["list", "--limit", "0"]) == 2
    assert "positive integer" in capsys.readouterr().err
    assert cli_entrypoint(["frobnicate"]) == 2


def test_parser_lists_every_subcommand() -> None:
    help_text = build_parser().format_help()
    for command in ("start", "run", "doctor", "health", "orchestrate", "status", "logs"):
        assert command in help_text
    assert "cancel" in help_text
    assert "list" in help_text

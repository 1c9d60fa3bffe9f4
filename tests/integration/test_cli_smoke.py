"""
synapse-orchestrator — CLI subprocess smoke contracts

File: tests/integration/test_cli_smoke.py
Last updated: 2026-10-19

Purpose
- Exercise ``python -m synapse_orchestrator`` as an operator would.
- Verify exit codes, JSON stdout, and persisted cycle side effects.
"""

from __future__ import annotations

import json
import os
import subprocess
import sys
from pathlib import Path

import pytest

pytestmark = pytest.mark.integration

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SRC_PATH = PROJECT_ROOT / "src"


def _run_cli(repo_root: Path, *args: str) -> subprocess.CompletedProcess[str]:
    env = os.environ.copy()
    existing_pythonpath = env.get("PYTHONPATH")
    src_pythonpath = str(SRC_PATH)
    env["PYTHONPATH"] = (
        src_pythonpath if not existing_pythonpath else f"{src_pythonpath}:{existing_pythonpath}"
    )
    env.setdefault("GIT_TERMINAL_PROMPT", "0")
    env.setdefault("GIT_CONFIG_NOSYSTEM", "1")
    env["NO_COLOR"] = "1"
    return subprocess.run(
        [sys.executable, "-m", "synapse_orchestrator", *args],
        cwd=repo_root,
        text=True,
        capture_output=True,
        check=False,
        env=env,
        timeout=120,
    )


def _json_stdout(completed: subprocess.CompletedProcess[str]) -> dict[str, object]:
    assert completed.returncode == 0, completed.stderr
    return json.loads(completed.stdout)


def test_orchestrate_start_status_flow(git_repo: Path) -> None:
    config = git_repo / ".synapse" / "config.json"
    config.parent.mkdir()
    config.write_text(
        json.dumps(
            {
                "schema_version": 1,
                "adapters": {"codexExec": {"command": "echo ok > service.txt; echo"}},
                "checks": {"BACKEND": ["test -s service.txt"]},
            }
        ),
        encoding="utf-8",
    )

    created = _json_stdout(
        _run_cli(git_repo, "orchestrate", "Add service", "--phases", "FRONTEND,BACKEND")
    )
    cycle_id = str(created["cycle_id"])
    assert created["status"] == "QUEUED"

    started = _json_stdout(_run_cli(git_repo, "start", "--once", "--runner-id", "smoke"))
    outcomes = started["outcomes"]
    assert isinstance(outcomes, list)
    assert [item["outcome"] for item in outcomes] == ["DONE", "DONE"]

    status = _json_stdout(_run_cli(git_repo, "status", cycle_id))
    assert status["status"] == "DONE"
    artifacts = status["artifacts"]
    assert isinstance(artifacts, dict)
    assert artifacts["changed_files"] == ["service.txt"]
    assert "test -s service.txt" in artifacts["commands_run"]

    record = json.loads(
        (git_repo / ".synapse" / "cycles" / f"{cycle_id}.json").read_text(encoding="utf-8")
    )
    assert record["status"] == "DONE"
    assert list((git_repo / ".synapse" / "logs").glob("run-*/synapse.jsonl"))


def test_run_drives_single_cycle(git_repo: Path) -> None:
    created = _json_stdout(_run_cli(git_repo, "orchestrate", "Polish", "--phases", "FRONTEND"))

    result = _json_stdout(_run_cli(git_repo, "run", str(created["cycle_id"])))

    assert result["status"] == "DONE"


def test_doctor_and_health_report_json(git_repo: Path) -> None:
    doctor = _json_stdout(_run_cli(git_repo, "doctor"))
    checks = doctor["checks"]
    assert isinstance(checks, list)
    assert {check["name"] for check in checks} >= {"python", "config", "git"}

    health = _json_stdout(_run_cli(git_repo, "health"))
    assert health["ok"] is True


def test_unknown_cycle_exits_one(git_repo: Path) -> None:
    completed = _run_cli(git_repo, "status", "20260101T000000Z_missing_000000")

    assert completed.returncode == 1
    failure = json.loads(completed.stderr.strip().splitlines()[-1])
    assert failure["code"] == "CYCLE_NOT_FOUND"


def test_invalid_arguments_exit_two(git_repo: Path) -> None:
    completed = _run_cli(git_repo, "list", "--status", "BOGUS")

    assert completed.returncode == 2

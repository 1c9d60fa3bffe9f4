"""
synapse-orchestrator — unit tests for the programmatic tool surface

File: tests/unit/control_plane/test_service.py
Last updated: 2026-10-19

Purpose
- Validate argument checking, persistence side effects, and the tool envelope.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from synapse_orchestrator.control_plane import service
from synapse_orchestrator.domain.errors import ErrorCode, SynapseError
from synapse_orchestrator.persistence.cycle_store import CycleStore


def _orchestrate(repo: Path, request: str = "Add dark mode", **extra: object) -> str:
    result = service.orchestrate({"request": request, "repo_root": str(repo), **extra})
    return str(result["cycle_id"])


def test_orchestrate_persists_queued_cycle_and_default_config(tmp_path: Path) -> None:
    result = service.orchestrate(
        {"request": "Add dark mode", "repo_root": str(tmp_path), "constraints": ["no deps"]}
    )

    assert result["status"] == "QUEUED"
    phases = result["phases"]
    assert isinstance(phases, list)
    assert [phase["type"] for phase in phases] == ["FRONTEND", "BACKEND", "FRONTEND_TWEAK"]

    store = CycleStore(tmp_path)
    cycle = store.read(str(result["cycle_id"]))
    assert cycle.constraints == ["no deps"]
    assert cycle.repo_root == str(tmp_path.resolve())
    assert store.config_path.is_file()


def test_orchestrate_honors_plan_phases(tmp_path: Path) -> None:
    cycle_id = _orchestrate(
        tmp_path, plan={"phases": ["BACKEND"], "allow_gemini_for_backend": False}
    )
    status = service.status({"cycle_id": cycle_id, "repo_root": str(tmp_path)})
    phases = status["phases"]
    assert isinstance(phases, list)
    assert [phase["id"] for phase in phases] == ["phase_1_backend"]  # type: ignore[index]


def test_orchestrate_reports_every_argument_issue(tmp_path: Path) -> None:
    with pytest.raises(SynapseError) as excinfo:
        service.orchestrate(
            {
                "repo_root": str(tmp_path),
                "constraints": ["ok", 3],
                "plan": {"phases": ["DEPLOY"], "extra": 1},
                "surprise": True,
            }
        )

    error = excinfo.value
    assert error.code is ErrorCode.SCHEMA_INVALID
    paths = [issue["path"] for issue in error.details["issues"]]
    assert paths == ["surprise", "request", "constraints[1]", "plan.extra", "plan.phases[0]"]
    assert not (tmp_path / ".synapse").exists()


def test_orchestrate_rejects_missing_repo_root(tmp_path: Path) -> None:
    with pytest.raises(SynapseError, match="not a directory") as excinfo:
        service.orchestrate({"request": "x", "repo_root": str(tmp_path / "missing")})
    assert excinfo.value.code is ErrorCode.SCHEMA_INVALID


def test_status_and_logs_projection(tmp_path: Path) -> None:
    cycle_id = _orchestrate(tmp_path)

    status = service.status({"cycle_id": cycle_id, "repo_root": str(tmp_path)})
    assert status["cycle_id"] == cycle_id
    assert status["current_phase_index"] == 0
    assert status["last_error"] is None
    assert status["request"] == "Add dark mode"

    logs = service.logs({"cycle_id": cycle_id, "tail": 1, "repo_root": str(tmp_path)})
    entries = logs["entries"]
    assert isinstance(entries, list)
    assert [entry["message"] for entry in entries] == ["Cycle created"]  # type: ignore[index]

    with pytest.raises(SynapseError, match="invalid arguments"):
        service.logs({"cycle_id": cycle_id, "tail": 0, "repo_root": str(tmp_path)})


@pytest.mark.parametrize("operation", [service.status, service.logs, service.cancel])
@pytest.mark.parametrize("cycle_id", [None, "", 7])
def test_cycle_id_is_validated_by_every_operation(
    tmp_path: Path, operation: Callable[..., object], cycle_id: object
) -> None:
    args: dict[str, object] = {"repo_root": str(tmp_path)}
    if cycle_id is not None:
        args["cycle_id"] = cycle_id

    with pytest.raises(SynapseError) as excinfo:
        operation(args)

    assert excinfo.value.code is ErrorCode.SCHEMA_INVALID
    assert [issue["path"] for issue in excinfo.value.details["issues"]] == ["cycle_id"]
    assert not (tmp_path / ".synapse").exists()


def test_status_of_unknown_cycle_is_not_found(tmp_path: Path) -> None:
    with pytest.raises(SynapseError) as excinfo:
        service.status({"cycle_id": "20260101T000000Z_none_000000", "repo_root": str(tmp_path)})
    assert excinfo.value.code is ErrorCode.CYCLE_NOT_FOUND


def test_cancel_keeps_reason_verbatim_and_is_idempotent(tmp_path: Path) -> None:
    cycle_id = _orchestrate(tmp_path)
    args = {"cycle_id": cycle_id, "reason": " user asked ", "repo_root": str(tmp_path)}

    assert service.cancel(args) == {"cycle_id": cycle_id, "status": "CANCELED"}
    assert service.cancel({**args, "reason": "second"})["status"] == "CANCELED"

    cycle = CycleStore(tmp_path).read(cycle_id)
    assert cycle.canceled_reason == " user asked "
    assert cycle.current_phase_index is None
    assert [entry.message for entry in cycle.logs].count("Cycle canceled") == 1
    assert not CycleStore(tmp_path).lock_path(cycle_id).exists()


def test_list_cycles_filters_and_validates(tmp_path: Path) -> None:
    first = _orchestrate(tmp_path, "First")
    second = _orchestrate(tmp_path, "Second")
    service.cancel({"cycle_id": first, "repo_root": str(tmp_path)})

    listed = service.list_cycles({"repo_root": str(tmp_path)})["cycles"]
    assert isinstance(listed, list)
    assert {item["cycle_id"] for item in listed} == {first, second}  # type: ignore[index]

    queued = service.list_cycles({"repo_root": str(tmp_path), "status": "QUEUED"})["cycles"]
    assert [item["cycle_id"] for item in queued] == [second]  # type: ignore[index,union-attr]

    with pytest.raises(SynapseError) as excinfo:
        service.list_cycles({"repo_root": str(tmp_path), "status": "PAUSED", "limit": 0})
    paths = [issue["path"] for issue in excinfo.value.details["issues"]]
    assert paths == ["limit", "status"]


def test_execute_tool_envelope(tmp_path: Path) -> None:
    ok = service.execute_tool("orchestrate", {"request": "Tool call", "repo_root": str(tmp_path)})
    assert ok["ok"] is True
    assert ok["data"]["status"] == "QUEUED"  # type: ignore[index]

    failed = service.execute_tool("status", {"repo_root": str(tmp_path)})
    assert failed["ok"] is False
    assert failed["error"]["code"] == "SCHEMA_INVALID"  # type: ignore[index]

    unknown = service.execute_tool("deploy", {})
    assert unknown["error"]["code"] == "SCHEMA_INVALID"  # type: ignore[index]
    assert set(service.tool_names()) == {"orchestrate", "status", "logs", "cancel", "list_cycles"}

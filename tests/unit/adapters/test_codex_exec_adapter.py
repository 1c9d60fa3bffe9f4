"""Unit tests for the codex exec BACKEND adapter."""

from __future__ import annotations

from pathlib import Path

import pytest

from synapse_orchestrator.adapters.base import AdapterContext, build_command_line, render_prompt
from synapse_orchestrator.adapters.codex_exec import (
    CodexExecAdapter,
    infer_frontend_tweak_required,
)
from synapse_orchestrator.config import default_config, merge_config
from synapse_orchestrator.control_plane.state_machine import create_cycle
from synapse_orchestrator.domain.errors import ErrorCode, SynapseError
from synapse_orchestrator.domain.models import Cycle, Phase
from synapse_orchestrator.utils.concurrency import CancellationToken


def _context(tmp_path: Path, command: str, *, timeout_ms: int = 10_000) -> AdapterContext:
    config = merge_config(default_config(), {"adapters": {"codexExec": {"command": command}}})
    return AdapterContext(
        config=config,  # type: ignore[arg-type]
        tmp_dir=tmp_path / ".synapse" / "tmp",
        cancel_token=CancellationToken(),
        timeout_ms=timeout_ms,
    )


def _backend(tmp_path: Path) -> tuple[Cycle, Phase]:
    cycle = create_cycle(
        "Add users endpoint", str(tmp_path), constraints=["keep REST"], phase_types=["BACKEND"]
    )
    return cycle, cycle.phases[0]


def test_prompt_mentions_request_and_constraints(tmp_path: Path) -> None:
    cycle, phase = _backend(tmp_path)
    prompt = render_prompt(cycle, phase, ["Do the thing."])

    assert prompt.splitlines() == [
        "You are executing a Synapse BACKEND phase.",
        "Request: Add users endpoint",
        "Constraints: keep REST",
        "Do the thing.",
    ]
    assert build_command_line("codex exec", "it's") == "codex exec 'it'\"'\"'s'"


def test_successful_run_reports_output_and_tweak_flag(tmp_path: Path) -> None:
    cycle, phase = _backend(tmp_path)
    context = _context(tmp_path, "echo done; echo frontend_tweak_required=true; true")

    result = CodexExecAdapter().run(cycle, phase, context)

    assert result.frontend_tweak_required is True
    assert result.report["adapter"] == "codexExec"
    assert "done" in str(result.report["stdout_tail"])
    assert len(result.commands_run) == 1
    assert result.commands_run[0].startswith("echo done;")


def test_nonzero_exit_is_adapter_failed(tmp_path: Path) -> None:
    cycle, phase = _backend(tmp_path)
    with pytest.raises(SynapseError) as excinfo:
        CodexExecAdapter().run(cycle, phase, _context(tmp_path, "echo nope >&2; exit 7;"))

    assert excinfo.value.code is ErrorCode.ADAPTER_FAILED
    assert excinfo.value.details["code"] == 7
    assert "nope" in excinfo.value.details["stderr"]


def test_timeout_is_phase_timeout(tmp_path: Path) -> None:
    cycle, phase = _backend(tmp_path)
    with pytest.raises(SynapseError) as excinfo:
        CodexExecAdapter().run(cycle, phase, _context(tmp_path, "sleep 5;", timeout_ms=200))
    assert excinfo.value.code is ErrorCode.PHASE_TIMEOUT


def test_cancelled_token_is_phase_canceled(tmp_path: Path) -> None:
    cycle, phase = _backend(tmp_path)
    context = _context(tmp_path, "echo hi;")
    context.cancel_token.cancel("user")

    with pytest.raises(SynapseError) as excinfo:
        CodexExecAdapter().run(cycle, phase, context)
    assert excinfo.value.code is ErrorCode.PHASE_CANCELED


def test_tweak_flag_detection() -> None:
    assert infer_frontend_tweak_required("...\nFRONTEND_TWEAK_REQUIRED: true\n")
    assert not infer_frontend_tweak_required("frontend_tweak_required=false")
    assert not infer_frontend_tweak_required("")

"""BACKEND phase adapter that shells out to ``codex exec``."""

from __future__ import annotations

import re
from typing import Final

from synapse_orchestrator.adapters.base import (
    AdapterContext,
    build_command_line,
    render_prompt,
    run_adapter_command,
)
from synapse_orchestrator.domain.models import Cycle, Phase, PhaseExecutionResult

_TWEAK_FLAG_RE: Final[re.Pattern[str]] = re.compile(
    r"frontend_tweak_required\s*[:=]\s*true", re.IGNORECASE
)

_INSTRUCTIONS: Final[tuple[str, ...]] = (
    "Update backend implementation to satisfy frontend contract.",
    "If backend changes require frontend updates, print: frontend_tweak_required=true",
)


def infer_frontend_tweak_required(stdout: str) -> bool:
    return _TWEAK_FLAG_RE.search(stdout) is not None


class CodexExecAdapter:
    name = "codexExec"

    def run(self, cycle: Cycle, phase: Phase, context: AdapterContext) -> PhaseExecutionResult:
        prompt = render_prompt(cycle, phase, _INSTRUCTIONS)
        command = build_command_line(context.config["adapters"]["codexExec"]["command"], prompt)
        result = run_adapter_command("codex exec", command, cycle, phase, context)
        return PhaseExecutionResult(
            report={
                "adapter": self.name,
                "stdout_tail": result.stdout_tail,
                "stderr_tail": result.stderr_tail,
            },
            commands_run=(command,),
            frontend_tweak_required=infer_frontend_tweak_required(result.stdout),
        )


__all__ = ["CodexExecAdapter", "infer_frontend_tweak_required"]

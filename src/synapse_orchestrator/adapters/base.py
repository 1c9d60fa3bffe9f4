"""
synapse-orchestrator — phase adapter contract and shared helpers.

File: src/synapse_orchestrator/adapters/base.py
Last updated: 2026-10-19

Purpose
- Define the interface every external worker adapter implements and the shared
  command execution path that maps sandbox outcomes onto domain errors.

What should be included in this file
- ``AdapterContext`` carrying config, scratch directory, timeout, and cancellation.
- ``PhaseAdapter`` protocol.
- Prompt rendering and the ``<command> <quoted prompt>`` command line.

Functional requirements
- Timeout maps to ``PHASE_TIMEOUT``, cancellation to ``PHASE_CANCELED``, and a
  non-zero exit to ``ADAPTER_FAILED``.
"""

from __future__ import annotations

import shlex
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

from synapse_orchestrator.config.schema import RunnerConfig
from synapse_orchestrator.domain.errors import ErrorCode, SynapseError
from synapse_orchestrator.domain.models import Cycle, Phase, PhaseExecutionResult
from synapse_orchestrator.sandbox.command_sandbox import CommandResult, run_shell_command
from synapse_orchestrator.utils.concurrency import CancellationToken


@dataclass(frozen=True, slots=True)
class AdapterContext:
    """Per-execution inputs shared by all adapters."""

    config: RunnerConfig
    tmp_dir: Path
    cancel_token: CancellationToken
    timeout_ms: int

    def __post_init__(self) -> None:
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be > 0")

    @property
    def denylist(self) -> tuple[str, ...]:
        return tuple(self.config["denylist_substrings"])


@runtime_checkable
class PhaseAdapter(Protocol):
    """External collaborator that performs one phase's work."""

    name: str

    def run(self, cycle: Cycle, phase: Phase, context: AdapterContext) -> PhaseExecutionResult:
        """Execute ``phase`` of ``cycle`` and return a structured result."""
        ...


def render_prompt(cycle: Cycle, phase: Phase, instructions: Sequence[str]) -> str:
    constraints = "; ".join(cycle.constraints) or "none"
    lines = [
        f"You are executing a Synapse {phase.type.value} phase.",
        f"Request: {cycle.request_text}",
        f"Constraints: {constraints}",
        *instructions,
    ]
    return "\n".join(lines)


def build_command_line(command: str, prompt: str) -> str:
    return f"{command} {shlex.quote(prompt)}"


def run_adapter_command(
    adapter_name: str,
    command: str,
    cycle: Cycle,
    phase: Phase,
    context: AdapterContext,
) -> CommandResult:
    """Run an adapter command and translate abnormal outcomes into ``SynapseError``."""

    result = run_shell_command(
        command,
        cycle.repo_root,
        context.timeout_ms,
        context.denylist,
        cancel_token=context.cancel_token,
    )
    if result.canceled:
        raise SynapseError(
            ErrorCode.PHASE_CANCELED,
            f"{adapter_name} phase canceled",
            {"phase_id": phase.id},
        )
    if result.timed_out:
        raise SynapseError(
            ErrorCode.PHASE_TIMEOUT,
            f"{adapter_name} phase timed out",
            {"phase_id": phase.id, "timeout_ms": context.timeout_ms},
        )
    if result.returncode != 0:
        raise SynapseError(
            ErrorCode.ADAPTER_FAILED,
            f"{adapter_name} command failed",
            {
                "command": command,
                "code": result.returncode,
                "stdout": result.stdout_tail,
                "stderr": result.stderr_tail,
            },
        )
    return result


__all__ = [
    "AdapterContext",
    "PhaseAdapter",
    "build_command_line",
    "render_prompt",
    "run_adapter_command",
]

"""
synapse-orchestrator — FRONTEND / FRONTEND_TWEAK adapter backed by the Gemini CLI.

File: src/synapse_orchestrator/adapters/gemini.py
Last updated: 2026-10-19

Purpose
- Run the configured Gemini command and apply its structured edits to the repo.

What should be included in this file
- ``stub`` mode that reports without executing anything.
- Strict parsing of the JSON object printed on stdout.
- File operations confined to ``repo_root`` and unified-diff application via ``git apply``.

Functional requirements
- Unparsable stdout is ``ADAPTER_OUTPUT_PARSE_FAILED``; a structurally wrong
  object is ``ADAPTER_OUTPUT_INVALID``.
- Paths escaping ``repo_root`` fail with ``REPO_BOUNDARY`` before any write.
"""

from __future__ import annotations

import json
import logging
import secrets
import shlex
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, Literal

from synapse_orchestrator.adapters.base import (
    AdapterContext,
    build_command_line,
    render_prompt,
    run_adapter_command,
)
from synapse_orchestrator.domain.errors import ErrorCode, SynapseError
from synapse_orchestrator.domain.models import Cycle, Phase, PhaseExecutionResult
from synapse_orchestrator.sandbox.command_sandbox import run_shell_command, tail
from synapse_orchestrator.utils.fs import is_within

logger = logging.getLogger(__name__)

PATCH_APPLY_TIMEOUT_MS: Final[int] = 30_000
STUB_MESSAGE: Final[str] = (
    "Gemini adapter in stub mode. Configure .synapse/config.json "
    "adapters.gemini.mode=cli to execute Gemini CLI."
)

_ALLOWED_KEYS: Final[frozenset[str]] = frozenset(
    {"patch", "file_ops", "report", "frontend_tweak_required"}
)
_FILE_OP_KEYS: Final[frozenset[str]] = frozenset({"path", "action", "content"})

_INSTRUCTIONS: Final[tuple[str, ...]] = (
    "Return ONLY JSON with one of:",
    '1) {"patch":"...unified diff...","report":{...}}',
    '2) {"file_ops":[{"path":"...","action":"write|delete","content":"..."}],"report":{...}}',
)


@dataclass(frozen=True, slots=True)
class FileOp:
    path: str
    action: Literal["write", "delete"]
    content: str | None = None


@dataclass(frozen=True, slots=True)
class GeminiOutput:
    """Validated stdout payload; exactly one of ``patch`` / ``file_ops`` is set."""

    patch: str | None
    file_ops: tuple[FileOp, ...] | None
    report: dict[str, Any] | None
    frontend_tweak_required: bool | None


class GeminiAdapter:
    name = "gemini"

    def run(self, cycle: Cycle, phase: Phase, context: AdapterContext) -> PhaseExecutionResult:
        settings = context.config["adapters"]["gemini"]
        if settings["mode"] == "stub":
            return PhaseExecutionResult(report={"mode": "stub", "message": STUB_MESSAGE})

        prompt = render_prompt(cycle, phase, _INSTRUCTIONS)
        command = build_command_line(settings["command"], prompt)
        result = run_adapter_command("gemini", command, cycle, phase, context)
        output = parse_gemini_output(result.stdout)

        commands_run = [command]
        repo_root = Path(cycle.repo_root)
        if output.file_ops is not None:
            apply_file_ops(repo_root, output.file_ops)
        if output.patch is not None:
            commands_run.append(apply_patch(repo_root, output.patch, context))

        report = output.report
        if report is None:
            report = {"message": "Gemini phase executed", "stdout_tail": result.stdout_tail}
        return PhaseExecutionResult(
            report=report,
            commands_run=tuple(commands_run),
            frontend_tweak_required=output.frontend_tweak_required,
        )


def parse_gemini_output(stdout: str) -> GeminiOutput:
    text = stdout.strip()
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise SynapseError(
            ErrorCode.ADAPTER_OUTPUT_PARSE_FAILED,
            "Gemini output must be a JSON object",
            {"error": str(exc), "stdout_tail": tail(stdout)},
        ) from exc

    if not isinstance(payload, dict):
        raise _invalid(f"expected JSON object, got {type(payload).__name__}")
    unknown = sorted(key for key in payload if key not in _ALLOWED_KEYS)
    if unknown:
        raise _invalid(f"unexpected fields: {unknown}")

    has_patch = "patch" in payload
    has_ops = "file_ops" in payload
    if has_patch == has_ops:
        raise _invalid("output must include exactly one of patch or file_ops")

    report = payload.get("report")
    if report is not None and not isinstance(report, dict):
        raise _invalid("report must be an object")
    flag = payload.get("frontend_tweak_required")
    if flag is not None and not isinstance(flag, bool):
        raise _invalid("frontend_tweak_required must be a boolean")

    patch: str | None = None
    file_ops: tuple[FileOp, ...] | None = None
    if has_patch:
        raw_patch = payload["patch"]
        if not isinstance(raw_patch, str) or not raw_patch.strip():
            raise SynapseError(ErrorCode.PATCH_INVALID, "patch must be a non-empty string")
        patch = raw_patch
    else:
        file_ops = _parse_file_ops(payload["file_ops"])

    return GeminiOutput(
        patch=patch,
        file_ops=file_ops,
        report=report,
        frontend_tweak_required=flag,
    )


def apply_file_ops(repo_root: Path, file_ops: tuple[FileOp, ...]) -> list[Path]:
    """Write/delete files under ``repo_root``; every path is checked before any change."""

    targets: list[Path] = []
    for op in file_ops:
        candidate = Path(op.path)
        target = candidate if candidate.is_absolute() else repo_root / candidate
        if not is_within(target, repo_root):
            raise SynapseError(
                ErrorCode.REPO_BOUNDARY,
                "file operation outside repo_root",
                {"path": op.path},
            )
        if target.resolve() == repo_root.resolve() or target.is_dir():
            raise SynapseError(
                ErrorCode.ADAPTER_OUTPUT_INVALID,
                "file operation must target a file, not a directory",
                {"path": op.path, "action": op.action},
            )
        targets.append(target)

    for op, target in zip(file_ops, targets, strict=True):
        if op.action == "delete":
            target.unlink(missing_ok=True)
            continue
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(op.content or "", encoding="utf-8")
    logger.info("applied gemini file operations", extra={"count": len(file_ops)})
    return targets


def apply_patch(repo_root: Path, patch: str, context: AdapterContext) -> str:
    """Apply ``patch`` with ``git apply``; return the command that was run."""

    context.tmp_dir.mkdir(parents=True, exist_ok=True)
    patch_path = context.tmp_dir / f"gemini-{int(time.time() * 1000)}-{secrets.token_hex(3)}.patch"
    patch_path.write_text(patch, encoding="utf-8")

    command = f"git apply {shlex.quote(str(patch_path))}"
    result = run_shell_command(
        command,
        repo_root,
        PATCH_APPLY_TIMEOUT_MS,
        context.denylist,
        cancel_token=context.cancel_token,
    )
    if result.canceled:
        raise SynapseError(ErrorCode.PHASE_CANCELED, "patch application canceled")
    if not result.succeeded:
        raise SynapseError(
            ErrorCode.PATCH_APPLY_FAILED,
            "Failed to apply Gemini patch",
            {
                "patch_path": str(patch_path),
                "timed_out": result.timed_out,
                "stdout": result.stdout_tail,
                "stderr": result.stderr_tail,
            },
        )
    patch_path.unlink(missing_ok=True)
    return command


def _parse_file_ops(raw: object) -> tuple[FileOp, ...]:
    if not isinstance(raw, list) or not raw:
        raise _invalid("file_ops must be a non-empty array")
    ops: list[FileOp] = []
    for index, item in enumerate(raw):
        path = f"file_ops[{index}]"
        if not isinstance(item, dict):
            raise _invalid(f"{path} must be an object")
        unknown = sorted(key for key in item if key not in _FILE_OP_KEYS)
        if unknown:
            raise _invalid(f"{path} has unexpected fields: {unknown}")
        target = item.get("path")
        if not isinstance(target, str) or not target.strip():
            raise _invalid(f"{path}.path must be a non-empty string")
        action = item.get("action")
        if action == "write":
            content = item.get("content")
            if not isinstance(content, str):
                raise _invalid(f"{path}: write action requires string content")
            ops.append(FileOp(path=target, action="write", content=content))
        elif action == "delete":
            ops.append(FileOp(path=target, action="delete"))
        else:
            raise _invalid(f"{path}.action must be 'write' or 'delete', got {action!r}")
    return tuple(ops)


def _invalid(message: str) -> SynapseError:
    return SynapseError(ErrorCode.ADAPTER_OUTPUT_INVALID, f"Gemini output invalid: {message}")


__all__ = [
    "FileOp",
    "GeminiAdapter",
    "GeminiOutput",
    "apply_file_ops",
    "apply_patch",
    "parse_gemini_output",
]

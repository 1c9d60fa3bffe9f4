"""
synapse-orchestrator — programmatic surface over the cycle store.

File: src/synapse_orchestrator/control_plane/service.py
Last updated: 2026-10-19

Purpose
- Create, inspect, and cancel cycles from plain JSON-like argument mappings.

What should be included in this file
- ``orchestrate``, ``status``, ``logs``, ``cancel``, ``list_cycles``.
- ``execute_tool`` envelope that renders domain errors instead of raising them.

Functional requirements
- Arguments are validated before any I/O; every violation is reported as
  ``SCHEMA_INVALID`` with ``details.issues = [{path, message}]``.
- ``repo_root`` defaults to the current working directory and is resolved.
- ``cancel`` mutates the cycle only while holding its lock.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from synapse_orchestrator.constants import DEFAULT_STORAGE_DIR
from synapse_orchestrator.control_plane.state_machine import (
    cancel_cycle,
    create_cycle,
    release_orphaned_claims,
    summarize_phases,
    validate_plan_phases,
)
from synapse_orchestrator.domain.errors import ErrorCode, SynapseError
from synapse_orchestrator.domain.models import (
    Cycle,
    CycleStatus,
    JSONValue,
    PhaseType,
    format_timestamp,
)
from synapse_orchestrator.persistence.cycle_lock import CycleLock, LockSettings
from synapse_orchestrator.persistence.cycle_store import CycleStore

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT: Final[int] = 20
MAX_LIST_LIMIT: Final[int] = 1_000
MAX_LOG_TAIL: Final[int] = 10_000

ToolResult = dict[str, JSONValue]
_PLAN_KEYS: Final[frozenset[str]] = frozenset({"phases", "allow_gemini_for_backend"})


@dataclass(frozen=True, slots=True)
class _Issue:
    path: str
    message: str

    def to_dict(self) -> dict[str, JSONValue]:
        return {"path": self.path, "message": self.message}


class _ArgsReader:
    """Collect every argument problem before raising one ``SCHEMA_INVALID``."""

    def __init__(self, args: object, *, allowed: frozenset[str]) -> None:
        self._issues: list[_Issue] = []
        if not isinstance(args, Mapping):
            self._args: Mapping[str, object] = {}
            self.add("$", f"expected object, got {type(args).__name__}")
            return
        self._args = args
        for key in sorted(str(item) for item in args if item not in allowed):
            self.add(key, "unknown field")

    def add(self, path: str, message: str) -> None:
        self._issues.append(_Issue(path, message))

    def text(self, key: str, *, required: bool = False) -> str | None:
        value = self._args.get(key)
        if value is None:
            if required:
                self.add(key, "field is required")
            return None
        if not isinstance(value, str) or not value.strip():
            self.add(key, "must be a non-empty string")
            return None
        return value

    def required_text(self, key: str) -> str:
        """``text(key, required=True)`` that yields ``""`` once an issue is recorded."""
        return self.text(key, required=True) or ""

    def integer(self, key: str, *, minimum: int, maximum: int) -> int | None:
        value = self._args.get(key)
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, int):
            self.add(key, "must be an integer")
            return None
        if not minimum <= value <= maximum:
            self.add(key, f"must be between {minimum} and {maximum}")
            return None
        return value

    def text_list(self, key: str) -> list[str]:
        value = self._args.get(key)
        if value is None:
            return []
        if not isinstance(value, list):
            self.add(key, "must be an array of strings")
            return []
        items: list[str] = []
        for index, item in enumerate(value):
            if not isinstance(item, str) or not item.strip():
                self.add(f"{key}[{index}]", "must be a non-empty string")
                continue
            items.append(item)
        return items

    def raw(self, key: str) -> object:
        return self._args.get(key)

    def repo_root(self) -> Path:
        text = self.text("repo_root")
        return Path(text).expanduser().resolve() if text else Path.cwd().resolve()

    def raise_if_invalid(self) -> None:
        if not self._issues:
            return
        raise SynapseError(
            ErrorCode.SCHEMA_INVALID,
            "invalid arguments",
            {"issues": [issue.to_dict() for issue in self._issues]},
        )


def orchestrate(
    args: Mapping[str, object],
    *,
    storage_dir: str = DEFAULT_STORAGE_DIR,
) -> ToolResult:
    """Create and persist a QUEUED cycle for ``args["request"]``."""

    reader = _ArgsReader(
        args, allowed=frozenset({"request", "repo_root", "constraints", "plan"})
    )
    request = reader.required_text("request")
    repo_root = reader.repo_root()
    constraints = reader.text_list("constraints")
    phase_types = _read_plan(reader)
    reader.raise_if_invalid()

    if not repo_root.is_dir():
        raise SynapseError(
            ErrorCode.SCHEMA_INVALID,
            "repo_root is not a directory",
            {"issues": [_Issue("repo_root", f"{repo_root} is not a directory").to_dict()]},
        )

    store = CycleStore(repo_root, storage_dir)
    store.load_config()
    cycle = create_cycle(
        request,
        str(repo_root),
        constraints=constraints,
        phase_types=phase_types,
    )
    cycle = store.write(cycle)
    logger.info("cycle created", extra={"cycle_id": cycle.id, "phases": len(cycle.phases)})
    return {
        "cycle_id": cycle.id,
        "status": cycle.status.value,
        "phases": summarize_phases(cycle),
    }


def status(args: Mapping[str, object], *, storage_dir: str = DEFAULT_STORAGE_DIR) -> ToolResult:
    reader = _ArgsReader(args, allowed=frozenset({"cycle_id", "repo_root"}))
    cycle_id = reader.required_text("cycle_id")
    repo_root = reader.repo_root()
    reader.raise_if_invalid()

    cycle = CycleStore(repo_root, storage_dir).read(cycle_id)
    return project_status(cycle)


def project_status(cycle: Cycle) -> ToolResult:
    return {
        "cycle_id": cycle.id,
        "status": cycle.status.value,
        "current_phase_index": cycle.current_phase_index,
        "phases": summarize_phases(cycle),
        "created_at": format_timestamp(cycle.created_at),
        "updated_at": format_timestamp(cycle.updated_at),
        "last_error": cycle.last_error.to_dict() if cycle.last_error is not None else None,
        "canceled_reason": cycle.canceled_reason,
        "repo_root": cycle.repo_root,
        "request": cycle.request_text,
        "artifacts": cycle.artifacts.to_dict(),
    }


def logs(args: Mapping[str, object], *, storage_dir: str = DEFAULT_STORAGE_DIR) -> ToolResult:
    """Return the cycle's log entries, optionally only the last ``tail``."""

    reader = _ArgsReader(args, allowed=frozenset({"cycle_id", "tail", "repo_root"}))
    cycle_id = reader.required_text("cycle_id")
    tail = reader.integer("tail", minimum=1, maximum=MAX_LOG_TAIL)
    repo_root = reader.repo_root()
    reader.raise_if_invalid()

    cycle = CycleStore(repo_root, storage_dir).read(cycle_id)
    entries = cycle.logs[-tail:] if tail is not None else cycle.logs
    return {"cycle_id": cycle.id, "entries": [entry.to_dict() for entry in entries]}


def cancel(args: Mapping[str, object], *, storage_dir: str = DEFAULT_STORAGE_DIR) -> ToolResult:
    """Cancel a cycle under its lock; already-terminal cycles are left as they are."""

    reader = _ArgsReader(args, allowed=frozenset({"cycle_id", "reason", "repo_root"}))
    cycle_id = reader.required_text("cycle_id")
    reason = reader.raw("reason")
    if reason is not None and not isinstance(reason, str):
        reader.add("reason", "must be a string")
    repo_root = reader.repo_root()
    reader.raise_if_invalid()

    store = CycleStore(repo_root, storage_dir)
    store.read(cycle_id)
    settings = LockSettings.from_config(store.load_config())
    with CycleLock(store, cycle_id, settings=settings) as lock:
        cycle = store.read(cycle_id)
        canceled = cancel_cycle(cycle, reason if isinstance(reason, str) else None)
        released = release_orphaned_claims(cycle, settings.stale_phase_window_ms)
        if canceled or released:
            lock.raise_if_lost()
            cycle = store.write(cycle)
        if canceled:
            logger.info("cycle canceled", extra={"cycle_id": cycle.id})
    return {"cycle_id": cycle.id, "status": cycle.status.value}


def list_cycles(
    args: Mapping[str, object] | None = None,
    *,
    storage_dir: str = DEFAULT_STORAGE_DIR,
) -> ToolResult:
    reader = _ArgsReader(args or {}, allowed=frozenset({"limit", "status", "repo_root"}))
    limit = reader.integer("limit", minimum=1, maximum=MAX_LIST_LIMIT)
    wanted = reader.text("status")
    if wanted is not None and wanted not in CycleStatus.__members__:
        allowed = ", ".join(member.value for member in CycleStatus)
        reader.add("status", f"must be one of: {allowed}")
    repo_root = reader.repo_root()
    reader.raise_if_invalid()

    cycles = CycleStore(repo_root, storage_dir).list(
        status=wanted,
        limit=limit if limit is not None else DEFAULT_LIST_LIMIT,
    )
    return {"cycles": [_summary(cycle) for cycle in cycles]}


_TOOLS: Final[dict[str, Callable[..., ToolResult]]] = {
    "orchestrate": orchestrate,
    "status": status,
    "logs": logs,
    "cancel": cancel,
    "list_cycles": list_cycles,
}


def execute_tool(
    name: str,
    args: Mapping[str, object] | None = None,
    *,
    storage_dir: str = DEFAULT_STORAGE_DIR,
) -> ToolResult:
    """Dispatch a named operation; domain errors come back as ``{ok: false, error}``."""

    try:
        handler = _TOOLS.get(name)
        if handler is None:
            raise SynapseError(
                ErrorCode.SCHEMA_INVALID,
                f"unknown tool {name!r}",
                {"issues": [_Issue("name", f"expected one of: {sorted(_TOOLS)}").to_dict()]},
            )
        data = handler(args if args is not None else {}, storage_dir=storage_dir)
    except SynapseError as exc:
        return {"ok": False, "error": exc.to_dict()}
    return {"ok": True, "data": data}


def tool_names() -> tuple[str, ...]:
    return tuple(_TOOLS)


def _read_plan(reader: _ArgsReader) -> list[PhaseType] | None:
    plan = reader.raw("plan")
    if plan is None:
        return None
    if not isinstance(plan, Mapping):
        reader.add("plan", "must be an object")
        return None
    for key in sorted(str(item) for item in plan if item not in _PLAN_KEYS):
        reader.add(f"plan.{key}", "unknown field")
    flag = plan.get("allow_gemini_for_backend")
    if flag is not None and not isinstance(flag, bool):
        reader.add("plan.allow_gemini_for_backend", "must be a boolean")
    try:
        return validate_plan_phases(plan.get("phases"))
    except SynapseError as exc:
        for issue in exc.details.get("issues", []):
            reader.add(str(issue["path"]), str(issue["message"]))
        return None


def _summary(cycle: Cycle) -> dict[str, JSONValue]:
    return {
        "cycle_id": cycle.id,
        "status": cycle.status.value,
        "request": cycle.request_text,
        "current_phase_index": cycle.current_phase_index,
        "created_at": format_timestamp(cycle.created_at),
        "updated_at": format_timestamp(cycle.updated_at),
    }


__all__ = [
    "DEFAULT_LIST_LIMIT",
    "cancel",
    "execute_tool",
    "list_cycles",
    "logs",
    "orchestrate",
    "project_status",
    "status",
    "tool_names",
]

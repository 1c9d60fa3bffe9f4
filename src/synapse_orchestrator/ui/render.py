"""Output rendering for synapse-runner table output.

File: src/synapse_orchestrator/ui/render.py
Last updated: 2026-10-19

Purpose
- Render cycle listings, cycle status, and diagnostics as terminal tables.
- Respect the NO_COLOR environment variable and the --no-color CLI flag.

What should be included in this file
- CLIRenderer class with methods for common output patterns, backed by ``rich``.
- Factory function to create a renderer with appropriate settings.

Functional requirements
- JSON output never passes through this module; it is for humans only.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Mapping, Sequence
from typing import IO

from rich.console import Console
from rich.table import Table
from rich.text import Text

_STATUS_STYLES: dict[str, str] = {
    "QUEUED": "cyan",
    "PENDING": "cyan",
    "CLAIMED": "yellow",
    "RUNNING": "yellow",
    "DONE": "green",
    "SKIPPED": "dim",
    "FAILED": "bold red",
    "CANCELED": "magenta",
}


def _color_allowed(no_color_flag: bool) -> bool:
    """Check whether color output should be attempted."""

    if no_color_flag:
        return False
    return not os.environ.get("NO_COLOR", "")


class CLIRenderer:
    """Thin CLI output renderer over a ``rich`` console."""

    def __init__(self, *, no_color: bool = False, file: IO[str] | None = None) -> None:
        self._console = Console(
            file=file if file is not None else sys.stdout,
            no_color=not _color_allowed(no_color),
            highlight=False,
            soft_wrap=True,
        )

    @property
    def console(self) -> Console:
        return self._console

    def heading(self, text: str) -> None:
        self._console.print(Text(text, style="bold"))

    def kv(self, key: str, value: object) -> None:
        self._console.print(Text.assemble((f"{key}: ", "bold"), str(value)))

    def text(self, line: str) -> None:
        self._console.print(Text(line))

    def ok(self, label: str) -> None:
        self._console.print(Text.assemble(("  OK    ", "green"), label))

    def fail(self, label: str) -> None:
        self._console.print(Text.assemble(("  FAIL  ", "bold red"), label))

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[object]],
        *,
        title: str | None = None,
        status_column: int | None = None,
    ) -> None:
        """Print a table; ``status_column`` cells are colored by status name."""

        table = Table(title=title, show_lines=False, header_style="bold")
        for header in headers:
            table.add_column(header)
        for row in rows:
            cells: list[Text] = []
            for index, cell in enumerate(row):
                value = "" if cell is None else str(cell)
                style = _STATUS_STYLES.get(value, "") if index == status_column else ""
                cells.append(Text(value, style=style))
            table.add_row(*cells)
        self._console.print(table)


def render_cycle_list(renderer: CLIRenderer, payload: Mapping[str, object]) -> None:
    cycles = payload.get("cycles")
    rows: list[list[object]] = []
    if isinstance(cycles, list):
        for item in cycles:
            if isinstance(item, Mapping):
                rows.append(
                    [
                        item.get("cycle_id"),
                        item.get("status"),
                        item.get("current_phase_index"),
                        item.get("created_at"),
                        _truncate(str(item.get("request", "")), 60),
                    ]
                )
    if not rows:
        renderer.text("No cycles found.")
        return
    renderer.table(
        ["cycle", "status", "phase", "created", "request"],
        rows,
        status_column=1,
    )


def render_status(renderer: CLIRenderer, payload: Mapping[str, object]) -> None:
    renderer.heading(f"cycle {payload.get('cycle_id')}")
    renderer.kv("status", payload.get("status"))
    renderer.kv("request", payload.get("request"))
    renderer.kv("repo_root", payload.get("repo_root"))
    if payload.get("canceled_reason"):
        renderer.kv("canceled_reason", payload.get("canceled_reason"))
    last_error = payload.get("last_error")
    if isinstance(last_error, Mapping):
        renderer.kv("last_error", f"{last_error.get('code')}: {last_error.get('message')}")

    phases = payload.get("phases")
    rows: list[list[object]] = []
    if isinstance(phases, list):
        for phase in phases:
            if isinstance(phase, Mapping):
                rows.append(
                    [
                        phase.get("id"),
                        phase.get("type"),
                        phase.get("status"),
                        f"{phase.get('attempt_count')}/{phase.get('max_attempts')}",
                    ]
                )
    renderer.table(["phase", "type", "status", "attempts"], rows, status_column=2)


def render_checks(renderer: CLIRenderer, title: str, payload: Mapping[str, object]) -> None:
    renderer.heading(title)
    checks = payload.get("checks")
    if not isinstance(checks, list):
        return
    for check in checks:
        if not isinstance(check, Mapping):
            continue
        label = f"{check.get('name')}: {check.get('detail')}"
        if check.get("ok"):
            renderer.ok(label)
        else:
            renderer.fail(label)


def render_health(renderer: CLIRenderer, payload: Mapping[str, object]) -> None:
    renderer.heading("synapse health")
    renderer.kv("storage_dir", payload.get("storage_dir"))
    cycles = payload.get("cycles")
    if isinstance(cycles, Mapping):
        renderer.table(
            ["status", "count"],
            [[status, count] for status, count in cycles.items()],
            status_column=0,
        )
    locks = payload.get("locks")
    if isinstance(locks, list) and locks:
        rows = [
            [lock.get("file"), lock.get("owner_id"), lock.get("stale"), lock.get("owner_alive")]
            for lock in locks
            if isinstance(lock, Mapping)
        ]
        renderer.table(["lock", "owner", "stale", "owner alive"], rows, title="locks")
    errors = payload.get("errors")
    if isinstance(errors, list):
        for error in errors:
            if isinstance(error, Mapping):
                renderer.fail(f"{error.get('code')}: {error.get('message')}")


def create_renderer(*, no_color: bool = False, file: IO[str] | None = None) -> CLIRenderer:
    """Create a CLI renderer with the given settings."""

    return CLIRenderer(no_color=no_color, file=file)


def _truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


__all__ = [
    "CLIRenderer",
    "create_renderer",
    "render_checks",
    "render_cycle_list",
    "render_health",
    "render_status",
]

"""
synapse-orchestrator — command sandbox.

File: src/synapse_orchestrator/sandbox/command_sandbox.py
Last updated: 2026-10-19

Purpose
- Run one shell command under a working directory with a hard wall-clock timeout
  and cooperative cancellation, after screening it against a denylist.

What should be included in this file
- ``CommandResult`` distinguishing normal exit, timeout, and cancellation.
- Process-group kills so grandchildren die with the shell.
- ``git status --porcelain`` parsing for changed-file snapshots.

Functional requirements
- Denylisted commands are rejected with ``COMMAND_BLOCKED`` before spawning.
- Timeout and cancellation both SIGKILL the whole process group.

Non-functional requirements
- Output is captured in full; tails bound what gets persisted.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Final

from synapse_orchestrator.constants import OUTPUT_TAIL_CHARS
from synapse_orchestrator.domain.errors import ErrorCode, SynapseError
from synapse_orchestrator.utils.concurrency import CancellationToken

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS: Final[float] = 0.02
GIT_STATUS_TIMEOUT_MS: Final[int] = 20_000
_READER_JOIN_SECONDS: Final[float] = 1.0
_SHELL: Final[tuple[str, ...]] = ("bash", "-lc")


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Normalized outcome of one sandboxed shell command."""

    command: str
    returncode: int | None
    stdout: str
    stderr: str
    timed_out: bool = False
    canceled: bool = False
    duration_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return not self.timed_out and not self.canceled and self.returncode == 0

    @property
    def stdout_tail(self) -> str:
        return tail(self.stdout)

    @property
    def stderr_tail(self) -> str:
        return tail(self.stderr)


class CommandSandbox:
    """Execute shell commands rooted at one working directory."""

    def __init__(
        self,
        cwd: Path | str,
        *,
        denylist: Sequence[str] = (),
        default_timeout_ms: int = GIT_STATUS_TIMEOUT_MS,
    ) -> None:
        if default_timeout_ms <= 0:
            raise ValueError("default_timeout_ms must be > 0")
        self._cwd = Path(cwd)
        self._denylist = tuple(denylist)
        self._default_timeout_ms = default_timeout_ms

    @property
    def cwd(self) -> Path:
        return self._cwd

    @property
    def denylist(self) -> tuple[str, ...]:
        return self._denylist

    def run(
        self,
        command: str,
        *,
        timeout_ms: int | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> CommandResult:
        return run_shell_command(
            command,
            self._cwd,
            self._default_timeout_ms if timeout_ms is None else timeout_ms,
            self._denylist,
            cancel_token=cancel_token,
        )


def check_denylist(command: str, denylist: Sequence[str]) -> None:
    for denied in denylist:
        if denied and denied in command:
            raise SynapseError(
                ErrorCode.COMMAND_BLOCKED,
                "Command blocked by denylist",
                {"command": command, "denied": denied},
            )


def run_shell_command(
    command: str,
    cwd: Path | str,
    timeout_ms: int,
    denylist: Sequence[str] = (),
    *,
    cancel_token: CancellationToken | None = None,
) -> CommandResult:
    """Run ``command`` via ``bash -lc`` in its own session and wait for exit, timeout, or cancel."""

    check_denylist(command, denylist)
    if timeout_ms <= 0:
        raise ValueError("timeout_ms must be > 0")

    if cancel_token is not None and cancel_token.is_cancelled:
        return CommandResult(command=command, returncode=None, stdout="", stderr="", canceled=True)

    started = time.monotonic()
    deadline = started + timeout_ms / 1000.0
    process = subprocess.Popen(
        [*_SHELL, command],
        cwd=str(cwd),
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        start_new_session=True,
    )
    stdout_chunks: list[bytes] = []
    stderr_chunks: list[bytes] = []
    readers = [
        _start_reader(process.stdout, stdout_chunks, "stdout"),
        _start_reader(process.stderr, stderr_chunks, "stderr"),
    ]

    timed_out = False
    canceled = False
    try:
        while process.poll() is None:
            if cancel_token is not None and cancel_token.is_cancelled:
                canceled = True
                break
            if time.monotonic() >= deadline:
                timed_out = True
                break
            time.sleep(POLL_INTERVAL_SECONDS)
    finally:
        if process.poll() is None:
            _kill_process_group(process)
        process.wait()
        for reader in readers:
            reader.join(timeout=_READER_JOIN_SECONDS)

    duration_ms = int((time.monotonic() - started) * 1000)
    if timed_out or canceled:
        logger.info(
            "command terminated",
            extra={
                "command": command,
                "timed_out": timed_out,
                "canceled": canceled,
                "duration_ms": duration_ms,
            },
        )
    return CommandResult(
        command=command,
        returncode=None if (timed_out or canceled) else process.returncode,
        stdout=_decode(stdout_chunks),
        stderr=_decode(stderr_chunks),
        timed_out=timed_out,
        canceled=canceled,
        duration_ms=duration_ms,
    )


def tail(text: str, max_chars: int = OUTPUT_TAIL_CHARS) -> str:
    if not text:
        return ""
    if len(text) <= max_chars:
        return text
    return text[-max_chars:]


def list_changed_files(
    repo_root: Path | str,
    *,
    exclude_prefixes: Sequence[str] = (),
) -> list[str]:
    """Return paths reported by ``git status --porcelain``; any git failure yields ``[]``."""

    try:
        result = run_shell_command("git status --porcelain", repo_root, GIT_STATUS_TIMEOUT_MS)
    except OSError as exc:
        logger.warning("git status failed", extra={"repo_root": str(repo_root), "error": str(exc)})
        return []
    if not result.succeeded:
        return []
    return parse_porcelain(result.stdout, exclude_prefixes=exclude_prefixes)


def parse_porcelain(text: str, *, exclude_prefixes: Sequence[str] = ()) -> list[str]:
    prefixes = tuple(prefix.rstrip("/") for prefix in exclude_prefixes if prefix.strip("/"))
    paths: list[str] = []
    for line in text.splitlines():
        if len(line) < 4:
            continue
        entry = line[3:].strip()
        if " -> " in entry:
            entry = entry.split(" -> ", 1)[1]
        if len(entry) >= 2 and entry.startswith('"') and entry.endswith('"'):
            entry = entry[1:-1]
        if not entry:
            continue
        if any(entry == prefix or entry.startswith(prefix + "/") for prefix in prefixes):
            continue
        if entry not in paths:
            paths.append(entry)
    return paths


def _start_reader(stream: IO[bytes] | None, sink: list[bytes], name: str) -> threading.Thread:
    def _drain() -> None:
        if stream is None:
            return
        with stream:
            for chunk in iter(lambda: stream.read(4096), b""):
                sink.append(chunk)

    reader = threading.Thread(target=_drain, name=f"synapse-sandbox-{name}", daemon=True)
    reader.start()
    return reader


def _kill_process_group(process: subprocess.Popen[bytes]) -> None:
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        return
    except PermissionError:
        process.kill()


def _decode(chunks: list[bytes]) -> str:
    return b"".join(chunks).decode("utf-8", errors="replace")


__all__ = [
    "CommandResult",
    "CommandSandbox",
    "check_denylist",
    "list_changed_files",
    "parse_porcelain",
    "run_shell_command",
    "tail",
]

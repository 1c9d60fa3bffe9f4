"""
synapse-orchestrator — unit tests for the command sandbox

File: tests/unit/sandbox/test_command_sandbox.py
Last updated: 2026-10-19

Purpose
- Validate exit/timeout/cancel classification, denylist screening, and porcelain parsing.
"""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from synapse_orchestrator.domain.errors import ErrorCode, SynapseError
from synapse_orchestrator.sandbox.command_sandbox import (
    CommandSandbox,
    check_denylist,
    list_changed_files,
    parse_porcelain,
    run_shell_command,
    tail,
)
from synapse_orchestrator.utils.concurrency import CancellationToken


def test_successful_command_captures_output(tmp_path: Path) -> None:
    result = run_shell_command("echo out; echo err >&2; pwd", tmp_path, 10_000)

    assert result.succeeded
    assert result.returncode == 0
    assert "out" in result.stdout
    assert "err" in result.stderr
    assert str(tmp_path.resolve()) in result.stdout


def test_nonzero_exit_is_not_success(tmp_path: Path) -> None:
    result = CommandSandbox(tmp_path).run("exit 4")
    assert not result.succeeded
    assert result.returncode == 4
    assert not result.timed_out


def test_timeout_kills_process_group(tmp_path: Path) -> None:
    marker = tmp_path / "late.txt"
    started = time.monotonic()

    result = run_shell_command(f"(sleep 1; touch {marker}) & sleep 5", tmp_path, 200)

    assert result.timed_out
    assert result.returncode is None
    assert time.monotonic() - started < 4
    time.sleep(1.5)
    assert not marker.exists()


def test_cancel_token_stops_command(tmp_path: Path) -> None:
    token = CancellationToken()
    timer = threading.Timer(0.2, token.cancel, args=("stop",))
    timer.start()
    try:
        result = run_shell_command("sleep 5", tmp_path, 10_000, cancel_token=token)
    finally:
        timer.cancel()

    assert result.canceled
    assert not result.timed_out
    assert result.duration_ms < 4_000


def test_precancelled_token_never_spawns(tmp_path: Path) -> None:
    token = CancellationToken()
    token.cancel()
    result = run_shell_command(f"touch {tmp_path / 'never'}", tmp_path, 1_000, cancel_token=token)
    assert result.canceled
    assert not (tmp_path / "never").exists()


def test_denylist_blocks_before_spawn(tmp_path: Path) -> None:
    with pytest.raises(SynapseError) as excinfo:
        CommandSandbox(tmp_path, denylist=["git reset --hard"]).run("git reset --hard HEAD")

    assert excinfo.value.code is ErrorCode.COMMAND_BLOCKED
    assert excinfo.value.details["denied"] == "git reset --hard"
    check_denylist("echo fine", ["", "rm -rf /"])


def test_invalid_timeout_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="timeout_ms must be > 0"):
        run_shell_command("true", tmp_path, 0)


def test_tail_keeps_last_characters() -> None:
    assert tail("") == ""
    assert tail("abcdef", 3) == "def"
    assert tail("abc", 10) == "abc"


def test_parse_porcelain_handles_renames_quotes_and_excludes() -> None:
    text = "\n".join(
        [
            " M src/app.py",
            "?? .synapse/cycles/x.json",
            "R  old.txt -> new.txt",
            '?? "with space.txt"',
            "A  src/app.py",
            "",
        ]
    )
    assert parse_porcelain(text, exclude_prefixes=(".synapse",)) == [
        "src/app.py",
        "new.txt",
        "with space.txt",
    ]


def test_list_changed_files_outside_git_is_empty(tmp_path: Path) -> None:
    (tmp_path / "file.txt").write_text("x", encoding="utf-8")
    assert list_changed_files(tmp_path) == []

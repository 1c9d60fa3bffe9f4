"""Shared fixtures for tests that drive real git repositories and shell commands."""

from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path

import pytest


def _git(repo_root: Path, *args: str) -> subprocess.CompletedProcess[str]:
    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"
    env.setdefault("GIT_CONFIG_NOSYSTEM", "1")
    completed = subprocess.run(
        ["git", *args],
        cwd=repo_root,
        env=env,
        check=False,
        text=True,
        capture_output=True,
    )
    if completed.returncode != 0:
        command = "git " + " ".join(args)
        detail = completed.stderr.strip() or completed.stdout.strip()
        raise RuntimeError(f"git command failed: {command}: {detail}")
    return completed


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    if shutil.which("git") is None:
        pytest.skip("git executable not available")
    repo_root = tmp_path / "repo"
    repo_root.mkdir()
    _git(repo_root, "init", "--quiet")
    _git(repo_root, "config", "user.email", "runner@example.invalid")
    _git(repo_root, "config", "user.name", "Synapse Runner")
    (repo_root / "README.md").write_text("# fixture\n", encoding="utf-8")
    _git(repo_root, "add", "README.md")
    _git(repo_root, "commit", "--quiet", "-m", "initial")
    return repo_root

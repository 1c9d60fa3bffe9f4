"""
synapse-orchestrator — filesystem utilities

File: src/synapse_orchestrator/utils/fs.py
Last updated: 2026-10-19

Purpose
- Provide safe, minimal filesystem helpers for atomic writes, exclusive creation,
  quarantine renames, and repository containment checks.

Functional requirements
- Atomic writes use temp files in the destination directory and replace in a single step.
- Exclusive creation fails when the target already exists.
- Containment checks never follow a path outside the given root.

Non-functional requirements
- Standard library only and POSIX rename semantics.
"""

from __future__ import annotations

import contextlib
import json
import os
import secrets
import tempfile
import time
from pathlib import Path

PathLike = str | os.PathLike[str]

__all__ = [
    "atomic_write",
    "create_exclusive",
    "is_within",
    "rename_aside",
    "write_json_atomic",
]


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """
    Atomically write ``data`` to ``path``.

    The write strategy is:
    1. create temp file in the same directory,
    2. write + flush + fsync file data,
    3. replace target via ``os.replace``.
    """

    target = Path(path)
    target_parent = target.parent.resolve(strict=True)
    if not target_parent.is_dir():
        raise NotADirectoryError(f"{target_parent!s} is not a directory")

    fd, temp_name = tempfile.mkstemp(
        prefix=f".{target.name}.",
        suffix=".tmp",
        dir=str(target_parent),
    )
    temp_path = Path(temp_name)

    try:
        if isinstance(data, bytes):
            with os.fdopen(fd, "wb") as file_handle:
                file_handle.write(data)
                file_handle.flush()
                os.fsync(file_handle.fileno())
        else:
            with os.fdopen(fd, "w", encoding=encoding) as file_handle:
                file_handle.write(data)
                file_handle.flush()
                os.fsync(file_handle.fileno())

        os.replace(temp_path, target)
        _fsync_directory(target_parent)
    except Exception:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise


def write_json_atomic(path: PathLike, payload: object) -> None:
    """Atomically write ``payload`` as pretty, key-sorted JSON with a trailing newline."""

    text = json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False) + "\n"
    atomic_write(path, text)


def create_exclusive(path: PathLike, data: str, *, encoding: str = "utf-8") -> None:
    """
    Create ``path`` with ``data`` only if it does not exist yet.

    The content is written to a temp file first and hard-linked into place, so
    readers never observe an empty or partial file. Raises ``FileExistsError``
    when another writer created the file first.
    """

    target = Path(path)
    target_parent = target.parent.resolve(strict=True)
    fd, temp_name = tempfile.mkstemp(
        prefix=f".{target.name}.",
        suffix=".tmp",
        dir=str(target_parent),
    )
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "w", encoding=encoding) as file_handle:
            file_handle.write(data)
            file_handle.flush()
            os.fsync(file_handle.fileno())
        os.link(temp_path, target)
        _fsync_directory(target_parent)
    finally:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)


def rename_aside(path: PathLike, tag: str) -> Path:
    """
    Rename ``path`` to ``<path>.<tag>.<epoch_ms>.<hex>`` and return the new path.

    ``FileNotFoundError`` propagates so callers can detect a lost race.
    """

    source = Path(path)
    destination = source.with_name(
        f"{source.name}.{tag}.{int(time.time() * 1000)}.{secrets.token_hex(3)}"
    )
    os.rename(source, destination)
    return destination


def is_within(child: PathLike, parent: PathLike) -> bool:
    """Return ``True`` if ``child`` resolves to a location within resolved ``parent``.

    ``child`` does not need to exist; symlinks in existing ancestors are resolved.
    """

    try:
        resolved_parent = Path(parent).resolve(strict=True)
    except FileNotFoundError:
        return False
    if not resolved_parent.is_dir():
        return False

    candidate = Path(child)
    if not candidate.is_absolute():
        candidate = resolved_parent / candidate
    resolved_child = candidate.resolve(strict=False)

    return _is_relative_to(resolved_child, resolved_parent)


def _is_relative_to(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
    except ValueError:
        return False
    return True


def _fsync_directory(path: Path) -> None:
    """
    Best-effort directory fsync for metadata durability after ``os.replace``.

    Some platforms/filesystems do not support fsync on directories.
    """

    if os.name == "nt":
        return

    flags = os.O_RDONLY
    if hasattr(os, "O_DIRECTORY"):
        flags |= os.O_DIRECTORY

    try:
        dir_fd = os.open(path, flags)
    except OSError:
        return

    try:
        os.fsync(dir_fd)
    except OSError:
        return
    finally:
        os.close(dir_fd)

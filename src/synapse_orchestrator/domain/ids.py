"""Canonical ID, slug, and token generation for cycles, phases, and lock owners."""

from __future__ import annotations

import os
import re
import secrets
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Final

SLUG_MAX_LENGTH: Final[int] = 40
SLUG_FALLBACK: Final[str] = "cycle"
CYCLE_ID_RANDOM_BYTES: Final[int] = 3
CLAIM_TOKEN_BYTES: Final[int] = 12
OWNER_ID_RANDOM_BYTES: Final[int] = 6
MAX_CYCLE_ID_LENGTH: Final[int] = 128

_WHITESPACE_RE: Final[re.Pattern[str]] = re.compile(r"\s+")
_SLUG_DISALLOWED_RE: Final[re.Pattern[str]] = re.compile(r"[^a-z0-9-]")
_SAFE_ID_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
_CYCLE_ID_RE: Final[re.Pattern[str]] = re.compile(
    r"^(\d{8}T\d{6}Z)_([a-z0-9-]{1,40})_([0-9a-f]{6})$"
)

_RandBytes = Callable[[int], bytes]

__all__ = [
    "CLAIM_TOKEN_BYTES",
    "MAX_CYCLE_ID_LENGTH",
    "SLUG_FALLBACK",
    "SLUG_MAX_LENGTH",
    "default_runner_id",
    "generate_claim_token",
    "generate_cycle_id",
    "generate_owner_id",
    "is_canonical_cycle_id",
    "phase_id_for",
    "slugify",
    "validate_cycle_id",
]


def slugify(text: str) -> str:
    """Lowercase, collapse whitespace to ``-``, drop other characters, cap at 40 chars."""

    lowered = _WHITESPACE_RE.sub("-", text.strip().lower())
    cleaned = _SLUG_DISALLOWED_RE.sub("", lowered)[:SLUG_MAX_LENGTH]
    return cleaned or SLUG_FALLBACK


def generate_cycle_id(
    request_text: str,
    *,
    now: datetime | None = None,
    randbytes: _RandBytes | None = None,
) -> str:
    """Generate ``<YYYYMMDDTHHMMSSZ>_<slug>_<6 hex>``; sortable by creation time."""

    created = (now or datetime.now(tz=UTC)).astimezone(UTC)
    stamp = created.strftime("%Y%m%dT%H%M%SZ")
    suffix = _random_bytes(randbytes, CYCLE_ID_RANDOM_BYTES).hex()
    return f"{stamp}_{slugify(request_text)}_{suffix}"


def is_canonical_cycle_id(id_str: str) -> bool:
    return isinstance(id_str, str) and _CYCLE_ID_RE.fullmatch(id_str) is not None


def validate_cycle_id(id_str: str) -> None:
    """Validate that ``id_str`` is usable as a file stem under the store."""
    if not isinstance(id_str, str):
        raise ValueError(f"cycle id must be a string, got {type(id_str).__name__}")
    if not id_str:
        raise ValueError("cycle id must be non-empty")
    if len(id_str) > MAX_CYCLE_ID_LENGTH:
        raise ValueError(f"cycle id must be <= {MAX_CYCLE_ID_LENGTH} characters")
    if not _SAFE_ID_RE.fullmatch(id_str) or ".." in id_str:
        raise ValueError(f"cycle id contains unsafe characters: {id_str!r}")


def phase_id_for(index: int, phase_type: str) -> str:
    """Return the stable phase id ``phase_<n>_<type lower>`` for a zero-based index."""
    if index < 0:
        raise ValueError("phase index must be >= 0")
    return f"phase_{index + 1}_{phase_type.lower()}"


def generate_claim_token(*, randbytes: _RandBytes | None = None) -> str:
    return _random_bytes(randbytes, CLAIM_TOKEN_BYTES).hex()


def generate_owner_id(*, pid: int | None = None, randbytes: _RandBytes | None = None) -> str:
    resolved_pid = os.getpid() if pid is None else pid
    return f"runner-{resolved_pid}-{_random_bytes(randbytes, OWNER_ID_RANDOM_BYTES).hex()}"


def default_runner_id(*, pid: int | None = None) -> str:
    return f"runner-{os.getpid() if pid is None else pid}"


def _random_bytes(randbytes: _RandBytes | None, count: int) -> bytes:
    provider = secrets.token_bytes if randbytes is None else randbytes
    raw = provider(count)
    if not isinstance(raw, (bytes, bytearray, memoryview)):
        raise ValueError("randbytes must return a bytes-like object")
    as_bytes = bytes(raw)
    if len(as_bytes) != count:
        raise ValueError(f"randbytes must return exactly {count} bytes")
    return as_bytes

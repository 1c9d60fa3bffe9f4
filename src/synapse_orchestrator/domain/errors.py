"""Structured error taxonomy shared by the store, lock, runner, and service surface."""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    """Stable machine-readable error codes."""

    SCHEMA_INVALID = "SCHEMA_INVALID"

    LOCK_HELD = "LOCK_HELD"
    LOCK_CORRUPT = "LOCK_CORRUPT"
    LOCK_STALE_TAKEOVER_FAILED = "LOCK_STALE_TAKEOVER_FAILED"
    LOCK_HEARTBEAT_FAILED = "LOCK_HEARTBEAT_FAILED"
    CLAIM_INVALID = "CLAIM_INVALID"

    CYCLE_NOT_FOUND = "CYCLE_NOT_FOUND"
    CYCLE_CORRUPT = "CYCLE_CORRUPT"
    CONFIG_INVALID = "CONFIG_INVALID"
    UNSUPPORTED_VERSION = "UNSUPPORTED_VERSION"

    PHASE_TIMEOUT = "PHASE_TIMEOUT"
    PHASE_CANCELED = "PHASE_CANCELED"
    PHASE_FAILED = "PHASE_FAILED"
    ADAPTER_FAILED = "ADAPTER_FAILED"
    ADAPTER_OUTPUT_PARSE_FAILED = "ADAPTER_OUTPUT_PARSE_FAILED"
    ADAPTER_OUTPUT_INVALID = "ADAPTER_OUTPUT_INVALID"
    PATCH_INVALID = "PATCH_INVALID"
    PATCH_APPLY_FAILED = "PATCH_APPLY_FAILED"
    REPO_BOUNDARY = "REPO_BOUNDARY"
    COMMAND_BLOCKED = "COMMAND_BLOCKED"
    CHECK_FAILED = "CHECK_FAILED"
    NO_CHANGES = "NO_CHANGES"
    INVALID_PHASE = "INVALID_PHASE"


class SynapseError(RuntimeError):
    """Domain failure carrying a stable ``code`` plus JSON-safe ``details``."""

    def __init__(
        self,
        code: ErrorCode | str,
        message: str,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code: ErrorCode | str = _coerce_code(code)
        self.message = message
        self.details: dict[str, Any] = dict(details or {})

    @property
    def code_text(self) -> str:
        return str(self.code)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code_text, "message": self.message}
        if self.details:
            payload["details"] = dict(self.details)
        return payload

    def __str__(self) -> str:
        return f"{self.code_text}: {self.message}"

    def __repr__(self) -> str:
        return f"SynapseError(code={self.code_text!r}, message={self.message!r})"


def _coerce_code(code: ErrorCode | str) -> ErrorCode | str:
    try:
        return ErrorCode(code)
    except ValueError:
        return str(code)


def error_code_of(exc: BaseException) -> str:
    """Return the code for ``exc``; non-domain exceptions map to ``PHASE_FAILED``."""

    if isinstance(exc, SynapseError):
        return exc.code_text
    return ErrorCode.PHASE_FAILED.value


def as_synapse_error(exc: BaseException) -> SynapseError:
    """Wrap unexpected exceptions into ``PHASE_FAILED`` while keeping domain errors intact."""

    if isinstance(exc, SynapseError):
        return exc
    return SynapseError(
        ErrorCode.PHASE_FAILED,
        str(exc) or exc.__class__.__name__,
        {"exception_type": exc.__class__.__name__},
    )


__all__ = ["ErrorCode", "SynapseError", "as_synapse_error", "error_code_of"]

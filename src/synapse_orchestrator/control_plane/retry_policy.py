"""Fixed retry classification for phase execution failures."""

from __future__ import annotations

import logging
from typing import Final

from synapse_orchestrator.domain.errors import ErrorCode

logger = logging.getLogger(__name__)

RETRYABLE_CODES: Final[frozenset[str]] = frozenset(
    {
        ErrorCode.PHASE_TIMEOUT,
        ErrorCode.LOCK_HELD,
        ErrorCode.CHECK_FAILED,
        ErrorCode.ADAPTER_FAILED,
        ErrorCode.NO_CHANGES,
        ErrorCode.PHASE_FAILED,
    }
)

TERMINAL_CODES: Final[frozenset[str]] = frozenset(
    {
        ErrorCode.SCHEMA_INVALID,
        ErrorCode.ADAPTER_OUTPUT_PARSE_FAILED,
        ErrorCode.ADAPTER_OUTPUT_INVALID,
        ErrorCode.PATCH_INVALID,
        ErrorCode.PATCH_APPLY_FAILED,
        ErrorCode.REPO_BOUNDARY,
        ErrorCode.COMMAND_BLOCKED,
        ErrorCode.CONFIG_INVALID,
        ErrorCode.CYCLE_CORRUPT,
        ErrorCode.UNSUPPORTED_VERSION,
        ErrorCode.INVALID_PHASE,
        ErrorCode.PHASE_CANCELED,
    }
)


def is_retryable(code: ErrorCode | str) -> bool:
    """Return whether a failure with ``code`` may consume another attempt.

    Codes outside both tables are treated as attempt-local and retried.
    """

    text = str(code)
    if text in TERMINAL_CODES:
        return False
    if text not in RETRYABLE_CODES:
        logger.debug("unclassified error code; retrying", extra={"error_code": text})
    return True


__all__ = ["RETRYABLE_CODES", "TERMINAL_CODES", "is_retryable"]

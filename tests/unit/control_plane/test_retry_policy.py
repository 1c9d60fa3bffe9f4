"""Unit tests for the fixed retry classification table."""

from __future__ import annotations

import logging

import pytest

from synapse_orchestrator.control_plane.retry_policy import (
    RETRYABLE_CODES,
    TERMINAL_CODES,
    is_retryable,
)
from synapse_orchestrator.domain.errors import ErrorCode


@pytest.mark.parametrize("code", sorted(RETRYABLE_CODES))
def test_retryable_codes(code: str) -> None:
    assert is_retryable(code)


@pytest.mark.parametrize("code", sorted(TERMINAL_CODES))
def test_terminal_codes(code: str) -> None:
    assert not is_retryable(code)


def test_tables_are_disjoint_and_unknown_codes_retry() -> None:
    assert not RETRYABLE_CODES & TERMINAL_CODES
    assert is_retryable("SOMETHING_TRANSIENT")
    assert not is_retryable(ErrorCode.COMMAND_BLOCKED)


def test_only_unclassified_codes_are_logged(caplog: pytest.LogCaptureFixture) -> None:
    name = "synapse_orchestrator.control_plane.retry_policy"
    caplog.set_level(logging.DEBUG, logger=name)
    logger = logging.getLogger(name)
    logger.addHandler(caplog.handler)
    try:
        assert is_retryable(ErrorCode.CHECK_FAILED)
        assert not caplog.records
        assert is_retryable("SOMETHING_TRANSIENT")
    finally:
        logger.removeHandler(caplog.handler)

    assert {record.getMessage() for record in caplog.records} == {
        "unclassified error code; retrying"
    }

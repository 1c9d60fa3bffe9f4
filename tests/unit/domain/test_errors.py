"""Unit tests for structured domain errors."""

from __future__ import annotations

from synapse_orchestrator.domain.errors import (
    ErrorCode,
    SynapseError,
    as_synapse_error,
    error_code_of,
)


def test_synapse_error_renders_code_message_and_details() -> None:
    error = SynapseError(ErrorCode.LOCK_HELD, "busy", {"cycle_id": "c1"})

    assert error.code is ErrorCode.LOCK_HELD
    assert str(error) == "LOCK_HELD: busy"
    assert error.to_dict() == {
        "code": "LOCK_HELD",
        "message": "busy",
        "details": {"cycle_id": "c1"},
    }
    assert SynapseError("NO_CHANGES", "none").code is ErrorCode.NO_CHANGES


def test_unknown_codes_are_kept_as_text() -> None:
    error = SynapseError("SOMETHING_NEW", "future code")
    assert error.code == "SOMETHING_NEW"
    assert error.code_text == "SOMETHING_NEW"
    assert error.to_dict() == {"code": "SOMETHING_NEW", "message": "future code"}


def test_non_domain_exceptions_wrap_as_phase_failed() -> None:
    wrapped = as_synapse_error(KeyError("missing"))

    assert wrapped.code is ErrorCode.PHASE_FAILED
    assert wrapped.details == {"exception_type": "KeyError"}
    assert error_code_of(RuntimeError("boom")) == "PHASE_FAILED"

    original = SynapseError(ErrorCode.CHECK_FAILED, "check failed")
    assert as_synapse_error(original) is original
    assert error_code_of(original) == "CHECK_FAILED"

"""
synapse-orchestrator — unit tests for the cycle state machine

File: tests/unit/control_plane/test_state_machine.py
Last updated: 2026-10-19

Purpose
- Validate claim/run/done/fail/cancel transitions and their audit log entries.

What this test file should cover
- Single-active-phase invariant under arbitrary operation sequences.
- Retry accounting at the ``max_attempts`` boundary.
- Frontend tweak skip rule in both directions.
- Cancellation while a phase is in flight.
- Lease renewal and release of claims orphaned by cancellation.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from synapse_orchestrator.control_plane.state_machine import (
    DEFAULT_PHASE_ORDER,
    PhaseClaim,
    cancel_cycle,
    claim_current_phase,
    create_cycle,
    finalize_canceled_phase,
    is_stale_claim,
    mark_claimed_phase_running,
    mark_phase_done,
    mark_phase_failed,
    release_orphaned_claims,
    renew_phase_lease,
    summarize_phases,
    validate_plan_phases,
)
from synapse_orchestrator.domain.errors import ErrorCode, SynapseError
from synapse_orchestrator.domain.models import (
    Cycle,
    CycleStatus,
    ErrorInfo,
    PhaseExecutionResult,
    PhaseStatus,
    PhaseType,
)

NOW = datetime(2026, 6, 1, 8, 0, 0, tzinfo=UTC)


def _cycle(*phase_types: PhaseType) -> Cycle:
    plan = list(phase_types) or None
    return create_cycle("Build widget", "/tmp/repo", phase_types=plan, now=NOW)


def _claim_and_run(cycle: Cycle, owner: str = "runner-1") -> PhaseClaim:
    claim = claim_current_phase(cycle, owner, now=NOW)
    assert claim is not None
    mark_claimed_phase_running(cycle, claim.phase_index, claim.claim_token, now=NOW)
    return claim


def _messages(cycle: Cycle) -> list[str]:
    return [entry.message for entry in cycle.logs]


def test_create_cycle_defaults() -> None:
    cycle = _cycle()

    assert cycle.status is CycleStatus.QUEUED
    assert cycle.current_phase_index == 0
    assert [phase.type for phase in cycle.phases] == list(DEFAULT_PHASE_ORDER)
    assert [phase.id for phase in cycle.phases] == [
        "phase_1_frontend",
        "phase_2_backend",
        "phase_3_frontend_tweak",
    ]
    assert cycle.phases[2].timeout_ms == 600_000
    assert all(phase.max_attempts == 2 for phase in cycle.phases)
    assert _messages(cycle) == ["Cycle created"]


def test_claim_marks_cycle_running_and_blocks_second_claimant() -> None:
    cycle = _cycle(PhaseType.FRONTEND)

    first = claim_current_phase(cycle, "runner-a", now=NOW)
    second = claim_current_phase(cycle, "runner-b", now=NOW)

    assert first is not None
    assert second is None
    assert cycle.status is CycleStatus.RUNNING
    assert cycle.phases[0].status is PhaseStatus.CLAIMED
    assert cycle.phases[0].claimed_by == "runner-a"


def test_happy_path_runs_to_done() -> None:
    cycle = _cycle(PhaseType.FRONTEND, PhaseType.BACKEND)

    for _ in range(2):
        claim = _claim_and_run(cycle)
        mark_phase_done(cycle, claim.phase_index, claim.claim_token, {"ok": True}, None, now=NOW)

    assert cycle.status is CycleStatus.DONE
    assert cycle.current_phase_index is None
    assert [phase.attempt_count for phase in cycle.phases] == [1, 1]
    assert _messages(cycle)[-1] == "Cycle completed successfully"
    assert claim_current_phase(cycle, "runner-1", now=NOW) is None


def test_running_requires_matching_token() -> None:
    cycle = _cycle(PhaseType.BACKEND)
    claim = claim_current_phase(cycle, "runner-1", now=NOW)
    assert claim is not None

    with pytest.raises(SynapseError) as excinfo:
        mark_claimed_phase_running(cycle, claim.phase_index, "wrong-token", now=NOW)
    assert excinfo.value.code is ErrorCode.CLAIM_INVALID

    with pytest.raises(SynapseError) as excinfo:
        mark_phase_done(cycle, 7, claim.claim_token, None, None)
    assert excinfo.value.code is ErrorCode.INVALID_PHASE


def test_retry_then_permanent_failure_at_max_attempts() -> None:
    cycle = _cycle(PhaseType.BACKEND)
    error = ErrorInfo(code="CHECK_FAILED", message="Check failed: pytest")

    claim = _claim_and_run(cycle)
    mark_phase_failed(cycle, claim.phase_index, claim.claim_token, error, now=NOW)
    assert cycle.phases[0].status is PhaseStatus.PENDING
    assert cycle.status is CycleStatus.RUNNING
    assert cycle.last_error == error
    assert _messages(cycle)[-1] == "Phase failed; retrying (1/2)"

    claim = _claim_and_run(cycle)
    mark_phase_failed(cycle, claim.phase_index, claim.claim_token, error, now=NOW)
    assert cycle.phases[0].status is PhaseStatus.FAILED
    assert cycle.phases[0].attempt_count == 2
    assert cycle.status is CycleStatus.FAILED
    assert cycle.current_phase_index is None
    assert _messages(cycle)[-1] == "Phase failed permanently: Check failed: pytest"


def test_force_terminal_fails_on_first_attempt() -> None:
    cycle = _cycle(PhaseType.BACKEND)
    claim = _claim_and_run(cycle)

    mark_phase_failed(
        cycle,
        claim.phase_index,
        claim.claim_token,
        SynapseError(ErrorCode.COMMAND_BLOCKED, "blocked", {"command": "rm -rf /"}),
        force_terminal=True,
        now=NOW,
    )

    assert cycle.status is CycleStatus.FAILED
    assert cycle.phases[0].attempt_count == 1
    assert cycle.last_error is not None
    assert cycle.last_error.code == "COMMAND_BLOCKED"
    assert cycle.logs[-1].meta == {"code": "COMMAND_BLOCKED", "command": "rm -rf /"}


@pytest.mark.parametrize(
    ("tweak_required", "expected_status", "expected_message"),
    [
        (None, PhaseStatus.SKIPPED, "Frontend tweak skipped (not required)"),
        (False, PhaseStatus.SKIPPED, "Frontend tweak skipped (not required)"),
        (True, PhaseStatus.PENDING, "Frontend tweak required by backend output"),
    ],
)
def test_frontend_tweak_skip_rule(
    tweak_required: bool | None,
    expected_status: PhaseStatus,
    expected_message: str,
) -> None:
    cycle = _cycle(PhaseType.BACKEND, PhaseType.FRONTEND_TWEAK)
    claim = _claim_and_run(cycle)

    mark_phase_done(
        cycle,
        claim.phase_index,
        claim.claim_token,
        {},
        PhaseExecutionResult(frontend_tweak_required=tweak_required),
        now=NOW,
    )

    assert cycle.phases[1].status is expected_status
    assert expected_message in _messages(cycle)
    if expected_status is PhaseStatus.SKIPPED:
        assert cycle.status is CycleStatus.DONE
    else:
        assert cycle.current_phase_index == 1


def test_cancel_in_flight_then_finalize() -> None:
    cycle = _cycle(PhaseType.FRONTEND, PhaseType.BACKEND)
    claim = _claim_and_run(cycle)

    assert cancel_cycle(cycle, "  changed my mind ", now=NOW)
    assert cycle.status is CycleStatus.CANCELED
    assert cycle.canceled_reason == "  changed my mind "
    assert cycle.current_phase_index is None
    assert not cancel_cycle(cycle, "again")

    with pytest.raises(SynapseError) as excinfo:
        mark_phase_done(cycle, claim.phase_index, claim.claim_token, {}, None)
    assert excinfo.value.code is ErrorCode.CLAIM_INVALID

    assert finalize_canceled_phase(cycle, claim.phase_index, claim.claim_token, now=NOW)
    assert cycle.phases[0].status is PhaseStatus.FAILED
    assert cycle.phases[1].status is PhaseStatus.PENDING
    assert not finalize_canceled_phase(cycle, claim.phase_index, claim.claim_token)
    assert "Cycle canceled" in _messages(cycle)


def test_stale_claim_is_reclaimed_by_new_owner() -> None:
    cycle = _cycle(PhaseType.FRONTEND)
    first = _claim_and_run(cycle, "runner-dead")

    later = NOW + timedelta(minutes=5)
    assert claim_current_phase(cycle, "runner-new", reclaim_stale_ms=600_000, now=later) is None
    second = claim_current_phase(cycle, "runner-new", reclaim_stale_ms=60_000, now=later)

    assert second is not None
    assert second.claim_token != first.claim_token
    assert cycle.phases[0].claimed_by == "runner-new"
    assert "Reclaimed stale phase claim" in _messages(cycle)


def test_renewed_lease_defers_staleness() -> None:
    cycle = _cycle(PhaseType.FRONTEND)
    claim = _claim_and_run(cycle, "runner-live")
    renewed = NOW + timedelta(minutes=4)

    assert renew_phase_lease(cycle, claim.phase_index, claim.claim_token, now=renewed)
    assert not renew_phase_lease(cycle, claim.phase_index, "not-the-owner", now=renewed)
    assert cycle.phases[0].lease_renewed_at == renewed
    assert not is_stale_claim(cycle.phases[0], 60_000, now=NOW + timedelta(minutes=5))
    assert is_stale_claim(cycle.phases[0], 60_000, now=NOW + timedelta(minutes=6))
    assert "Reclaimed stale phase claim" not in _messages(cycle)


def test_release_orphaned_claims_of_canceled_cycle() -> None:
    cycle = _cycle(PhaseType.FRONTEND, PhaseType.BACKEND)
    claim = claim_current_phase(cycle, "runner-dead", now=NOW)
    assert claim is not None

    assert not release_orphaned_claims(cycle, 60_000, now=NOW)
    assert cancel_cycle(cycle, now=NOW)
    assert release_orphaned_claims(cycle, 60_000, now=NOW)
    assert cycle.phases[0].status is PhaseStatus.FAILED
    assert cycle.phases[0].claim_token is None
    assert cycle.phases[0].lease_renewed_at is None
    assert not release_orphaned_claims(cycle, 60_000, now=NOW)


def test_release_waits_for_running_lease_to_expire() -> None:
    cycle = _cycle(PhaseType.FRONTEND)
    _claim_and_run(cycle)
    assert cancel_cycle(cycle, now=NOW)

    assert not release_orphaned_claims(cycle, 60_000, now=NOW + timedelta(seconds=30))
    assert cycle.phases[0].status is PhaseStatus.RUNNING
    assert release_orphaned_claims(cycle, 60_000, now=NOW + timedelta(minutes=2))
    assert cycle.phases[0].status is PhaseStatus.FAILED
    assert "Released claim of canceled cycle" in _messages(cycle)


def test_validate_plan_phases() -> None:
    assert validate_plan_phases(None) is None
    assert validate_plan_phases(["BACKEND"]) == [PhaseType.BACKEND]
    with pytest.raises(SynapseError) as excinfo:
        validate_plan_phases(["BACKEND", "DEPLOY"])
    assert excinfo.value.details["issues"][0]["path"] == "plan.phases[1]"


def test_summarize_phases_shape() -> None:
    summary = summarize_phases(_cycle(PhaseType.FRONTEND))
    assert summary == [
        {
            "id": "phase_1_frontend",
            "type": "FRONTEND",
            "status": "PENDING",
            "attempt_count": 0,
            "max_attempts": 2,
        }
    ]


_OPERATIONS = st.lists(
    st.sampled_from(["claim", "run", "done", "fail", "fail_hard", "cancel", "reclaim"]),
    max_size=25,
)


@settings(max_examples=150, deadline=None)
@given(operations=_OPERATIONS, owners=st.lists(st.sampled_from(["a", "b"]), min_size=25))
def test_random_operation_sequences_keep_invariants(
    operations: list[str], owners: list[str]
) -> None:
    cycle = _cycle()
    claim: PhaseClaim | None = None
    clock = NOW

    for step, operation in enumerate(operations):
        clock += timedelta(minutes=1)
        try:
            if operation in {"claim", "reclaim"}:
                stale_ms = 1 if operation == "reclaim" else 0
                new_claim = claim_current_phase(
                    cycle, owners[step], reclaim_stale_ms=stale_ms, now=clock
                )
                if new_claim is not None:
                    claim = new_claim
            elif claim is not None and operation == "run":
                mark_claimed_phase_running(cycle, claim.phase_index, claim.claim_token, now=clock)
            elif claim is not None and operation == "done":
                mark_phase_done(cycle, claim.phase_index, claim.claim_token, {}, None, now=clock)
            elif claim is not None and operation in {"fail", "fail_hard"}:
                mark_phase_failed(
                    cycle,
                    claim.phase_index,
                    claim.claim_token,
                    ErrorInfo(code="PHASE_FAILED", message="boom"),
                    force_terminal=operation == "fail_hard",
                    now=clock,
                )
            elif operation == "cancel":
                cancel_cycle(cycle, "stop", now=clock)
        except SynapseError as exc:
            assert exc.code in {ErrorCode.CLAIM_INVALID, ErrorCode.INVALID_PHASE}

        active = [phase for phase in cycle.phases if phase.is_active]
        assert len(active) <= 1
        if cycle.is_terminal:
            assert cycle.current_phase_index is None
        Cycle.from_dict(cycle.to_dict())

"""
synapse-orchestrator — cycle/phase state machine.

File: src/synapse_orchestrator/control_plane/state_machine.py
Last updated: 2026-10-19

Purpose
- Pure transition logic over an in-memory ``Cycle``. Callers own persistence and
  locking; nothing here touches the filesystem.

What should be included in this file
- Phase planning, cycle creation, claim/run/done/fail/cancel transitions.
- The frontend-tweak skip rule applied after a BACKEND phase completes.
- Stale-claim reclamation for phases abandoned by crashed runners.

Functional requirements
- At most one phase per cycle is CLAIMED or RUNNING.
- Every mutating transition appends a log entry and refreshes ``updated_at``.
- Presenting a mismatched claim token fails with ``CLAIM_INVALID``.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Final

from synapse_orchestrator.constants import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_PHASE_TIMEOUT_MS,
    DEFAULT_TWEAK_TIMEOUT_MS,
)
from synapse_orchestrator.domain import ids as domain_ids
from synapse_orchestrator.domain.errors import ErrorCode, SynapseError
from synapse_orchestrator.domain.models import (
    Artifacts,
    Cycle,
    CycleStatus,
    ErrorInfo,
    JSONValue,
    LogEntry,
    LogLevel,
    Phase,
    PhaseExecutionResult,
    PhaseStatus,
    PhaseType,
    utc_now,
)

DEFAULT_PHASE_ORDER: Final[tuple[PhaseType, ...]] = (
    PhaseType.FRONTEND,
    PhaseType.BACKEND,
    PhaseType.FRONTEND_TWEAK,
)

_PHASE_TIMEOUTS_MS: Final[dict[PhaseType, int]] = {
    PhaseType.FRONTEND: DEFAULT_PHASE_TIMEOUT_MS,
    PhaseType.BACKEND: DEFAULT_PHASE_TIMEOUT_MS,
    PhaseType.FRONTEND_TWEAK: DEFAULT_TWEAK_TIMEOUT_MS,
}


@dataclass(frozen=True, slots=True)
class PhaseClaim:
    """Proof of ownership for one phase attempt."""

    cycle_id: str
    phase_index: int
    phase_id: str
    claim_token: str
    owner_id: str


def default_timeout_ms(phase_type: PhaseType) -> int:
    return _PHASE_TIMEOUTS_MS[phase_type]


def build_phases(phase_types: Sequence[PhaseType | str] | None = None) -> list[Phase]:
    """Build PENDING phases in order; an empty or missing plan uses the default order."""

    types = [PhaseType(item) for item in phase_types] if phase_types else list(DEFAULT_PHASE_ORDER)
    return [
        Phase(
            id=domain_ids.phase_id_for(index, phase_type.value),
            type=phase_type,
            max_attempts=DEFAULT_MAX_ATTEMPTS,
            timeout_ms=default_timeout_ms(phase_type),
        )
        for index, phase_type in enumerate(types)
    ]


def create_cycle(
    request_text: str,
    repo_root: str,
    *,
    constraints: Sequence[str] = (),
    phase_types: Sequence[PhaseType | str] | None = None,
    now: datetime | None = None,
    cycle_id: str | None = None,
) -> Cycle:
    created = now or utc_now()
    phases = build_phases(phase_types)
    return Cycle(
        id=cycle_id or domain_ids.generate_cycle_id(request_text, now=created),
        created_at=created,
        updated_at=created,
        request_text=request_text,
        repo_root=repo_root,
        constraints=list(constraints),
        phases=phases,
        status=CycleStatus.QUEUED,
        current_phase_index=0 if phases else None,
        artifacts=Artifacts(),
        logs=[LogEntry(ts=created, level=LogLevel.INFO, message="Cycle created")],
    )


def add_log(
    cycle: Cycle,
    level: LogLevel | str,
    message: str,
    meta: Mapping[str, object] | None = None,
    phase_id: str | None = None,
    *,
    now: datetime | None = None,
) -> LogEntry:
    stamp = now or utc_now()
    entry = LogEntry(
        ts=stamp,
        level=LogLevel(level),
        message=message,
        phase_id=phase_id,
        meta=_json_safe(meta) if meta else None,
    )
    cycle.logs.append(entry)
    cycle.updated_at = stamp
    return entry


def next_pending_phase_index(cycle: Cycle) -> int | None:
    for index, phase in enumerate(cycle.phases):
        if phase.status is PhaseStatus.PENDING:
            return index
    return None


def is_stale_claim(phase: Phase, reclaim_stale_ms: int, *, now: datetime | None = None) -> bool:
    """Whether an active phase's lease has gone unrenewed for longer than ``reclaim_stale_ms``.

    The lease is measured from the later of ``lease_renewed_at`` and ``started_at``; a
    CLAIMED phase carrying neither timestamp is stale.
    """

    if reclaim_stale_ms <= 0 or not phase.is_active:
        return False
    stamps = [stamp for stamp in (phase.lease_renewed_at, phase.started_at) if stamp is not None]
    if not stamps:
        return phase.status is PhaseStatus.CLAIMED
    elapsed_ms = ((now or utc_now()) - max(stamps)).total_seconds() * 1000
    return elapsed_ms > reclaim_stale_ms


def renew_phase_lease(
    cycle: Cycle,
    phase_index: int,
    claim_token: str,
    *,
    now: datetime | None = None,
) -> bool:
    """Refresh the lease of an active phase; ``False`` when ``claim_token`` no longer owns it.

    Renewal is bookkeeping only: no log entry is appended.
    """

    phase = _phase_at(cycle, phase_index)
    if not phase.is_active or phase.claim_token != claim_token:
        return False
    phase.lease_renewed_at = now or utc_now()
    return True


def claim_current_phase(
    cycle: Cycle,
    owner_id: str,
    *,
    reclaim_stale_ms: int = 0,
    now: datetime | None = None,
) -> PhaseClaim | None:
    """Claim the current (or next PENDING) phase for ``owner_id``.

    Returns ``None`` when the cycle is terminal, finished, or another owner holds
    the phase. Finding no phase left marks the cycle DONE as a side effect.
    """

    if cycle.is_terminal:
        return None
    stamp = now or utc_now()

    index = cycle.current_phase_index
    if index is None:
        index = next_pending_phase_index(cycle)
    if index is None:
        cycle.status = CycleStatus.DONE
        cycle.current_phase_index = None
        cycle.updated_at = stamp
        return None

    phase = cycle.phases[index]
    if is_stale_claim(phase, reclaim_stale_ms, now=stamp):
        previous_owner = phase.claimed_by
        phase.status = PhaseStatus.PENDING
        phase.clear_claim()
        phase.started_at = None
        add_log(
            cycle,
            LogLevel.INFO,
            "Reclaimed stale phase claim",
            {"phase_id": phase.id, "previous_owner": previous_owner},
            phase.id,
            now=stamp,
        )

    if phase.status is not PhaseStatus.PENDING:
        return None

    token = domain_ids.generate_claim_token()
    phase.status = PhaseStatus.CLAIMED
    phase.claim_token = token
    phase.claimed_by = owner_id
    phase.lease_renewed_at = stamp
    cycle.status = CycleStatus.RUNNING
    cycle.current_phase_index = index
    add_log(cycle, LogLevel.INFO, f"Phase claimed: {phase.type.value}", None, phase.id, now=stamp)
    return PhaseClaim(
        cycle_id=cycle.id,
        phase_index=index,
        phase_id=phase.id,
        claim_token=token,
        owner_id=owner_id,
    )


def mark_claimed_phase_running(
    cycle: Cycle,
    phase_index: int,
    claim_token: str,
    *,
    now: datetime | None = None,
) -> Phase:
    phase = _phase_at(cycle, phase_index)
    if phase.status is not PhaseStatus.CLAIMED or phase.claim_token != claim_token:
        raise SynapseError(
            ErrorCode.CLAIM_INVALID,
            "phase claim token mismatch",
            {"phase_index": phase_index, "status": phase.status.value},
        )
    _require_live_cycle(cycle, phase_index)

    stamp = now or utc_now()
    phase.status = PhaseStatus.RUNNING
    phase.started_at = stamp
    phase.lease_renewed_at = stamp
    phase.attempt_count += 1
    add_log(
        cycle,
        LogLevel.INFO,
        f"Phase running: {phase.type.value}",
        {"attempt": phase.attempt_count},
        phase.id,
        now=stamp,
    )
    return phase


def mark_phase_done(
    cycle: Cycle,
    phase_index: int,
    claim_token: str,
    output: Mapping[str, object] | None,
    exec_result: PhaseExecutionResult | None,
    *,
    now: datetime | None = None,
) -> Phase:
    phase = _phase_at(cycle, phase_index)
    _require_token(phase, phase_index, claim_token)
    _require_live_cycle(cycle, phase_index)

    stamp = now or utc_now()
    phase.status = PhaseStatus.DONE
    phase.output = _json_safe(output) if output is not None else None
    phase.finished_at = stamp
    phase.clear_claim()

    _maybe_skip_frontend_tweak(cycle, phase_index, exec_result, now=stamp)

    next_index = next_pending_phase_index(cycle)
    cycle.current_phase_index = next_index
    cycle.last_error = None
    if next_index is None:
        cycle.status = CycleStatus.DONE
        add_log(cycle, LogLevel.INFO, "Cycle completed successfully", None, phase.id, now=stamp)
    else:
        cycle.status = CycleStatus.RUNNING
        add_log(cycle, LogLevel.INFO, f"Phase done: {phase.type.value}", None, phase.id, now=stamp)
    return phase


def mark_phase_failed(
    cycle: Cycle,
    phase_index: int,
    claim_token: str,
    error: ErrorInfo | SynapseError,
    *,
    force_terminal: bool = False,
    now: datetime | None = None,
) -> Phase:
    """Record a failed attempt; retry while attempts remain unless ``force_terminal``."""

    phase = _phase_at(cycle, phase_index)
    _require_token(phase, phase_index, claim_token)
    _require_live_cycle(cycle, phase_index)

    stamp = now or utc_now()
    info = error_info(error)
    phase.clear_claim()

    if not force_terminal and phase.attempt_count < phase.max_attempts:
        phase.status = PhaseStatus.PENDING
        phase.finished_at = None
        cycle.status = CycleStatus.RUNNING
        cycle.current_phase_index = phase_index
        cycle.last_error = info
        add_log(
            cycle,
            LogLevel.ERROR,
            f"Phase failed; retrying ({phase.attempt_count}/{phase.max_attempts})",
            _log_meta(info),
            phase.id,
            now=stamp,
        )
    else:
        phase.status = PhaseStatus.FAILED
        phase.finished_at = stamp
        cycle.status = CycleStatus.FAILED
        cycle.current_phase_index = None
        cycle.last_error = info
        add_log(
            cycle,
            LogLevel.ERROR,
            f"Phase failed permanently: {info.message or info.code}",
            _log_meta(info),
            phase.id,
            now=stamp,
        )
    cycle.updated_at = stamp
    return phase


def finalize_canceled_phase(
    cycle: Cycle,
    phase_index: int,
    claim_token: str,
    *,
    now: datetime | None = None,
) -> bool:
    """Fail the in-flight phase of a canceled cycle; ``False`` when the token went stale."""

    phase = _phase_at(cycle, phase_index)
    if not phase.is_active or phase.claim_token != claim_token:
        return False

    stamp = now or utc_now()
    phase.status = PhaseStatus.FAILED
    phase.finished_at = stamp
    phase.clear_claim()
    add_log(cycle, LogLevel.INFO, "Phase aborted by cancellation", None, phase.id, now=stamp)
    return True


def release_orphaned_claims(
    cycle: Cycle,
    reclaim_stale_ms: int,
    *,
    now: datetime | None = None,
) -> bool:
    """Fail active phases a canceled cycle left behind; return whether anything changed.

    A CLAIMED phase has not started work and is released at once. A RUNNING phase is
    released only after its lease went stale, since a live runner finalizes it itself.
    """

    if cycle.status is not CycleStatus.CANCELED:
        return False
    stamp = now or utc_now()
    changed = False
    for phase in cycle.phases:
        if not phase.is_active:
            continue
        if phase.status is PhaseStatus.RUNNING and not is_stale_claim(
            phase, reclaim_stale_ms, now=stamp
        ):
            continue
        previous_owner = phase.claimed_by
        phase.status = PhaseStatus.FAILED
        phase.finished_at = stamp
        phase.clear_claim()
        add_log(
            cycle,
            LogLevel.INFO,
            "Released claim of canceled cycle",
            {"previous_owner": previous_owner},
            phase.id,
            now=stamp,
        )
        changed = True
    return changed


def cancel_cycle(cycle: Cycle, reason: str | None = None, *, now: datetime | None = None) -> bool:
    """Cancel a non-terminal cycle; return ``False`` when it was already terminal."""

    if cycle.is_terminal:
        return False
    stamp = now or utc_now()
    cycle.status = CycleStatus.CANCELED
    cycle.current_phase_index = None
    cycle.canceled_reason = reason or None
    add_log(
        cycle,
        LogLevel.INFO,
        "Cycle canceled",
        {"reason": reason} if reason else None,
        now=stamp,
    )
    return True


def summarize_phases(cycle: Cycle) -> list[dict[str, JSONValue]]:
    return [
        {
            "id": phase.id,
            "type": phase.type.value,
            "status": phase.status.value,
            "attempt_count": phase.attempt_count,
            "max_attempts": phase.max_attempts,
        }
        for phase in cycle.phases
    ]


def validate_plan_phases(raw: object, *, path: str = "plan.phases") -> list[PhaseType] | None:
    """Parse a plan's phase list; ``None`` means the default order."""

    if raw is None:
        return None
    if not isinstance(raw, list):
        raise _schema_error(path, f"expected array, got {type(raw).__name__}")
    parsed: list[PhaseType] = []
    for index, item in enumerate(raw):
        try:
            parsed.append(PhaseType(item))
        except ValueError:
            allowed = ", ".join(member.value for member in PhaseType)
            raise _schema_error(
                f"{path}[{index}]", f"invalid phase type {item!r}; expected one of: {allowed}"
            ) from None
    return parsed


def error_info(error: ErrorInfo | SynapseError) -> ErrorInfo:
    if isinstance(error, ErrorInfo):
        return error
    return ErrorInfo(
        code=error.code_text,
        message=error.message,
        details=_json_safe(error.details) if error.details else None,
    )


def _maybe_skip_frontend_tweak(
    cycle: Cycle,
    phase_index: int,
    exec_result: PhaseExecutionResult | None,
    *,
    now: datetime,
) -> None:
    current = cycle.phases[phase_index]
    if current.type is not PhaseType.BACKEND or phase_index + 1 >= len(cycle.phases):
        return
    following = cycle.phases[phase_index + 1]
    if following.type is not PhaseType.FRONTEND_TWEAK:
        return
    if following.status is not PhaseStatus.PENDING:
        return

    if exec_result is not None and exec_result.frontend_tweak_required is True:
        add_log(
            cycle,
            LogLevel.INFO,
            "Frontend tweak required by backend output",
            None,
            following.id,
            now=now,
        )
        return

    following.status = PhaseStatus.SKIPPED
    following.finished_at = now
    add_log(
        cycle,
        LogLevel.INFO,
        "Frontend tweak skipped (not required)",
        None,
        following.id,
        now=now,
    )


def _phase_at(cycle: Cycle, phase_index: int) -> Phase:
    if not 0 <= phase_index < len(cycle.phases):
        raise SynapseError(
            ErrorCode.INVALID_PHASE,
            "phase index out of range",
            {"phase_index": phase_index, "phase_count": len(cycle.phases)},
        )
    return cycle.phases[phase_index]


def _require_token(phase: Phase, phase_index: int, claim_token: str) -> None:
    if phase.claim_token is None or phase.claim_token != claim_token:
        raise SynapseError(
            ErrorCode.CLAIM_INVALID,
            "phase claim token mismatch",
            {"phase_index": phase_index, "status": phase.status.value},
        )


def _require_live_cycle(cycle: Cycle, phase_index: int) -> None:
    if cycle.is_terminal:
        raise SynapseError(
            ErrorCode.CLAIM_INVALID,
            f"cycle is {cycle.status.value}",
            {"phase_index": phase_index, "cycle_status": cycle.status.value},
        )


def _log_meta(info: ErrorInfo) -> dict[str, JSONValue]:
    meta: dict[str, JSONValue] = {"code": info.code}
    if info.details:
        meta.update(info.details)
    return meta


def _json_safe(payload: Mapping[str, object]) -> dict[str, JSONValue]:
    """Coerce arbitrary mapping values into JSON-compatible data."""
    normalized = json.loads(json.dumps(dict(payload), default=str))
    if not isinstance(normalized, dict):
        return {}
    return normalized


def _schema_error(path: str, message: str) -> SynapseError:
    return SynapseError(
        ErrorCode.SCHEMA_INVALID,
        f"{path}: {message}",
        {"issues": [{"path": path, "message": message}]},
    )


__all__ = [
    "DEFAULT_PHASE_ORDER",
    "PhaseClaim",
    "add_log",
    "build_phases",
    "cancel_cycle",
    "claim_current_phase",
    "create_cycle",
    "default_timeout_ms",
    "error_info",
    "finalize_canceled_phase",
    "is_stale_claim",
    "mark_claimed_phase_running",
    "mark_phase_done",
    "mark_phase_failed",
    "next_pending_phase_index",
    "release_orphaned_claims",
    "renew_phase_lease",
    "summarize_phases",
    "validate_plan_phases",
]

"""
synapse-orchestrator — scheduler loop that claims and executes cycle phases.

File: src/synapse_orchestrator/control_plane/runner.py
Last updated: 2026-10-19

Purpose
- Drive persisted cycles forward: claim a phase under the cycle lock, execute it
  outside the lock, then record the outcome under the lock again.

What should be included in this file
- ``Runner`` with claim, execute, loop, and single-cycle drain entry points.
- ``CancelWatcher`` that turns a persisted CANCELED status into a cancellation token.
- ``PhaseLease`` that renews the executing phase's lease while work runs outside the lock.
- ``doctor`` / ``health`` diagnostics for the CLI.

Functional requirements
- The cycle record is only mutated while its lock is held.
- A claim token that no longer matches at record time leaves the record unchanged.
- Configuration is re-read for every claim scan and phase execution.
- Cancellation observed mid-execution ends with the phase FAILED and the cycle CANCELED.

Non-functional requirements
- Every background thread is stopped on every exit path.
"""

from __future__ import annotations

import logging
import platform
import shlex
import shutil
import sys
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import TracebackType
from typing import Final

import psutil

from synapse_orchestrator.adapters import AdapterContext, PhaseAdapter, adapter_for
from synapse_orchestrator.config.schema import RunnerConfig
from synapse_orchestrator.constants import (
    CANCEL_WATCH_INTERVAL_MS,
    DEFAULT_STORAGE_DIR,
    RUNNER_IDLE_POLL_MS,
    RUNNER_RETRY_BACKOFF_MS,
    RUNNER_SCAN_LIMIT,
)
from synapse_orchestrator.control_plane.retry_policy import is_retryable
from synapse_orchestrator.control_plane.state_machine import (
    PhaseClaim,
    add_log,
    cancel_cycle,
    claim_current_phase,
    error_info,
    finalize_canceled_phase,
    mark_claimed_phase_running,
    mark_phase_done,
    mark_phase_failed,
    release_orphaned_claims,
    renew_phase_lease,
)
from synapse_orchestrator.domain.errors import ErrorCode, SynapseError, as_synapse_error
from synapse_orchestrator.domain.ids import default_runner_id
from synapse_orchestrator.domain.models import (
    AttemptOutcome,
    AttemptRecord,
    CheckResult,
    Cycle,
    CycleStatus,
    JSONValue,
    LogLevel,
    Phase,
    PhaseExecutionResult,
    PhaseStatus,
    format_timestamp,
    merge_unique,
    utc_now,
)
from synapse_orchestrator.observability.logging import correlation_scope
from synapse_orchestrator.persistence.cycle_lock import (
    CycleLock,
    LockSettings,
    is_stale,
    read_lock_record,
)
from synapse_orchestrator.persistence.cycle_store import CycleStore
from synapse_orchestrator.sandbox.command_sandbox import CommandSandbox, list_changed_files
from synapse_orchestrator.utils.concurrency import CancellationToken, PeriodicWorker, sleep_ms

logger = logging.getLogger(__name__)

CANCELED_DURING_EXECUTION: Final[str] = "Canceled during phase execution"
_QUARANTINE_MARKERS: Final[tuple[str, ...]] = (".corrupt.", ".stale.")
_RECOVERABLE_LOOP_CODES: Final[frozenset[str]] = frozenset(
    {
        ErrorCode.LOCK_HELD.value,
        ErrorCode.LOCK_HEARTBEAT_FAILED.value,
        ErrorCode.CYCLE_NOT_FOUND.value,
    }
)

AdapterFactory = Callable[[str], PhaseAdapter]


@dataclass(frozen=True, slots=True)
class PhaseOutcome:
    """What happened to one executed claim; ``outcome`` is ``None`` when nothing was recorded."""

    cycle_id: str
    phase_id: str
    outcome: AttemptOutcome | None
    error_code: str | None = None

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "cycle_id": self.cycle_id,
            "phase_id": self.phase_id,
            "outcome": self.outcome.value if self.outcome is not None else None,
            "error_code": self.error_code,
        }


@dataclass(slots=True)
class _PhaseWork:
    exec_result: PhaseExecutionResult | None = None
    commands_run: list[str] = field(default_factory=list)
    check_results: list[CheckResult] = field(default_factory=list)
    changed_files: list[str] = field(default_factory=list)
    error: SynapseError | None = None
    duration_ms: int = 0


class CancelWatcher:
    """Poll the persisted cycle and cancel ``token`` once its status is CANCELED."""

    def __init__(
        self,
        store: CycleStore,
        cycle_id: str,
        token: CancellationToken,
        *,
        interval_ms: int = CANCEL_WATCH_INTERVAL_MS,
    ) -> None:
        self._store = store
        self._cycle_id = cycle_id
        self._token = token
        self._interval_ms = interval_ms
        self._worker: PeriodicWorker | None = None

    def __enter__(self) -> CancelWatcher:
        self._worker = PeriodicWorker(
            self.poll,
            interval_seconds=self._interval_ms / 1000.0,
            name=f"synapse-cancel-watch-{self._cycle_id}",
        )
        self._worker.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._worker is not None:
            self._worker.stop()
            self._worker = None

    def poll(self) -> bool:
        """Check once; return ``False`` after cancelling so the worker stops."""
        try:
            cycle = self._store.read(self._cycle_id)
        except (SynapseError, OSError):
            # A concurrent atomic replace or a transient read failure; try again next tick.
            return True
        if cycle.status is CycleStatus.CANCELED:
            self._token.cancel(cycle.canceled_reason or "Cycle canceled")
            return False
        return True


class PhaseLease:
    """Keep an executing phase's lease fresh so other runners do not reclaim it.

    Every ``heartbeat_ms`` the cycle lock is taken briefly and ``lease_renewed_at``
    is stamped. Renewal stops once the claim token no longer owns the phase.
    """

    def __init__(self, store: CycleStore, claim: PhaseClaim, *, settings: LockSettings) -> None:
        self._store = store
        self._claim = claim
        self._settings = settings
        self._worker: PeriodicWorker | None = None

    def __enter__(self) -> PhaseLease:
        self._worker = PeriodicWorker(
            self.renew,
            interval_seconds=self._settings.heartbeat_ms / 1000.0,
            name=f"synapse-phase-lease-{self._claim.cycle_id}",
        )
        self._worker.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._worker is not None:
            self._worker.stop()
            self._worker = None

    def renew(self) -> bool:
        """Renew once; return ``False`` when the claim was lost so the worker stops."""
        claim = self._claim
        try:
            with CycleLock(
                self._store,
                claim.cycle_id,
                settings=self._settings,
                acquire_timeout_ms=self._settings.heartbeat_ms,
            ) as lock:
                cycle = self._store.read(claim.cycle_id)
                if not renew_phase_lease(cycle, claim.phase_index, claim.claim_token):
                    logger.warning(
                        "phase lease lost; renewal stopped",
                        extra={"cycle_id": claim.cycle_id, "phase_id": claim.phase_id},
                    )
                    return False
                lock.raise_if_lost()
                self._store.write(cycle)
        except (SynapseError, OSError) as exc:
            # Lock contention or a transient write failure; the next tick retries.
            logger.warning(
                "phase lease renewal failed",
                extra={"cycle_id": claim.cycle_id, "error": str(exc)},
            )
        return True


class Runner:
    """Claims runnable phases across cycles in one repository and executes them."""

    def __init__(
        self,
        repo_root: str | Path,
        runner_id: str | None = None,
        storage_dir: str = DEFAULT_STORAGE_DIR,
        *,
        sleep: Callable[[float], None] = time.sleep,
        environ: Mapping[str, str] | None = None,
        adapter_factory: AdapterFactory = adapter_for,
    ) -> None:
        self.repo_root = Path(repo_root).resolve()
        self.runner_id = runner_id or default_runner_id()
        self.store = CycleStore(self.repo_root, storage_dir)
        self._sleep = sleep
        self._environ = environ
        self._adapter_factory = adapter_factory

    def load_config(self) -> RunnerConfig:
        """Read ``config.json`` (plus environment overrides) as it is on disk right now."""
        return self.store.load_config(environ=self._environ)

    def lock(self, cycle_id: str, settings: LockSettings | None = None) -> CycleLock:
        if settings is None:
            settings = LockSettings.from_config(self.load_config())
        return CycleLock(self.store, cycle_id, settings=settings)

    # claiming ------------------------------------------------------------

    def claim_next_runnable_phase(self) -> PhaseClaim | None:
        """Claim the first runnable phase among non-terminal cycles, newest first.

        Canceled cycles that still carry an active phase are visited too so that
        abandoned claims get released.
        """

        settings = LockSettings.from_config(self.load_config())
        candidates = [
            cycle
            for cycle in self.store.list()
            if not cycle.is_terminal
            or (
                cycle.status is CycleStatus.CANCELED
                and any(phase.is_active for phase in cycle.phases)
            )
        ]
        for cycle in candidates[:RUNNER_SCAN_LIMIT]:
            try:
                claim = self.claim_phase_for_cycle(cycle.id, settings=settings)
            except SynapseError as exc:
                if exc.code is not ErrorCode.LOCK_HELD:
                    raise
                logger.debug("cycle busy; skipping", extra={"cycle_id": cycle.id})
                continue
            if claim is not None:
                return claim
        return None

    def claim_phase_for_cycle(
        self, cycle_id: str, *, settings: LockSettings | None = None
    ) -> PhaseClaim | None:
        if settings is None:
            settings = LockSettings.from_config(self.load_config())
        with self.lock(cycle_id, settings) as lock:
            cycle = self.store.read(cycle_id)
            before = cycle.to_dict()
            if release_orphaned_claims(cycle, settings.stale_phase_window_ms):
                logger.info("released orphaned claims", extra={"cycle_id": cycle_id})
            claim = claim_current_phase(
                cycle, self.runner_id, reclaim_stale_ms=settings.stale_phase_window_ms
            )
            if claim is not None or cycle.to_dict() != before:
                lock.raise_if_lost()
                self.store.write(cycle)
        if claim is not None:
            logger.info(
                "phase claimed",
                extra={"cycle_id": cycle_id, "phase_id": claim.phase_id},
            )
        return claim

    # execution -----------------------------------------------------------

    def execute_claimed_phase(self, claim: PhaseClaim) -> PhaseOutcome:
        """Run one claimed phase end to end and record its outcome."""

        with correlation_scope(
            cycle_id=claim.cycle_id, phase_id=claim.phase_id, runner_id=self.runner_id
        ):
            config = self.load_config()
            settings = LockSettings.from_config(config)
            started = self._begin_phase(claim, settings)
            if isinstance(started, PhaseOutcome):
                return started
            cycle, phase = started

            work = self._run_phase(claim, cycle, phase, config, settings)
            outcome = self._record_outcome(claim, work, settings)

        if outcome.outcome is AttemptOutcome.RETRY:
            self._sleep(RUNNER_RETRY_BACKOFF_MS / 1000.0)
        return outcome

    def _begin_phase(
        self, claim: PhaseClaim, settings: LockSettings
    ) -> tuple[Cycle, Phase] | PhaseOutcome:
        with self.lock(claim.cycle_id, settings) as lock:
            cycle = self.store.read(claim.cycle_id)
            if cycle.status is CycleStatus.CANCELED:
                finalize_canceled_phase(cycle, claim.phase_index, claim.claim_token)
                lock.raise_if_lost()
                self.store.write(cycle)
                return PhaseOutcome(
                    claim.cycle_id,
                    claim.phase_id,
                    AttemptOutcome.FAILED,
                    ErrorCode.PHASE_CANCELED.value,
                )
            try:
                phase = mark_claimed_phase_running(cycle, claim.phase_index, claim.claim_token)
            except SynapseError as exc:
                if exc.code is not ErrorCode.CLAIM_INVALID:
                    raise
                logger.warning(
                    "claim no longer valid; skipping execution",
                    extra={"cycle_id": claim.cycle_id, "phase_id": claim.phase_id},
                )
                return PhaseOutcome(claim.cycle_id, claim.phase_id, None, exc.code_text)
            add_log(
                cycle,
                LogLevel.INFO,
                f"Runner {self.runner_id} executing phase",
                {"attempt": phase.attempt_count},
                phase.id,
            )
            lock.raise_if_lost()
            cycle = self.store.write(cycle)
        return cycle, cycle.phases[claim.phase_index]

    def _run_phase(
        self,
        claim: PhaseClaim,
        cycle: Cycle,
        phase: Phase,
        config: RunnerConfig,
        settings: LockSettings,
    ) -> _PhaseWork:
        work = _PhaseWork()
        started = time.monotonic()
        token = CancellationToken()
        changed_before = self._changed_files()
        try:
            with PhaseLease(self.store, claim, settings=settings), CancelWatcher(
                self.store, cycle.id, token
            ):
                self._execute_adapter_and_checks(cycle, phase, config, token, started, work)
                if token.is_cancelled or self._is_canceled(cycle.id):
                    raise SynapseError(ErrorCode.PHASE_CANCELED, "cycle canceled during phase")
                work.changed_files = merge_unique(changed_before, self._changed_files())
                if config["require_changes"][phase.type.value] and not work.changed_files:
                    raise SynapseError(
                        ErrorCode.NO_CHANGES,
                        f"{phase.type.value} phase produced no file changes",
                        {"phase_id": phase.id},
                    )
        except Exception as exc:  # noqa: BLE001 - every failure is recorded on the phase
            work.error = as_synapse_error(exc)
            logger.info(
                "phase attempt failed",
                extra={"cycle_id": cycle.id, "error": work.error.to_dict()},
            )
        work.duration_ms = int((time.monotonic() - started) * 1000)
        return work

    def _execute_adapter_and_checks(
        self,
        cycle: Cycle,
        phase: Phase,
        config: RunnerConfig,
        token: CancellationToken,
        started: float,
        work: _PhaseWork,
    ) -> None:
        adapter = self._adapter_factory(phase.type)
        context = AdapterContext(
            config=config,
            tmp_dir=self.store.tmp_dir,
            cancel_token=token,
            timeout_ms=phase.timeout_ms,
        )
        work.exec_result = adapter.run(cycle, phase, context)
        work.commands_run.extend(work.exec_result.commands_run)

        sandbox = CommandSandbox(self.repo_root, denylist=config["denylist_substrings"])
        for command in config["checks"][phase.type.value]:
            remaining_ms = phase.timeout_ms - _elapsed_ms(started)
            if remaining_ms <= 0:
                raise SynapseError(
                    ErrorCode.PHASE_TIMEOUT,
                    "phase time budget exhausted before checks finished",
                    {"phase_id": phase.id, "timeout_ms": phase.timeout_ms},
                )
            result = sandbox.run(
                command,
                timeout_ms=min(phase.timeout_ms, remaining_ms),
                cancel_token=token,
            )
            work.commands_run.append(command)
            if result.canceled:
                raise SynapseError(ErrorCode.PHASE_CANCELED, "check canceled", {"command": command})
            check = CheckResult(
                command=command,
                ok=result.succeeded,
                code=result.returncode,
                stdout_tail=result.stdout_tail,
                stderr_tail=result.stderr_tail,
            )
            work.check_results.append(check)
            if check.ok:
                continue
            if result.timed_out and _elapsed_ms(started) >= phase.timeout_ms:
                raise SynapseError(
                    ErrorCode.PHASE_TIMEOUT,
                    "phase timed out during checks",
                    {"phase_id": phase.id, "command": command, "timeout_ms": phase.timeout_ms},
                )
            raise SynapseError(
                ErrorCode.CHECK_FAILED,
                f"Check failed: {command}",
                {
                    "command": command,
                    "code": result.returncode,
                    "timed_out": result.timed_out,
                    "stdout": result.stdout_tail,
                    "stderr": result.stderr_tail,
                },
            )

    def _record_outcome(
        self, claim: PhaseClaim, work: _PhaseWork, settings: LockSettings
    ) -> PhaseOutcome:
        error = work.error
        with self.lock(claim.cycle_id, settings) as lock:
            cycle = self.store.read(claim.cycle_id)
            phase = cycle.phases[claim.phase_index]
            if phase.claim_token != claim.claim_token:
                logger.warning(
                    "claim token changed during execution; outcome not recorded",
                    extra={"cycle_id": claim.cycle_id, "phase_id": claim.phase_id},
                )
                return PhaseOutcome(
                    claim.cycle_id,
                    claim.phase_id,
                    None,
                    error.code_text if error is not None else None,
                )

            if cycle.status is CycleStatus.CANCELED and (
                error is None or error.code is not ErrorCode.PHASE_CANCELED
            ):
                error = SynapseError(ErrorCode.PHASE_CANCELED, "cycle canceled during phase")

            attempt = phase.attempt_count
            attempt_started = phase.started_at
            artifacts = cycle.artifacts
            artifacts.commands_run = merge_unique(artifacts.commands_run, work.commands_run)
            artifacts.test_results.extend(work.check_results)
            artifacts.add_duration(phase.id, work.duration_ms)

            if error is None:
                outcome = AttemptOutcome.DONE
                artifacts.changed_files = merge_unique(
                    artifacts.changed_files, work.changed_files
                )
                mark_phase_done(
                    cycle,
                    claim.phase_index,
                    claim.claim_token,
                    _phase_output(work),
                    work.exec_result,
                )
            elif error.code is ErrorCode.PHASE_CANCELED:
                outcome = AttemptOutcome.FAILED
                finalize_canceled_phase(cycle, claim.phase_index, claim.claim_token)
                cancel_cycle(cycle, CANCELED_DURING_EXECUTION)
                cycle.last_error = error_info(error)
            else:
                failed = mark_phase_failed(
                    cycle,
                    claim.phase_index,
                    claim.claim_token,
                    error,
                    force_terminal=not is_retryable(error.code_text),
                )
                outcome = (
                    AttemptOutcome.RETRY
                    if failed.status is PhaseStatus.PENDING
                    else AttemptOutcome.FAILED
                )

            error_code = error.code_text if error is not None else None
            artifacts.attempt_history.append(
                AttemptRecord(
                    phase_id=phase.id,
                    attempt=attempt,
                    started_at=attempt_started,
                    finished_at=utc_now(),
                    outcome=outcome,
                    error_code=error_code,
                )
            )
            lock.raise_if_lost()
            self.store.write(cycle)

        logger.info(
            "phase attempt recorded",
            extra={
                "cycle_id": claim.cycle_id,
                "outcome": outcome.value,
                "error_code": error_code,
                "duration_ms": work.duration_ms,
            },
        )
        return PhaseOutcome(claim.cycle_id, claim.phase_id, outcome, error_code)

    # loops ---------------------------------------------------------------

    def start(
        self,
        *,
        once: bool = False,
        poll_ms: int = RUNNER_IDLE_POLL_MS,
        stop_event: threading.Event | None = None,
    ) -> list[PhaseOutcome]:
        """Claim and execute until idle (``once``) or until ``stop_event`` is set."""

        outcomes: list[PhaseOutcome] = []
        logger.info("runner started", extra={"runner_id": self.runner_id, "once": once})
        while stop_event is None or not stop_event.is_set():
            claim = self.claim_next_runnable_phase()
            if claim is None:
                if once:
                    break
                if stop_event is not None:
                    if sleep_ms(poll_ms, stop_event=stop_event):
                        break
                else:
                    self._sleep(poll_ms / 1000.0)
                continue
            outcome = self._execute_in_loop(claim)
            if outcome is not None:
                outcomes.append(outcome)
        logger.info("runner stopped", extra={"runner_id": self.runner_id})
        return outcomes

    def run_cycle(self, cycle_id: str) -> Cycle:
        """Drain one cycle until nothing in it is claimable; return the final record."""

        while True:
            claim = self.claim_phase_for_cycle(cycle_id)
            if claim is None:
                break
            self.execute_claimed_phase(claim)
        return self.store.read(cycle_id)

    def _execute_in_loop(self, claim: PhaseClaim) -> PhaseOutcome | None:
        try:
            return self.execute_claimed_phase(claim)
        except SynapseError as exc:
            if exc.code_text not in _RECOVERABLE_LOOP_CODES:
                raise
            logger.warning(
                "phase execution interrupted",
                extra={"cycle_id": claim.cycle_id, "error": exc.to_dict()},
            )
            return None

    # diagnostics ---------------------------------------------------------

    def doctor(self) -> dict[str, JSONValue]:
        """Report interpreter and external tool availability."""

        checks: list[dict[str, JSONValue]] = [
            {
                "name": "python",
                "ok": sys.version_info >= (3, 11),
                "detail": platform.python_version(),
            }
        ]
        try:
            config = self.load_config()
        except SynapseError as exc:
            checks.append({"name": "config", "ok": False, "detail": exc.to_dict()})
            tools = {"codex": "codex", "gemini": "gemini"}
        else:
            checks.append({"name": "config", "ok": True, "detail": str(self.store.config_path)})
            tools = {
                "codex": _executable(config["adapters"]["codexExec"]["command"], "codex"),
                "gemini": _executable(config["adapters"]["gemini"]["command"], "gemini"),
            }
        tools["git"] = "git"

        for name, executable in tools.items():
            resolved = shutil.which(executable)
            checks.append(
                {
                    "name": name,
                    "ok": resolved is not None,
                    "detail": resolved or f"{executable} not found on PATH",
                }
            )
        required = {"python", "config", "git"}
        ok = all(bool(check["ok"]) for check in checks if check["name"] in required)
        return {"ok": ok, "runner_id": self.runner_id, "checks": checks}

    def health(self) -> dict[str, JSONValue]:
        """Summarize store state: config, cycle counts, and lock files."""

        payload: dict[str, JSONValue] = {
            "repo_root": str(self.repo_root),
            "storage_dir": str(self.store.root),
        }
        errors: list[JSONValue] = []
        grace_ms = LockSettings().takeover_grace_ms
        try:
            grace_ms = LockSettings.from_config(self.load_config()).takeover_grace_ms
        except SynapseError as exc:
            payload["config"] = {"ok": False, "error": exc.to_dict()}
            errors.append(exc.to_dict())
        else:
            payload["config"] = {"ok": True, "path": str(self.store.config_path)}

        counts: dict[str, JSONValue] = {status.value: 0 for status in CycleStatus}
        for cycle_id in self.store.cycle_ids():
            try:
                cycle = self.store.read(cycle_id)
            except SynapseError as exc:
                errors.append(exc.to_dict())
                continue
            counts[cycle.status.value] = int(counts[cycle.status.value] or 0) + 1
        payload["cycles"] = counts

        locks, quarantined = self._lock_report(grace_ms)
        payload["locks"] = locks
        payload["quarantined_locks"] = quarantined
        payload["errors"] = errors
        payload["ok"] = not errors
        return payload

    def _lock_report(self, grace_ms: int) -> tuple[list[JSONValue], list[JSONValue]]:
        locks: list[JSONValue] = []
        quarantined: list[JSONValue] = []
        if not self.store.locks_dir.is_dir():
            return locks, quarantined
        now = utc_now()
        for path in sorted(self.store.locks_dir.iterdir()):
            if not path.is_file():
                continue
            if any(marker in path.name for marker in _QUARANTINE_MARKERS):
                quarantined.append(path.name)
                continue
            if not path.name.endswith(".lock"):
                continue
            entry: dict[str, JSONValue] = {"file": path.name}
            try:
                record = read_lock_record(path)
            except ValueError as exc:
                entry["corrupt"] = True
                entry["error"] = str(exc)
                locks.append(entry)
                continue
            if record is None:
                continue
            entry.update(
                {
                    "cycle_id": record.cycle_id,
                    "owner_id": record.owner_id,
                    "pid": record.pid,
                    "expires_at": format_timestamp(record.expires_at),
                    "stale": is_stale(record, now, grace_ms),
                    "owner_alive": psutil.pid_exists(record.pid),
                }
            )
            locks.append(entry)
        return locks, quarantined

    # helpers -------------------------------------------------------------

    def _changed_files(self) -> list[str]:
        try:
            storage_prefix = self.store.root.relative_to(self.repo_root).as_posix()
        except ValueError:
            storage_prefix = ""
        return list_changed_files(self.repo_root, exclude_prefixes=(storage_prefix,))

    def _is_canceled(self, cycle_id: str) -> bool:
        return self.store.read(cycle_id).status is CycleStatus.CANCELED


def _phase_output(work: _PhaseWork) -> dict[str, object]:
    report = work.exec_result.report if work.exec_result is not None else {}
    return {
        "report": report,
        "changed_files": list(work.changed_files),
        "commands_run": list(work.commands_run),
        "checks": [check.to_dict() for check in work.check_results],
        "duration_ms": work.duration_ms,
    }


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _executable(command: str, fallback: str) -> str:
    try:
        parts = shlex.split(command)
    except ValueError:
        return fallback
    return parts[0] if parts else fallback


__all__ = [
    "CANCELED_DURING_EXECUTION",
    "CancelWatcher",
    "PhaseLease",
    "PhaseOutcome",
    "Runner",
]

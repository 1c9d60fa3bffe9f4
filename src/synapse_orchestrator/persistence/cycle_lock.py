"""
synapse-orchestrator — crash-safe per-cycle lock.

File: src/synapse_orchestrator/persistence/cycle_lock.py
Last updated: 2026-10-19

Purpose
- Serialize every read-modify-write of a cycle record across processes using a
  lock file under ``<storage>/locks/<cycle_id>.lock``.

What should be included in this file
- Exclusive acquisition with a bounded wait budget.
- Corrupt-record quarantine and stale-holder takeover after expiry plus grace.
- A heartbeat thread that extends the lease and detects ownership loss.
- Owner-checked, best-effort release.

Functional requirements
- A lock past ``expires_at + takeover_grace_ms`` is reclaimable; one inside the
  grace window is not.
- Losing the lease while held is reported as ``LOCK_HEARTBEAT_FAILED``.

Non-functional requirements
- Coordination relies only on POSIX create/rename/link semantics.
"""

from __future__ import annotations

import json
import logging
import os
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from types import TracebackType
from typing import Final

from synapse_orchestrator.constants import (
    LOCK_ACQUIRE_TIMEOUT_MS,
    LOCK_POLL_INTERVAL_MS,
    LOCK_RECORD_VERSION,
    LOCK_SCHEMA_VERSION,
)
from synapse_orchestrator.domain import ids as domain_ids
from synapse_orchestrator.domain.errors import ErrorCode, SynapseError
from synapse_orchestrator.domain.models import LockRecord, utc_now
from synapse_orchestrator.persistence.cycle_store import CycleStore
from synapse_orchestrator.utils.concurrency import PeriodicWorker
from synapse_orchestrator.utils.fs import create_exclusive, rename_aside, write_json_atomic

logger = logging.getLogger(__name__)

_CORRUPT_TAG: Final[str] = "corrupt"
_STALE_TAG: Final[str] = "stale"


@dataclass(frozen=True, slots=True)
class LockSettings:
    """Lease timing for cycle locks, in milliseconds."""

    ttl_ms: int = 20_000
    heartbeat_ms: int = 5_000
    takeover_grace_ms: int = 2_000

    def __post_init__(self) -> None:
        if self.ttl_ms < 1:
            raise ValueError("ttl_ms must be >= 1")
        if self.heartbeat_ms < 1:
            raise ValueError("heartbeat_ms must be >= 1")
        if self.takeover_grace_ms < 0:
            raise ValueError("takeover_grace_ms must be >= 0")

    @classmethod
    def from_config(cls, config: Mapping[str, object]) -> LockSettings:
        locks = config.get("locks")
        if not isinstance(locks, Mapping):
            return cls()
        return cls(
            ttl_ms=int(locks.get("ttl_ms", 20_000)),  # type: ignore[call-overload]
            heartbeat_ms=int(locks.get("heartbeat_ms", 5_000)),  # type: ignore[call-overload]
            takeover_grace_ms=int(  # type: ignore[call-overload]
                locks.get("takeover_grace_ms", 2_000)
            ),
        )

    @property
    def stale_phase_window_ms(self) -> int:
        """Age after which a CLAIMED/RUNNING phase is presumed abandoned."""
        return self.ttl_ms + self.takeover_grace_ms + 2 * self.heartbeat_ms


class CycleLock:
    """Context manager holding the exclusive lock for one cycle."""

    def __init__(
        self,
        store: CycleStore,
        cycle_id: str,
        *,
        settings: LockSettings | None = None,
        owner_id: str | None = None,
        acquire_timeout_ms: int = LOCK_ACQUIRE_TIMEOUT_MS,
        poll_interval_ms: int = LOCK_POLL_INTERVAL_MS,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.cycle_id = cycle_id
        self.path = store.lock_path(cycle_id)
        self.settings = settings or LockSettings()
        self.owner_id = owner_id or domain_ids.generate_owner_id()
        self._acquire_timeout_ms = max(0, acquire_timeout_ms)
        self._poll_interval_ms = max(1, poll_interval_ms)
        self._clock = clock
        self._sleep = sleep
        self._record: LockRecord | None = None
        self._heartbeat: PeriodicWorker | None = None
        self._lost_error: SynapseError | None = None

    @property
    def held(self) -> bool:
        return self._record is not None

    @property
    def lost_error(self) -> SynapseError | None:
        return self._lost_error

    def raise_if_lost(self) -> None:
        if self._lost_error is not None:
            raise self._lost_error

    def __enter__(self) -> CycleLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()
        if exc is None:
            self.raise_if_lost()

    def acquire(self) -> LockRecord:
        if self._record is not None:
            raise RuntimeError(f"lock for cycle {self.cycle_id} is already held")

        self.store.ensure()
        started = time.monotonic()
        while True:
            now = self._clock()
            record = LockRecord(
                cycle_id=self.cycle_id,
                owner_id=self.owner_id,
                pid=os.getpid(),
                created_at=now,
                heartbeat_at=now,
                expires_at=now + timedelta(milliseconds=self.settings.ttl_ms),
            )
            try:
                create_exclusive(self.path, _render(record))
            except FileExistsError:
                pass
            else:
                self._record = record
                self._lost_error = None
                self._start_heartbeat()
                logger.debug(
                    "cycle lock acquired",
                    extra={"cycle_id": self.cycle_id, "owner_id": self.owner_id},
                )
                return record

            if self._resolve_existing(now):
                continue

            waited_ms = int((time.monotonic() - started) * 1000)
            if waited_ms >= self._acquire_timeout_ms:
                raise SynapseError(
                    ErrorCode.LOCK_HELD,
                    f"cycle {self.cycle_id} is locked by another runner",
                    {"cycle_id": self.cycle_id, "waited_ms": waited_ms},
                )
            self._sleep(self._poll_interval_ms / 1000.0)

    def release(self) -> None:
        """Stop the heartbeat and delete the lock file if this owner still holds it."""

        if self._heartbeat is not None:
            self._heartbeat.stop()
            self._heartbeat = None
        if self._record is None:
            return
        self._record = None

        try:
            current = read_lock_record(self.path)
            if current is not None and current.owner_id == self.owner_id:
                self.path.unlink(missing_ok=True)
        except (OSError, ValueError) as exc:
            logger.warning(
                "cycle lock release failed",
                extra={"cycle_id": self.cycle_id, "owner_id": self.owner_id, "error": str(exc)},
            )

    def _resolve_existing(self, now: datetime) -> bool:
        """Inspect the current holder; return ``True`` when acquisition should retry now."""

        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return True

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            return self._quarantine("invalid JSON")
        if not isinstance(payload, dict):
            return self._quarantine("lock record must be a JSON object")

        _check_lock_versions(payload, self.cycle_id)
        try:
            existing = LockRecord.from_dict(payload)
        except ValueError as exc:
            return self._quarantine(str(exc))

        if not is_stale(existing, now, self.settings.takeover_grace_ms):
            return False

        try:
            stale_path = rename_aside(self.path, _STALE_TAG)
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise SynapseError(
                ErrorCode.LOCK_STALE_TAKEOVER_FAILED,
                f"could not take over stale lock for cycle {self.cycle_id}: {exc}",
                {"cycle_id": self.cycle_id, "path": str(self.path)},
            ) from exc

        try:
            stale_path.unlink(missing_ok=True)
        except OSError as exc:
            raise SynapseError(
                ErrorCode.LOCK_STALE_TAKEOVER_FAILED,
                f"could not remove stale lock for cycle {self.cycle_id}: {exc}",
                {"cycle_id": self.cycle_id, "path": str(stale_path)},
            ) from exc

        logger.warning(
            "took over stale cycle lock",
            extra={
                "cycle_id": self.cycle_id,
                "previous_owner": existing.owner_id,
                "expired_at": existing.expires_at,
            },
        )
        return True

    def _quarantine(self, reason: str) -> bool:
        try:
            moved = rename_aside(self.path, _CORRUPT_TAG)
        except FileNotFoundError:
            return True
        logger.warning(
            "quarantined corrupt cycle lock",
            extra={"cycle_id": self.cycle_id, "moved_to": str(moved), "reason": reason},
        )
        return True

    def _start_heartbeat(self) -> None:
        self._heartbeat = PeriodicWorker(
            self._beat,
            interval_seconds=self.settings.heartbeat_ms / 1000.0,
            name=f"synapse-lock-heartbeat-{self.cycle_id}",
        )
        self._heartbeat.start()

    def _beat(self) -> bool:
        record = self._record
        if record is None:
            return False

        try:
            current = read_lock_record(self.path)
        except (OSError, ValueError) as exc:
            return self._mark_lost(f"lock record unreadable: {exc}")
        if current is None:
            return self._mark_lost("lock record disappeared")
        if current.owner_id != self.owner_id:
            return self._mark_lost(f"lock now owned by {current.owner_id}")

        now = self._clock()
        refreshed = LockRecord(
            cycle_id=current.cycle_id,
            owner_id=current.owner_id,
            pid=current.pid,
            created_at=current.created_at,
            heartbeat_at=now,
            expires_at=now + timedelta(milliseconds=self.settings.ttl_ms),
        )
        try:
            write_json_atomic(self.path, refreshed.to_dict())
        except OSError as exc:
            return self._mark_lost(f"heartbeat write failed: {exc}")
        self._record = refreshed
        return True

    def _mark_lost(self, reason: str) -> bool:
        self._lost_error = SynapseError(
            ErrorCode.LOCK_HEARTBEAT_FAILED,
            f"lost lock for cycle {self.cycle_id}: {reason}",
            {"cycle_id": self.cycle_id, "owner_id": self.owner_id},
        )
        logger.error(
            "cycle lock heartbeat failed",
            extra={"cycle_id": self.cycle_id, "owner_id": self.owner_id, "reason": reason},
        )
        return False


def read_lock_record(path: Path) -> LockRecord | None:
    """Return the parsed lock record at ``path`` or ``None`` when absent.

    Malformed records raise ``ValueError``.
    """

    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"LockRecord: invalid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ValueError("LockRecord: expected JSON object")
    return LockRecord.from_dict(payload)


def is_stale(record: LockRecord, now: datetime, takeover_grace_ms: int) -> bool:
    return now > record.expires_at + timedelta(milliseconds=takeover_grace_ms)


def _check_lock_versions(payload: Mapping[str, object], cycle_id: str) -> None:
    for key, supported in (
        ("schema_version", LOCK_SCHEMA_VERSION),
        ("lock_version", LOCK_RECORD_VERSION),
    ):
        found = payload.get(key)
        if isinstance(found, int) and not isinstance(found, bool) and found > supported:
            raise SynapseError(
                ErrorCode.UNSUPPORTED_VERSION,
                f"lock for cycle {cycle_id} uses {key} {found}; this runtime supports {supported}",
                {"cycle_id": cycle_id, "field": key, "found": found, "supported": supported},
            )


def _render(record: LockRecord) -> str:
    return json.dumps(record.to_dict(), indent=2, sort_keys=True, ensure_ascii=False) + "\n"


__all__ = ["CycleLock", "LockSettings", "is_stale", "read_lock_record"]

"""
synapse-orchestrator — durable cycle store.

File: src/synapse_orchestrator/persistence/cycle_store.py
Last updated: 2026-10-19

Purpose
- Persist one JSON document per cycle under ``<repo>/<storage_dir>/cycles``.
- Own the storage layout shared with the cycle lock and runner config.

Functional requirements
- Writes re-validate the full record and replace the file atomically.
- Reads distinguish missing, corrupt, and future-version records.
- Listing fails loudly when any record is corrupt.

Non-functional requirements
- A reader never observes a partially written cycle file.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import Path

from synapse_orchestrator.config.loader import load_runner_config
from synapse_orchestrator.config.schema import RunnerConfig
from synapse_orchestrator.constants import (
    CONFIG_FILENAME,
    CYCLE_SCHEMA_VERSION,
    CYCLES_DIRNAME,
    DEFAULT_STORAGE_DIR,
    LOCKS_DIRNAME,
    TMP_DIRNAME,
)
from synapse_orchestrator.domain import ids as domain_ids
from synapse_orchestrator.domain.errors import ErrorCode, SynapseError
from synapse_orchestrator.domain.models import Cycle, CycleStatus
from synapse_orchestrator.utils.fs import write_json_atomic

logger = logging.getLogger(__name__)

_CYCLE_SUFFIX = ".json"
_LOCK_SUFFIX = ".lock"


class CycleStore:
    """Filesystem-backed cycle repository rooted at one repository."""

    def __init__(self, repo_root: str | Path, storage_dir: str = DEFAULT_STORAGE_DIR) -> None:
        self.repo_root = Path(repo_root).expanduser().resolve()
        storage = Path(storage_dir).expanduser()
        self.root = storage if storage.is_absolute() else self.repo_root / storage

    @property
    def config_path(self) -> Path:
        return self.root / CONFIG_FILENAME

    @property
    def cycles_dir(self) -> Path:
        return self.root / CYCLES_DIRNAME

    @property
    def locks_dir(self) -> Path:
        return self.root / LOCKS_DIRNAME

    @property
    def tmp_dir(self) -> Path:
        return self.root / TMP_DIRNAME

    def cycle_path(self, cycle_id: str) -> Path:
        _require_safe_id(cycle_id)
        return self.cycles_dir / f"{cycle_id}{_CYCLE_SUFFIX}"

    def lock_path(self, cycle_id: str) -> Path:
        _require_safe_id(cycle_id)
        return self.locks_dir / f"{cycle_id}{_LOCK_SUFFIX}"

    def ensure(self) -> None:
        for directory in (self.root, self.cycles_dir, self.locks_dir, self.tmp_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def load_config(self, *, environ: Mapping[str, str] | None = None) -> RunnerConfig:
        self.ensure()
        return load_runner_config(self.config_path, environ=environ)

    def exists(self, cycle_id: str) -> bool:
        return self.cycle_path(cycle_id).is_file()

    def read(self, cycle_id: str) -> Cycle:
        path = self.cycle_path(cycle_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise SynapseError(
                ErrorCode.CYCLE_NOT_FOUND,
                f"cycle {cycle_id} not found",
                {"cycle_id": cycle_id},
            ) from exc

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise _corrupt(cycle_id, path, f"invalid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise _corrupt(cycle_id, path, "cycle record must be a JSON object")

        version = payload.get("schema_version")
        if isinstance(version, int) and not isinstance(version, bool):
            if version > CYCLE_SCHEMA_VERSION:
                raise SynapseError(
                    ErrorCode.UNSUPPORTED_VERSION,
                    f"cycle {cycle_id} uses schema version {version}; "
                    f"this runtime supports {CYCLE_SCHEMA_VERSION}",
                    {
                        "cycle_id": cycle_id,
                        "found": version,
                        "supported": CYCLE_SCHEMA_VERSION,
                    },
                )

        try:
            cycle = Cycle.from_dict(payload)
        except ValueError as exc:
            raise _corrupt(cycle_id, path, str(exc)) from exc
        if cycle.id != cycle_id:
            raise _corrupt(cycle_id, path, f"record id {cycle.id!r} does not match file name")
        return cycle

    def write(self, cycle: Cycle) -> Cycle:
        """Validate and atomically persist ``cycle``; return the validated copy."""

        try:
            validated = Cycle.from_dict(cycle.to_dict())
        except ValueError as exc:
            raise SynapseError(
                ErrorCode.SCHEMA_INVALID,
                f"refusing to write invalid cycle {getattr(cycle, 'id', '?')}",
                {"issues": [issue_from_value_error(exc)]},
            ) from exc

        self.ensure()
        write_json_atomic(self.cycle_path(validated.id), validated.to_dict())
        logger.debug(
            "cycle persisted",
            extra={"cycle_id": validated.id, "status": validated.status.value},
        )
        return validated

    def cycle_ids(self) -> list[str]:
        if not self.cycles_dir.is_dir():
            return []
        return sorted(
            path.name[: -len(_CYCLE_SUFFIX)]
            for path in self.cycles_dir.iterdir()
            if path.is_file()
            and path.name.endswith(_CYCLE_SUFFIX)
            and not path.name.startswith(".")
        )

    def list(
        self,
        *,
        status: CycleStatus | str | None = None,
        limit: int | None = None,
    ) -> list[Cycle]:
        """Return cycles newest-first; any corrupt record fails the whole listing."""

        wanted = CycleStatus(status) if status is not None else None
        cycles = [self.read(cycle_id) for cycle_id in self.cycle_ids()]
        if wanted is not None:
            cycles = [cycle for cycle in cycles if cycle.status is wanted]
        cycles.sort(key=lambda cycle: (cycle.created_at, cycle.id), reverse=True)
        if limit is not None and limit > 0:
            cycles = cycles[:limit]
        return cycles


def issue_from_value_error(exc: ValueError) -> dict[str, str]:
    """Split a ``"<path>: <message>"`` validation error into an issue mapping."""

    text = str(exc)
    path, separator, message = text.partition(": ")
    if not separator:
        return {"path": "<root>", "message": text}
    return {"path": path, "message": message}


def _require_safe_id(cycle_id: str) -> None:
    try:
        domain_ids.validate_cycle_id(cycle_id)
    except ValueError as exc:
        raise SynapseError(
            ErrorCode.SCHEMA_INVALID,
            str(exc),
            {"issues": [{"path": "cycle_id", "message": str(exc)}]},
        ) from exc


def _corrupt(cycle_id: str, path: Path, reason: str) -> SynapseError:
    return SynapseError(
        ErrorCode.CYCLE_CORRUPT,
        f"cycle {cycle_id} is corrupt: {reason}",
        {"cycle_id": cycle_id, "path": str(path)},
    )


__all__ = ["CycleStore", "issue_from_value_error"]

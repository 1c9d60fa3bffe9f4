"""Dataclass domain models with strict validation and canonical serialization."""

from __future__ import annotations

import json
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import UTC, datetime
from enum import Enum, StrEnum
from typing import NoReturn, TypeVar, cast

from synapse_orchestrator.constants import (
    CYCLE_SCHEMA_VERSION,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_PHASE_TIMEOUT_MS,
    LOCK_RECORD_VERSION,
    LOCK_SCHEMA_VERSION,
)
from synapse_orchestrator.domain import ids as domain_ids

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

TModel = TypeVar("TModel", bound="CanonicalModel")
TEnum = TypeVar("TEnum", bound=Enum)

_MAX_TEXT = 65_536
_MAX_JSON_DEPTH = 16
_MAX_JSON_COLLECTION = 4_096


class CycleStatus(StrEnum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    DONE = "DONE"
    FAILED = "FAILED"
    CANCELED = "CANCELED"


class PhaseStatus(StrEnum):
    PENDING = "PENDING"
    CLAIMED = "CLAIMED"
    RUNNING = "RUNNING"
    DONE = "DONE"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class PhaseType(StrEnum):
    FRONTEND = "FRONTEND"
    BACKEND = "BACKEND"
    FRONTEND_TWEAK = "FRONTEND_TWEAK"


class LogLevel(StrEnum):
    INFO = "INFO"
    ERROR = "ERROR"


class AttemptOutcome(StrEnum):
    DONE = "DONE"
    FAILED = "FAILED"
    RETRY = "RETRY"


TERMINAL_CYCLE_STATUSES: frozenset[CycleStatus] = frozenset(
    {CycleStatus.DONE, CycleStatus.FAILED, CycleStatus.CANCELED}
)
ACTIVE_PHASE_STATUSES: frozenset[PhaseStatus] = frozenset(
    {PhaseStatus.CLAIMED, PhaseStatus.RUNNING}
)


class CanonicalModel:
    """Mixin for canonical dict/json serialization."""

    def to_dict(self) -> dict[str, JSONValue]:
        serialized = _serialize_value(self, self.__class__.__name__)
        if not isinstance(serialized, dict):
            _fail(self.__class__.__name__, "serialized model must be an object")
        return serialized

    def to_json(self) -> str:
        return _canonical_json(self.to_dict())

    @classmethod
    def from_json(cls: type[TModel], raw: str) -> TModel:
        if not isinstance(raw, str):
            _fail(cls.__name__, f"expected JSON string, got {type(raw).__name__}")
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            _fail(cls.__name__, f"invalid JSON: {exc}")
        if not isinstance(parsed, dict):
            _fail(cls.__name__, "JSON root must be an object")
        return cls.from_dict(parsed)

    @classmethod
    def from_dict(cls: type[TModel], data: Mapping[str, object]) -> TModel:
        _fail(cls.__name__, "from_dict is not implemented for this model type")


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def format_timestamp(value: datetime) -> str:
    """Render ``value`` as a UTC ISO-8601 string with a ``Z`` suffix."""
    return _datetime_to_iso8601z(value)


def parse_timestamp(value: object) -> datetime | None:
    """Parse an ISO-8601 timestamp, returning ``None`` for missing or unparsable input."""
    if value is None:
        return None
    try:
        return _as_datetime(value, "timestamp")
    except ValueError:
        return None


def merge_unique(existing: Iterable[str], additions: Iterable[str]) -> list[str]:
    """Union two string sequences, keeping first-seen order."""
    merged: list[str] = []
    seen: set[str] = set()
    for item in (*existing, *additions):
        if item in seen:
            continue
        seen.add(item)
        merged.append(item)
    return merged


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _canonical_json(value: JSONValue) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _expect_object(
    value: object,
    path: str,
    *,
    required: set[str],
    optional: set[str] | None = None,
) -> dict[str, object]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")

    parsed: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            _fail(path, f"object keys must be strings, got {type(key).__name__}")
        parsed[key] = item

    allowed = required | (optional or set())
    unknown = sorted(key for key in parsed if key not in allowed)
    if unknown:
        _fail(path, f"unexpected fields: {unknown}")

    missing = sorted(key for key in required if key not in parsed)
    if missing:
        _fail(path, f"missing required fields: {missing}")

    return parsed


def _as_schema_version(value: object, path: str, *, supported: int) -> int:
    version = _as_int(value, path, minimum=1)
    if version > supported:
        _fail(path, f"schema version {version} is newer than supported {supported}")
    return version


def _as_str(
    value: object,
    path: str,
    *,
    min_len: int = 1,
    max_len: int = _MAX_TEXT,
    strip: bool = True,
) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    normalized = value.strip() if strip else value
    if len(normalized) < min_len:
        _fail(path, f"must be at least {min_len} character(s)")
    if len(normalized) > max_len:
        _fail(path, f"must be <= {max_len} characters")
    return normalized


def _as_optional_str(value: object, path: str, *, max_len: int = _MAX_TEXT) -> str | None:
    if value is None:
        return None
    return _as_str(value, path, max_len=max_len)


def _as_text(value: object, path: str) -> str:
    return _as_str(value, path, min_len=0, strip=False)


def _as_optional_verbatim(value: object, path: str) -> str | None:
    if value is None:
        return None
    return _as_str(value, path, strip=False)


def _as_bool(value: object, path: str) -> bool:
    if isinstance(value, bool):
        return value
    _fail(path, f"expected boolean, got {type(value).__name__}")


def _as_int(value: object, path: str, *, minimum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    if minimum is not None and value < minimum:
        _fail(path, f"must be >= {minimum}")
    return value


def _as_optional_int(value: object, path: str, *, minimum: int | None = None) -> int | None:
    if value is None:
        return None
    return _as_int(value, path, minimum=minimum)


def _as_datetime(value: object, path: str) -> datetime:
    parsed: datetime
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            _fail(path, f"invalid ISO-8601 datetime: {value!r} ({exc})")
    else:
        _fail(path, f"expected datetime or ISO-8601 string, got {type(value).__name__}")

    if parsed.tzinfo is None or parsed.utcoffset() is None:
        _fail(path, "datetime must be timezone-aware UTC")
    return parsed.astimezone(UTC)


def _as_optional_datetime(value: object, path: str) -> datetime | None:
    if value is None:
        return None
    return _as_datetime(value, path)


def _datetime_to_iso8601z(value: datetime) -> str:
    normalized = _as_datetime(value, "datetime")
    return normalized.isoformat(timespec="microseconds").replace("+00:00", "Z")


def _as_enum(enum_type: type[TEnum], value: object, path: str) -> TEnum:
    if isinstance(value, enum_type):
        return value
    if not isinstance(value, str):
        _fail(path, f"expected string enum value, got {type(value).__name__}")
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(sorted(item.value for item in enum_type))
        _fail(path, f"invalid value {value!r}; expected one of: {allowed}")


def _as_sequence(value: object, path: str) -> list[object]:
    if isinstance(value, (list, tuple)):
        return list(value)
    _fail(path, f"expected array, got {type(value).__name__}")


def _as_str_list(value: object, path: str, *, unique: bool) -> list[str]:
    values = _as_sequence(value, path)
    if len(values) > _MAX_JSON_COLLECTION:
        _fail(path, f"too many items (>{_MAX_JSON_COLLECTION})")
    parsed = [_as_str(item, f"{path}[{index}]") for index, item in enumerate(values)]
    if unique:
        return merge_unique((), parsed)
    return parsed


def _as_json_value(value: object, path: str, *, depth: int = 0) -> JSONValue:
    if depth > _MAX_JSON_DEPTH:
        _fail(path, f"JSON nesting exceeds max depth {_MAX_JSON_DEPTH}")

    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            _fail(path, "float values must be finite")
        return value
    if isinstance(value, str):
        if len(value) > _MAX_TEXT:
            _fail(path, f"string exceeds max length {_MAX_TEXT}")
        return value
    if isinstance(value, (list, tuple)):
        if len(value) > _MAX_JSON_COLLECTION:
            _fail(path, f"list length exceeds {_MAX_JSON_COLLECTION}")
        return [
            _as_json_value(item, f"{path}[{idx}]", depth=depth + 1)
            for idx, item in enumerate(value)
        ]
    if isinstance(value, Mapping):
        if len(value) > _MAX_JSON_COLLECTION:
            _fail(path, f"object size exceeds {_MAX_JSON_COLLECTION}")
        parsed: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                _fail(path, f"object key must be string, got {type(key).__name__}")
            parsed[key] = _as_json_value(item, f"{path}.{key}", depth=depth + 1)
        return parsed

    _fail(path, f"value is not JSON-serializable ({type(value).__name__})")


def _as_json_object(value: object, path: str) -> dict[str, JSONValue]:
    parsed = _as_json_value(value, path)
    if not isinstance(parsed, dict):
        _fail(path, "expected JSON object")
    return parsed


def _as_optional_json_object(value: object, path: str) -> dict[str, JSONValue] | None:
    if value is None:
        return None
    return _as_json_object(value, path)


def _serialize_value(value: object, path: str) -> JSONValue:
    if value is None or isinstance(value, bool):
        return cast("JSONValue", value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            _fail(path, "float values must be finite")
        return value
    if isinstance(value, Enum):
        raw = value.value
        if not isinstance(raw, str):
            _fail(path, "enum value must be string")
        return raw
    if isinstance(value, str):
        return value
    if isinstance(value, datetime):
        return _datetime_to_iso8601z(value)
    if isinstance(value, (list, tuple)):
        return [_serialize_value(item, f"{path}[]") for item in value]
    if isinstance(value, Mapping):
        out: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                _fail(path, "dict keys must be strings")
            out[key] = _serialize_value(item, f"{path}.{key}")
        return out
    if is_dataclass(value):
        out_obj: dict[str, JSONValue] = {}
        for dataclass_field in fields(value):
            out_obj[dataclass_field.name] = _serialize_value(
                getattr(value, dataclass_field.name),
                f"{path}.{dataclass_field.name}",
            )
        return out_obj

    _fail(path, f"cannot serialize value of type {type(value).__name__}")


@dataclass(slots=True)
class ErrorInfo(CanonicalModel):
    code: str
    message: str
    details: dict[str, JSONValue] | None = None

    def __post_init__(self) -> None:
        self.code = _as_str(self.code, "ErrorInfo.code", max_len=128)
        self.message = _as_str(self.message, "ErrorInfo.message", min_len=0)
        self.details = _as_optional_json_object(self.details, "ErrorInfo.details")

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ErrorInfo:
        parsed = _expect_object(
            data, "ErrorInfo", required={"code", "message"}, optional={"details"}
        )
        return cls(
            code=_as_str(parsed["code"], "ErrorInfo.code"),
            message=_as_str(parsed["message"], "ErrorInfo.message", min_len=0),
            details=_as_optional_json_object(parsed.get("details"), "ErrorInfo.details"),
        )


@dataclass(slots=True)
class LogEntry(CanonicalModel):
    ts: datetime
    level: LogLevel
    message: str
    phase_id: str | None = None
    meta: dict[str, JSONValue] | None = None

    def __post_init__(self) -> None:
        self.ts = _as_datetime(self.ts, "LogEntry.ts")
        self.level = _as_enum(LogLevel, self.level, "LogEntry.level")
        self.message = _as_str(self.message, "LogEntry.message")
        self.phase_id = _as_optional_str(self.phase_id, "LogEntry.phase_id")
        self.meta = _as_optional_json_object(self.meta, "LogEntry.meta")

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> LogEntry:
        parsed = _expect_object(
            data,
            "LogEntry",
            required={"ts", "level", "message"},
            optional={"phase_id", "meta"},
        )
        return cls(
            ts=_as_datetime(parsed["ts"], "LogEntry.ts"),
            level=_as_enum(LogLevel, parsed["level"], "LogEntry.level"),
            message=_as_str(parsed["message"], "LogEntry.message"),
            phase_id=_as_optional_str(parsed.get("phase_id"), "LogEntry.phase_id"),
            meta=_as_optional_json_object(parsed.get("meta"), "LogEntry.meta"),
        )


@dataclass(slots=True)
class CheckResult(CanonicalModel):
    command: str
    ok: bool
    code: int | None
    stdout_tail: str = ""
    stderr_tail: str = ""

    def __post_init__(self) -> None:
        self.command = _as_str(self.command, "CheckResult.command")
        self.ok = _as_bool(self.ok, "CheckResult.ok")
        self.code = _as_optional_int(self.code, "CheckResult.code")
        self.stdout_tail = _as_text(self.stdout_tail, "CheckResult.stdout_tail")
        self.stderr_tail = _as_text(self.stderr_tail, "CheckResult.stderr_tail")

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> CheckResult:
        parsed = _expect_object(
            data,
            "CheckResult",
            required={"command", "ok", "code"},
            optional={"stdout_tail", "stderr_tail"},
        )
        return cls(
            command=_as_str(parsed["command"], "CheckResult.command"),
            ok=_as_bool(parsed["ok"], "CheckResult.ok"),
            code=_as_optional_int(parsed["code"], "CheckResult.code"),
            stdout_tail=_as_text(parsed.get("stdout_tail", ""), "CheckResult.stdout_tail"),
            stderr_tail=_as_text(parsed.get("stderr_tail", ""), "CheckResult.stderr_tail"),
        )


@dataclass(slots=True)
class AttemptRecord(CanonicalModel):
    phase_id: str
    attempt: int
    started_at: datetime | None
    finished_at: datetime
    outcome: AttemptOutcome
    error_code: str | None = None

    def __post_init__(self) -> None:
        self.phase_id = _as_str(self.phase_id, "AttemptRecord.phase_id")
        self.attempt = _as_int(self.attempt, "AttemptRecord.attempt", minimum=0)
        self.started_at = _as_optional_datetime(self.started_at, "AttemptRecord.started_at")
        self.finished_at = _as_datetime(self.finished_at, "AttemptRecord.finished_at")
        self.outcome = _as_enum(AttemptOutcome, self.outcome, "AttemptRecord.outcome")
        self.error_code = _as_optional_str(self.error_code, "AttemptRecord.error_code")
        if self.outcome is AttemptOutcome.DONE and self.error_code is not None:
            _fail("AttemptRecord.error_code", "must be null when outcome is DONE")

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> AttemptRecord:
        parsed = _expect_object(
            data,
            "AttemptRecord",
            required={"phase_id", "attempt", "finished_at", "outcome"},
            optional={"started_at", "error_code"},
        )
        return cls(
            phase_id=_as_str(parsed["phase_id"], "AttemptRecord.phase_id"),
            attempt=_as_int(parsed["attempt"], "AttemptRecord.attempt", minimum=0),
            started_at=_as_optional_datetime(parsed.get("started_at"), "AttemptRecord.started_at"),
            finished_at=_as_datetime(parsed["finished_at"], "AttemptRecord.finished_at"),
            outcome=_as_enum(AttemptOutcome, parsed["outcome"], "AttemptRecord.outcome"),
            error_code=_as_optional_str(parsed.get("error_code"), "AttemptRecord.error_code"),
        )


@dataclass(slots=True)
class Artifacts(CanonicalModel):
    changed_files: list[str] = field(default_factory=list)
    commands_run: list[str] = field(default_factory=list)
    test_results: list[CheckResult] = field(default_factory=list)
    phase_durations_ms: dict[str, int] = field(default_factory=dict)
    attempt_history: list[AttemptRecord] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.changed_files = _as_str_list(
            self.changed_files, "Artifacts.changed_files", unique=True
        )
        self.commands_run = _as_str_list(self.commands_run, "Artifacts.commands_run", unique=True)
        results = _as_sequence(self.test_results, "Artifacts.test_results")
        for index, item in enumerate(results):
            if not isinstance(item, CheckResult):
                _fail(f"Artifacts.test_results[{index}]", "expected CheckResult")
        self.test_results = cast("list[CheckResult]", results)
        if not isinstance(self.phase_durations_ms, Mapping):
            _fail("Artifacts.phase_durations_ms", "expected object")
        durations: dict[str, int] = {}
        for key, value in self.phase_durations_ms.items():
            name = _as_str(key, "Artifacts.phase_durations_ms.<key>")
            durations[name] = _as_int(value, f"Artifacts.phase_durations_ms.{name}", minimum=0)
        self.phase_durations_ms = durations
        history = _as_sequence(self.attempt_history, "Artifacts.attempt_history")
        for index, item in enumerate(history):
            if not isinstance(item, AttemptRecord):
                _fail(f"Artifacts.attempt_history[{index}]", "expected AttemptRecord")
        self.attempt_history = cast("list[AttemptRecord]", history)

    def add_duration(self, phase_id: str, duration_ms: int) -> None:
        self.phase_durations_ms[phase_id] = self.phase_durations_ms.get(phase_id, 0) + max(
            0, int(duration_ms)
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Artifacts:
        parsed = _expect_object(
            data,
            "Artifacts",
            required=set(),
            optional={
                "changed_files",
                "commands_run",
                "test_results",
                "phase_durations_ms",
                "attempt_history",
            },
        )
        return cls(
            changed_files=_as_str_list(
                parsed.get("changed_files", []), "Artifacts.changed_files", unique=True
            ),
            commands_run=_as_str_list(
                parsed.get("commands_run", []), "Artifacts.commands_run", unique=True
            ),
            test_results=[
                CheckResult.from_dict(_expect_mapping(item, f"Artifacts.test_results[{index}]"))
                for index, item in enumerate(
                    _as_sequence(parsed.get("test_results", []), "Artifacts.test_results")
                )
            ],
            phase_durations_ms=cast(
                "dict[str, int]",
                _expect_mapping(
                    parsed.get("phase_durations_ms", {}), "Artifacts.phase_durations_ms"
                ),
            ),
            attempt_history=[
                AttemptRecord.from_dict(
                    _expect_mapping(item, f"Artifacts.attempt_history[{index}]")
                )
                for index, item in enumerate(
                    _as_sequence(parsed.get("attempt_history", []), "Artifacts.attempt_history")
                )
            ],
        )


@dataclass(slots=True)
class Phase(CanonicalModel):
    id: str
    type: PhaseType
    status: PhaseStatus = PhaseStatus.PENDING
    input: dict[str, JSONValue] = field(default_factory=dict)
    output: dict[str, JSONValue] | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    attempt_count: int = 0
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    timeout_ms: int = DEFAULT_PHASE_TIMEOUT_MS
    claim_token: str | None = None
    claimed_by: str | None = None
    lease_renewed_at: datetime | None = None

    def __post_init__(self) -> None:
        self.id = _as_str(self.id, "Phase.id", max_len=128)
        self.type = _as_enum(PhaseType, self.type, "Phase.type")
        self.status = _as_enum(PhaseStatus, self.status, "Phase.status")
        self.input = _as_json_object(self.input, "Phase.input")
        self.output = _as_optional_json_object(self.output, "Phase.output")
        self.started_at = _as_optional_datetime(self.started_at, "Phase.started_at")
        self.finished_at = _as_optional_datetime(self.finished_at, "Phase.finished_at")
        self.attempt_count = _as_int(self.attempt_count, "Phase.attempt_count", minimum=0)
        self.max_attempts = _as_int(self.max_attempts, "Phase.max_attempts", minimum=1)
        self.timeout_ms = _as_int(self.timeout_ms, "Phase.timeout_ms", minimum=1)
        self.claim_token = _as_optional_str(self.claim_token, "Phase.claim_token", max_len=256)
        self.claimed_by = _as_optional_str(self.claimed_by, "Phase.claimed_by", max_len=256)
        self.lease_renewed_at = _as_optional_datetime(
            self.lease_renewed_at, "Phase.lease_renewed_at"
        )

        active = self.status in ACTIVE_PHASE_STATUSES
        if active and self.claim_token is None:
            _fail("Phase.claim_token", f"required when status is {self.status.value}")
        if not active and self.claim_token is not None:
            _fail("Phase.claim_token", f"must be null when status is {self.status.value}")
        if not active and self.claimed_by is not None:
            _fail("Phase.claimed_by", f"must be null when status is {self.status.value}")
        if not active and self.lease_renewed_at is not None:
            _fail("Phase.lease_renewed_at", f"must be null when status is {self.status.value}")

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_PHASE_STATUSES

    def clear_claim(self) -> None:
        self.claim_token = None
        self.claimed_by = None
        self.lease_renewed_at = None

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Phase:
        parsed = _expect_object(
            data,
            "Phase",
            required={"id", "type", "status"},
            optional={
                "input",
                "output",
                "started_at",
                "finished_at",
                "attempt_count",
                "max_attempts",
                "timeout_ms",
                "claim_token",
                "claimed_by",
                "lease_renewed_at",
            },
        )
        return cls(
            id=_as_str(parsed["id"], "Phase.id"),
            type=_as_enum(PhaseType, parsed["type"], "Phase.type"),
            status=_as_enum(PhaseStatus, parsed["status"], "Phase.status"),
            input=_as_json_object(parsed.get("input", {}), "Phase.input"),
            output=_as_optional_json_object(parsed.get("output"), "Phase.output"),
            started_at=_as_optional_datetime(parsed.get("started_at"), "Phase.started_at"),
            finished_at=_as_optional_datetime(parsed.get("finished_at"), "Phase.finished_at"),
            attempt_count=_as_int(parsed.get("attempt_count", 0), "Phase.attempt_count"),
            max_attempts=_as_int(
                parsed.get("max_attempts", DEFAULT_MAX_ATTEMPTS), "Phase.max_attempts"
            ),
            timeout_ms=_as_int(
                parsed.get("timeout_ms", DEFAULT_PHASE_TIMEOUT_MS), "Phase.timeout_ms"
            ),
            claim_token=_as_optional_str(parsed.get("claim_token"), "Phase.claim_token"),
            claimed_by=_as_optional_str(parsed.get("claimed_by"), "Phase.claimed_by"),
            lease_renewed_at=_as_optional_datetime(
                parsed.get("lease_renewed_at"), "Phase.lease_renewed_at"
            ),
        )


@dataclass(slots=True)
class Cycle(CanonicalModel):
    id: str
    created_at: datetime
    updated_at: datetime
    request_text: str
    repo_root: str
    constraints: list[str] = field(default_factory=list)
    phases: list[Phase] = field(default_factory=list)
    status: CycleStatus = CycleStatus.QUEUED
    current_phase_index: int | None = None
    artifacts: Artifacts = field(default_factory=Artifacts)
    logs: list[LogEntry] = field(default_factory=list)
    last_error: ErrorInfo | None = None
    canceled_reason: str | None = None
    schema_version: int = CYCLE_SCHEMA_VERSION

    def __post_init__(self) -> None:
        self.schema_version = _as_schema_version(
            self.schema_version, "Cycle.schema_version", supported=CYCLE_SCHEMA_VERSION
        )
        self.id = _validate_cycle_id(_as_str(self.id, "Cycle.id"), "Cycle.id")
        self.created_at = _as_datetime(self.created_at, "Cycle.created_at")
        self.updated_at = _as_datetime(self.updated_at, "Cycle.updated_at")
        self.request_text = _as_str(self.request_text, "Cycle.request_text")
        self.repo_root = _as_str(self.repo_root, "Cycle.repo_root", max_len=4096)
        self.constraints = _as_str_list(self.constraints, "Cycle.constraints", unique=False)
        self.status = _as_enum(CycleStatus, self.status, "Cycle.status")
        self.current_phase_index = _as_optional_int(
            self.current_phase_index, "Cycle.current_phase_index", minimum=0
        )
        self.canceled_reason = _as_optional_verbatim(self.canceled_reason, "Cycle.canceled_reason")

        phases = _as_sequence(self.phases, "Cycle.phases")
        seen_ids: set[str] = set()
        for index, phase in enumerate(phases):
            if not isinstance(phase, Phase):
                _fail(f"Cycle.phases[{index}]", "expected Phase")
            if phase.id in seen_ids:
                _fail(f"Cycle.phases[{index}].id", f"duplicate phase id {phase.id!r}")
            seen_ids.add(phase.id)
        self.phases = cast("list[Phase]", phases)

        if not isinstance(self.artifacts, Artifacts):
            _fail("Cycle.artifacts", "expected Artifacts")
        logs = _as_sequence(self.logs, "Cycle.logs")
        for index, entry in enumerate(logs):
            if not isinstance(entry, LogEntry):
                _fail(f"Cycle.logs[{index}]", "expected LogEntry")
        self.logs = cast("list[LogEntry]", logs)
        if self.last_error is not None and not isinstance(self.last_error, ErrorInfo):
            _fail("Cycle.last_error", "expected ErrorInfo")

        self._validate_invariants()

    def _validate_invariants(self) -> None:
        index = self.current_phase_index
        if index is not None and index >= len(self.phases):
            _fail(
                "Cycle.current_phase_index",
                f"index {index} out of range for {len(self.phases)} phase(s)",
            )
        if self.status in TERMINAL_CYCLE_STATUSES and index is not None:
            _fail("Cycle.current_phase_index", f"must be null when status is {self.status.value}")

        active = [phase.id for phase in self.phases if phase.is_active]
        if len(active) > 1:
            _fail("Cycle.phases", f"at most one phase may be CLAIMED or RUNNING, found {active}")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_CYCLE_STATUSES

    @property
    def current_phase(self) -> Phase | None:
        if self.current_phase_index is None:
            return None
        return self.phases[self.current_phase_index]

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Cycle:
        parsed = _expect_object(
            data,
            "Cycle",
            required={
                "schema_version",
                "id",
                "created_at",
                "updated_at",
                "request_text",
                "repo_root",
                "phases",
                "status",
            },
            optional={
                "constraints",
                "current_phase_index",
                "artifacts",
                "logs",
                "last_error",
                "canceled_reason",
            },
        )
        raw_last_error = parsed.get("last_error")
        return cls(
            schema_version=_as_schema_version(
                parsed["schema_version"], "Cycle.schema_version", supported=CYCLE_SCHEMA_VERSION
            ),
            id=_as_str(parsed["id"], "Cycle.id"),
            created_at=_as_datetime(parsed["created_at"], "Cycle.created_at"),
            updated_at=_as_datetime(parsed["updated_at"], "Cycle.updated_at"),
            request_text=_as_str(parsed["request_text"], "Cycle.request_text"),
            repo_root=_as_str(parsed["repo_root"], "Cycle.repo_root"),
            constraints=_as_str_list(
                parsed.get("constraints", []), "Cycle.constraints", unique=False
            ),
            phases=[
                Phase.from_dict(_expect_mapping(item, f"Cycle.phases[{index}]"))
                for index, item in enumerate(_as_sequence(parsed["phases"], "Cycle.phases"))
            ],
            status=_as_enum(CycleStatus, parsed["status"], "Cycle.status"),
            current_phase_index=_as_optional_int(
                parsed.get("current_phase_index"), "Cycle.current_phase_index", minimum=0
            ),
            artifacts=Artifacts.from_dict(
                _expect_mapping(parsed.get("artifacts", {}), "Cycle.artifacts")
            ),
            logs=[
                LogEntry.from_dict(_expect_mapping(item, f"Cycle.logs[{index}]"))
                for index, item in enumerate(_as_sequence(parsed.get("logs", []), "Cycle.logs"))
            ],
            last_error=(
                None
                if raw_last_error is None
                else ErrorInfo.from_dict(_expect_mapping(raw_last_error, "Cycle.last_error"))
            ),
            canceled_reason=_as_optional_verbatim(
                parsed.get("canceled_reason"), "Cycle.canceled_reason"
            ),
        )


@dataclass(slots=True)
class LockRecord(CanonicalModel):
    cycle_id: str
    owner_id: str
    pid: int
    created_at: datetime
    heartbeat_at: datetime
    expires_at: datetime
    schema_version: int = LOCK_SCHEMA_VERSION
    lock_version: int = LOCK_RECORD_VERSION

    def __post_init__(self) -> None:
        self.schema_version = _as_schema_version(
            self.schema_version, "LockRecord.schema_version", supported=LOCK_SCHEMA_VERSION
        )
        self.lock_version = _as_schema_version(
            self.lock_version, "LockRecord.lock_version", supported=LOCK_RECORD_VERSION
        )
        self.cycle_id = _validate_cycle_id(
            _as_str(self.cycle_id, "LockRecord.cycle_id"), "LockRecord.cycle_id"
        )
        self.owner_id = _as_str(self.owner_id, "LockRecord.owner_id", max_len=256)
        self.pid = _as_int(self.pid, "LockRecord.pid", minimum=0)
        self.created_at = _as_datetime(self.created_at, "LockRecord.created_at")
        self.heartbeat_at = _as_datetime(self.heartbeat_at, "LockRecord.heartbeat_at")
        self.expires_at = _as_datetime(self.expires_at, "LockRecord.expires_at")

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> LockRecord:
        parsed = _expect_object(
            data,
            "LockRecord",
            required={
                "schema_version",
                "lock_version",
                "cycle_id",
                "owner_id",
                "pid",
                "created_at",
                "heartbeat_at",
                "expires_at",
            },
        )
        return cls(
            schema_version=_as_int(parsed["schema_version"], "LockRecord.schema_version"),
            lock_version=_as_int(parsed["lock_version"], "LockRecord.lock_version"),
            cycle_id=_as_str(parsed["cycle_id"], "LockRecord.cycle_id"),
            owner_id=_as_str(parsed["owner_id"], "LockRecord.owner_id"),
            pid=_as_int(parsed["pid"], "LockRecord.pid"),
            created_at=_as_datetime(parsed["created_at"], "LockRecord.created_at"),
            heartbeat_at=_as_datetime(parsed["heartbeat_at"], "LockRecord.heartbeat_at"),
            expires_at=_as_datetime(parsed["expires_at"], "LockRecord.expires_at"),
        )


@dataclass(frozen=True, slots=True)
class PhaseExecutionResult:
    """Structured result returned by a phase adapter; never persisted directly."""

    report: dict[str, JSONValue] = field(default_factory=dict)
    commands_run: tuple[str, ...] = ()
    frontend_tweak_required: bool | None = None


def _expect_mapping(value: object, path: str) -> Mapping[str, object]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")
    return cast("Mapping[str, object]", value)


def _validate_cycle_id(value: str, path: str) -> str:
    try:
        domain_ids.validate_cycle_id(value)
    except ValueError as exc:
        _fail(path, str(exc))
    return value


__all__ = [
    "ACTIVE_PHASE_STATUSES",
    "Artifacts",
    "AttemptOutcome",
    "AttemptRecord",
    "CanonicalModel",
    "CheckResult",
    "Cycle",
    "CycleStatus",
    "ErrorInfo",
    "JSONScalar",
    "JSONValue",
    "LockRecord",
    "LogEntry",
    "LogLevel",
    "Phase",
    "PhaseExecutionResult",
    "PhaseStatus",
    "PhaseType",
    "TERMINAL_CYCLE_STATUSES",
    "format_timestamp",
    "merge_unique",
    "parse_timestamp",
    "utc_now",
]

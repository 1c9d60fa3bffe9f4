"""
synapse-orchestrator — runner configuration schema and validation.

File: src/synapse_orchestrator/config/schema.py
Last updated: 2026-10-19

Purpose
- Define authoritative runner configuration defaults and strict validation rules.

What should be included in this file
- Schema versioning and migration guidance.
- Validation rules for required fields, types, enums, and numeric constraints.
- Deterministic deep-merge helpers.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Reject unknown fields so typos never silently fall back to defaults.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from synapse_orchestrator.constants import CONFIG_SCHEMA_VERSION, DEFAULT_STORAGE_DIR

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
PHASE_TYPE_NAMES: Final[tuple[str, ...]] = ("FRONTEND", "BACKEND", "FRONTEND_TWEAK")
GEMINI_MODES: Final[tuple[str, ...]] = ("stub", "cli")


class GeminiAdapterConfig(TypedDict):
    mode: Literal["stub", "cli"]
    command: str


class CodexExecAdapterConfig(TypedDict):
    command: str


AdaptersConfig = TypedDict(
    "AdaptersConfig",
    {"gemini": GeminiAdapterConfig, "codexExec": CodexExecAdapterConfig},
)


class LocksConfig(TypedDict):
    ttl_ms: int
    heartbeat_ms: int
    takeover_grace_ms: int


class RunnerConfig(TypedDict):
    schema_version: int
    storage_dir: str
    checks: dict[str, list[str]]
    require_changes: dict[str, bool]
    adapters: AdaptersConfig
    locks: LocksConfig
    denylist_substrings: list[str]


DEFAULT_CONFIG: Final[RunnerConfig] = {
    "schema_version": ConfigSchemaVersion,
    "storage_dir": DEFAULT_STORAGE_DIR,
    "checks": {
        "FRONTEND": [],
        "BACKEND": [],
        "FRONTEND_TWEAK": [],
    },
    "require_changes": {
        "FRONTEND": False,
        "BACKEND": True,
        "FRONTEND_TWEAK": False,
    },
    "adapters": {
        "gemini": {"mode": "stub", "command": "gemini"},
        "codexExec": {"command": "codex exec"},
    },
    "locks": {
        "ttl_ms": 20_000,
        "heartbeat_ms": 5_000,
        "takeover_grace_ms": 2_000,
    },
    "denylist_substrings": [
        "rm -rf /",
        "git reset --hard",
        "git clean -fdx",
    ],
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"path": self.path, "message": self.message}


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> RunnerConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    """Return deterministic migration guidance for schema version mismatch."""

    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "rewrite config.json with the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the synapse-orchestrator runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``.

    Lists are replaced wholesale, never concatenated.
    """

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized = _validate_root(root, issues)
    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())

    return ConfigValidationResult(config=normalized, issues=issues.items())


def assert_valid_config(config: Mapping[str, object] | object) -> RunnerConfig:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config  # type: ignore[return-value]


def _validate_root(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    allowed = {
        "schema_version",
        "storage_dir",
        "checks",
        "require_changes",
        "adapters",
        "locks",
        "denylist_substrings",
    }
    _reject_unknown_keys(payload, allowed, "", issues)
    _require_keys(payload, allowed, "", issues)

    out: dict[str, Any] = {}
    if "schema_version" in payload:
        parsed_version = _as_int(payload["schema_version"], "schema_version", issues, minimum=1)
        if parsed_version is not None:
            out["schema_version"] = parsed_version
            if parsed_version != ConfigSchemaVersion:
                issues.add("schema_version", migration_guidance(parsed_version))

    if "storage_dir" in payload:
        storage_dir = _as_path_text(payload["storage_dir"], "storage_dir", issues)
        if storage_dir is not None:
            out["storage_dir"] = storage_dir

    _section(payload, key="checks", issues=issues, validator=_validate_checks, out=out)
    _section(
        payload,
        key="require_changes",
        issues=issues,
        validator=_validate_require_changes,
        out=out,
    )
    _section(payload, key="adapters", issues=issues, validator=_validate_adapters, out=out)
    _section(payload, key="locks", issues=issues, validator=_validate_locks, out=out)

    if "denylist_substrings" in payload:
        denylist = _as_str_list(
            payload["denylist_substrings"], "denylist_substrings", issues, allow_blank=True
        )
        if denylist is not None:
            out["denylist_substrings"] = denylist

    return out


def _section(
    payload: Mapping[str, object],
    *,
    key: str,
    issues: _IssueCollector,
    validator: Callable[[dict[str, object], str, _IssueCollector], dict[str, Any]],
    out: dict[str, Any],
) -> None:
    raw = payload.get(key)
    if raw is None:
        return
    section_obj = _as_object(raw, key, issues)
    if section_obj is None:
        return
    out[key] = validator(section_obj, key, issues)


def _validate_checks(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = set(PHASE_TYPE_NAMES)
    _reject_unknown_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {name: [] for name in PHASE_TYPE_NAMES}
    for name in PHASE_TYPE_NAMES:
        if name not in payload:
            continue
        commands = _as_str_list(payload[name], _join(path, name), issues, allow_blank=False)
        if commands is not None:
            out[name] = commands
    return out


def _validate_require_changes(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = set(PHASE_TYPE_NAMES)
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    for name in PHASE_TYPE_NAMES:
        if name not in payload:
            continue
        flag = _as_bool(payload[name], _join(path, name), issues)
        if flag is not None:
            out[name] = flag
    return out


def _validate_adapters(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"gemini", "codexExec"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    gemini_raw = payload.get("gemini")
    if gemini_raw is not None:
        gemini_path = _join(path, "gemini")
        gemini = _as_object(gemini_raw, gemini_path, issues)
        if gemini is not None:
            _reject_unknown_keys(gemini, {"mode", "command"}, gemini_path, issues)
            _require_keys(gemini, {"mode", "command"}, gemini_path, issues)
            parsed: dict[str, Any] = {}
            if "mode" in gemini:
                mode = _as_enum(
                    gemini["mode"],
                    _join(gemini_path, "mode"),
                    issues,
                    allowed_values=GEMINI_MODES,
                )
                if mode is not None:
                    parsed["mode"] = mode
            if "command" in gemini:
                command = _as_str(gemini["command"], _join(gemini_path, "command"), issues)
                if command is not None:
                    parsed["command"] = command
            out["gemini"] = parsed

    codex_raw = payload.get("codexExec")
    if codex_raw is not None:
        codex_path = _join(path, "codexExec")
        codex = _as_object(codex_raw, codex_path, issues)
        if codex is not None:
            _reject_unknown_keys(codex, {"command"}, codex_path, issues)
            _require_keys(codex, {"command"}, codex_path, issues)
            parsed_codex: dict[str, Any] = {}
            if "command" in codex:
                command = _as_str(codex["command"], _join(codex_path, "command"), issues)
                if command is not None:
                    parsed_codex["command"] = command
            out["codexExec"] = parsed_codex
    return out


def _validate_locks(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"ttl_ms", "heartbeat_ms", "takeover_grace_ms"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    minimums = {"ttl_ms": 1, "heartbeat_ms": 1, "takeover_grace_ms": 0}
    for key in sorted(allowed):
        if key not in payload:
            continue
        parsed = _as_int(payload[key], _join(path, key), issues, minimum=minimums[key])
        if parsed is not None:
            out[key] = parsed

    ttl_ms = out.get("ttl_ms")
    heartbeat_ms = out.get("heartbeat_ms")
    if isinstance(ttl_ms, int) and isinstance(heartbeat_ms, int) and heartbeat_ms >= ttl_ms:
        issues.add(_join(path, "heartbeat_ms"), "must be smaller than locks.ttl_ms")
    return out


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_str_list(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allow_blank: bool,
) -> list[str] | None:
    if not isinstance(value, list):
        issues.add(path, f"expected array, got {type(value).__name__}")
        return None
    out: list[str] = []
    valid = True
    for index, item in enumerate(value):
        item_path = f"{path}[{index}]"
        if not isinstance(item, str):
            issues.add(item_path, f"expected string, got {type(item).__name__}")
            valid = False
            continue
        if not allow_blank and not item.strip():
            issues.add(item_path, "must not be empty")
            valid = False
            continue
        out.append(item)
    return out if valid else None


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key in allowed:
            continue
        issues.add(_join(path, key), "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if isinstance(existing, dict):
                _merge_into(existing, value)
            elif isinstance(existing, Mapping):
                nested = _deep_copy_mapping(existing)
                _merge_into(nested, value)
                target[key] = nested
            else:
                nested_new: dict[str, Any] = {}
                _merge_into(nested_new, value)
                target[key] = nested_new
        else:
            target[key] = _deep_copy_value(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in sorted(value):
        out[key] = _deep_copy_value(value[key])
    return out


def _deep_copy_value(value: object) -> Any:
    if isinstance(value, Mapping):
        out: dict[str, Any] = {}
        for key, item in value.items():
            if isinstance(key, str):
                out[key] = _deep_copy_value(item)
        return out
    if isinstance(value, list):
        return [_deep_copy_value(item) for item in value]
    return copy.deepcopy(value)


__all__ = [
    "AdaptersConfig",
    "CodexExecAdapterConfig",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "GEMINI_MODES",
    "GeminiAdapterConfig",
    "LocksConfig",
    "PHASE_TYPE_NAMES",
    "RunnerConfig",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "validate_config",
]

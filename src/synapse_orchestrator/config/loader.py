"""
synapse-orchestrator — runner config loader.

File: src/synapse_orchestrator/config/loader.py
Last updated: 2026-10-19

Purpose
- Load the effective runner config from defaults, ``config.json``, and env vars.

What should be included in this file
- Precedence logic: env (SYNAPSE_) > file > defaults.
- First-run materialization of the default config file.
- Deterministic environment variable mapping and coercion.

Functional requirements
- Reject malformed or schema-invalid config with itemized issues.
- Refuse config written by a newer runtime.

Non-functional requirements
- Keep loading deterministic and reproducible.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, Literal

from synapse_orchestrator.config.schema import (
    ConfigSchemaVersion,
    ConfigValidationError,
    RunnerConfig,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
)
from synapse_orchestrator.domain.errors import ErrorCode, SynapseError
from synapse_orchestrator.utils.fs import write_json_atomic

ENV_PREFIX: Final[str] = "SYNAPSE_"

_BOOLEAN_TRUE: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_BOOLEAN_FALSE: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})
_UNBOUND_PATHS: Final[frozenset[tuple[str, ...]]] = frozenset({("schema_version",)})

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class _Binding:
    path: tuple[str, ...]
    value_type: Literal["str", "int", "bool"]


class ConfigLoadError(ValueError):
    """Raised when config cannot be read or overrides cannot be coerced."""


def load_runner_config(
    config_path: str | Path,
    *,
    environ: Mapping[str, str] | None = None,
    write_defaults: bool = True,
) -> RunnerConfig:
    """Load effective runner config with precedence: env > file > defaults.

    A missing file is materialized with the defaults when ``write_defaults`` is set.
    Every failure surfaces as a ``SynapseError`` with ``CONFIG_INVALID`` or
    ``UNSUPPORTED_VERSION``.
    """

    path = Path(config_path)
    env_map = dict(os.environ if environ is None else environ)

    try:
        file_payload = _load_json_file(path)
    except ConfigLoadError as exc:
        raise SynapseError(
            ErrorCode.CONFIG_INVALID, str(exc), {"path": str(path)}
        ) from exc

    if file_payload is None:
        defaults = default_config()
        if write_defaults:
            write_json_atomic(path, defaults)
            logger.info("wrote default runner config", extra={"path": str(path)})
        file_payload = dict(defaults)

    _check_schema_version(file_payload, path)

    try:
        merged = merge_config(default_config(), file_payload)
        merged = assert_valid_config(merged)
        merged = merge_config(merged, _collect_env_overrides(merged, env_map))
        return assert_valid_config(merged)
    except ConfigValidationError as exc:
        raise SynapseError(
            ErrorCode.CONFIG_INVALID,
            "runner config failed validation",
            {"path": str(path), "issues": [issue.to_dict() for issue in exc.issues]},
        ) from exc
    except ConfigLoadError as exc:
        raise SynapseError(ErrorCode.CONFIG_INVALID, str(exc), {"path": str(path)}) from exc


def env_name_for_path(path: tuple[str, ...]) -> str:
    return ENV_PREFIX + "_".join(part.upper() for part in path)


def _load_json_file(path: Path) -> dict[str, Any] | None:
    if not path.exists():
        return None

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigLoadError(f"invalid JSON in {path}: {exc}") from exc

    if not isinstance(parsed, dict):
        raise ConfigLoadError(f"config root must be an object: {path}")

    return parsed


def _check_schema_version(payload: Mapping[str, object], path: Path) -> None:
    version = payload.get("schema_version")
    if isinstance(version, bool) or not isinstance(version, int):
        return
    if version > ConfigSchemaVersion:
        raise SynapseError(
            ErrorCode.UNSUPPORTED_VERSION,
            migration_guidance(version),
            {"path": str(path), "found": version, "supported": ConfigSchemaVersion},
        )


def _collect_env_overrides(
    config: Mapping[str, object], environ: Mapping[str, str]
) -> dict[str, Any]:
    bindings = _build_bindings(config)
    overrides: dict[str, Any] = {}
    for env_name in sorted(bindings):
        raw = environ.get(env_name)
        if raw is None:
            continue
        binding = bindings[env_name]
        value = _coerce_env(raw, binding.value_type, env_name, binding.path)
        _set_nested(overrides, binding.path, value)
    return overrides


def _build_bindings(config: Mapping[str, object]) -> dict[str, _Binding]:
    bindings: dict[str, _Binding] = {}
    for path, value in _iter_scalar_paths(config):
        if path in _UNBOUND_PATHS:
            continue
        kind = _kind_for_value(value)
        if kind is None:
            continue
        bindings[env_name_for_path(path)] = _Binding(path=path, value_type=kind)
    return bindings


def _iter_scalar_paths(
    payload: Mapping[str, object],
    prefix: tuple[str, ...] = (),
) -> list[tuple[tuple[str, ...], object]]:
    pairs: list[tuple[tuple[str, ...], object]] = []
    for key in sorted(payload):
        value = payload[key]
        path = (*prefix, key)
        if isinstance(value, Mapping):
            pairs.extend(_iter_scalar_paths(value, path))
        else:
            pairs.append((path, value))
    return pairs


def _kind_for_value(value: object) -> Literal["str", "int", "bool"] | None:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, str):
        return "str"
    return None


def _coerce_env(
    raw: str,
    value_type: Literal["str", "int", "bool"],
    env_name: str,
    path: tuple[str, ...],
) -> object:
    value = raw.strip()
    if value_type == "str":
        return value
    if value_type == "int":
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{env_name} -> {'.'.join(path)} must be an integer") from exc

    lowered = value.lower()
    if lowered in _BOOLEAN_TRUE:
        return True
    if lowered in _BOOLEAN_FALSE:
        return False
    raise ConfigLoadError(
        f"{env_name} -> {'.'.join(path)} must be a boolean (true/false/1/0/yes/no/on/off)"
    )


def _set_nested(target: dict[str, Any], path: tuple[str, ...], value: object) -> None:
    cursor = target
    for part in path[:-1]:
        next_node = cursor.get(part)
        if not isinstance(next_node, dict):
            next_node = {}
            cursor[part] = next_node
        cursor = next_node
    cursor[path[-1]] = value


__all__ = [
    "ConfigLoadError",
    "ENV_PREFIX",
    "env_name_for_path",
    "load_runner_config",
]

"""
synapse-orchestrator config package public API.

File: src/synapse_orchestrator/config/__init__.py
Last updated: 2026-10-19

Purpose
- Export runner config loading/validation entrypoints and public error types.

Functional requirements
- Support loading from ``<storage>/config.json`` + ``SYNAPSE_`` env overrides.
- Fail fast with clear structured validation/load errors.
"""

from synapse_orchestrator.config.loader import (
    ENV_PREFIX,
    ConfigLoadError,
    env_name_for_path,
    load_runner_config,
)
from synapse_orchestrator.config.schema import (
    DEFAULT_CONFIG,
    ConfigSchemaVersion,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    RunnerConfig,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    validate_config,
)

__all__ = [
    "ConfigLoadError",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "ENV_PREFIX",
    "RunnerConfig",
    "assert_valid_config",
    "default_config",
    "env_name_for_path",
    "load_runner_config",
    "merge_config",
    "migration_guidance",
    "validate_config",
]

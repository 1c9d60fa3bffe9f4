"""Stable constants shared across orchestrator planes."""

from __future__ import annotations

from typing import Final

# Schema versions for persisted contracts.
CYCLE_SCHEMA_VERSION: Final[int] = 1
CONFIG_SCHEMA_VERSION: Final[int] = 1
LOCK_SCHEMA_VERSION: Final[int] = 1
LOCK_RECORD_VERSION: Final[int] = 1

# Storage layout (relative to the repository root unless overridden by config).
DEFAULT_STORAGE_DIR: Final[str] = ".synapse"
CONFIG_FILENAME: Final[str] = "config.json"
CYCLES_DIRNAME: Final[str] = "cycles"
LOCKS_DIRNAME: Final[str] = "locks"
TMP_DIRNAME: Final[str] = "tmp"

# Phase defaults.
DEFAULT_MAX_ATTEMPTS: Final[int] = 2
DEFAULT_PHASE_TIMEOUT_MS: Final[int] = 15 * 60 * 1000
DEFAULT_TWEAK_TIMEOUT_MS: Final[int] = 10 * 60 * 1000

# Lock timing.
LOCK_ACQUIRE_TIMEOUT_MS: Final[int] = 5_000
LOCK_POLL_INTERVAL_MS: Final[int] = 50

# Runner timing.
RUNNER_IDLE_POLL_MS: Final[int] = 500
RUNNER_RETRY_BACKOFF_MS: Final[int] = 250
CANCEL_WATCH_INTERVAL_MS: Final[int] = 200
RUNNER_SCAN_LIMIT: Final[int] = 200

# Output truncation for persisted command streams.
OUTPUT_TAIL_CHARS: Final[int] = 4_000

__all__ = [
    "CANCEL_WATCH_INTERVAL_MS",
    "CONFIG_FILENAME",
    "CONFIG_SCHEMA_VERSION",
    "CYCLES_DIRNAME",
    "CYCLE_SCHEMA_VERSION",
    "DEFAULT_MAX_ATTEMPTS",
    "DEFAULT_PHASE_TIMEOUT_MS",
    "DEFAULT_STORAGE_DIR",
    "DEFAULT_TWEAK_TIMEOUT_MS",
    "LOCKS_DIRNAME",
    "LOCK_ACQUIRE_TIMEOUT_MS",
    "LOCK_POLL_INTERVAL_MS",
    "LOCK_RECORD_VERSION",
    "LOCK_SCHEMA_VERSION",
    "OUTPUT_TAIL_CHARS",
    "RUNNER_IDLE_POLL_MS",
    "RUNNER_RETRY_BACKOFF_MS",
    "RUNNER_SCAN_LIMIT",
    "TMP_DIRNAME",
]

"""Executable CLI entrypoint for ``synapse_orchestrator``."""

from __future__ import annotations

import json
import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

from synapse_orchestrator.domain.errors import ErrorCode, SynapseError

if TYPE_CHECKING:
    from collections.abc import Sequence


class ExitCode(IntEnum):
    """Deterministic process exit-code contract."""

    SUCCESS = 0
    DOMAIN_ERROR = 1
    CONFIG_ERROR = 2
    INTERNAL_ERROR = 4


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Entrypoint used by ``python -m synapse_orchestrator`` and script shims."""

    try:
        from synapse_orchestrator.ui.cli import run_cli

        return _normalize_exit_code(run_cli(argv))
    except SystemExit as exc:
        return _normalize_exit_code(exc.code)
    except KeyboardInterrupt:
        _write_stderr("interrupted")
        return int(ExitCode.DOMAIN_ERROR)
    except BaseException as exc:  # noqa: BLE001 - CLI boundary normalization.
        exit_code = _route_exception(exc)
        _emit_failure(exc, exit_code)
        return int(exit_code)


def _normalize_exit_code(raw_code: object) -> int:
    if isinstance(raw_code, int) and raw_code in {code.value for code in ExitCode}:
        return raw_code
    if raw_code is None:
        return int(ExitCode.SUCCESS)
    if isinstance(raw_code, str) and raw_code.strip():
        _write_stderr(raw_code.strip())
    return int(ExitCode.INTERNAL_ERROR)


def _route_exception(exc: BaseException) -> ExitCode:
    if not isinstance(exc, SynapseError):
        return ExitCode.INTERNAL_ERROR
    if exc.code is ErrorCode.CONFIG_INVALID:
        return ExitCode.CONFIG_ERROR
    # Cycle and lock records carry ``cycle_id``; only the config file does not.
    if exc.code is ErrorCode.UNSUPPORTED_VERSION and "cycle_id" not in exc.details:
        return ExitCode.CONFIG_ERROR
    return ExitCode.DOMAIN_ERROR


def _emit_failure(exc: BaseException, exit_code: ExitCode) -> None:
    if isinstance(exc, SynapseError):
        _write_stderr(json.dumps(exc.to_dict(), sort_keys=True, default=str))
        return
    traceback.print_exception(type(exc), exc, exc.__traceback__, file=sys.stderr)


def _write_stderr(message: str) -> None:
    sys.stderr.write(message.rstrip("\n") + "\n")


__all__ = ["ExitCode", "cli_entrypoint"]

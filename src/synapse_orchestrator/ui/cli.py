"""Command-line interface router for synapse-runner."""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from pathlib import Path
from types import FrameType

from synapse_orchestrator.constants import DEFAULT_STORAGE_DIR, RUNNER_IDLE_POLL_MS
from synapse_orchestrator.control_plane import service
from synapse_orchestrator.control_plane.runner import Runner
from synapse_orchestrator.domain.models import CycleStatus, PhaseType
from synapse_orchestrator.observability.logging import (
    LoggingConfig,
    correlation_scope,
    new_run_id,
    setup_structured_logging,
    shutdown_logging,
)
from synapse_orchestrator.ui.render import (
    CLIRenderer,
    create_renderer,
    render_checks,
    render_cycle_list,
    render_health,
    render_status,
)

logger = logging.getLogger(__name__)


class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    def __init__(self, message: str, exit_code: int = 1) -> None:
        super().__init__(message)
        self.message = message
        self.exit_code = exit_code

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="synapse-runner",
        description=(
            "synapse-runner — multi-phase code-change cycle orchestrator.\n\n"
            "Common workflows:\n"
            '  synapse-runner orchestrate "Add a settings page"   Queue a cycle\n'
            "  synapse-runner start --once                         Drain runnable phases\n"
            "  synapse-runner status <cycle_id>                    Inspect a cycle\n"
            "  synapse-runner doctor                               Check environment\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--repo-root",
        default=".",
        help="Repository root directory (default: current working directory).",
    )
    common.add_argument(
        "--storage-dir",
        default=DEFAULT_STORAGE_DIR,
        help=f"State directory relative to the repo root (default: {DEFAULT_STORAGE_DIR}).",
    )
    common.add_argument(
        "--log-level",
        default="INFO",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        help="Structured log level (default: INFO).",
    )
    common.add_argument(
        "--log-dir",
        default=None,
        help="Directory for JSON-lines logs (default: <storage-dir>/logs).",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored table output (also respects NO_COLOR env var).",
    )

    output = argparse.ArgumentParser(add_help=False)
    output.add_argument(
        "--format",
        dest="output_format",
        choices=("json", "table"),
        default="json",
        help="Output format (default: json).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # start ---------------------------------------------------------------
    start_parser = subparsers.add_parser(
        "start",
        parents=[common],
        help="Run the scheduler loop",
        description="Claim and execute runnable phases across all cycles.",
    )
    start_parser.add_argument(
        "--once",
        action="store_true",
        help="Exit as soon as nothing is claimable instead of polling.",
    )
    start_parser.add_argument(
        "--poll-ms",
        type=_positive_int,
        default=RUNNER_IDLE_POLL_MS,
        help=f"Idle poll interval in milliseconds (default: {RUNNER_IDLE_POLL_MS}).",
    )
    start_parser.add_argument("--runner-id", default=None, help="Stable runner identifier.")
    start_parser.set_defaults(handler=_cmd_start)

    # run -----------------------------------------------------------------
    run_parser = subparsers.add_parser(
        "run",
        parents=[common],
        help="Drive one cycle until nothing in it is claimable",
    )
    run_parser.add_argument("cycle_id")
    run_parser.add_argument("--runner-id", default=None, help="Stable runner identifier.")
    run_parser.set_defaults(handler=_cmd_run)

    # doctor / health -------------------------------------------------------
    doctor_parser = subparsers.add_parser(
        "doctor",
        parents=[common, output],
        help="Check interpreter, config, and external tools",
    )
    doctor_parser.set_defaults(handler=_cmd_doctor)

    health_parser = subparsers.add_parser(
        "health",
        parents=[common, output],
        help="Report cycle counts, lock files, and store errors",
    )
    health_parser.set_defaults(handler=_cmd_health)

    # orchestrate -----------------------------------------------------------
    orchestrate_parser = subparsers.add_parser(
        "orchestrate",
        parents=[common],
        help="Create a new cycle",
        description=(
            "Queue a cycle for REQUEST.\n\n"
            "Examples:\n"
            '  synapse-runner orchestrate "Add dark mode"\n'
            '  synapse-runner orchestrate "Fix API" --phases BACKEND --constraint "no new deps"\n'
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    orchestrate_parser.add_argument("request")
    orchestrate_parser.add_argument(
        "--constraint",
        dest="constraints",
        action="append",
        default=[],
        help="Constraint passed to every worker (repeatable).",
    )
    orchestrate_parser.add_argument(
        "--phases",
        default=None,
        help=(
            "Comma-separated phase types "
            f"({', '.join(member.value for member in PhaseType)}); default order when omitted."
        ),
    )
    orchestrate_parser.set_defaults(handler=_cmd_orchestrate)

    # status / logs / cancel / list ----------------------------------------
    status_parser = subparsers.add_parser(
        "status",
        parents=[common, output],
        help="Show a cycle",
    )
    status_parser.add_argument("cycle_id")
    status_parser.set_defaults(handler=_cmd_status)

    logs_parser = subparsers.add_parser("logs", parents=[common], help="Show a cycle's log")
    logs_parser.add_argument("cycle_id")
    logs_parser.add_argument("--tail", type=_positive_int, default=None)
    logs_parser.set_defaults(handler=_cmd_logs)

    cancel_parser = subparsers.add_parser("cancel", parents=[common], help="Cancel a cycle")
    cancel_parser.add_argument("cycle_id")
    cancel_parser.add_argument("--reason", default=None)
    cancel_parser.set_defaults(handler=_cmd_cancel)

    list_parser = subparsers.add_parser("list", parents=[common, output], help="List cycles")
    list_parser.add_argument("--limit", type=_positive_int, default=None)
    list_parser.add_argument(
        "--status",
        default=None,
        choices=[member.value for member in CycleStatus],
    )
    list_parser.set_defaults(handler=_cmd_list)

    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code.

    Domain errors propagate to ``main.cli_entrypoint`` which maps them to exit codes.
    """

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        repo_root = _repo_root(namespace)
        with _structured_logging(namespace, repo_root):
            result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_start(args: argparse.Namespace) -> int:
    runner = _runner(args)
    stop_event = threading.Event()
    with _stop_on_signals(stop_event), correlation_scope(runner_id=runner.runner_id):
        outcomes = runner.start(once=args.once, poll_ms=args.poll_ms, stop_event=stop_event)
    _emit_json(
        {
            "runner_id": runner.runner_id,
            "outcomes": [outcome.to_dict() for outcome in outcomes],
        }
    )
    return 0


def _cmd_run(args: argparse.Namespace) -> int:
    runner = _runner(args)
    with correlation_scope(runner_id=runner.runner_id, cycle_id=args.cycle_id):
        cycle = runner.run_cycle(args.cycle_id)
    _emit_json(service.project_status(cycle))
    return 0


def _cmd_doctor(args: argparse.Namespace) -> int:
    payload = _runner(args).doctor()
    if args.output_format == "table":
        render_checks(_get_renderer(args), "synapse doctor", payload)
    else:
        _emit_json(payload)
    return 0


def _cmd_health(args: argparse.Namespace) -> int:
    payload = _runner(args).health()
    if args.output_format == "table":
        render_health(_get_renderer(args), payload)
    else:
        _emit_json(payload)
    return 0


def _cmd_orchestrate(args: argparse.Namespace) -> int:
    request: dict[str, object] = {
        "request": args.request,
        "repo_root": args.repo_root,
        "constraints": list(args.constraints),
    }
    if args.phases:
        request["plan"] = {
            "phases": [item.strip() for item in args.phases.split(",") if item.strip()]
        }
    _emit_json(service.orchestrate(request, storage_dir=args.storage_dir))
    return 0


def _cmd_status(args: argparse.Namespace) -> int:
    payload = service.status(
        {"cycle_id": args.cycle_id, "repo_root": args.repo_root},
        storage_dir=args.storage_dir,
    )
    if args.output_format == "table":
        render_status(_get_renderer(args), payload)
    else:
        _emit_json(payload)
    return 0


def _cmd_logs(args: argparse.Namespace) -> int:
    request: dict[str, object] = {"cycle_id": args.cycle_id, "repo_root": args.repo_root}
    if args.tail is not None:
        request["tail"] = args.tail
    _emit_json(service.logs(request, storage_dir=args.storage_dir))
    return 0


def _cmd_cancel(args: argparse.Namespace) -> int:
    request: dict[str, object] = {"cycle_id": args.cycle_id, "repo_root": args.repo_root}
    if args.reason is not None:
        request["reason"] = args.reason
    _emit_json(service.cancel(request, storage_dir=args.storage_dir))
    return 0


def _cmd_list(args: argparse.Namespace) -> int:
    request: dict[str, object] = {"repo_root": args.repo_root}
    if args.limit is not None:
        request["limit"] = args.limit
    if args.status is not None:
        request["status"] = args.status
    payload = service.list_cycles(request, storage_dir=args.storage_dir)
    if args.output_format == "table":
        render_cycle_list(_get_renderer(args), payload)
    else:
        _emit_json(payload)
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=bool(getattr(args, "no_color", False)))


def _runner(args: argparse.Namespace) -> Runner:
    return Runner(
        _repo_root(args),
        runner_id=getattr(args, "runner_id", None),
        storage_dir=args.storage_dir,
    )


def _repo_root(args: argparse.Namespace) -> Path:
    candidate = Path(args.repo_root).expanduser().resolve()
    if not candidate.is_dir():
        raise CLIError(f"repo root is not a directory: {candidate}", exit_code=2)
    return candidate


@contextmanager
def _structured_logging(args: argparse.Namespace, repo_root: Path) -> Iterator[None]:
    log_dir = (
        Path(args.log_dir).expanduser()
        if args.log_dir
        else repo_root / args.storage_dir / "logs"
    )
    handle = setup_structured_logging(
        LoggingConfig(run_id=new_run_id(), base_log_dir=log_dir, level=args.log_level)
    )
    try:
        yield
    finally:
        shutdown_logging(handle)


@contextmanager
def _stop_on_signals(stop_event: threading.Event) -> Iterator[None]:
    """Set ``stop_event`` on SIGINT/SIGTERM while the scheduler loop runs."""

    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _request_stop(signum: int, frame: FrameType | None) -> None:
        logger.info("stop requested", extra={"signal": signum})
        stop_event.set()

    previous = {
        signum: signal.signal(signum, _request_stop) for signum in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


def _positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer, got {raw!r}") from None
    if value <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value}")
    return value


__all__ = ["CLIError", "build_parser", "run_cli"]

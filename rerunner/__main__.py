"""Entry point: python -m rerunner FILE_PATH [--then PATH] [--quiet]."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import NoReturn

from rich.console import Console
from rich.markup import escape

from rerunner import get_current_version
from rerunner.config import (
    SupervisorConfig,
    apply_overrides,
    load_config,
    resolve_config_path,
)
from rerunner.errors import ConfigError, StartupValidationError, WatchError
from rerunner.logging_config import setup_logging, stop_logging
from rerunner.plan import RunPlan, ShellKind, WatchTarget, build_plan
from rerunner.run import EXIT_CLEAN, EXIT_FAILURE, run_supervisor

logger = logging.getLogger(__name__)

_console = Console(highlight=False)
_err_console = Console(stderr=True, highlight=False)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rerunner",
        description="Run a script every time it changes, restarting any run still in progress.",
    )
    parser.add_argument("file_path", help="Script to watch and run when it changes")
    parser.add_argument(
        "--then",
        dest="then_path",
        metavar="PATH",
        help="Script to run after each successful run of FILE_PATH",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        default=None,
        help="Do not print the watching banner or run reports",
    )
    parser.add_argument(
        "--shell",
        choices=[kind.value for kind in ShellKind],
        default=None,
        help="Run directly (exec, default) or through sh/bash -c",
    )
    parser.add_argument(
        "--grace",
        dest="grace_seconds",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Seconds between SIGTERM and SIGKILL when cancelling a run",
    )
    parser.add_argument(
        "--clear",
        dest="clear_screen",
        action="store_true",
        default=None,
        help="Clear the screen before each run",
    )
    parser.add_argument(
        "--run-now",
        dest="run_on_start",
        action="store_true",
        default=None,
        help="Run once at startup instead of waiting for the first change",
    )
    parser.add_argument("--config", metavar="PATH", help="JSON config file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--version", action="version", version=get_current_version())
    return parser


def _fail(message: str) -> NoReturn:
    _err_console.print(f"[bold red]Error:[/bold red] {escape(message)}")
    sys.exit(EXIT_FAILURE)


def _load_settings(args: argparse.Namespace) -> SupervisorConfig:
    """Config file merged over defaults, then command-line flags on top."""
    config = load_config(resolve_config_path(args.config))
    return apply_overrides(
        config,
        quiet=args.quiet,
        shell=ShellKind(args.shell) if args.shell else None,
        grace_seconds=args.grace_seconds,
        clear_screen=args.clear_screen,
        run_on_start=args.run_on_start,
    )


def _prepare(args: argparse.Namespace) -> tuple[WatchTarget, RunPlan, SupervisorConfig]:
    """Validate everything that must hold before watching begins."""
    try:
        config = _load_settings(args)
    except ConfigError as exc:
        _fail(str(exc))
    if args.grace_seconds is not None and args.grace_seconds < 0:
        _fail("--grace must not be negative")

    try:
        target = WatchTarget.from_path(args.file_path)
        plan = build_plan(target, args.then_path, shell=config.shell)
    except StartupValidationError as exc:
        _fail(str(exc))
    return target, plan, config


def _start_supervisor(args: argparse.Namespace) -> int:
    setup_logging(verbose=args.verbose)
    target, plan, config = _prepare(args)
    if not args.verbose:
        config_level = getattr(logging, config.log_level.upper(), logging.WARNING)
        setup_logging(level=config_level, log_dir=config.log_path)
    elif config.log_path is not None:
        setup_logging(verbose=True, log_dir=config.log_path)

    try:
        return asyncio.run(run_supervisor(target, plan, config, console=_console))
    except KeyboardInterrupt:
        # Windows has no loop signal handlers; Ctrl-C arrives as an exception.
        logger.info("Interrupted")
        return EXIT_CLEAN
    except WatchError as exc:
        logger.debug("Watcher failure", exc_info=True)
        _err_console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
        return EXIT_FAILURE
    finally:
        stop_logging()


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    exit_code = _start_supervisor(args)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()

"""Command line entrypoint: load `.gcd.toml`, build the session and hand it to a front end."""

from __future__ import annotations

import argparse
import logging as py_logging
import sys
from collections.abc import Callable, Sequence
from pathlib import Path

from .config import AppConfig, load_config
from .errors import ExitCode, GcDeployError, user_facing_error
from .logging import LOG_LEVELS, configure_logging, default_log_path
from .orchestrator import SessionOrchestrator

Launcher = Callable[[SessionOrchestrator, AppConfig], int]


def _log_level_type(value: str) -> str:
    normalized = value.strip().upper()
    if normalized not in LOG_LEVELS:
        raise argparse.ArgumentTypeError(f"--log-level must be one of: {', '.join(LOG_LEVELS)}")
    return normalized


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gcdeploy",
        description="Open a remote shell on a Compute Engine VM next to a local shell.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to .gcd.toml (default: nearest one in this or a parent directory)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Verbose logging and echo of commands sent to the remote shell",
    )
    parser.add_argument(
        "--headless",
        action="store_true",
        help="Stream output to stdout instead of opening a window",
    )
    parser.add_argument("--log-level", type=_log_level_type, default="INFO")
    parser.add_argument("--log-file", type=Path, default=None)
    return parser


def launch_gui(orchestrator: SessionOrchestrator, config: AppConfig) -> int:
    from gcdeploy.ui.window import launch_window

    return launch_window(orchestrator, tick_interval_ms=config.tick_interval_ms)


def launch_headless(orchestrator: SessionOrchestrator, config: AppConfig) -> int:
    from gcdeploy.ui.console import run_console

    return run_console(orchestrator, interval=config.tick_interval_ms / 1000)


def build_orchestrator(config: AppConfig, *, debug: bool = False) -> SessionOrchestrator:
    return SessionOrchestrator(config, debug=debug)


def main(
    argv: Sequence[str] | None = None,
    *,
    gui_launcher: Launcher | None = None,
    headless_launcher: Launcher | None = None,
    orchestrator_factory: Callable[..., SessionOrchestrator] = build_orchestrator,
) -> int:
    log_path = default_log_path()
    logger = configure_logging(log_file=log_path)
    parser = build_parser()
    try:
        namespace = parser.parse_args(argv)
    except SystemExit as exc:
        code = int(exc.code or 0)
        if code:
            logger.warning("Rejected arguments argv=%s exit=%s", list(argv or sys.argv[1:]), code)
        return code

    if namespace.log_file is not None:
        log_path = namespace.log_file.expanduser()
    level = "DEBUG" if namespace.debug else namespace.log_level
    logger = configure_logging(level=level, log_file=log_path)

    try:
        config = load_config(namespace.config)
        orchestrator = orchestrator_factory(config, debug=namespace.debug)
        if namespace.headless:
            launcher = headless_launcher or launch_headless
        else:
            launcher = gui_launcher or launch_gui
        logger.debug(
            "Launching %s instance=%s steps=%s",
            "headless loop" if namespace.headless else "window",
            config.instance.name,
            len(config.deployment),
        )
        result = launcher(orchestrator, config)
        return int(result) if isinstance(result, int) else int(ExitCode.SUCCESS)
    except GcDeployError as exc:
        logger.error(
            "gcdeploy failed (code=%s): %s",
            int(exc.code),
            exc.message,
            exc_info=logger.isEnabledFor(py_logging.DEBUG),
        )
        print(user_facing_error(exc.message, hint=exc.hint), file=sys.stderr)
        return int(exc.code)
    except Exception:
        logger.exception("Unexpected failure; see traceback")
        hint = f"Inspect logs: {log_path}"
        print(user_facing_error("Unexpected runtime failure", hint=hint), file=sys.stderr)
        return int(ExitCode.RUNTIME_ERROR)


def run(argv: Sequence[str] | None = None) -> int:
    return main(argv)

"""Headless renderer that streams pane output to a text stream."""

from __future__ import annotations

import getpass
import logging as py_logging
import sys
import threading
import time
from collections.abc import Callable
from typing import TextIO

from gcdeploy.deploy.sequencer import SequencerState
from gcdeploy.errors import ExitCode
from gcdeploy.loop.buffers import ContentBuffer
from gcdeploy.orchestrator import ConnectionState, SessionOrchestrator

logger = py_logging.getLogger(__name__)

DEFAULT_IDLE_EXIT_SECONDS = 3.0

PassphrasePrompt = Callable[[str], str]


class ConsoleRenderer:
    """Write whatever each buffer gained since the last flush, prefixed by pane."""

    def __init__(self, orchestrator: SessionOrchestrator, stream: TextIO) -> None:
        self._orchestrator = orchestrator
        self._stream = stream
        self._marks: dict[str, int] = {"local": 0, "remote": 0, "log": 0}

    def _buffers(self) -> list[tuple[str, ContentBuffer]]:
        return [
            ("log", self._orchestrator.log_buffer),
            ("local", self._orchestrator.local_buffer),
            ("remote", self._orchestrator.remote_buffer),
        ]

    def flush(self) -> bool:
        wrote = False
        for name, buffer in self._buffers():
            text, self._marks[name] = buffer.read_since(self._marks[name])
            if not text:
                continue
            for line in text.splitlines(keepends=True):
                self._stream.write(f"[{name}] {line}")
            if not text.endswith("\n"):
                self._stream.write("\n")
            wrote = True
        if wrote:
            self._stream.flush()
        return wrote


def _finished(orchestrator: SessionOrchestrator) -> bool:
    if orchestrator.connection in (ConnectionState.FAILED, ConnectionState.IDLE):
        return True
    if orchestrator.config.has_plan:
        return orchestrator.sequencer.finished
    return orchestrator.initial_command_sent


def run_console(
    orchestrator: SessionOrchestrator,
    *,
    stream: TextIO | None = None,
    stop: threading.Event | None = None,
    prompt: PassphrasePrompt | None = None,
    interactive: bool | None = None,
    idle_exit_seconds: float = DEFAULT_IDLE_EXIT_SECONDS,
    interval: float | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> int:
    """Drive the orchestrator without a window until the work settles.

    The loop ends once the plan reaches a terminal state (or the initial
    command was sent) and no output arrived for ``idle_exit_seconds``, when
    the connection fails, or when ``stop`` is set.
    """
    out = stream or sys.stdout
    stop_event = stop or threading.Event()
    ask = prompt or getpass.getpass
    tty = sys.stdin.isatty() if interactive is None else interactive
    tick_seconds = interval if interval is not None else orchestrator.config.tick_interval_ms / 1000
    renderer = ConsoleRenderer(orchestrator, out)

    orchestrator.start()
    last_activity = clock()
    try:
        while not stop_event.is_set():
            if orchestrator.tick():
                last_activity = clock()
            if renderer.flush():
                last_activity = clock()

            if orchestrator.awaiting_passphrase:
                passphrase = ask("SSH key passphrase: ") if tty else ""
                if passphrase:
                    orchestrator.submit_passphrase(passphrase)
                else:
                    orchestrator.cancel_passphrase()
                last_activity = clock()
                continue

            if _finished(orchestrator) and clock() - last_activity >= idle_exit_seconds:
                logger.debug("Console loop settled connection=%s", orchestrator.connection.value)
                break
            stop_event.wait(tick_seconds)
    except KeyboardInterrupt:
        logger.info("Console loop interrupted")
    finally:
        status = orchestrator.quit()
        renderer.flush()

    if status is not ExitCode.SUCCESS:
        return int(status)
    if orchestrator.sequencer.state is SequencerState.ABORTED:
        return int(ExitCode.RUNTIME_ERROR)
    if orchestrator.connection is ConnectionState.IDLE:
        return int(ExitCode.SSH_ERROR)
    return int(ExitCode.SUCCESS)

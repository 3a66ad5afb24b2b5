"""One-shot local shell commands streamed into the local pane."""

from __future__ import annotations

import logging as py_logging
import os
import subprocess
import threading
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass, field
from typing import IO

from gcdeploy.errors import ExitCode, LocalCommandBusyError
from gcdeploy.loop.channels import Channel
from gcdeploy.loop.events import LocalCommandFailed, LocalCommandFinished, LoopEvent

logger = py_logging.getLogger(__name__)

DEFAULT_SHELL = "/bin/sh"
READ_CHUNK_BYTES = 4096
TERMINATE_TIMEOUT_SECONDS = 2.0

Spawn = Callable[..., subprocess.Popen]
PostEvent = Callable[[LoopEvent], None]


def resolve_shell(environ: dict[str, str] | None = None) -> str:
    env = os.environ if environ is None else environ
    return (env.get("SHELL") or "").strip() or DEFAULT_SHELL


@dataclass
class LocalCommandHandle:
    command: str
    process: subprocess.Popen | None = None
    returncode: int | None = None
    cancel_event: threading.Event = field(default_factory=threading.Event)
    done: threading.Event = field(default_factory=threading.Event)

    def wait(self, timeout: float | None = None) -> bool:
        return self.done.wait(timeout)


def _read_chunk(stream: IO[bytes]) -> bytes:
    read1 = getattr(stream, "read1", None)
    if read1 is not None:
        return read1(READ_CHUNK_BYTES)
    return stream.read(READ_CHUNK_BYTES)


class LocalCommandRunner:
    """Run ``$SHELL -c <command>`` with at most one command in flight.

    Output from both pipes goes to ``output``; exactly one completion event is
    posted once the process has exited and both pipes are drained.
    """

    def __init__(
        self,
        output: Channel[bytes],
        post: PostEvent,
        *,
        spawn: Spawn = subprocess.Popen,
        shell: str | None = None,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        self._output = output
        self._post = post
        self._spawn = spawn
        self.shell = shell or resolve_shell()
        self.cwd = cwd
        self.env = env
        self._lock = threading.Lock()
        self._current: LocalCommandHandle | None = None

    @property
    def busy(self) -> bool:
        current = self._current
        return current is not None and not current.done.is_set()

    @property
    def current(self) -> LocalCommandHandle | None:
        return self._current

    def run(self, command: str) -> LocalCommandHandle:
        with self._lock:
            if self.busy:
                raise LocalCommandBusyError(
                    "a local command is already running",
                    code=ExitCode.LOCAL_COMMAND_ERROR,
                    hint="Wait for it to finish before starting another.",
                )
            handle = LocalCommandHandle(command=command)
            self._current = handle

        argv = [self.shell, "-c", command]
        logger.debug("Spawning local command argv=%s", argv)
        try:
            process = self._spawn(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=self.cwd,
                env=self.env,
            )
        except (OSError, ValueError) as exc:
            logger.warning("Local command failed to start command=%s error=%s", command, exc)
            handle.done.set()
            self._post(LocalCommandFailed(command=command, error=f"failed to start command: {exc}", handle=handle))
            return handle

        handle.process = process
        readers = [
            threading.Thread(
                target=self._pump,
                args=(handle, stream, name),
                name=f"local-{name}-reader",
                daemon=True,
            )
            for name, stream in (("stdout", process.stdout), ("stderr", process.stderr))
            if stream is not None
        ]
        for reader in readers:
            reader.start()
        threading.Thread(
            target=self._wait,
            args=(handle, process, readers),
            name="local-command-waiter",
            daemon=True,
        ).start()
        return handle

    def _pump(self, handle: LocalCommandHandle, stream: IO[bytes], name: str) -> None:
        try:
            while True:
                chunk = _read_chunk(stream)
                if not chunk:
                    return
                if not self._output.put(chunk, cancel=handle.cancel_event):
                    logger.debug("Local %s reader cancelled command=%s", name, handle.command)
                    return
        except (OSError, ValueError) as exc:
            logger.debug("Local %s reader stopped command=%s error=%s", name, handle.command, exc)
        finally:
            with suppress(OSError):
                stream.close()

    def _wait(
        self,
        handle: LocalCommandHandle,
        process: subprocess.Popen,
        readers: list[threading.Thread],
    ) -> None:
        returncode = process.wait()
        for reader in readers:
            reader.join()
        handle.returncode = returncode
        handle.done.set()
        logger.debug("Local command exited command=%s returncode=%s", handle.command, returncode)
        if returncode == 0:
            self._post(LocalCommandFinished(command=handle.command, returncode=0, handle=handle))
        else:
            self._post(
                LocalCommandFailed(
                    command=handle.command,
                    error=f"exit status {returncode}",
                    returncode=returncode,
                    handle=handle,
                )
            )

    def cancel(self) -> None:
        handle = self._current
        if handle is None or handle.done.is_set():
            return
        handle.cancel_event.set()
        process = handle.process
        if process is None:
            return
        logger.debug("Terminating local command command=%s", handle.command)
        with suppress(OSError):
            process.terminate()
        try:
            process.wait(timeout=TERMINATE_TIMEOUT_SECONDS)
        except subprocess.TimeoutExpired:
            with suppress(OSError):
                process.kill()

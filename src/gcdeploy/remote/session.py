"""Paramiko-backed interactive PTY session for the remote pane."""

from __future__ import annotations

import logging as py_logging
import socket
import threading
from collections.abc import Callable
from contextlib import suppress
from pathlib import Path
from typing import Protocol

import paramiko

from gcdeploy.errors import ConnectError, ExitCode, GcDeployError, RemoteWriteError
from gcdeploy.loop.channels import Channel
from gcdeploy.models import ConnectionEndpoint, InstanceDescriptor
from gcdeploy.remote.credentials import AuthHandle, load_auth

logger = py_logging.getLogger(__name__)

SSH_PORT = 22
DEFAULT_TERM = "xterm-256color"
DEFAULT_COLS = 80
DEFAULT_ROWS = 24
CONNECT_TIMEOUT_SECONDS = 15.0
CHANNEL_TIMEOUT_SECONDS = 10.0
KEEPALIVE_INTERVAL_SECONDS = 30
READ_CHUNK_BYTES = 4096
READER_JOIN_TIMEOUT_SECONDS = 1.0
INTERRUPT = b"\x03"

ClientFactory = Callable[[], paramiko.SSHClient]


class Resolver(Protocol):
    def resolve(self, instance: InstanceDescriptor) -> ConnectionEndpoint: ...


class RemoteTerminalSession:
    def __init__(
        self,
        client: paramiko.SSHClient,
        channel: paramiko.Channel,
        output: Channel[bytes],
        *,
        endpoint: ConnectionEndpoint,
        cols: int = DEFAULT_COLS,
        rows: int = DEFAULT_ROWS,
    ) -> None:
        self.endpoint = endpoint
        self._client = client
        self._channel = channel
        self._output = output
        self._size = (cols, rows)
        self._closed = threading.Event()
        self._dead = threading.Event()
        self._write_lock = threading.Lock()
        self._readers: list[threading.Thread] = []

    @property
    def alive(self) -> bool:
        return not self._closed.is_set() and not self._dead.is_set()

    @property
    def size(self) -> tuple[int, int]:
        return self._size

    def start_readers(self) -> None:
        if self._readers:
            return
        for name, read in (
            ("stdout", self._channel.recv),
            ("stderr", self._channel.recv_stderr),
        ):
            thread = threading.Thread(
                target=self._read_loop,
                args=(name, read),
                name=f"remote-{name}-reader",
                daemon=True,
            )
            self._readers.append(thread)
            thread.start()

    def _read_loop(self, stream: str, read: Callable[[int], bytes]) -> None:
        while not self._closed.is_set():
            try:
                data = read(READ_CHUNK_BYTES)
            except socket.timeout:
                continue
            except (paramiko.SSHException, OSError, EOFError) as exc:
                if self._closed.is_set():
                    return
                self._dead.set()
                logger.warning("Remote %s read failed: %s", stream, exc)
                self._output.offer(f"\n[TERMINAL READ ERROR] {exc}\n".encode())
                return
            if not data:
                logger.debug("Remote %s reached end of stream", stream)
                if stream == "stdout":
                    self._dead.set()
                return
            if self._closed.is_set():
                return
            self._output.offer(bytes(data))

    def write(self, data: bytes | str) -> None:
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        if not self.alive:
            raise RemoteWriteError(
                "terminal session is closed",
                code=ExitCode.SSH_ERROR,
                hint="Restart gcdeploy to open a new session.",
            )
        with self._write_lock:
            sent_total = 0
            while sent_total < len(payload):
                try:
                    sent = self._channel.send(payload[sent_total:])
                except (socket.timeout, paramiko.SSHException, OSError) as exc:
                    raise RemoteWriteError(
                        f"failed to write to stdin: {exc}",
                        code=ExitCode.SSH_ERROR,
                    ) from exc
                if sent <= 0:
                    raise RemoteWriteError(
                        f"partial write: wrote {sent_total} of {len(payload)} bytes",
                        code=ExitCode.SSH_ERROR,
                    )
                sent_total += sent

    def interrupt(self) -> None:
        self.write(INTERRUPT)

    def resize(self, cols: int, rows: int) -> None:
        if cols <= 0 or rows <= 0:
            raise GcDeployError(
                f"Invalid PTY size: {cols}x{rows}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Use positive terminal row/column values.",
            )
        if (cols, rows) == self._size:
            return
        self._size = (cols, rows)
        if not self.alive:
            return
        try:
            self._channel.resize_pty(width=cols, height=rows)
        except (paramiko.SSHException, OSError) as exc:
            raise GcDeployError(
                f"Failed to resize remote terminal to {cols}x{rows}.",
                code=ExitCode.RUNTIME_ERROR,
                hint=str(exc) or "Verify the SSH channel is still open.",
            ) from exc

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        logger.debug("Closing remote terminal session host=%s", self.endpoint.address)
        with suppress(Exception):
            self._channel.close()
        with suppress(Exception):
            self._client.close()
        current = threading.current_thread()
        for thread in self._readers:
            if thread is not current:
                thread.join(timeout=READER_JOIN_TIMEOUT_SECONDS)


def open_terminal_session(
    endpoint: ConnectionEndpoint,
    auth: AuthHandle,
    output: Channel[bytes],
    *,
    client_factory: ClientFactory = paramiko.SSHClient,
    port: int = SSH_PORT,
    timeout: float = CONNECT_TIMEOUT_SECONDS,
    cols: int = DEFAULT_COLS,
    rows: int = DEFAULT_ROWS,
) -> RemoteTerminalSession:
    client = client_factory()
    # Host keys are accepted unconditionally; verification policy is out of scope.
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
    logger.debug(
        "Dialing SSH host=%s port=%s user=%s key=%s",
        endpoint.address,
        port,
        endpoint.login_user,
        auth.key_path,
    )
    try:
        client.connect(
            hostname=endpoint.address,
            port=port,
            username=endpoint.login_user,
            pkey=auth.key,
            timeout=timeout,
            allow_agent=False,
            look_for_keys=False,
        )
    except paramiko.AuthenticationException as exc:
        client.close()
        raise ConnectError(
            f"SSH authentication failed for {endpoint.login_user}@{endpoint.address}: {exc}",
            code=ExitCode.SSH_ERROR,
            hint="Ensure the public key is registered in instance or project metadata.",
        ) from exc
    except (paramiko.SSHException, OSError) as exc:
        client.close()
        raise ConnectError(
            f"failed to dial SSH: {exc}",
            code=ExitCode.SSH_ERROR,
            hint=f"Check that {endpoint.address}:{port} is reachable.",
        ) from exc

    transport = client.get_transport()
    if transport is not None:
        transport.set_keepalive(KEEPALIVE_INTERVAL_SECONDS)

    try:
        channel = client.invoke_shell(term=DEFAULT_TERM, width=cols, height=rows)
        channel.settimeout(CHANNEL_TIMEOUT_SECONDS)
    except (paramiko.SSHException, OSError) as exc:
        client.close()
        raise ConnectError(
            f"failed to start remote shell: {exc}",
            code=ExitCode.SSH_ERROR,
            hint="The server may not allow PTY allocation for this user.",
        ) from exc

    session = RemoteTerminalSession(
        client,
        channel,
        output,
        endpoint=endpoint,
        cols=cols,
        rows=rows,
    )
    session.start_readers()
    logger.info("Remote terminal opened host=%s user=%s", endpoint.address, endpoint.login_user)
    return session


def connect_terminal(
    instance: InstanceDescriptor,
    output: Channel[bytes],
    *,
    resolver: Resolver,
    key_path: str | Path | None = None,
    passphrase: str = "",
    client_factory: ClientFactory = paramiko.SSHClient,
) -> RemoteTerminalSession:
    """Resolve, authenticate and open a PTY shell in one attempt.

    The endpoint is looked up again on every call so a passphrase retry never
    reuses a stale address.
    """
    endpoint = resolver.resolve(instance)
    auth = load_auth(key_path, passphrase)
    return open_terminal_session(endpoint, auth, output, client_factory=client_factory)

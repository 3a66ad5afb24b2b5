"""Owned session state tying the remote terminal, local runner and plan together."""

from __future__ import annotations

import logging as py_logging
import socket
import subprocess
import threading
from dataclasses import dataclass
from enum import Enum

import paramiko

from gcdeploy.config import AppConfig
from gcdeploy.deploy.sequencer import (
    DEFAULT_STEP_GAP_SECONDS,
    DeploymentSequencer,
    SequencerState,
    StepEvent,
    StepEventKind,
)
from gcdeploy.errors import (
    ExitCode,
    GcDeployError,
    LocalCommandBusyError,
    PassphraseRequiredError,
    RemoteWriteError,
)
from gcdeploy.local.runner import LocalCommandHandle, LocalCommandRunner, Spawn
from gcdeploy.loop.buffers import ContentBuffer
from gcdeploy.loop.events import (
    ConnectFailed,
    LocalCommandFailed,
    LocalCommandFinished,
    PassphraseNeeded,
    TerminalConnected,
)
from gcdeploy.loop.multiplexer import StreamMultiplexer
from gcdeploy.loop.timers import Scheduler
from gcdeploy.models import ConnectionEndpoint
from gcdeploy.remote.credentials import passphrase_required, resolve_key_path
from gcdeploy.remote.resolver import GcloudResolver, default_login_user
from gcdeploy.remote.session import ClientFactory, RemoteTerminalSession, Resolver, connect_terminal

logger = py_logging.getLogger(__name__)

INITIAL_COMMAND_DELAY_SECONDS = 0.8
DEPLOYMENT_START_DELAY_SECONDS = 1.0


class ShellMode(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


class ConnectionState(str, Enum):
    IDLE = "idle"
    AWAITING_PASSPHRASE = "awaiting-passphrase"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"
    CLOSED = "closed"


@dataclass(frozen=True)
class OrchestratorStatus:
    connection: ConnectionState
    shell_mode: ShellMode
    session_alive: bool
    remote_address: str
    remote_user: str
    remote_name: str
    plan_state: SequencerState
    plan_index: int
    plan_total: int
    local_busy: bool
    debug: bool

    @property
    def awaiting_passphrase(self) -> bool:
        return self.connection is ConnectionState.AWAITING_PASSPHRASE

    @property
    def plan_running(self) -> bool:
        return self.plan_state is SequencerState.RUNNING


def local_identity() -> tuple[str, str]:
    host = socket.gethostname() or "localhost"
    return default_login_user(), host


class SessionOrchestrator:
    """Single owner of every piece of mutable session state.

    All methods run on the loop thread. Background workers only reach this
    object through events posted on the multiplexer.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        resolver: Resolver | None = None,
        client_factory: ClientFactory = paramiko.SSHClient,
        spawn: Spawn = subprocess.Popen,
        shell: str | None = None,
        scheduler: Scheduler | None = None,
        debug: bool = False,
        threaded_connect: bool = True,
        local_user: str = "",
        local_host: str = "",
        step_gap_seconds: float = DEFAULT_STEP_GAP_SECONDS,
    ) -> None:
        self.config = config
        self.debug = debug
        self.multiplexer = StreamMultiplexer(scheduler=scheduler)
        self.resolver: Resolver = resolver or GcloudResolver(credentials_path=config.credentials_path)
        self.runner = LocalCommandRunner(
            self.multiplexer.local_channel,
            self.multiplexer.post,
            spawn=spawn,
            shell=shell,
        )
        self.sequencer = DeploymentSequencer(
            config.deployment,
            dispatch_local=self._run_step_local,
            dispatch_remote=self._run_step_remote,
            scheduler=self.multiplexer.scheduler,
            remote_settle_seconds=config.remote_settle_seconds,
            step_gap_seconds=step_gap_seconds,
            on_event=self._on_step_event,
        )
        self.shell_mode = ShellMode.REMOTE
        self.connection = ConnectionState.IDLE
        self.session: RemoteTerminalSession | None = None
        self.endpoint: ConnectionEndpoint | None = None
        self.history: list[str] = []
        self.exit_status = ExitCode.SUCCESS
        self.initial_command_sent = False
        self._client_factory = client_factory
        self._threaded_connect = threaded_connect
        self._plan_handle: LocalCommandHandle | None = None
        self._pty_size: tuple[int, int] | None = None
        self._closed = False

        default_user, default_host = local_identity()
        self.local_user = local_user or default_user
        self.local_host = local_host or default_host

        self.multiplexer.register(TerminalConnected, self._on_terminal_connected)
        self.multiplexer.register(ConnectFailed, self._on_connect_failed)
        self.multiplexer.register(PassphraseNeeded, self._on_passphrase_needed)
        self.multiplexer.register(LocalCommandFinished, self._on_local_finished)
        self.multiplexer.register(LocalCommandFailed, self._on_local_failed)

        self.local_buffer.append(f"Local Shell Ready\n{self.local_user}@{self.local_host}\n")
        self.remote_buffer.append("Waiting for connection...\n")
        if config.has_plan:
            self.log_event("[INFO] Deployment script detected. Starting deployment...")

    @property
    def local_buffer(self) -> ContentBuffer:
        return self.multiplexer.local

    @property
    def remote_buffer(self) -> ContentBuffer:
        return self.multiplexer.remote

    @property
    def log_buffer(self) -> ContentBuffer:
        return self.multiplexer.log

    @property
    def awaiting_passphrase(self) -> bool:
        return self.connection is ConnectionState.AWAITING_PASSPHRASE

    @property
    def closed(self) -> bool:
        return self._closed

    def status(self) -> OrchestratorStatus:
        endpoint = self.endpoint
        return OrchestratorStatus(
            connection=self.connection,
            shell_mode=self.shell_mode,
            session_alive=self.session is not None and self.session.alive,
            remote_address=endpoint.address if endpoint else "",
            remote_user=endpoint.login_user if endpoint else "",
            remote_name=(endpoint.name if endpoint and endpoint.name else self.config.instance.name),
            plan_state=self.sequencer.state,
            plan_index=self.sequencer.cursor.current_index,
            plan_total=self.sequencer.total,
            local_busy=self.runner.busy,
            debug=self.debug,
        )

    def log_event(self, line: str, *, target: str = "session", step: str = "-") -> None:
        self.log_buffer.append_line(line)
        logger.info("session-event target=%s step=%s message=%s", target, step, line)

    def start(self) -> None:
        if self.connection is not ConnectionState.IDLE or self._closed:
            return
        if passphrase_required(self.config.ssh_key_path):
            self._enter_passphrase_mode()
            return
        self._connect("")

    def _enter_passphrase_mode(self) -> None:
        if self.awaiting_passphrase:
            return
        self.connection = ConnectionState.AWAITING_PASSPHRASE
        self.log_event("[INFO] SSH key requires a passphrase. Enter it below and press Enter.")
        self.remote_buffer.append("Passphrase required for SSH key...\n")

    def submit_passphrase(self, passphrase: str) -> bool:
        if not self.awaiting_passphrase or passphrase == "":
            return False
        self.log_event("[INFO] Passphrase received. Connecting...")
        self._connect(passphrase)
        return True

    def cancel_passphrase(self) -> None:
        if not self.awaiting_passphrase:
            return
        self.connection = ConnectionState.IDLE
        self.log_event("[INFO] Passphrase input cancelled")

    def _connect(self, passphrase: str) -> None:
        self.connection = ConnectionState.CONNECTING
        self.remote_buffer.append("Connecting to remote terminal...\n")
        self.multiplexer.reset_remote_decoder()
        if not self._threaded_connect:
            self._connect_worker(passphrase)
            return
        threading.Thread(
            target=self._connect_worker,
            args=(passphrase,),
            name="ssh-connect",
            daemon=True,
        ).start()

    def _connect_worker(self, passphrase: str) -> None:
        try:
            session = connect_terminal(
                self.config.instance,
                self.multiplexer.remote_channel,
                resolver=self.resolver,
                key_path=self.config.ssh_key_path,
                passphrase=passphrase,
                client_factory=self._client_factory,
            )
        except PassphraseRequiredError:
            self.multiplexer.post(PassphraseNeeded(key_path=resolve_key_path(self.config.ssh_key_path)))
            return
        except GcDeployError as exc:
            logger.error("SSH connection failed code=%s error=%s", exc.code, exc)
            self.multiplexer.post(ConnectFailed(error=exc.message))
            return
        except Exception as exc:
            logger.exception("Unexpected error while connecting instance=%s", self.config.instance.name)
            self.multiplexer.post(ConnectFailed(error=str(exc) or type(exc).__name__))
            return
        if self._closed:
            session.close()
            return
        self.multiplexer.post(TerminalConnected(session=session, endpoint=session.endpoint))

    def _on_terminal_connected(self, event: TerminalConnected) -> None:
        if self._closed or (self.session is not None and self.session.alive):
            logger.warning("Discarding extra terminal session host=%s", event.endpoint.address)
            event.session.close()
            return
        self.session = event.session
        self.endpoint = event.endpoint
        self.connection = ConnectionState.CONNECTED
        self.log_event("[SUCCESS] Terminal connected. Waiting for shell...", target="remote")
        if self._pty_size is not None:
            self._apply_resize(*self._pty_size)
        scheduler = self.multiplexer.scheduler
        if self.config.has_plan:
            scheduler.call_later(
                DEPLOYMENT_START_DELAY_SECONDS,
                self.sequencer.start,
                label="deployment-start",
            )
        elif self.config.command:
            scheduler.call_later(
                INITIAL_COMMAND_DELAY_SECONDS,
                self._send_initial_command,
                label="initial-command",
            )

    def _on_connect_failed(self, event: ConnectFailed) -> None:
        self.connection = ConnectionState.FAILED
        self.exit_status = ExitCode.SSH_ERROR
        self.log_event(f"[ERROR] SSH connection failed: {event.error}", target="remote")

    def _on_passphrase_needed(self, event: PassphraseNeeded) -> None:
        logger.debug("Passphrase needed key=%s", event.key_path)
        self.connection = ConnectionState.IDLE
        self._enter_passphrase_mode()

    def _send_initial_command(self) -> None:
        if self.initial_command_sent or self.session is None:
            return
        self.initial_command_sent = True
        try:
            self.session.write(self.config.command + "\n")
        except RemoteWriteError as exc:
            self.remote_buffer.append(f"\n[ERROR] Failed to send command: {exc.message}\n")

    def _run_step_local(self, command: str) -> None:
        try:
            handle = self.runner.run(command)
        except LocalCommandBusyError as exc:
            self.local_buffer.append(f"\n[ERROR] {exc.message}\n")
            self.log_event(f"[ERROR] Local command failed: {exc.message}", target="local")
            raise
        self._plan_handle = handle
        self._echo_local(command)

    def _run_step_remote(self, data: str) -> None:
        try:
            self._write_remote(data)
        except RemoteWriteError as exc:
            self.remote_buffer.append(f"\n[ERROR] Failed to send command: {exc.message}\n")
            raise

    def _on_step_event(self, event: StepEvent) -> None:
        step_label = f"{event.index + 1}/{event.total}"
        if event.kind is StepEventKind.STARTED and event.step is not None:
            target = event.step.target.value
            self.log_event(
                f"[STEP] [{step_label}] Running {target}: {event.step.command}",
                target=target,
                step=step_label,
            )
        elif event.kind is StepEventKind.COMPLETED:
            self.log_event("[SUCCESS] Deployment script completed. SSH session preserved for manual use.")
        elif event.kind is StepEventKind.ABORTED:
            target = event.step.target.value if event.step is not None else "session"
            self.log_event("[INFO] Deployment stopped due to error", target=target, step=step_label)

    def _echo_local(self, command: str) -> None:
        self.local_buffer.append(f"{self.local_user}@{self.local_host} $ {command}\n")

    def _claim_plan_event(self, handle: LocalCommandHandle | None) -> bool:
        # Only the invocation started by the plan may advance it.
        if handle is None or handle is not self._plan_handle:
            return False
        self._plan_handle = None
        return True

    def _on_local_finished(self, event: LocalCommandFinished) -> None:
        self.multiplexer.flush_local()
        from_plan = self._claim_plan_event(event.handle)
        if from_plan:
            self.sequencer.local_finished(event.returncode)

    def _on_local_failed(self, event: LocalCommandFailed) -> None:
        self.multiplexer.flush_local()
        from_plan = self._claim_plan_event(event.handle)
        self.local_buffer.append(f"\n[ERROR] {event.error}\n")
        self.log_event(f"[ERROR] Local command failed: {event.error}", target="local")
        if from_plan:
            self.sequencer.local_failed(event.error)

    def submit(self, text: str) -> bool:
        """Route one line from the command box; returns True if it was acted on."""
        if self.awaiting_passphrase:
            return self.submit_passphrase(text)
        if not text.strip():
            return False
        if self.sequencer.running:
            self.log_event("[INFO] Deployment in progress; input ignored until it finishes")
            return False
        self.history.append(text)
        if self.shell_mode is ShellMode.LOCAL:
            self._submit_local(text)
        else:
            self._submit_remote(text)
        return True

    def _submit_local(self, command: str) -> None:
        self._echo_local(command)
        try:
            self.runner.run(command)
        except LocalCommandBusyError as exc:
            self.local_buffer.append(f"\n[ERROR] {exc.message}\n")
            self.log_event(f"[ERROR] Local command failed: {exc.message}", target="local")

    def _submit_remote(self, command: str) -> None:
        try:
            self._write_remote(command + "\n")
        except RemoteWriteError as exc:
            self.remote_buffer.append(f"\n[ERROR] Failed to send command: {exc.message}\n")
            return
        if self.debug:
            self.remote_buffer.append(f"\n[DEBUG] Sent command: {command}\n")

    def _write_remote(self, data: str) -> None:
        if self.session is None:
            raise RemoteWriteError(
                "terminal session is not connected",
                code=ExitCode.SSH_ERROR,
            )
        self.session.write(data)

    def toggle_shell_mode(self) -> ShellMode:
        if self.shell_mode is ShellMode.REMOTE:
            self.shell_mode = ShellMode.LOCAL
        else:
            self.shell_mode = ShellMode.REMOTE
        self.log_event(f"[INFO] Switched to {self.shell_mode.value} shell mode")
        return self.shell_mode

    def last_history(self) -> str:
        return self.history[-1] if self.history else ""

    def interrupt(self) -> None:
        if self.session is None:
            return
        try:
            self.session.interrupt()
        except RemoteWriteError as exc:
            self.remote_buffer.append(f"\n[ERROR] Failed to send command: {exc.message}\n")

    def resize(self, cols: int, rows: int) -> None:
        if cols <= 0 or rows <= 0:
            return
        self._pty_size = (cols, rows)
        if self.session is not None:
            self._apply_resize(cols, rows)

    def _apply_resize(self, cols: int, rows: int) -> None:
        if self.session is None:
            return
        try:
            self.session.resize(cols, rows)
        except GcDeployError as exc:
            logger.warning("Remote resize failed cols=%s rows=%s error=%s", cols, rows, exc)

    def tick(self) -> bool:
        if self._closed:
            return False
        return self.multiplexer.tick()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        logger.debug("Closing orchestrator connection=%s", self.connection.value)
        self.multiplexer.scheduler.cancel_all()
        self.runner.cancel()
        if self.session is not None:
            self.session.close()
        if self.connection is ConnectionState.CONNECTED:
            self.connection = ConnectionState.CLOSED

    def quit(self) -> ExitCode:
        self.close()
        return self.exit_status

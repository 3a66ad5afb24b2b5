from __future__ import annotations

import queue
import time
from collections.abc import Callable, Iterator
from pathlib import Path

import paramiko
import pytest

from gcdeploy.config import AppConfig, parse_config
from gcdeploy.loop.timers import Scheduler
from gcdeploy.models import ConnectionEndpoint, InstanceDescriptor
from gcdeploy.orchestrator import SessionOrchestrator

_SECURITY_TEST_FILES = {
    "test_credentials.py",
}
_INTEGRATION_TEST_FILES = {
    "test_local_runner.py",
    "test_deploy_scenario.py",
}


@pytest.hookimpl(trylast=True)
def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    del config
    for item in items:
        path = Path(str(getattr(item, "path", item.fspath)))
        name = path.name

        if "integration" in path.parts or name in _INTEGRATION_TEST_FILES:
            item.add_marker(pytest.mark.integration)

        if name in _SECURITY_TEST_FILES:
            item.add_marker(pytest.mark.security)


class FakeChannel:
    """Stand-in for a paramiko shell channel; reads block until fed."""

    def __init__(self, *, send_limit: int | None = None) -> None:
        self.sent = bytearray()
        self.resizes: list[tuple[int, int]] = []
        self.closed = False
        self.timeout: float | None = None
        self.send_limit = send_limit
        self.send_error: Exception | None = None
        self._stdout: queue.Queue[bytes | BaseException] = queue.Queue()
        self._stderr: queue.Queue[bytes | BaseException] = queue.Queue()

    def feed(self, data: bytes, *, stderr: bool = False) -> None:
        (self._stderr if stderr else self._stdout).put(data)

    def fail_reads(self, exc: BaseException) -> None:
        self._stdout.put(exc)

    def _read(self, source: queue.Queue[bytes | BaseException]) -> bytes:
        item = source.get()
        if isinstance(item, BaseException):
            raise item
        return item

    def recv(self, nbytes: int) -> bytes:
        del nbytes
        return self._read(self._stdout)

    def recv_stderr(self, nbytes: int) -> bytes:
        del nbytes
        return self._read(self._stderr)

    def send(self, data: bytes) -> int:
        if self.closed:
            raise OSError("Socket is closed")
        if self.send_error is not None:
            raise self.send_error
        chunk = data if self.send_limit is None else data[: self.send_limit]
        self.sent.extend(chunk)
        return len(chunk)

    def resize_pty(self, width: int = 80, height: int = 24) -> None:
        self.resizes.append((width, height))

    def settimeout(self, timeout: float | None) -> None:
        self.timeout = timeout

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._stdout.put(b"")
        self._stderr.put(b"")


class FakeTransport:
    def __init__(self) -> None:
        self.keepalive: int | None = None

    def set_keepalive(self, interval: int) -> None:
        self.keepalive = interval


class FakeSSHClient:
    def __init__(
        self,
        channel: FakeChannel | None = None,
        *,
        connect_error: Exception | None = None,
        shell_error: Exception | None = None,
    ) -> None:
        self.channel = channel or FakeChannel()
        self.transport = FakeTransport()
        self.connect_error = connect_error
        self.shell_error = shell_error
        self.policy: object | None = None
        self.connect_kwargs: dict[str, object] = {}
        self.invoke_args: tuple[str, int, int] | None = None
        self.closed = False

    def set_missing_host_key_policy(self, policy: object) -> None:
        self.policy = policy

    def connect(self, **kwargs: object) -> None:
        self.connect_kwargs = kwargs
        if self.connect_error is not None:
            raise self.connect_error

    def get_transport(self) -> FakeTransport:
        return self.transport

    def invoke_shell(self, term: str = "vt100", width: int = 80, height: int = 24) -> FakeChannel:
        self.invoke_args = (term, width, height)
        if self.shell_error is not None:
            raise self.shell_error
        return self.channel

    def close(self) -> None:
        self.closed = True


class FakeResolver:
    def __init__(self, endpoint: ConnectionEndpoint | None = None, error: Exception | None = None) -> None:
        self.endpoint = endpoint or ConnectionEndpoint(
            address="203.0.113.10",
            login_user="deployer",
            name="web-1",
            status="RUNNING",
        )
        self.error = error
        self.calls: list[InstanceDescriptor] = []

    def resolve(self, instance: InstanceDescriptor) -> ConnectionEndpoint:
        self.calls.append(instance)
        if self.error is not None:
            raise self.error
        return self.endpoint


class FakeClock:
    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def fake_channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def fake_client(fake_channel: FakeChannel) -> FakeSSHClient:
    return FakeSSHClient(fake_channel)


@pytest.fixture
def fake_resolver() -> FakeResolver:
    return FakeResolver()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def plain_key_path(tmp_path: Path) -> Path:
    path = tmp_path / "id_ecdsa"
    paramiko.ECDSAKey.generate().write_private_key_file(str(path))
    return path


@pytest.fixture
def encrypted_key_path(tmp_path: Path) -> Path:
    path = tmp_path / "id_ecdsa_encrypted"
    paramiko.ECDSAKey.generate().write_private_key_file(str(path), password="correct horse")
    return path


@pytest.fixture
def make_config(plain_key_path: Path) -> Callable[..., AppConfig]:
    def _make(**overrides: object) -> AppConfig:
        raw: dict[str, object] = {
            "instance": {"name": "web-1", "project_id": "demo-project", "zone": "us-central1-a"},
            "command": "uptime",
            "ssh_key_path": str(plain_key_path),
        }
        raw.update(overrides)
        return parse_config(raw)

    return _make


BuildOrchestrator = Callable[..., SessionOrchestrator]


def pump_until(orchestrator: SessionOrchestrator, predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        orchestrator.tick()
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def build_orchestrator(
    make_config: Callable[..., AppConfig],
    fake_resolver: FakeResolver,
    fake_client: FakeSSHClient,
    fake_clock: FakeClock,
) -> Iterator[BuildOrchestrator]:
    created: list[SessionOrchestrator] = []

    def _build(
        config: AppConfig | None = None,
        *,
        client: FakeSSHClient | None = None,
        resolver: FakeResolver | None = None,
        **kwargs: object,
    ) -> SessionOrchestrator:
        kwargs.setdefault("threaded_connect", False)
        orchestrator = SessionOrchestrator(
            config or make_config(),
            resolver=resolver or fake_resolver,
            client_factory=lambda: client or fake_client,
            scheduler=Scheduler(fake_clock),
            local_user="alice",
            local_host="box",
            shell="/bin/sh",
            **kwargs,
        )
        created.append(orchestrator)
        return orchestrator

    yield _build
    for orchestrator in created:
        orchestrator.close()

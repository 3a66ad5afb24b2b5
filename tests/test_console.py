from __future__ import annotations

import io
from collections.abc import Callable

import pytest

from conftest import BuildOrchestrator, FakeChannel, FakeClock, FakeResolver, FakeSSHClient
from gcdeploy.config import AppConfig
from gcdeploy.errors import ExitCode
from gcdeploy.orchestrator import ConnectionState
from gcdeploy.ui.console import ConsoleRenderer, run_console


class SteppingClock(FakeClock):
    """Moves forward a little on every read so timers and idle exits fire."""

    def __init__(self, step: float = 0.05) -> None:
        super().__init__()
        self.step = step

    def __call__(self) -> float:
        self.now += self.step
        return self.now


@pytest.fixture
def fake_clock() -> SteppingClock:
    return SteppingClock()


def _run(orchestrator, clock: FakeClock, **kwargs: object) -> tuple[int, str]:
    out = io.StringIO()
    kwargs.setdefault("interactive", False)
    code = run_console(
        orchestrator,
        stream=out,
        idle_exit_seconds=1.0,
        interval=0.001,
        clock=clock,
        **kwargs,
    )
    return code, out.getvalue()


def test_renderer_prefixes_new_text_per_pane(build_orchestrator: BuildOrchestrator) -> None:
    orchestrator = build_orchestrator()
    out = io.StringIO()
    renderer = ConsoleRenderer(orchestrator, out)

    assert renderer.flush()
    assert out.getvalue() == (
        "[local] Local Shell Ready\n[local] alice@box\n[remote] Waiting for connection...\n"
    )

    orchestrator.remote_buffer.append("$ ")
    orchestrator.log_event("[INFO] Insert mode")
    out.truncate(0)
    out.seek(0)

    assert renderer.flush()
    assert out.getvalue() == "[log] [INFO] Insert mode\n[remote] $ \n"
    assert not renderer.flush()


def test_initial_command_run_exits_cleanly(
    build_orchestrator: BuildOrchestrator,
    fake_channel: FakeChannel,
    fake_clock: FakeClock,
) -> None:
    orchestrator = build_orchestrator()

    code, output = _run(orchestrator, fake_clock)

    assert code == int(ExitCode.SUCCESS)
    assert bytes(fake_channel.sent) == b"uptime\n"
    assert "[log] [SUCCESS] Terminal connected. Waiting for shell..." in output
    assert orchestrator.closed
    assert fake_channel.closed


def test_aborted_plan_exits_with_runtime_error(
    build_orchestrator: BuildOrchestrator,
    make_config: Callable[..., AppConfig],
    fake_clock: FakeClock,
) -> None:
    config = make_config(command="", deployment=[{"target": "local", "command": "exit 2"}])
    orchestrator = build_orchestrator(config)

    code, output = _run(orchestrator, fake_clock)

    assert code == int(ExitCode.RUNTIME_ERROR)
    assert "[log] [INFO] Deployment stopped due to error" in output
    assert "[local] [ERROR] exit status 2" in output


def test_connect_failure_exits_with_ssh_error(
    build_orchestrator: BuildOrchestrator,
    fake_clock: FakeClock,
) -> None:
    orchestrator = build_orchestrator(client=FakeSSHClient(connect_error=OSError("Network is unreachable")))

    code, output = _run(orchestrator, fake_clock)

    assert code == int(ExitCode.SSH_ERROR)
    assert "[log] [ERROR] SSH connection failed: failed to dial SSH: Network is unreachable" in output


def test_unexpected_lookup_error_exits_with_ssh_error(
    build_orchestrator: BuildOrchestrator,
    fake_clock: FakeClock,
) -> None:
    resolver = FakeResolver(error=RuntimeError("gcloud crashed"))
    orchestrator = build_orchestrator(resolver=resolver)

    code, output = _run(orchestrator, fake_clock)

    assert code == int(ExitCode.SSH_ERROR)
    assert orchestrator.connection is ConnectionState.FAILED
    assert "[log] [ERROR] SSH connection failed: gcloud crashed" in output


def test_passphrase_prompt_is_cancelled_without_tty(
    build_orchestrator: BuildOrchestrator,
    make_config: Callable[..., AppConfig],
    encrypted_key_path,
    fake_clock: FakeClock,
) -> None:
    orchestrator = build_orchestrator(make_config(ssh_key_path=str(encrypted_key_path)))

    def _prompt(text: str) -> str:
        raise AssertionError("prompted without a terminal")

    code, output = _run(orchestrator, fake_clock, prompt=_prompt)

    assert code == int(ExitCode.SSH_ERROR)
    assert orchestrator.connection is ConnectionState.IDLE
    assert "[log] [INFO] Passphrase input cancelled" in output


def test_passphrase_prompt_connects_on_tty(
    build_orchestrator: BuildOrchestrator,
    make_config: Callable[..., AppConfig],
    encrypted_key_path,
    fake_channel: FakeChannel,
    fake_clock: FakeClock,
) -> None:
    orchestrator = build_orchestrator(make_config(ssh_key_path=str(encrypted_key_path)))
    prompts: list[str] = []

    def _prompt(text: str) -> str:
        prompts.append(text)
        return "correct horse"

    code, _ = _run(orchestrator, fake_clock, prompt=_prompt, interactive=True)

    assert code == int(ExitCode.SUCCESS)
    assert prompts == ["SSH key passphrase: "]
    assert bytes(fake_channel.sent) == b"uptime\n"

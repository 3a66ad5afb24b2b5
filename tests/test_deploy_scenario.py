from __future__ import annotations

import time
from collections.abc import Callable

from conftest import BuildOrchestrator, FakeChannel, FakeClock
from gcdeploy.config import AppConfig
from gcdeploy.deploy.sequencer import SequencerState
from gcdeploy.orchestrator import SessionOrchestrator


def _run_plan(orchestrator: SessionOrchestrator, clock: FakeClock, timeout: float = 10.0) -> None:
    orchestrator.start()
    deadline = time.monotonic() + timeout
    while not orchestrator.sequencer.finished and time.monotonic() < deadline:
        orchestrator.tick()
        clock.advance(0.25)
        time.sleep(0.01)
    orchestrator.tick()


def test_mixed_plan_runs_in_order(
    build_orchestrator: BuildOrchestrator,
    make_config: Callable[..., AppConfig],
    fake_channel: FakeChannel,
    fake_clock: FakeClock,
) -> None:
    config = make_config(
        command="",
        deployment=[
            {"target": "local", "command": "echo a"},
            {"target": "remote", "command": "echo b"},
            {"target": "local", "command": "echo c"},
        ],
    )
    orchestrator = build_orchestrator(config)

    _run_plan(orchestrator, fake_clock)

    local_text = orchestrator.local_buffer.text
    assert orchestrator.sequencer.state is SequencerState.COMPLETE
    assert orchestrator.sequencer.cursor.current_index == 3
    assert "alice@box $ echo a\na\n" in local_text
    assert "alice@box $ echo c\nc\n" in local_text
    assert local_text.index("\na\n") < local_text.index("\nc\n")
    assert bytes(fake_channel.sent) == b"echo b\n"

    log_text = orchestrator.log_buffer.text
    for line in (
        "[STEP] [1/3] Running local: echo a",
        "[STEP] [2/3] Running remote: echo b",
        "[STEP] [3/3] Running local: echo c",
        "[SUCCESS] Deployment script completed. SSH session preserved for manual use.",
    ):
        assert line in log_text
    assert log_text.index("[1/3]") < log_text.index("[2/3]") < log_text.index("[3/3]")


def test_failing_local_step_stops_the_plan(
    build_orchestrator: BuildOrchestrator,
    make_config: Callable[..., AppConfig],
    fake_channel: FakeChannel,
    fake_clock: FakeClock,
) -> None:
    config = make_config(
        command="",
        deployment=[
            {"target": "local", "command": "echo building; exit 7"},
            {"target": "remote", "command": "sudo systemctl restart app"},
        ],
    )
    orchestrator = build_orchestrator(config)

    _run_plan(orchestrator, fake_clock)

    assert orchestrator.sequencer.state is SequencerState.ABORTED
    assert orchestrator.sequencer.cursor.current_index == 0
    assert bytes(fake_channel.sent) == b""
    local_text = orchestrator.local_buffer.text
    assert local_text.index("building\n") < local_text.index("[ERROR] exit status 7")
    assert "[ERROR] Local command failed: exit status 7" in orchestrator.log_buffer.text
    assert "[INFO] Deployment stopped due to error" in orchestrator.log_buffer.text
    assert "[SUCCESS] Deployment script completed" not in orchestrator.log_buffer.text


def test_session_stays_usable_after_plan(
    build_orchestrator: BuildOrchestrator,
    make_config: Callable[..., AppConfig],
    fake_channel: FakeChannel,
    fake_clock: FakeClock,
) -> None:
    config = make_config(command="", deployment=[{"target": "remote", "command": "cd /srv/app"}])
    orchestrator = build_orchestrator(config)

    _run_plan(orchestrator, fake_clock)
    orchestrator.submit("git log -1")

    assert orchestrator.session is not None and orchestrator.session.alive
    assert bytes(fake_channel.sent) == b"cd /srv/app\ngit log -1\n"

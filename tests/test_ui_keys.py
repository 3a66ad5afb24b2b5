from __future__ import annotations

from collections.abc import Callable

from conftest import BuildOrchestrator, FakeChannel
from gcdeploy.config import AppConfig
from gcdeploy.orchestrator import ShellMode
from gcdeploy.ui.keys import CommandLine, InputMode


def test_starts_in_insert_mode_with_remote_prompt(build_orchestrator: BuildOrchestrator) -> None:
    line = CommandLine(build_orchestrator())

    assert line.mode is InputMode.INSERT
    assert line.prompt() == "remote $ "
    assert not line.masked


def test_escape_toggles_normal_mode(build_orchestrator: BuildOrchestrator) -> None:
    orchestrator = build_orchestrator()
    line = CommandLine(orchestrator)

    assert line.handle_key("esc")
    assert line.mode is InputMode.NORMAL
    assert "[INFO] Normal mode (press 'i' to insert, 'q' to quit)" in orchestrator.log_buffer.text

    assert line.handle_key("x")
    assert line.text == ""
    assert line.handle_key("i")
    assert line.mode is InputMode.INSERT
    assert orchestrator.log_buffer.tail(1) == ["[INFO] Insert mode"]


def test_q_quits_only_in_normal_mode(build_orchestrator: BuildOrchestrator) -> None:
    line = CommandLine(build_orchestrator())

    assert not line.handle_key("q")
    assert not line.quit_requested

    line.handle_key("esc")
    assert line.handle_key("q")
    assert line.quit_requested


def test_shift_tab_switches_shell_and_clears_text(build_orchestrator: BuildOrchestrator) -> None:
    orchestrator = build_orchestrator()
    line = CommandLine(orchestrator, text="half typed")

    assert line.handle_key("shift+tab")

    assert orchestrator.shell_mode is ShellMode.LOCAL
    assert line.text == ""
    assert line.prompt() == "local $ "


def test_enter_submits_and_up_recalls_history(
    build_orchestrator: BuildOrchestrator,
    fake_channel: FakeChannel,
) -> None:
    orchestrator = build_orchestrator()
    orchestrator.start()
    orchestrator.tick()
    line = CommandLine(orchestrator, text="whoami")

    assert line.handle_key("enter")
    assert line.text == ""
    assert bytes(fake_channel.sent) == b"whoami\n"

    assert line.handle_key("up")
    assert line.text == "whoami"


def test_ctrl_c_interrupts_remote_shell(
    build_orchestrator: BuildOrchestrator,
    fake_channel: FakeChannel,
) -> None:
    orchestrator = build_orchestrator()
    orchestrator.start()
    orchestrator.tick()
    line = CommandLine(orchestrator, text="tail -f /var/log/syslog")

    assert line.handle_key("ctrl+c")

    assert line.text == ""
    assert bytes(fake_channel.sent) == b"\x03"


def test_plain_keys_are_left_to_the_editor(build_orchestrator: BuildOrchestrator) -> None:
    line = CommandLine(build_orchestrator())

    assert not line.handle_key("a")
    assert not line.handle_key("backspace")


def test_passphrase_mode_masks_and_submits(
    build_orchestrator: BuildOrchestrator,
    make_config: Callable[..., AppConfig],
    encrypted_key_path,
) -> None:
    orchestrator = build_orchestrator(make_config(ssh_key_path=str(encrypted_key_path)))
    orchestrator.start()
    line = CommandLine(orchestrator)

    assert line.masked
    assert line.prompt() == "passphrase: "
    assert line.handle_key("enter")
    assert orchestrator.awaiting_passphrase
    assert not line.handle_key("shift+tab")

    line.text = "correct horse"
    assert line.handle_key("enter")
    orchestrator.tick()

    assert not line.masked
    assert line.text == ""
    assert orchestrator.history == []
    assert orchestrator.session is not None


def test_escape_cancels_passphrase(
    build_orchestrator: BuildOrchestrator,
    make_config: Callable[..., AppConfig],
    encrypted_key_path,
) -> None:
    orchestrator = build_orchestrator(make_config(ssh_key_path=str(encrypted_key_path)))
    orchestrator.start()
    line = CommandLine(orchestrator, text="secr")

    assert line.handle_key("esc")

    assert line.text == ""
    assert line.mode is InputMode.INSERT
    assert not orchestrator.awaiting_passphrase

"""Toolkit-independent key handling for the command line."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from gcdeploy.orchestrator import SessionOrchestrator


class InputMode(str, Enum):
    INSERT = "insert"
    NORMAL = "normal"


HELP_TEXT = "shift+tab: switch shell | esc: normal mode | q: quit (normal) | ctrl+c: interrupt | up: history"


@dataclass
class CommandLine:
    """Modal command line state driven by named keys.

    ``handle_key`` returns True when the key was consumed; otherwise the
    widget should apply it as ordinary text editing.
    """

    orchestrator: SessionOrchestrator
    mode: InputMode = InputMode.INSERT
    text: str = ""
    quit_requested: bool = False

    @property
    def masked(self) -> bool:
        return self.orchestrator.awaiting_passphrase

    def prompt(self) -> str:
        if self.masked:
            return "passphrase: "
        return f"{self.orchestrator.shell_mode.value} $ "

    def handle_key(self, key: str) -> bool:
        orchestrator = self.orchestrator
        if orchestrator.awaiting_passphrase:
            return self._handle_passphrase_key(key)

        if key == "esc":
            if self.mode is InputMode.INSERT:
                self.mode = InputMode.NORMAL
                orchestrator.log_event("[INFO] Normal mode (press 'i' to insert, 'q' to quit)")
            else:
                self.mode = InputMode.INSERT
                orchestrator.log_event("[INFO] Insert mode")
            return True

        if key == "shift+tab":
            orchestrator.toggle_shell_mode()
            self.text = ""
            return True

        if self.mode is InputMode.NORMAL:
            if key == "q":
                self.quit_requested = True
            elif key == "i":
                self.mode = InputMode.INSERT
                orchestrator.log_event("[INFO] Insert mode")
            # Everything else is swallowed in normal mode.
            return True

        if key == "enter":
            value = self.text
            self.text = ""
            orchestrator.submit(value)
            return True
        if key == "ctrl+c":
            orchestrator.interrupt()
            self.text = ""
            return True
        if key == "up":
            self.text = orchestrator.last_history()
            return True
        return False

    def _handle_passphrase_key(self, key: str) -> bool:
        if key == "enter":
            value = self.text
            if value == "":
                return True
            self.text = ""
            self.orchestrator.submit_passphrase(value)
            return True
        if key == "esc":
            self.text = ""
            self.orchestrator.cancel_passphrase()
            return True
        return False

"""Split-pane PySide6 window: local pane, remote pane, log strip and command line."""

from __future__ import annotations

import logging as py_logging
import re
import sys

from gcdeploy.errors import ExitCode, GcDeployError
from gcdeploy.loop.buffers import ContentBuffer
from gcdeploy.orchestrator import SessionOrchestrator, ShellMode
from gcdeploy.ui.keys import HELP_TEXT, CommandLine, InputMode

logger = py_logging.getLogger(__name__)

LOG_AREA_LINES = 4
LOCAL_BORDER_COLOR = "#f59e0b"
REMOTE_BORDER_COLOR = "#3b82f6"
MIN_COLS = 20
MIN_ROWS = 5

_OSC_RE = re.compile(r"\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)?")
_CSI_RE = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]")
_ESC_RE = re.compile(r"\x1b[@-Z\\-_]?")
_CONTROL_RE = re.compile(r"[\x00-\x07\x0b\x0c\x0e-\x1f\x7f]")


def _overstrike(line: str) -> str:
    cells: list[str] = []
    column = 0
    for char in line:
        if char == "\r":
            column = 0
        elif char == "\b":
            column = max(0, column - 1)
        else:
            if column < len(cells):
                cells[column] = char
            else:
                cells.append(char)
            column += 1
    return "".join(cells)


def display_text(text: str) -> str:
    """Render raw PTY output as plain text for a read-only pane.

    Escape sequences are dropped, and carriage returns and backspaces
    overwrite earlier characters on the same line the way a terminal would.
    Buffers keep the raw bytes; only the widget sees the filtered text.
    """
    text = _OSC_RE.sub("", text)
    text = _CSI_RE.sub("", text)
    text = _ESC_RE.sub("", text)
    text = text.replace("\r\n", "\n")
    text = _CONTROL_RE.sub("", text)
    if "\r" not in text and "\b" not in text:
        return text
    return "\n".join(_overstrike(line) for line in text.split("\n"))


def terminal_geometry(
    width_px: int,
    height_px: int,
    char_width: float,
    line_height: float,
) -> tuple[int, int]:
    """Character grid that fits a pane of the given pixel size."""
    if char_width <= 0 or line_height <= 0:
        return MIN_COLS, MIN_ROWS
    cols = max(MIN_COLS, int(width_px // char_width))
    rows = max(MIN_ROWS, int(height_px // line_height))
    return cols, rows


def status_line(orchestrator: SessionOrchestrator, mode: InputMode) -> str:
    status = orchestrator.status()
    parts = [f"[{mode.value.upper()}]", f"shell={status.shell_mode.value}", f"ssh={status.connection.value}"]
    if status.plan_total:
        shown = min(status.plan_index + 1, status.plan_total)
        parts.append(f"plan={status.plan_state.value} {shown}/{status.plan_total}")
    if status.remote_address:
        parts.append(f"{status.remote_user}@{status.remote_name} ({status.remote_address})")
    return "  ".join(parts)


def launch_window(orchestrator: SessionOrchestrator, *, tick_interval_ms: int) -> int:
    try:
        from PySide6.QtCore import QEvent, QObject, Qt, QTimer
        from PySide6.QtGui import QFontDatabase, QFontMetricsF, QTextCursor
        from PySide6.QtWidgets import (
            QApplication,
            QHBoxLayout,
            QLabel,
            QLineEdit,
            QMainWindow,
            QPlainTextEdit,
            QVBoxLayout,
            QWidget,
        )
    except ImportError as exc:
        raise GcDeployError(
            "PySide6 is not installed; the window cannot be opened.",
            code=ExitCode.RUNTIME_ERROR,
            hint="Run `pip install PySide6` or start with --headless.",
        ) from exc

    _NAMED_KEYS = {
        Qt.Key_Escape: "esc",
        Qt.Key_Backtab: "shift+tab",
        Qt.Key_Return: "enter",
        Qt.Key_Enter: "enter",
        Qt.Key_Up: "up",
    }

    def key_name(event) -> str:  # pragma: no cover
        if event.key() == Qt.Key_C and event.modifiers() & Qt.ControlModifier:
            return "ctrl+c"
        name = _NAMED_KEYS.get(event.key())
        if name:
            return name
        return event.text()

    class CommandKeyFilter(QObject):  # pragma: no cover
        def __init__(self, window: GcDeployWindow) -> None:
            super().__init__(window)
            self._window = window

        def eventFilter(self, watched, event) -> bool:  # type: ignore[override]
            if event.type() != QEvent.KeyPress:
                return False
            return self._window.handle_key(key_name(event))

    class GcDeployWindow(QMainWindow):  # pragma: no cover
        def __init__(self) -> None:
            super().__init__()
            self.setWindowTitle(f"gcdeploy - {orchestrator.config.instance.name}")
            self.resize(1200, 720)
            self.command_line = CommandLine(orchestrator)
            self._versions: dict[int, int] = {}

            mono = QFontDatabase.systemFont(QFontDatabase.FixedFont)
            self.local_pane = self._make_pane(mono, LOCAL_BORDER_COLOR)
            self.remote_pane = self._make_pane(mono, REMOTE_BORDER_COLOR)
            self.log_area = QPlainTextEdit()
            self.log_area.setReadOnly(True)
            self.log_area.setFont(mono)
            self.log_area.setFixedHeight(int(QFontMetricsF(mono).lineSpacing() * LOG_AREA_LINES) + 10)
            self.log_area.setVerticalScrollBarPolicy(Qt.ScrollBarAlwaysOff)

            self.prompt_label = QLabel(self.command_line.prompt())
            self.prompt_label.setFont(mono)
            self.command_input = QLineEdit()
            self.command_input.setFont(mono)
            self.command_input.textEdited.connect(self._on_text_edited)
            self._key_filter = CommandKeyFilter(self)
            self.command_input.installEventFilter(self._key_filter)

            self.status_label = QLabel("")
            self.help_label = QLabel(HELP_TEXT)
            self.help_label.setStyleSheet("color: #64748b;")

            root = QWidget(self)
            self.setCentralWidget(root)
            layout = QVBoxLayout(root)
            panes = QHBoxLayout()
            panes.setSpacing(6)
            panes.addWidget(self.local_pane, 1)
            panes.addWidget(self.remote_pane, 1)
            layout.addLayout(panes, 1)
            layout.addWidget(self.log_area)
            command_row = QHBoxLayout()
            command_row.addWidget(self.prompt_label)
            command_row.addWidget(self.command_input, 1)
            layout.addLayout(command_row)
            layout.addWidget(self.status_label)
            layout.addWidget(self.help_label)
            self.setStyleSheet(
                """
                QMainWindow, QWidget {
                    background: #0f1724;
                    color: #e5edf7;
                }
                QLineEdit {
                    border: 1px solid #334155;
                    padding: 4px;
                }
                """
            )

            self.timer = QTimer(self)
            self.timer.setInterval(tick_interval_ms)
            self.timer.timeout.connect(self._on_tick)
            self.timer.start()
            self.command_input.setFocus()
            self.render()

        def _make_pane(self, font, color: str) -> QPlainTextEdit:
            pane = QPlainTextEdit()
            pane.setReadOnly(True)
            pane.setFont(font)
            pane.setLineWrapMode(QPlainTextEdit.WidgetWidth)
            pane.setFocusPolicy(Qt.NoFocus)
            pane.setStyleSheet(f"QPlainTextEdit {{ border: 2px solid {color}; border-radius: 4px; }}")
            return pane

        def handle_key(self, key: str) -> bool:
            self.command_line.text = self.command_input.text()
            consumed = self.command_line.handle_key(key)
            if consumed:
                self.command_input.setText(self.command_line.text)
                if self.command_line.quit_requested:
                    self.close()
                    return True
                self.render()
            return consumed

        def _on_text_edited(self, text: str) -> None:
            self.command_line.text = text

        def _on_tick(self) -> None:
            if orchestrator.tick():
                self.render()

        def _sync(self, pane: QPlainTextEdit, buffer: ContentBuffer, *, tail: int | None = None) -> None:
            key = id(pane)
            if self._versions.get(key) == buffer.version:
                return
            self._versions[key] = buffer.version
            text = "\n".join(buffer.tail(tail)) if tail else buffer.text
            pane.setPlainText(display_text(text))
            pane.moveCursor(QTextCursor.End)
            pane.ensureCursorVisible()

        def render(self) -> None:
            self._sync(self.local_pane, orchestrator.local_buffer)
            self._sync(self.remote_pane, orchestrator.remote_buffer)
            self._sync(self.log_area, orchestrator.log_buffer, tail=LOG_AREA_LINES)
            masked = self.command_line.masked
            self.command_input.setEchoMode(QLineEdit.Password if masked else QLineEdit.Normal)
            self.command_input.setReadOnly(self.command_line.mode is InputMode.NORMAL and not masked)
            self.prompt_label.setText(self.command_line.prompt())
            active = orchestrator.shell_mode
            self.local_pane.setProperty("active", active is ShellMode.LOCAL)
            self.remote_pane.setProperty("active", active is ShellMode.REMOTE)
            self.status_label.setText(status_line(orchestrator, self.command_line.mode))

        def resizeEvent(self, event) -> None:  # type: ignore[override]
            super().resizeEvent(event)
            viewport = self.remote_pane.viewport()
            metrics = QFontMetricsF(self.remote_pane.font())
            cols, rows = terminal_geometry(
                viewport.width(),
                viewport.height(),
                metrics.horizontalAdvance("M"),
                metrics.lineSpacing(),
            )
            logger.debug("Window resized; remote pty cols=%s rows=%s", cols, rows)
            orchestrator.resize(cols, rows)

        def closeEvent(self, event) -> None:  # type: ignore[override]
            self.timer.stop()
            orchestrator.close()
            event.accept()

    app = QApplication.instance() or QApplication(sys.argv)  # pragma: no cover
    window = GcDeployWindow()  # pragma: no cover
    window.show()  # pragma: no cover
    orchestrator.start()  # pragma: no cover
    app.exec()  # pragma: no cover
    return int(orchestrator.quit())  # pragma: no cover

"""Append-only pane buffers read by the renderers."""

from __future__ import annotations


class ContentBuffer:
    def __init__(self, initial: str = "", *, max_lines: int | None = None) -> None:
        if max_lines is not None and max_lines < 1:
            raise ValueError(f"Invalid max_lines: {max_lines}")
        self.max_lines = max_lines
        self._chunks: list[str] = []
        self._joined: str | None = ""
        self._trimmed_chars = 0
        self.version = 0
        if initial:
            self.append(initial)

    @property
    def text(self) -> str:
        if self._joined is None:
            self._joined = "".join(self._chunks)
            self._chunks = [self._joined]
        return self._joined

    def __len__(self) -> int:
        return len(self.text)

    def __contains__(self, item: str) -> bool:
        return item in self.text

    def append(self, chunk: str) -> None:
        if not chunk:
            return
        self._chunks.append(chunk)
        self._joined = None
        if self.max_lines is not None:
            self._trim()
        self.version += 1

    def append_line(self, line: str) -> None:
        self.append(line if line.endswith("\n") else line + "\n")

    @property
    def end(self) -> int:
        """Absolute offset of the end of the buffer, stable across trimming."""
        return self._trimmed_chars + len(self.text)

    def read_since(self, mark: int) -> tuple[str, int]:
        text = self.text
        start = max(mark - self._trimmed_chars, 0)
        return text[start:], self._trimmed_chars + len(text)

    def tail(self, count: int) -> list[str]:
        text = self.text
        lines = text.rstrip("\n").split("\n") if text else []
        return lines[-count:] if count > 0 else []

    def _trim(self) -> None:
        lines = self.text.split("\n")
        # A trailing newline leaves an empty last element that is not a line.
        limit = self.max_lines + (1 if lines[-1] == "" else 0)
        if len(lines) > limit:
            trimmed = "\n".join(lines[-limit:])
            self._trimmed_chars += len(self.text) - len(trimmed)
            self._chunks = [trimmed]
            self._joined = trimmed

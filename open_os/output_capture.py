# open_os/output_capture.py

import re
import logging
from collections import deque

logger = logging.getLogger(__name__)

DEFAULT_MAX_LINES = 500

# CSI sequences, OSC sequences (BEL or ST terminated) and two-byte escapes
_ANSI_PATTERN = re.compile(r'\x1b\[[0-?]*[ -/]*[@-~]|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)|\x1b[@-Z\\-_]')


def strip_ansi(text: str) -> str:
    return _ANSI_PATTERN.sub("", text)


class OutputCapture:
    """
    Approximates the rendered screen as plain text lines.

    Only what the AI prompt needs is modelled: escape sequences are dropped, a
    bare carriage return restarts the current line, backspace removes one
    character. Cursor addressing used by full-screen programs is not replayed.
    """

    def __init__(self, max_lines: int = DEFAULT_MAX_LINES):
        self._lines = deque(maxlen=max_lines)
        self._current = []

    def feed(self, text: str):
        text = strip_ansi(text).replace("\r\n", "\n")
        for char in text:
            if char == "\n":
                self._lines.append("".join(self._current).rstrip())
                self._current = []
            elif char == "\r":
                self._current = []
            elif char == "\b":
                if self._current:
                    self._current.pop()
            elif ord(char) < 32 and char != "\t":
                continue
            else:
                self._current.append(char)

    def recent(self, line_count: int) -> str:
        """The last `line_count` lines (including the unfinished one), trimmed."""
        lines = list(self._lines)
        if self._current:
            lines.append("".join(self._current).rstrip())
        return "\n".join(lines[-line_count:] if line_count > 0 else []).strip()

    def clear(self):
        self._lines.clear()
        self._current = []

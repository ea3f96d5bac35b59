# tests/conftest.py
#
# Shared fixtures for the open-os test suite. Also puts the project root on
# sys.path so `open_os` and `main` import without an install.

import sys
import os

import pytest

project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if project_root not in sys.path:
    sys.path.insert(0, project_root)


class RecordingShell:
    """Stands in for a PTY shell: remembers what was written to it."""

    def __init__(self, cwd=None):
        self.writes = []
        self.resizes = []
        self._cwd = cwd

    def write(self, data):
        self.writes.append(data)

    def resize(self, cols, rows):
        self.resizes.append((cols, rows))

    def cwd(self):
        return self._cwd

    @property
    def text(self):
        return "".join(self.writes)


class RecordingDisplay:
    """Stands in for the terminal: keeps everything written per session."""

    def __init__(self, recent_output=""):
        self.writes = []
        self.recent_output = recent_output
        self.capture_requests = []

    def write(self, session_id, text):
        self.writes.append((session_id, text))

    def capture_recent_output(self, session_id, line_count):
        self.capture_requests.append((session_id, line_count))
        return self.recent_output

    def text(self, session_id=None):
        return "".join(t for sid, t in self.writes if session_id is None or sid == session_id)


@pytest.fixture
def shell():
    return RecordingShell()


@pytest.fixture
def display():
    return RecordingDisplay()


class ScriptedTransport:
    """
    A chat transport that replays (fragment, done) pairs.

    If `gate` is given, streaming waits for it to be set first. `error` is
    raised after the scripted parts have been yielded.
    """

    host = "localhost:11434"

    def __init__(self, parts=(), error=None, gate=None):
        self.parts = list(parts)
        self.error = error
        self.gate = gate
        self.requests = []

    async def stream_chat(self, messages):
        self.requests.append(list(messages))
        if self.gate is not None:
            await self.gate.wait()
        for part in self.parts:
            yield part
        if self.error is not None:
            raise self.error


@pytest.fixture
def scripted_transport():
    return ScriptedTransport

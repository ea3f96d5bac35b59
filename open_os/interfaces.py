# open_os/interfaces.py
#
# Contracts for the collaborators the session engine talks to. Concrete
# implementations live in pty_shell.py, terminal_host.py and inference_gateway.py;
# tests substitute MagicMock objects with the same shape.

from typing import AsyncIterator, Dict, List, Optional, Protocol, Tuple


class ShellChannel(Protocol):
    """The pseudo-terminal side of a session. Only its owning controller writes to it."""

    def write(self, text: str) -> None: ...

    def resize(self, cols: int, rows: int) -> None: ...

    def cwd(self) -> Optional[str]: ...


class TerminalDisplay(Protocol):
    """The rendering surface: shows bytes and remembers what it showed."""

    def write(self, session_id: str, text: str) -> None: ...

    def capture_recent_output(self, session_id: str, line_count: int) -> str: ...


class ChatTransport(Protocol):
    """Streams a chat completion as (fragment, done) pairs; raises on transport failure."""

    host: str

    def stream_chat(self, messages: List[Dict[str, str]]) -> AsyncIterator[Tuple[str, bool]]: ...

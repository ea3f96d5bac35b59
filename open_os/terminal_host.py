# open_os/terminal_host.py

import asyncio
import codecs
import logging
import os
import shutil
import signal
import sys
import termios
import tty
import uuid
from typing import Dict, Optional

from open_os.output_capture import OutputCapture
from open_os.pty_shell import PtyShell
from open_os.session_controller import BRACKETED_PASTE_OFF, BRACKETED_PASTE_ON, PASTE_END, PASTE_START
from open_os.session_registry import SessionRegistry

logger = logging.getLogger(__name__)

CTRL_SPACE = '\x00'

BRAND = '\x1b[38;5;39m'
GRAY = '\x1b[38;5;245m'
RESET = '\x1b[0m'

BANNER = [
    " ░███████  ░████████   ░███████  ░████████           ░███████   ░███████",
    "░██    ░██ ░██    ░██ ░██    ░██ ░██    ░██ ░██████ ░██    ░██ ░██",
    "░██    ░██ ░██    ░██ ░█████████ ░██    ░██         ░██    ░██  ░███████",
    "░██    ░██ ░███   ░██ ░██        ░██    ░██         ░██    ░██        ░██",
    " ░███████  ░██░█████   ░███████  ░██    ░██          ░███████   ░███████",
    "           ░██",
    "           ░██",
]


def welcome_text(version: str, model: Optional[str]) -> str:
    lines = [""] + [f"{BRAND}{line}{RESET}" for line in BANNER] + [""]
    lines.append(f" {GRAY}v{version} - Simple terminal. Smart assistance.{RESET}")
    lines.append(f" {GRAY}Ctrl+Space - open-os assistant{' · ' + model if model else ''}{RESET}")
    lines.append("")
    return "\r\n".join(lines) + "\r\n"


class TerminalHost:
    """
    Runs one shell session on the controlling terminal.

    Implements the display side of the session engine (writes to stdout and keeps
    an OutputCapture per session) and feeds raw stdin to the SessionRegistry:
    Ctrl+Space toggles inline mode, bracketed pastes become paste events and
    everything else is a keystroke.
    """

    def __init__(self, gateway, context_lines: int = 30, settle_delay: float = 0.5,
                 history_factory=None, output=None):
        self.output = output or sys.stdout
        registry_kwargs = {"context_lines": context_lines, "settle_delay": settle_delay}
        if history_factory is not None:
            registry_kwargs["history_factory"] = history_factory
        self.registry = SessionRegistry(self, gateway, **registry_kwargs)
        self.gateway = gateway
        self.session_id: Optional[str] = None
        self.shell: Optional[PtyShell] = None
        self._captures: Dict[str, OutputCapture] = {}
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._in_paste = False
        self._paste_buffer = ""

    # --- TerminalDisplay ---

    def write(self, session_id: str, text: str):
        capture = self._captures.setdefault(session_id, OutputCapture())
        capture.feed(text)
        if session_id == self.session_id:
            # Pastes must stay bracketed on the real terminal to be told apart from typing
            self.output.write(text.replace(BRACKETED_PASTE_OFF, ""))
            self.output.flush()

    def capture_recent_output(self, session_id: str, line_count: int) -> str:
        capture = self._captures.get(session_id)
        return capture.recent(line_count) if capture else ""

    # --- Input routing ---

    def dispatch_input(self, text: str):
        session_id = self.session_id
        while text:
            if self._in_paste:
                end = text.find(PASTE_END)
                if end == -1:
                    self._paste_buffer += text
                    return
                self._paste_buffer += text[:end]
                text = text[end + len(PASTE_END):]
                self._in_paste = False
                pasted, self._paste_buffer = self._paste_buffer, ""
                self.registry.on_paste_text(session_id, pasted)
                continue

            start = text.find(PASTE_START)
            if start == -1:
                head, text = text, ""
            else:
                head, text = text[:start], text[start + len(PASTE_START):]
                self._in_paste = True
            self._dispatch_keys(head)

    def _dispatch_keys(self, text: str):
        parts = text.split(CTRL_SPACE)
        for index, part in enumerate(parts):
            if part:
                self.registry.on_raw_keystroke(self.session_id, part)
            if index < len(parts) - 1:
                self.registry.on_trigger_inline(self.session_id)

    def _on_stdin_readable(self):
        try:
            data = os.read(sys.stdin.fileno(), 1024)
        except OSError as e:
            logger.error(f"Reading stdin failed: {e}", exc_info=True)
            return
        text = self._decoder.decode(data)
        if text:
            self.dispatch_input(text)

    def _on_resize(self):
        size = shutil.get_terminal_size()
        if self.shell is not None:
            self.shell.resize(size.columns, size.lines)

    # --- Run loop ---

    async def run(self, version: str = "0.0.0", model: Optional[str] = None, show_welcome: bool = True) -> Optional[int]:
        """Runs the session until its shell exits. Returns the shell's exit code."""
        loop = asyncio.get_running_loop()
        exited = loop.create_future()
        self.session_id = uuid.uuid4().hex[:12]
        session_id = self.session_id

        def on_exit(code):
            self.registry.on_shell_exit(session_id, code)
            if not exited.done():
                exited.set_result(code)

        size = shutil.get_terminal_size()
        self.shell = PtyShell(
            on_output=lambda text: self.registry.on_shell_output(session_id, text),
            on_exit=on_exit,
            cols=size.columns, rows=size.lines,
        )

        stdin_fd = sys.stdin.fileno()
        original_termios = termios.tcgetattr(stdin_fd)
        try:
            tty.setraw(stdin_fd)
            self.output.write(BRACKETED_PASTE_ON)
            if show_welcome:
                self.output.write(welcome_text(version, model))
            self.output.flush()
            self.shell.start()
            self.registry.create_session(self.shell, session_id=session_id)
            loop.add_reader(stdin_fd, self._on_stdin_readable)
            loop.add_signal_handler(signal.SIGWINCH, self._on_resize)
            return await exited
        finally:
            loop.remove_reader(stdin_fd)
            loop.remove_signal_handler(signal.SIGWINCH)
            if session_id in self.registry:
                self.shell.close()
            await self.gateway.shutdown()
            self.output.write(BRACKETED_PASTE_OFF)
            self.output.flush()
            termios.tcsetattr(stdin_fd, termios.TCSADRAIN, original_termios)
            logger.info("Restored original terminal settings.")

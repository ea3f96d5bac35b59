# --- API DOCUMENTATION for open_os/session_controller.py ---
#
# **Purpose:** The per-session inline AI state machine. Decides whether a
# keystroke goes to the shell or to the inline prompt, drives the inference
# gateway, and walks the user through approving suggested commands.
#
# **Public Classes:**
#
# class SessionController:
#     def __init__(self, session_id, shell, display, gateway, history=None,
#                  context_lines=30, settle_delay=0.5, completer=complete_path):
#         """
#         Args:
#             session_id (str): Identifier used for display writes and gateway queries.
#             shell (ShellChannel): The session's pseudo-terminal. Written only from here.
#             display (TerminalDisplay): Where inline prompts, echoes and replies are drawn.
#             gateway (InferenceGateway): Issues the model requests.
#             history (InputHistory): Submitted prompts; a fresh in-memory one by default.
#             context_lines (int): Rendered lines captured as prompt context.
#             settle_delay (float): Seconds to wait after a reviewed command runs.
#             completer (callable): (partial, cwd) -> list of matching names.
#         """
#
#     def on_trigger_inline(self):          # Ctrl+Space: enter (or leave) inline mode
#     def on_raw_keystroke(self, data: str): # every key the user presses
#     def on_paste_text(self, text: str):
#     def on_shell_output(self, text: str):
#     def on_chunk(self, request_id: int, text: str):
#     def on_complete(self, request_id: int):
#     def on_failure(self, request_id: int, message: str):
#     def close(self):
#
# **Modes:** IDLE -> INPUT -> STREAMING -> APPROVAL -> IDLE. STREAMING and
# APPROVAL can also drop straight back to IDLE on cancel.
#
# --- END API DOCUMENTATION ---

import asyncio
import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable, List, Optional

from open_os.approval_workflow import ApprovalPhase, ApprovalWorkflow
from open_os.input_history import InputHistory
from open_os.interfaces import ShellChannel, TerminalDisplay
from open_os.path_completer import complete_path, completion_suffix, trailing_token
from open_os.response_parser import parse_response

logger = logging.getLogger(__name__)

# --- ANSI styles for inline mode ---
STYLE = {
    'reset': '\x1b[0m',
    'prompt': '\x1b[96m',         # bright cyan, prompt marker
    'input': '\x1b[38;5;117m',    # sky blue, user typing
    'dim': '\x1b[2;3m',           # dim italic, thinking indicator
    'response': '\x1b[36m',       # cyan, response text
    'approval': '\x1b[93m',       # bright yellow, action options
    'error': '\x1b[31m',          # red
    'white': '\x1b[1;97m',        # bold bright white, commands
    'gray': '\x1b[38;5;245m',
}

INLINE_PROMPT = " open-os > "

# --- Keys ---
KEY_ENTER = '\r'
KEY_TAB = '\t'
KEY_ESCAPE = '\x1b'
KEY_CTRL_C = '\x03'
KEYS_BACKSPACE = ('\x7f', '\b')
KEYS_HISTORY_PREVIOUS = ('\x1b[A', '\x1bOA')
KEYS_HISTORY_NEXT = ('\x1b[B', '\x1bOB')
KEYS_CANCEL = (KEY_ESCAPE, KEY_CTRL_C)

# --- Bracketed paste ---
BRACKETED_PASTE_ON = '\x1b[?2004h'
BRACKETED_PASTE_OFF = '\x1b[?2004l'
PASTE_START = '\x1b[200~'
PASTE_END = '\x1b[201~'

# CSI and SS3 sequences, a lone Esc, or any single character
_KEY_PATTERN = re.compile(r'\x1b\[[0-?]*[ -/]*[@-~]|\x1bO.|\x1b|.', re.DOTALL)


def split_keys(data: str) -> List[str]:
    """Splits one terminal read into individual keys."""
    return _KEY_PATTERN.findall(data)


class InlineMode(Enum):
    IDLE = auto()       # keystrokes go straight to the shell
    INPUT = auto()      # composing a prompt
    STREAMING = auto()  # waiting on the model
    APPROVAL = auto()   # reviewing suggested commands


@dataclass
class SessionState:
    """Everything mutable about one session. Owned by a single SessionController."""
    session_id: str
    history: InputHistory = field(default_factory=InputHistory)
    mode: InlineMode = InlineMode.IDLE
    input_buffer: str = ""
    response_buffer: str = ""
    workflow: Optional[ApprovalWorkflow] = None
    history_cursor: int = -1
    history_stash: str = ""
    pending_request: Optional[int] = None
    completion_busy: bool = False
    shell_bracketed_paste: bool = False
    settle_handle: Optional[asyncio.TimerHandle] = None

    @property
    def commands(self) -> List[str]:
        return self.workflow.commands if self.workflow else []

    def reset_transient(self):
        self.input_buffer = ""
        self.response_buffer = ""
        self.workflow = None
        self.history_cursor = -1
        self.history_stash = ""
        self.pending_request = None
        if self.settle_handle is not None:
            self.settle_handle.cancel()
            self.settle_handle = None


class SessionController:
    """The inline AI state machine for one shell session."""

    def __init__(self, session_id: str, shell: ShellChannel, display: TerminalDisplay, gateway, history: Optional[InputHistory] = None,
                 context_lines: int = 30, settle_delay: float = 0.5,
                 completer: Callable[[str, str], List[str]] = complete_path):
        self.state = SessionState(session_id=session_id, history=history if history is not None else InputHistory())
        self.shell = shell
        self.display = display
        self.gateway = gateway
        self.context_lines = context_lines
        self.settle_delay = settle_delay
        self.completer = completer
        self.closed = False
        self._tasks = set()
        logger.info(f"SessionController created for session {session_id}.")

    @property
    def session_id(self) -> str:
        return self.state.session_id

    @property
    def mode(self) -> InlineMode:
        return self.state.mode

    # --- Output helpers ---

    def _show(self, text: str):
        self.display.write(self.session_id, text)

    def _write_shell(self, text: str):
        try:
            self.shell.write(text)
        except OSError as e:
            logger.error(f"Session {self.session_id}: shell write failed: {e}", exc_info=True)

    def _set_mode(self, new_mode: InlineMode):
        old_mode = self.state.mode
        if old_mode != new_mode:
            self.state.mode = new_mode
            logger.info(f"Session {self.session_id}: {old_mode.name} -> {new_mode.name}")

    # --- Entering and leaving inline mode ---

    def enter_inline_mode(self):
        if self.state.mode is not InlineMode.IDLE:
            return
        self.state.reset_transient()
        self._set_mode(InlineMode.INPUT)
        self._show(f"\r\n{STYLE['prompt']}{INLINE_PROMPT}{STYLE['input']}")

    def exit_inline_mode(self):
        """Back to IDLE: end-of-block marker plus a blank line so the shell redraws its prompt."""
        self._show(f"{STYLE['reset']}\r\n")
        self._reset_to_idle()
        self._write_shell('\r')

    def _reset_to_idle(self):
        self.state.reset_transient()
        self._set_mode(InlineMode.IDLE)

    # --- Produced surface ---

    def on_trigger_inline(self):
        if self.closed:
            return
        mode = self.state.mode
        if mode is InlineMode.IDLE:
            self.enter_inline_mode()
        elif mode is InlineMode.INPUT:
            self.exit_inline_mode()
        elif mode is InlineMode.STREAMING:
            self._cancel_streaming()
        else:
            self._handle_approval_key(KEY_ESCAPE)

    def on_raw_keystroke(self, data: str):
        if self.closed or not data:
            return
        mode = self.state.mode
        if mode is InlineMode.IDLE:
            self._write_shell(data)
        elif mode is InlineMode.INPUT:
            self._handle_typing(data)
        elif mode is InlineMode.STREAMING:
            if data in KEYS_CANCEL:
                self._cancel_streaming()
        elif mode is InlineMode.APPROVAL:
            self._handle_approval_key(data)

    def on_paste_text(self, text: str):
        if self.closed or not text:
            return
        if self.state.mode is InlineMode.INPUT:
            flattened = text.replace('\r\n', ' ').replace('\r', ' ').replace('\n', ' ')
            self.state.input_buffer += flattened
            self._show(STYLE['input'] + flattened)
        elif self.state.mode is InlineMode.IDLE:
            if self.state.shell_bracketed_paste:
                # The shell asked for bracketed paste, so it gets the markers back
                text = f"{PASTE_START}{text}{PASTE_END}"
            self._write_shell(text)
        else:
            logger.debug(f"Session {self.session_id}: paste ignored in {self.state.mode.name}.")

    def on_shell_output(self, text: str):
        if self.closed:
            return
        enabled_at, disabled_at = text.rfind(BRACKETED_PASTE_ON), text.rfind(BRACKETED_PASTE_OFF)
        if enabled_at != disabled_at:
            self.state.shell_bracketed_paste = enabled_at > disabled_at
        self._show(text)

    # --- INPUT mode ---

    def _handle_typing(self, data: str):
        # One read can carry several keys (a held arrow repeats its sequence); stop as soon as one leaves INPUT.
        for key in split_keys(data):
            if self.state.mode is not InlineMode.INPUT:
                break
            if key in KEYS_HISTORY_PREVIOUS:
                self._history_previous()
            elif key in KEYS_HISTORY_NEXT:
                self._history_next()
            elif key.startswith(KEY_ESCAPE) and len(key) > 1:
                logger.debug(f"Session {self.session_id}: ignoring escape sequence {key!r} in INPUT.")
            else:
                self._handle_typing_char(key)

    def _handle_typing_char(self, char: str):
        if char == KEY_ENTER:
            self._show(STYLE['reset'])
            self.submit_inline_query()
        elif char in KEYS_BACKSPACE:
            if self.state.input_buffer:
                self.state.input_buffer = self.state.input_buffer[:-1]
                self._show('\b \b')
        elif char in KEYS_CANCEL:
            self.exit_inline_mode()
        elif char == KEY_TAB:
            self._request_completion()
        elif ord(char) >= 32:
            self.state.input_buffer += char
            self._show(char)

    def _replace_input(self, text: str):
        erase_count = len(self.state.input_buffer)
        if erase_count:
            self._show('\b' * erase_count + ' ' * erase_count + '\b' * erase_count)
        self.state.input_buffer = text
        self._show(STYLE['input'] + text)

    def _history_previous(self):
        history = self.state.history
        if not len(history):
            return
        if self.state.history_cursor == -1:
            self.state.history_stash = self.state.input_buffer
            self.state.history_cursor = len(history) - 1
        elif self.state.history_cursor > 0:
            self.state.history_cursor -= 1
        else:
            return
        self._replace_input(history[self.state.history_cursor])

    def _history_next(self):
        history = self.state.history
        if self.state.history_cursor == -1:
            return
        if self.state.history_cursor < len(history) - 1:
            self.state.history_cursor += 1
            self._replace_input(history[self.state.history_cursor])
        else:
            stash = self.state.history_stash
            self.state.history_cursor = -1
            self.state.history_stash = ""
            self._replace_input(stash)

    def _request_completion(self):
        if self.state.completion_busy:
            logger.debug(f"Session {self.session_id}: completion already in progress, Tab ignored.")
            return
        partial = trailing_token(self.state.input_buffer)
        cwd = self.shell.cwd() or os.path.expanduser("~")
        self.state.completion_busy = True
        task = asyncio.get_running_loop().create_task(self._complete_async(partial, cwd, self.state.input_buffer))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _complete_async(self, partial: str, cwd: str, buffer_at_request: str):
        try:
            matches = await asyncio.to_thread(self.completer, partial, cwd)
        except Exception as e:
            logger.error(f"Session {self.session_id}: path completion failed: {e}", exc_info=True)
            matches = []
        finally:
            self.state.completion_busy = False

        if self.closed or self.state.mode is not InlineMode.INPUT or self.state.input_buffer != buffer_at_request:
            return
        suffix = completion_suffix(partial, matches)
        logger.debug(f"Session {self.session_id}: completion of {partial!r} -> {len(matches)} match(es), appending {suffix!r}")
        if suffix:
            self.state.input_buffer += suffix
            self._show(STYLE['input'] + suffix)

    def submit_inline_query(self):
        prompt = self.state.input_buffer.strip()
        if not prompt:
            self.exit_inline_mode()
            return

        self.state.input_buffer = ""
        self.state.history.append(prompt)
        self.state.history_cursor = -1
        self.state.history_stash = ""
        self.state.response_buffer = ""
        self._set_mode(InlineMode.STREAMING)
        self._show(f"\r\n{STYLE['dim']}  ...{STYLE['reset']}")

        context = self.display.capture_recent_output(self.session_id, self.context_lines)
        self.state.pending_request = self.gateway.query(self.session_id, prompt, context)
        logger.info(f"Session {self.session_id}: submitted prompt as request #{self.state.pending_request}.")

    # --- STREAMING mode ---

    def _cancel_streaming(self):
        """Leaves STREAMING locally. The request still finishes in the gateway; its callbacks are dropped here."""
        logger.info(f"Session {self.session_id}: request #{self.state.pending_request} abandoned by user.")
        self._show(f"{STYLE['reset']}\r\n{STYLE['error']}[cancelled]{STYLE['reset']}")
        self.exit_inline_mode()

    def _is_current(self, request_id: int) -> bool:
        if self.closed or self.state.mode is not InlineMode.STREAMING or request_id != self.state.pending_request:
            logger.debug(f"Session {self.session_id}: dropping callback for stale request #{request_id}.")
            return False
        return True

    def on_chunk(self, request_id: int, text: str):
        if self._is_current(request_id):
            self.state.response_buffer += text

    def on_complete(self, request_id: int):
        if not self._is_current(request_id):
            return
        self.state.pending_request = None
        parsed = parse_response(self.state.response_buffer)
        self.state.response_buffer = ""

        if parsed.explanation.strip():
            text = parsed.explanation.strip().replace('\r\n', '\n').replace('\n', '\r\n')
            self._show(f"\r\n{STYLE['response']}{text}{STYLE['reset']}")

        if not parsed.commands:
            self._show('\r\n')
            self.exit_inline_mode()
            return

        self.state.workflow = ApprovalWorkflow(parsed.commands)
        self._set_mode(InlineMode.APPROVAL)
        self._show_approval_prompt()

    def on_failure(self, request_id: int, message: str):
        if not self._is_current(request_id):
            return
        logger.warning(f"Session {self.session_id}: request #{request_id} failed: {message}")
        self._show(f"\r\n{STYLE['error']}  [Error] {message}{STYLE['reset']}\r\n")
        self.exit_inline_mode()

    # --- APPROVAL mode ---

    def _show_approval_prompt(self):
        workflow = self.state.workflow
        command = workflow.current_command.replace('\n', '\r\n    ')
        if workflow.phase is ApprovalPhase.CONFIRM:
            self._show(f"\r\n\r\n{STYLE['white']}  $ {command}{STYLE['reset']}"
                       f"\r\n{STYLE['approval']}  [I]nsert  [A]ccept & Run  [C]ancel{STYLE['reset']}")
        else:
            self._show(f"\r\n\r\n{STYLE['gray']}  [{workflow.index + 1}/{workflow.total}]{STYLE['reset']} "
                       f"{STYLE['white']}$ {command}{STYLE['reset']}"
                       f"\r\n{STYLE['approval']}  [R]un  [S]kip  [C]ancel{STYLE['reset']}")

    def _handle_approval_key(self, key: str):
        workflow = self.state.workflow
        if workflow is None:
            return
        decision = workflow.handle_key(key)
        if decision.ignored:
            return

        if decision.finished:
            self._show(f"{STYLE['reset']}\r\n")
            self._reset_to_idle()
            self._write_shell('\r')
            for text in decision.shell_writes:
                self._write_shell(text)
            return

        for text in decision.shell_writes:
            self._write_shell(text)
        if decision.settle:
            self.state.settle_handle = asyncio.get_running_loop().call_later(
                self.settle_delay, self._on_settle_elapsed, workflow)
        else:
            self._show_approval_prompt()

    def _on_settle_elapsed(self, workflow: ApprovalWorkflow):
        if self.closed or self.state.workflow is not workflow:
            return
        self.state.settle_handle = None
        workflow.settle_complete()
        self._show_approval_prompt()

    # --- Lifecycle ---

    def close(self):
        if self.closed:
            return
        self.closed = True
        if self.state.pending_request is not None:
            self.gateway.cancel(self.state.pending_request)
        self.state.reset_transient()
        self.state.mode = InlineMode.IDLE
        for task in list(self._tasks):
            task.cancel()
        logger.info(f"SessionController for session {self.session_id} closed.")

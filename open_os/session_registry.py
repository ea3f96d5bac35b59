# open_os/session_registry.py

import logging
import uuid
from typing import Callable, Dict, Iterator, Optional

from open_os.input_history import InputHistory
from open_os.session_controller import SessionController

logger = logging.getLogger(__name__)


class SessionRegistry:
    """
    Owns every live SessionController, keyed by session id.

    External events (inference callbacks, keystrokes, shell output and exit) carry
    a session id; the registry looks the controller up and forwards. Events for
    ids that are unknown or already destroyed are dropped.
    """

    def __init__(self, display, gateway, context_lines: int = 30, settle_delay: float = 0.5,
                 history_factory: Callable[[], InputHistory] = InputHistory):
        self.display = display
        self.gateway = gateway
        self.context_lines = context_lines
        self.settle_delay = settle_delay
        self.history_factory = history_factory
        self._controllers: Dict[str, SessionController] = {}

        gateway.on_chunk = self.on_chunk
        gateway.on_complete = self.on_complete
        gateway.on_failure = self.on_failure

    def __len__(self) -> int:
        return len(self._controllers)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._controllers

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._controllers))

    def get(self, session_id: str) -> Optional[SessionController]:
        return self._controllers.get(session_id)

    def create_session(self, shell, session_id: Optional[str] = None) -> str:
        if session_id is None:
            session_id = uuid.uuid4().hex[:12]
            while session_id in self._controllers:
                session_id = uuid.uuid4().hex[:12]
        elif session_id in self._controllers:
            raise ValueError(f"Session '{session_id}' already exists.")

        self._controllers[session_id] = SessionController(
            session_id, shell, self.display, self.gateway,
            history=self.history_factory(),
            context_lines=self.context_lines,
            settle_delay=self.settle_delay,
        )
        logger.info(f"Session {session_id} created ({len(self._controllers)} live).")
        return session_id

    def destroy_session(self, session_id: str) -> bool:
        controller = self._controllers.pop(session_id, None)
        if controller is None:
            return False
        controller.close()
        self.gateway.forget_session(session_id)
        logger.info(f"Session {session_id} destroyed ({len(self._controllers)} live).")
        return True

    def _lookup(self, session_id: str, event_name: str) -> Optional[SessionController]:
        controller = self._controllers.get(session_id)
        if controller is None:
            logger.debug(f"Dropping {event_name} for unknown session {session_id}.")
        return controller

    # --- Inference gateway callbacks ---

    def on_chunk(self, session_id: str, request_id: int, text: str):
        controller = self._lookup(session_id, "chunk")
        if controller:
            controller.on_chunk(request_id, text)

    def on_complete(self, session_id: str, request_id: int):
        controller = self._lookup(session_id, "completion")
        if controller:
            controller.on_complete(request_id)

    def on_failure(self, session_id: str, request_id: int, message: str):
        controller = self._lookup(session_id, "failure")
        if controller:
            controller.on_failure(request_id, message)

    # --- Terminal and shell events ---

    def on_trigger_inline(self, session_id: str):
        controller = self._lookup(session_id, "inline trigger")
        if controller:
            controller.on_trigger_inline()

    def on_raw_keystroke(self, session_id: str, data: str):
        controller = self._lookup(session_id, "keystroke")
        if controller:
            controller.on_raw_keystroke(data)

    def on_paste_text(self, session_id: str, text: str):
        controller = self._lookup(session_id, "paste")
        if controller:
            controller.on_paste_text(text)

    def on_shell_output(self, session_id: str, text: str):
        controller = self._lookup(session_id, "shell output")
        if controller:
            controller.on_shell_output(text)

    def on_shell_exit(self, session_id: str, code: Optional[int]):
        controller = self._lookup(session_id, "shell exit")
        if controller is None:
            return
        logger.info(f"Session {session_id}: shell exited with code {code}.")
        self.display.write(session_id, "\r\n[Process exited]\r\n")
        self.destroy_session(session_id)

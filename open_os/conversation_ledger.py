# open_os/conversation_ledger.py

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Tuple

logger = logging.getLogger(__name__)

DEFAULT_MAX_MESSAGES = 20


class Role(Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ConversationMessage:
    role: Role
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


class ConversationLedger:
    """
    Bounded multi-turn history for one session.

    The system instruction is not stored here; the gateway prepends it to every
    request, so it never counts against `max_messages`.
    """

    def __init__(self, max_messages: int = DEFAULT_MAX_MESSAGES):
        if max_messages < 1:
            raise ValueError(f"max_messages must be at least 1, got {max_messages}")
        self.max_messages = max_messages
        self._messages: List[ConversationMessage] = []

    def __len__(self) -> int:
        return len(self._messages)

    def append_user(self, text: str) -> ConversationMessage:
        message = ConversationMessage(Role.USER, text)
        self._messages.append(message)
        return message

    def append_assistant(self, text: str):
        if not text:
            return None
        message = ConversationMessage(Role.ASSISTANT, text)
        self._messages.append(message)
        return message

    def trim(self):
        """Drops the oldest messages until the ledger is within its bound."""
        dropped = 0
        while len(self._messages) > self.max_messages:
            self._messages.pop(0)
            dropped += 1
        if dropped:
            logger.debug(f"Ledger trimmed {dropped} oldest message(s); {len(self._messages)} remain.")

    def rollback_last_user(self):
        """Removes the newest message only if it is a USER message. Safe to repeat."""
        if self._messages and self._messages[-1].role is Role.USER:
            self._messages.pop()
            logger.debug("Rolled back trailing user message.")

    def discard(self, message: ConversationMessage) -> bool:
        """Removes one specific message (by identity). Returns False if it is already gone."""
        for index, existing in enumerate(self._messages):
            if existing is message:
                del self._messages[index]
                return True
        return False

    def last(self):
        return self._messages[-1] if self._messages else None

    def clear(self):
        self._messages.clear()

    def snapshot(self) -> Tuple[ConversationMessage, ...]:
        return tuple(self._messages)

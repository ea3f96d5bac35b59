# open_os/approval_workflow.py

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

ESCAPE = "\x1b"
CARRIAGE_RETURN = "\r"


class ApprovalPhase(Enum):
    CONFIRM = auto()  # exactly one command
    REVIEW = auto()   # several commands, one at a time


class ApprovalAction(Enum):
    INSERT = auto()
    RUN = auto()
    SKIP = auto()
    CANCEL = auto()


CONFIRM_KEYS = {"i": ApprovalAction.INSERT, "a": ApprovalAction.RUN, "r": ApprovalAction.RUN,
                "c": ApprovalAction.CANCEL, ESCAPE: ApprovalAction.CANCEL}
REVIEW_KEYS = {"r": ApprovalAction.RUN, "a": ApprovalAction.RUN, "s": ApprovalAction.SKIP,
               "c": ApprovalAction.CANCEL, ESCAPE: ApprovalAction.CANCEL}


def to_shell_text(command: str, submit: bool) -> str:
    """
    Converts a command into the bytes typed into the shell.

    Every newline becomes a carriage return, so each line of a heredoc is entered
    as if Enter were pressed. `submit` appends the final carriage return.
    """
    text = command.replace("\r\n", CARRIAGE_RETURN).replace("\n", CARRIAGE_RETURN)
    return text + CARRIAGE_RETURN if submit else text


@dataclass
class ApprovalDecision:
    """What the controller must do after a key was applied to the workflow."""
    action: Optional[ApprovalAction] = None
    shell_writes: List[str] = field(default_factory=list)
    finished: bool = False
    settle: bool = False  # schedule settle_complete() after the settle delay

    @property
    def ignored(self) -> bool:
        return self.action is None


class ApprovalWorkflow:
    """
    Steps the user through the suggested commands.

    Holds no timers itself: a RUN in review phase that is not the last command
    returns `settle=True`, and the owner calls `settle_complete()` once the delay
    has elapsed. Keys are rejected while settling.
    """

    def __init__(self, commands: Sequence[str]):
        if not commands:
            raise ValueError("An approval workflow needs at least one command.")
        self.commands: List[str] = list(commands)
        self.phase = ApprovalPhase.CONFIRM if len(self.commands) == 1 else ApprovalPhase.REVIEW
        self.index = 0
        self.settling = False
        self.finished = False

    @property
    def current_command(self) -> str:
        return self.commands[self.index]

    @property
    def total(self) -> int:
        return len(self.commands)

    def action_for_key(self, key: str) -> Optional[ApprovalAction]:
        keymap = CONFIRM_KEYS if self.phase is ApprovalPhase.CONFIRM else REVIEW_KEYS
        return keymap.get(key if key == ESCAPE else key.lower())

    def handle_key(self, key: str) -> ApprovalDecision:
        if self.finished or self.settling:
            logger.debug(f"Approval key {key!r} ignored (finished={self.finished}, settling={self.settling}).")
            return ApprovalDecision()
        action = self.action_for_key(key)
        if action is None:
            return ApprovalDecision()
        return self.apply(action)

    def apply(self, action: ApprovalAction) -> ApprovalDecision:
        if self.phase is ApprovalPhase.CONFIRM:
            return self._apply_confirm(action)
        return self._apply_review(action)

    def _apply_confirm(self, action: ApprovalAction) -> ApprovalDecision:
        if action is ApprovalAction.SKIP:
            return ApprovalDecision()
        self.finished = True
        if action is ApprovalAction.CANCEL:
            logger.info("Single command discarded.")
            return ApprovalDecision(action=action, finished=True)
        submit = action is ApprovalAction.RUN
        logger.info(f"Single command {'executed' if submit else 'inserted'}: {self.current_command!r}")
        return ApprovalDecision(action=action, shell_writes=[to_shell_text(self.current_command, submit)], finished=True)

    def _apply_review(self, action: ApprovalAction) -> ApprovalDecision:
        if action is ApprovalAction.INSERT:
            return ApprovalDecision()
        if action is ApprovalAction.CANCEL:
            self.finished = True
            logger.info(f"Review cancelled at {self.index + 1}/{self.total}; remaining commands discarded.")
            return ApprovalDecision(action=action, finished=True)

        is_last = self.index == self.total - 1
        if action is ApprovalAction.SKIP:
            logger.info(f"Skipped command {self.index + 1}/{self.total}.")
            if is_last:
                self.finished = True
            else:
                self.index += 1
            return ApprovalDecision(action=action, finished=is_last)

        writes = [to_shell_text(self.current_command, submit=True)]
        logger.info(f"Executed command {self.index + 1}/{self.total}: {self.current_command!r}")
        if is_last:
            self.finished = True
            return ApprovalDecision(action=action, shell_writes=writes, finished=True)
        self.settling = True
        return ApprovalDecision(action=action, shell_writes=writes, settle=True)

    def settle_complete(self):
        """Ends the settle delay and moves the review to the next command."""
        if not self.settling:
            return
        self.settling = False
        self.index += 1

# open_os/input_history.py

import logging
from typing import List, Optional

from prompt_toolkit.history import FileHistory

logger = logging.getLogger(__name__)


class InputHistory:
    """
    Prompts submitted in inline mode, oldest first.

    Consecutive duplicates are never stored. With a `file_path` the entries are
    also persisted through prompt_toolkit's FileHistory and preloaded on start.
    """

    def __init__(self, file_path: Optional[str] = None):
        self.entries: List[str] = []
        self._file_history = None
        if file_path:
            self._file_history = FileHistory(file_path)
            # load_history_strings() yields newest first
            loaded = list(self._file_history.load_history_strings())
            loaded.reverse()
            for entry in loaded:
                self._append_in_memory(entry)
            logger.info(f"Loaded {len(self.entries)} inline prompt(s) from {file_path}")

    def __len__(self) -> int:
        return len(self.entries)

    def __getitem__(self, index: int) -> str:
        return self.entries[index]

    def _append_in_memory(self, text: str) -> bool:
        if self.entries and self.entries[-1] == text:
            return False
        self.entries.append(text)
        return True

    def append(self, text: str) -> bool:
        """Adds a prompt unless it repeats the most recent one. Returns True if stored."""
        added = self._append_in_memory(text)
        if added and self._file_history is not None:
            try:
                self._file_history.append_string(text)
            except OSError as e:
                logger.error(f"Could not persist inline history entry: {e}", exc_info=True)
        return added

# open_os/path_completer.py

import os
import logging
from typing import List, Sequence

from prompt_toolkit.completion import CompleteEvent, PathCompleter
from prompt_toolkit.document import Document

logger = logging.getLogger(__name__)

PATH_SEPARATORS = ("/", "\\")


def trailing_token(text: str) -> str:
    """The last whitespace-delimited token ("" when the text ends in whitespace)."""
    if not text or text[-1].isspace():
        return ""
    return text.split()[-1]


def complete_path(partial: str, cwd: str) -> List[str]:
    """
    Lists directory entries matching the partial path, resolved against `cwd`.

    Returns bare entry names (not full paths) with directories suffixed by "/",
    as prompt_toolkit's PathCompleter displays them. `~` is expanded.
    """
    completer = PathCompleter(expanduser=True, get_paths=lambda: [cwd])
    completions = completer.get_completions(Document(partial), CompleteEvent(completion_requested=True))
    matches = sorted(completion.display_text for completion in completions)
    logger.debug(f"Path completion of {partial!r} in {cwd}: {len(matches)} match(es)")
    return matches


def longest_common_prefix(matches: Sequence[str]) -> str:
    return os.path.commonprefix(list(matches)) if matches else ""


def completion_suffix(partial: str, matches: Sequence[str]) -> str:
    """The text to append to `partial` so it reaches the longest common prefix of `matches`."""
    if not matches:
        return ""
    typed = "" if not partial or partial.endswith(PATH_SEPARATORS) else os.path.basename(partial)
    common = longest_common_prefix(matches)
    if not common.startswith(typed):
        return ""
    return common[len(typed):]

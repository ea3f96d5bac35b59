# open_os/response_parser.py

import json
import re
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

logger = logging.getLogger(__name__)

# Field names local models use instead of "text" / "commands"
TEXT_FIELD_NAMES = ("text", "explanation", "message", "response", "answer", "description")
COMMAND_FIELD_NAMES = ("commands", "command", "cmds", "cmd", "steps", "suggestions")

COMMAND_LINE_MARKER = "$ "

_FENCED_BLOCK_PATTERN = re.compile(r'```(?:[^\n`]*\n)?(.*?)```', re.DOTALL)
_JSON_FENCE_PATTERN = re.compile(r'^```(?:json)?\s*\n(.*)\n```$', re.DOTALL | re.IGNORECASE)


@dataclass
class ParsedResponse:
    """Explanation text plus the ordered commands extracted from a model reply."""
    explanation: str
    commands: List[str] = field(default_factory=list)


def _clean_commands(entries: List[Any]) -> List[str]:
    """Keeps string entries that are not blank. Inner whitespace (heredocs) is preserved."""
    return [entry for entry in entries if isinstance(entry, str) and entry.strip()]


def parse_structured(raw: str) -> Optional[ParsedResponse]:
    """Tier 1: the reply is a JSON object with an explanation and a command list."""
    candidate = raw.strip()
    fence_match = _JSON_FENCE_PATTERN.match(candidate)
    if fence_match:
        candidate = fence_match.group(1).strip()
    if not candidate.startswith("{"):
        return None

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None

    text_key = next((name for name in TEXT_FIELD_NAMES if name in data), None)
    list_key = next((name for name in COMMAND_FIELD_NAMES if name in data), None)
    if text_key is None and list_key is None:
        return None

    explanation = data.get(text_key) if text_key else ""
    if not isinstance(explanation, str):
        explanation = "" if explanation is None else str(explanation)

    entries = data.get(list_key) if list_key else []
    if isinstance(entries, str):
        entries = [entries]
    elif not isinstance(entries, list):
        entries = []

    return ParsedResponse(explanation=explanation, commands=_clean_commands(entries))


def parse_fenced_blocks(raw: str) -> Optional[ParsedResponse]:
    """Tier 2: every fenced code block is one command."""
    blocks = [block.strip() for block in _FENCED_BLOCK_PATTERN.findall(raw)]
    commands = [block for block in blocks if block]
    if not commands:
        return None
    return ParsedResponse(explanation=raw, commands=commands)


def parse_marker_lines(raw: str) -> ParsedResponse:
    """Tier 3: lines starting with "$ ". Always yields a result, possibly with no commands."""
    commands = []
    for line in raw.splitlines():
        stripped = line.strip()
        if stripped.startswith(COMMAND_LINE_MARKER):
            command = stripped[len(COMMAND_LINE_MARKER):].strip()
            if command:
                commands.append(command)
    return ParsedResponse(explanation=raw, commands=commands)


_TIERS: List[Callable[[str], Optional[ParsedResponse]]] = [
    parse_structured,
    parse_fenced_blocks,
]


def parse_response(raw: str) -> ParsedResponse:
    """
    Turns accumulated model output into an explanation and ordered commands.

    The tiers are tried in order and the first one that recognises the text wins.
    This never raises: worst case is no commands and the raw text as explanation.
    """
    raw = raw or ""
    for tier in _TIERS:
        result = tier(raw)
        if result is not None:
            logger.debug(f"Response parsed by {tier.__name__}: {len(result.commands)} command(s)")
            return result

    result = parse_marker_lines(raw)
    logger.debug(f"Response parsed by parse_marker_lines: {len(result.commands)} command(s)")
    return result

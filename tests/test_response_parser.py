# tests/test_response_parser.py

import pytest

from open_os.response_parser import (
    ParsedResponse,
    parse_fenced_blocks,
    parse_marker_lines,
    parse_response,
    parse_structured,
)

# --- Structured (JSON) replies ---

def test_structured_reply_with_canonical_fields():
    result = parse_response('{"text": "Use ls", "commands": ["ls -la"]}')
    assert result == ParsedResponse(explanation="Use ls", commands=["ls -la"])


@pytest.mark.parametrize("text_key,list_key", [
    ("explanation", "command"),
    ("message", "cmds"),
    ("answer", "steps"),
    ("response", "suggestions"),
])
def test_structured_reply_with_field_synonyms(text_key, list_key):
    raw = f'{{"{text_key}": "Two steps", "{list_key}": ["mkdir foo", "cd foo"]}}'
    result = parse_response(raw)
    assert result.explanation == "Two steps"
    assert result.commands == ["mkdir foo", "cd foo"]


def test_structured_reply_single_string_becomes_one_command():
    result = parse_response('{"text": "Disk usage", "command": "df -h"}')
    assert result.commands == ["df -h"]


def test_structured_reply_drops_blank_and_non_string_entries():
    result = parse_response('{"text": "x", "commands": ["ls", "   ", "", 42, null, "pwd"]}')
    assert result.commands == ["ls", "pwd"]


def test_structured_reply_keeps_multiline_commands_intact():
    heredoc = "cat <<'EOF' > notes.txt\nhello\nEOF"
    result = parse_response('{"text": "Write a file", "commands": ["cat <<\'EOF\' > notes.txt\\nhello\\nEOF"]}')
    assert result.commands == [heredoc]


def test_structured_reply_inside_json_fence():
    raw = '```json\n{"text": "Show processes", "commands": ["ps aux"]}\n```'
    assert parse_response(raw).commands == ["ps aux"]


def test_structured_reply_without_commands_is_explanation_only():
    result = parse_response('{"text": "Nothing to run.", "commands": []}')
    assert result.explanation == "Nothing to run."
    assert result.commands == []


def test_json_without_known_fields_is_not_structured():
    assert parse_structured('{"foo": "bar"}') is None


def test_truncated_json_is_not_structured():
    assert parse_structured('{"text": "Use ls", "commands": ["ls') is None


# --- Fenced blocks ---

def test_fenced_blocks_each_become_a_command():
    raw = "First:\n```bash\nmkdir foo\n```\nthen\n```\ncd foo\n```\n"
    result = parse_response(raw)
    assert result.commands == ["mkdir foo", "cd foo"]
    assert result.explanation == raw


def test_empty_fenced_block_is_ignored():
    assert parse_fenced_blocks("```\n\n```") is None


# --- Marker lines ---

def test_marker_lines_are_extracted():
    result = parse_response("Try this:\n$ echo hi\n")
    assert result.commands == ["echo hi"]
    assert result.explanation == "Try this:\n$ echo hi\n"


def test_marker_lines_ignore_bare_markers():
    assert parse_marker_lines("$ \n  $ uname -a\nno marker here").commands == ["uname -a"]


# --- Fallback ---

@pytest.mark.parametrize("raw", ["", None, "Just prose, nothing to run.", "{not json"])
def test_unrecognised_text_yields_no_commands(raw):
    result = parse_response(raw)
    assert result.commands == []
    assert result.explanation == (raw or "")

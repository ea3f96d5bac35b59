# tests/test_config_handler.py

import json
import os
from unittest.mock import mock_open, patch

import pytest

from open_os import config_handler

# --- Test Cases for load_jsonc_file ---

@patch("os.path.exists", return_value=True)
def test_load_jsonc_with_single_line_comments(mock_exists):
    """Tests loading a JSONC file with // style comments."""
    jsonc_content = """
    {
        // Ollama endpoint
        "host": "localhost:11434", // no scheme
        "context_lines": 30
    }
    """
    with patch("builtins.open", mock_open(read_data=jsonc_content)) as mock_file:
        result = config_handler.load_jsonc_file("dummy/path.jsonc")
        mock_file.assert_called_once_with("dummy/path.jsonc", 'r', encoding='utf-8')
    assert result == {"host": "localhost:11434", "context_lines": 30}


@patch("os.path.exists", return_value=True)
def test_load_jsonc_with_multi_line_comments(mock_exists):
    jsonc_content = """
    {
        /* History is kept
           next to the project */
        "history_file": ".open_os_history",
        "show_welcome": true /* banner */
    }
    """
    with patch("builtins.open", mock_open(read_data=jsonc_content)):
        result = config_handler.load_jsonc_file("dummy/path.jsonc")
    assert result == {"history_file": ".open_os_history", "show_welcome": True}


@patch("os.path.exists", return_value=True)
def test_load_jsonc_with_malformed_json(mock_exists):
    with patch("builtins.open", mock_open(read_data='{"model": "llama3",}')):
        assert config_handler.load_jsonc_file("dummy/path.jsonc") is None


def test_load_jsonc_file_not_found(tmp_path):
    assert config_handler.load_jsonc_file(str(tmp_path / "missing.json")) is None


# --- save_json_file ---

def test_save_json_file_creates_parent_directory(tmp_path):
    target = tmp_path / "nested" / "config.json"
    data = {"model": "llama3", "extra": {"a": 1}}

    assert config_handler.save_json_file(str(target), data) is True
    assert json.loads(target.read_text(encoding="utf-8")) == data


@patch("os.makedirs")
def test_save_json_file_io_error(mock_makedirs):
    m = mock_open()
    m.side_effect = IOError("Permission denied")
    with patch("builtins.open", m):
        assert config_handler.save_json_file("dummy/protected.json", {"key": "value"}) is False


def test_save_json_file_type_error(tmp_path):
    # A set is not JSON serializable
    assert config_handler.save_json_file(str(tmp_path / "out.json"), {"bad": {1, 2}}) is False


# --- merge_configs / load_configuration ---

def test_merge_configs_merges_nested_sections():
    base = {"ai": {"model": "", "context_lines": 30}, "ui": {"show_welcome": True}}
    override = {"ai": {"model": "llama3"}}

    merged = config_handler.merge_configs(base, override)

    assert merged == {"ai": {"model": "llama3", "context_lines": 30}, "ui": {"show_welcome": True}}
    assert base["ai"]["model"] == ""


def _write_config(root, name, content):
    config_dir = root / "config"
    config_dir.mkdir(exist_ok=True)
    (config_dir / name).write_text(content, encoding="utf-8")


def test_load_configuration_overlays_user_config(tmp_path):
    _write_config(tmp_path, "default_config.json", '{"ai": {"model": "", "context_lines": 30} // defaults\n}')
    _write_config(tmp_path, "user_config.json", '{"ai": {"context_lines": 10}}')

    config = config_handler.load_configuration(str(tmp_path))

    assert config == {"ai": {"model": "", "context_lines": 10}}


def test_load_configuration_without_user_config(tmp_path):
    _write_config(tmp_path, "default_config.json", '{"ui": {"show_welcome": false}}')

    assert config_handler.load_configuration(str(tmp_path)) == {"ui": {"show_welcome": False}}


def test_load_configuration_requires_default_config(tmp_path):
    with pytest.raises(FileNotFoundError):
        config_handler.load_configuration(str(tmp_path))


def test_shipped_default_config_parses():
    project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
    config = config_handler.load_configuration(project_root)

    assert config_handler.get_nested(config, "ollama_service.host") == "localhost:11434"
    assert config_handler.get_nested(config, "ai.max_history_messages") == 20
    assert config_handler.get_nested(config, "ai.settle_delay_seconds") == 0.5


# --- get_nested ---

def test_get_nested_returns_default_for_missing_paths():
    config = {"ai": {"model": "llama3"}}

    assert config_handler.get_nested(config, "ai.model") == "llama3"
    assert config_handler.get_nested(config, "ai.missing", 7) == 7
    assert config_handler.get_nested(config, "ai.model.deeper", "x") == "x"


# --- User settings and model resolution ---

def test_save_selected_model_preserves_other_settings(tmp_path):
    settings_file = tmp_path / "open-os-cli" / "config.json"
    settings_file.parent.mkdir()
    settings_file.write_text('{"theme": "dark"}', encoding="utf-8")

    settings = config_handler.save_selected_model("qwen2.5-coder", str(settings_file))

    assert settings == {"theme": "dark", "model": "qwen2.5-coder"}
    assert config_handler.load_user_settings(str(settings_file)) == settings


def test_load_user_settings_missing_file_is_empty(tmp_path):
    assert config_handler.load_user_settings(str(tmp_path / "nope.json")) == {}


def test_resolve_model_prefers_user_choice():
    config = {"ai": {"model": "llama3"}}

    assert config_handler.resolve_model(config, {"model": "mistral"}) == "mistral"
    assert config_handler.resolve_model(config, {}) == "llama3"
    assert config_handler.resolve_model({"ai": {"model": ""}}, {}) is None

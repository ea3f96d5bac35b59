# open_os/config_handler.py

import os
import sys
import json
import re
import logging
from typing import Any, Dict, Optional

# --- Module-specific logger ---
logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = "config"
DEFAULT_CONFIG_FILENAME = "default_config.json"
USER_CONFIG_FILENAME = "user_config.json"

# Per-user settings written by the model setup wizard
USER_SETTINGS_DIR = os.path.join(os.path.expanduser("~"), ".config", "open-os-cli")
USER_SETTINGS_FILE = os.path.join(USER_SETTINGS_DIR, "config.json")

_COMMENT_PATTERN = re.compile(r'//.*?$|/\*.*?\*/', re.DOTALL | re.MULTILINE)


def load_jsonc_file(filepath: str) -> Optional[Dict[str, Any]]:
    """
    Loads a JSON file that may contain single-line (//) and multi-line (/* */) comments.

    Args:
        filepath (str): The full path to the .jsonc or .json file.

    Returns:
        Optional[Dict[str, Any]]: A dictionary with the file's contents,
                                  or None if the file is not found or cannot be parsed.
    """
    if not os.path.exists(filepath):
        logger.info(f"Configuration file not found at: {filepath}")
        return None

    try:
        with open(filepath, 'r', encoding='utf-8') as f:
            file_content = f.read()

        # Strips // to end of line and /* ... */ blocks. URLs inside string values
        # must therefore not contain "//"; host values are written without a scheme.
        content_without_comments = re.sub(_COMMENT_PATTERN, '', file_content)

        return json.loads(content_without_comments)

    except json.JSONDecodeError as e:
        logger.error(f"Error decoding JSON from {filepath}: {e}", exc_info=True)
        print(f"❌ Error: Could not parse the configuration file at {filepath}. Please check for syntax errors.", file=sys.stderr)
        return None
    except IOError as e:
        logger.error(f"Error reading file {filepath}: {e}", exc_info=True)
        print(f"❌ Error: Could not read the file at {filepath}.", file=sys.stderr)
        return None


def save_json_file(filepath: str, data: Dict[str, Any]) -> bool:
    """
    Saves a dictionary to a file in standard JSON format.

    Args:
        filepath (str): The full path where the file will be saved.
        data (Dict[str, Any]): The dictionary data to save.

    Returns:
        bool: True if saving was successful, False otherwise.
    """
    try:
        os.makedirs(os.path.dirname(filepath), exist_ok=True)
        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, sort_keys=True)
        logger.info(f"Successfully saved configuration to {filepath}")
        return True
    except IOError as e:
        logger.error(f"Error saving data to {filepath}: {e}", exc_info=True)
        print(f"❌ Error: Could not write to the file at {filepath}.", file=sys.stderr)
        return False
    except TypeError as e:
        logger.error(f"Data for {filepath} is not serializable: {e}", exc_info=True)
        print("❌ Error: The data provided could not be converted to JSON.", file=sys.stderr)
        return False


def merge_configs(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merges `override` into a copy of `base`."""
    merged = base.copy()
    for key, value in override.items():
        if isinstance(value, dict) and key in merged and isinstance(merged[key], dict):
            merged[key] = merge_configs(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_configuration(project_root: str) -> Dict[str, Any]:
    """
    Loads config/default_config.json and overlays config/user_config.json.

    The default file is mandatory; the user file is optional.

    Raises:
        FileNotFoundError: If the default configuration is missing or unparsable.
    """
    default_config_path = os.path.join(project_root, CONFIG_DIR_NAME, DEFAULT_CONFIG_FILENAME)
    user_config_path = os.path.join(project_root, CONFIG_DIR_NAME, USER_CONFIG_FILENAME)

    base_config = load_jsonc_file(default_config_path)
    if base_config is None:
        error_msg = f"CRITICAL ERROR: Default configuration file not found or failed to parse at '{default_config_path}'. Application cannot start."
        logger.critical(error_msg)
        raise FileNotFoundError(error_msg)
    logger.info(f"Successfully loaded base configuration from {default_config_path}")

    user_settings = load_jsonc_file(user_config_path)
    if user_settings:
        logger.info(f"Loaded and merged user configurations from {user_config_path}")
        return merge_configs(base_config, user_settings)

    logger.info(f"{user_config_path} not found or is invalid. No user configuration overrides applied.")
    return base_config


def get_nested(config: Dict[str, Any], key_path: str, default: Any = None) -> Any:
    """Get a configuration value using dot notation (e.g., 'ai.model')."""
    value = config
    for part in key_path.split("."):
        if isinstance(value, dict) and part in value:
            value = value[part]
        else:
            return default
    return value


def load_user_settings(filepath: str = USER_SETTINGS_FILE) -> Dict[str, Any]:
    """Reads the per-user settings file. A missing or corrupt file yields {}."""
    settings = load_jsonc_file(filepath)
    return settings if isinstance(settings, dict) else {}


def save_selected_model(model: str, filepath: str = USER_SETTINGS_FILE) -> Dict[str, Any]:
    """Persists the chosen Ollama model and returns the updated settings."""
    settings = load_user_settings(filepath)
    settings["model"] = model
    save_json_file(filepath, settings)
    return settings


def resolve_model(config: Dict[str, Any], user_settings: Dict[str, Any]) -> Optional[str]:
    """The user's saved choice wins over the project default."""
    return user_settings.get("model") or get_nested(config, "ai.model") or None

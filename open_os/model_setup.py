# open_os/model_setup.py

import logging
import sys
from typing import List, Optional

from prompt_toolkit.shortcuts import radiolist_dialog

from open_os.config_handler import USER_SETTINGS_FILE, save_selected_model
from open_os.inference_gateway import InferenceError, list_models

logger = logging.getLogger(__name__)

SUGGESTED_PULL = "ollama pull llama3"


async def fetch_installed_models(host: str) -> Optional[List[str]]:
    """Installed model names, or None after printing why they could not be listed."""
    try:
        models = await list_models(host)
    except InferenceError as e:
        print(f"❌ {e}", file=sys.stderr)
        return None
    if not models:
        print(f"⚠️ No models installed in Ollama at {host}. Try: {SUGGESTED_PULL}", file=sys.stderr)
        return None
    return models


async def print_models(host: str, current: Optional[str] = None) -> int:
    models = await fetch_installed_models(host)
    if models is None:
        return 1
    for name in models:
        marker = "*" if name == current else " "
        print(f" {marker} {name}")
    return 0


async def select_model(host: str, current: Optional[str] = None,
                       settings_path: str = USER_SETTINGS_FILE) -> Optional[str]:
    """
    Lets the user pick one of the installed models and saves the choice.

    Returns the chosen model name, or None when nothing was saved.
    """
    models = await fetch_installed_models(host)
    if models is None:
        return None

    dialog = radiolist_dialog(
        title="open-os model setup",
        text="Choose the Ollama model used for suggestions:",
        values=[(name, name) for name in models],
        default=current if current in models else models[0],
    )
    choice = await dialog.run_async()
    if not choice:
        logger.info("Model selection cancelled.")
        print("Model selection cancelled.")
        return None

    save_selected_model(choice, settings_path)
    logger.info(f"Selected model '{choice}' saved to {settings_path}")
    print(f"✅ Using model '{choice}'.")
    return choice

# main.py

import argparse
import asyncio
import datetime
import logging
import os
import sys

from open_os.config_handler import get_nested, load_configuration, load_user_settings, resolve_model
from open_os.inference_gateway import DEFAULT_OLLAMA_HOST, InferenceGateway, OllamaChatTransport
from open_os.input_history import InputHistory
from open_os.model_setup import print_models, select_model
from open_os.terminal_host import TerminalHost

__version__ = "0.1.0"

LOG_DIR = "logs"
SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
os.makedirs(os.path.join(SCRIPT_DIR, LOG_DIR), exist_ok=True)
LOG_FILE = os.path.join(SCRIPT_DIR, LOG_DIR, "open_os.log")

logger = logging.getLogger(__name__)


def setup_logging(level_name: str, debug: bool = False):
    level = logging.DEBUG if debug else getattr(logging, str(level_name).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s',
        handlers=[logging.FileHandler(LOG_FILE)]
    )


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="open-os", description="Simple terminal. Smart assistance.")
    parser.add_argument("--model", metavar="NAME", help="use this Ollama model for this run only")
    parser.add_argument("--list-models", action="store_true", help="list installed Ollama models and exit")
    parser.add_argument("--select-model", action="store_true", help="choose and save the default model, then exit")
    parser.add_argument("--debug", action="store_true", help="log at DEBUG level")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def make_history_factory(config: dict):
    history_file = get_nested(config, "paths.history_file", "")
    if not history_file:
        return InputHistory
    history_path = os.path.join(SCRIPT_DIR, os.path.expanduser(history_file))
    return lambda: InputHistory(history_path)


def build_host(config: dict, model) -> TerminalHost:
    host = get_nested(config, "ollama_service.host", DEFAULT_OLLAMA_HOST)
    transport = None
    if model:
        transport = OllamaChatTransport(model, host=host, timeout=get_nested(config, "ai.request_timeout_seconds"))
    else:
        logger.warning("No model configured; inline queries will report an error.")

    gateway = InferenceGateway(transport, max_history_messages=get_nested(config, "ai.max_history_messages", 20))
    return TerminalHost(
        gateway,
        context_lines=get_nested(config, "ai.context_lines", 30),
        settle_delay=get_nested(config, "ai.settle_delay_seconds", 0.5),
        history_factory=make_history_factory(config),
    )


async def main_async_runner(args: argparse.Namespace, config: dict) -> int:
    host = get_nested(config, "ollama_service.host", DEFAULT_OLLAMA_HOST)
    model = args.model or resolve_model(config, load_user_settings())

    if args.list_models:
        return await print_models(host, current=model)
    if args.select_model:
        return 0 if await select_model(host, current=model) else 1

    if not sys.stdin.isatty():
        print("❌ open-os needs an interactive terminal.", file=sys.stderr)
        return 1

    logger.info(f"Starting terminal session (model: {model or 'none'}).")
    code = await build_host(config, model).run(
        version=__version__,
        model=model,
        show_welcome=get_nested(config, "ui.show_welcome", True),
    )
    return code or 0


def run_shell(argv=None) -> int:
    """ Main entry point to run the terminal application. """
    args = parse_args(argv)
    try:
        config = load_configuration(SCRIPT_DIR)
    except FileNotFoundError as e:
        print(f"\nFATAL STARTUP ERROR: {e}", file=sys.stderr)
        print("Please ensure 'config/default_config.json' exists and is a valid JSON file.", file=sys.stderr)
        return 1

    setup_logging(get_nested(config, "logging.level", "INFO"), debug=args.debug)
    logger.info("=" * 80)
    logger.info("  open-os Session Started")
    logger.info(f"  Timestamp: {datetime.datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    logger.info("=" * 80)

    try:
        return asyncio.run(main_async_runner(args, config))
    except (EOFError, KeyboardInterrupt):
        print("\nExiting open-os. 👋")
        logger.info("Exiting due to EOF or KeyboardInterrupt.")
        return 0
    except Exception as e:
        print(f"\nUnexpected critical error: {e}. Check logs at {LOG_FILE}", file=sys.stderr)
        logger.critical("Critical error in main_async_runner", exc_info=True)
        return 1
    finally:
        logger.info("  open-os Session Ended")
        logging.shutdown()


if __name__ == "__main__":
    sys.exit(run_shell())

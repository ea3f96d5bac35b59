# tests/test_main_startup.py

from unittest.mock import AsyncMock

import pytest

import main
from open_os.inference_gateway import OllamaChatTransport
from open_os.input_history import InputHistory


BASE_CONFIG = {
    "ollama_service": {"host": "localhost:11434"},
    "ai": {"model": "", "max_history_messages": 6, "context_lines": 15,
           "settle_delay_seconds": 0.25, "request_timeout_seconds": 30},
    "ui": {"show_welcome": False},
    "paths": {"history_file": ""},
    "logging": {"level": "INFO"},
}


def test_parse_args_flags():
    args = main.parse_args(["--model", "llama3", "--debug"])
    assert args.model == "llama3"
    assert args.debug and not args.list_models and not args.select_model


def test_build_host_without_model_has_no_transport():
    host = main.build_host(BASE_CONFIG, None)

    assert host.gateway.transport is None
    assert host.gateway.max_history_messages == 6
    assert host.registry.context_lines == 15
    assert host.registry.settle_delay == 0.25
    assert host.registry.history_factory is InputHistory


def test_build_host_with_model_uses_ollama(mocker):
    mocker.patch("ollama.AsyncClient")
    host = main.build_host(BASE_CONFIG, "llama3")

    assert isinstance(host.gateway.transport, OllamaChatTransport)
    assert host.gateway.transport.model == "llama3"
    assert host.gateway.transport.timeout == 30


def test_history_factory_uses_project_relative_file(tmp_path, mocker):
    mocker.patch.object(main, "SCRIPT_DIR", str(tmp_path))
    factory = main.make_history_factory({"paths": {"history_file": ".open_os_history"}})

    factory().append("hello")

    assert (tmp_path / ".open_os_history").exists()


@pytest.mark.asyncio
async def test_list_models_flag_does_not_start_terminal(mocker):
    printer = mocker.patch.object(main, "print_models", AsyncMock(return_value=0))
    host_builder = mocker.patch.object(main, "build_host")
    mocker.patch.object(main, "load_user_settings", return_value={"model": "saved"})

    code = await main.main_async_runner(main.parse_args(["--list-models"]), BASE_CONFIG)

    assert code == 0
    printer.assert_awaited_once_with("localhost:11434", current="saved")
    host_builder.assert_not_called()


@pytest.mark.asyncio
async def test_model_flag_overrides_saved_choice(mocker):
    mocker.patch.object(main, "load_user_settings", return_value={"model": "saved"})
    stdin = mocker.patch.object(main.sys, "stdin")
    stdin.isatty.return_value = True
    host = mocker.MagicMock()
    host.run = AsyncMock(return_value=0)
    host_builder = mocker.patch.object(main, "build_host", return_value=host)

    code = await main.main_async_runner(main.parse_args(["--model", "one-off"]), BASE_CONFIG)

    assert code == 0
    host_builder.assert_called_once_with(BASE_CONFIG, "one-off")
    host.run.assert_awaited_once_with(version=main.__version__, model="one-off", show_welcome=False)

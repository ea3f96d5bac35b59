# --- API DOCUMENTATION for open_os/inference_gateway.py ---
#
# **Purpose:** The only place that talks to the language model. Builds a
# streaming chat request from a session's conversation ledger plus the latest
# prompt, forwards text fragments as they arrive and finalizes (or rolls back)
# the ledger when the request ends.
#
# **Public Classes:**
#
# class InferenceGateway:
#     def query(self, session_id: str, prompt: str, context: str) -> int:
#         """
#         Schedules a streaming request and returns its request id immediately.
#
#         Results arrive through the on_chunk / on_complete / on_failure
#         callbacks, always after query() has returned. Exactly one of
#         on_complete or on_failure is delivered per request that is not cancelled.
#         """
#
#     def cancel(self, request_id: int) -> bool:
#         """Abandons a request when its session closes; its user message is rolled back."""
#
# class OllamaChatTransport:
#     async def stream_chat(self, messages: list) -> AsyncIterator[tuple[str, bool]]:
#         """Streams (fragment, done) pairs from Ollama's /api/chat endpoint."""
#
# **Public Functions:**
#
# async def list_models(host: str) -> list[str]:
#     """Names of the locally installed models. Raises InferenceError."""
#
# def build_system_prompt() -> str:
#     """The fixed instruction sent ahead of the ledger on every request."""
#
# --- END API DOCUMENTATION ---

import asyncio
import itertools
import logging
import os
import platform
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

import httpx
import ollama

from open_os.conversation_ledger import ConversationLedger, ConversationMessage, DEFAULT_MAX_MESSAGES
from open_os.interfaces import ChatTransport

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_HOST = "localhost:11434"
NO_MODEL_MESSAGE = "No model selected. Run `python main.py --select-model` to choose one."


class InferenceError(Exception):
    """Raised for model-service failures outside of a streaming request."""
    pass


def _get_distro() -> str:
    """PRETTY_NAME from /etc/os-release, or "" where there is none."""
    try:
        with open("/etc/os-release", "r", encoding="utf-8") as f:
            for line in f:
                if line.startswith("PRETTY_NAME="):
                    return line.split("=", 1)[1].strip().strip('"')
    except OSError:
        pass
    return ""


def build_system_prompt() -> str:
    system = platform.system()
    is_win = system == "Windows"
    is_mac = system == "Darwin"
    user_shell = "powershell" if is_win else os.path.basename(os.environ.get("SHELL", "bash"))

    if is_win:
        platform_name = "Windows"
    elif is_mac:
        platform_name = "macOS"
    else:
        platform_name = _get_distro() or "Linux"
    env_line = ", ".join([platform_name, platform.machine(), f"shell: {user_shell}"])

    platform_hint = ""
    if is_win:
        platform_hint = ("\nUse PowerShell syntax. Do NOT suggest Unix/bash commands (ls -l, grep, cat, chmod, etc.). "
                         "Use PowerShell cmdlets: Get-ChildItem, Select-String, Get-Content, Set-ExecutionPolicy, etc.")
    elif is_mac:
        platform_hint = "\nThis is macOS. Use BSD/macOS command variants. Use brew for package management if relevant."

    return (
        "You are a concise terminal assistant.\n"
        f"Environment: {env_line}.{platform_hint}\n"
        'Always respond with JSON: {"text": "brief explanation", "commands": ["command1", "command2"]}\n'
        "Each command must be a complete, runnable shell command (may contain newlines for heredocs).\n"
        "Use an empty commands array when no commands are needed.\n"
        "Warn before dangerous commands (rm -rf, dd, mkfs...)."
    )


def compose_user_message(prompt: str, context: str) -> str:
    if context:
        return f"Terminal context:\n```\n{context}\n```\n\n{prompt}"
    return prompt


def describe_transport_error(error: BaseException, host: str) -> str:
    """Turns a transport exception into a single line the user can act on."""
    if isinstance(error, (ConnectionError, httpx.ConnectError)) or "ECONNREFUSED" in str(error):
        return f"Cannot connect to Ollama at {host}. Is Ollama running?"
    if isinstance(error, ollama.ResponseError):
        return f"Ollama error ({error.status_code}): {error.error}"
    if isinstance(error, httpx.TimeoutException):
        return f"Request to Ollama at {host} timed out."
    return str(error) or error.__class__.__name__


class OllamaChatTransport:
    """Streams chat completions from a local Ollama server, asking for JSON output."""

    def __init__(self, model: str, host: str = DEFAULT_OLLAMA_HOST, timeout: Optional[float] = None):
        self.model = model
        self.host = host
        self.timeout = timeout
        self._client = ollama.AsyncClient(host=host, timeout=timeout)

    async def stream_chat(self, messages: List[Dict[str, str]]) -> AsyncIterator[Tuple[str, bool]]:
        stream = await self._client.chat(model=self.model, messages=messages, stream=True, format="json")
        async for part in stream:
            message = part["message"] or {}
            yield (message["content"] or "", bool(part["done"]))


async def list_models(host: str = DEFAULT_OLLAMA_HOST) -> List[str]:
    """Lists models installed in Ollama (GET /api/tags)."""
    try:
        response = await ollama.AsyncClient(host=host).list()
    except (ConnectionError, httpx.HTTPError, ollama.ResponseError) as e:
        logger.info(f"Could not list Ollama models at {host}: {e}")
        raise InferenceError(describe_transport_error(e, host)) from e

    names = []
    for entry in response["models"] or []:
        name = entry.get("model") or entry.get("name")
        if name:
            names.append(name)
    logger.info(f"Ollama reports {len(names)} installed model(s).")
    return names


ChunkCallback = Callable[[str, int, str], Any]
CompleteCallback = Callable[[str, int], Any]
FailureCallback = Callable[[str, int, str], Any]


class InferenceGateway:
    """
    Issues one streaming request per query and keeps each session's ledger.

    Ledgers are created lazily per session id and are only ever mutated here.
    Request ids are global and strictly increasing, so a controller can tell a
    late callback from an abandoned request apart from the current one.
    """

    def __init__(self, transport: Optional[ChatTransport] = None, max_history_messages: int = DEFAULT_MAX_MESSAGES,
                 system_prompt_builder: Callable[[], str] = build_system_prompt):
        self.transport = transport
        self.max_history_messages = max_history_messages
        self.system_prompt_builder = system_prompt_builder
        self.on_chunk: Optional[ChunkCallback] = None
        self.on_complete: Optional[CompleteCallback] = None
        self.on_failure: Optional[FailureCallback] = None

        self._ledgers: Dict[str, ConversationLedger] = {}
        self._request_ids = itertools.count(1)
        self._tasks: Dict[int, asyncio.Task] = {}

    @property
    def host(self) -> str:
        return getattr(self.transport, "host", DEFAULT_OLLAMA_HOST)

    def ledger_for(self, session_id: str) -> ConversationLedger:
        ledger = self._ledgers.get(session_id)
        if ledger is None:
            ledger = ConversationLedger(self.max_history_messages)
            self._ledgers[session_id] = ledger
        return ledger

    def forget_session(self, session_id: str):
        if self._ledgers.pop(session_id, None) is not None:
            logger.debug(f"Dropped conversation ledger for session {session_id}.")

    def query(self, session_id: str, prompt: str, context: str) -> int:
        request_id = next(self._request_ids)
        logger.info(f"Session {session_id}: scheduling inference request #{request_id}.")
        task = asyncio.get_running_loop().create_task(self._run(session_id, request_id, prompt, context))
        self._tasks[request_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(request_id, None))
        return request_id

    def cancel(self, request_id: Optional[int]) -> bool:
        """Abandons a request of a closing session. Its user message is rolled back and no callback follows."""
        task = self._tasks.get(request_id)
        if task is None or task.done():
            return False
        logger.info(f"Cancelling inference request #{request_id}.")
        task.cancel()
        return True

    async def drain(self):
        """Waits for every in-flight request. Used at shutdown and in tests."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self):
        """Abandons every in-flight request, rolling back their user messages."""
        for task in list(self._tasks.values()):
            task.cancel()
        await self.drain()

    def _emit(self, callback, *args):
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"Error in inference callback {getattr(callback, '__name__', callback)}: {e}", exc_info=True)

    def _finish(self, session_id: str, request_id: int, ledger: ConversationLedger, accumulated: List[str]):
        ledger.append_assistant("".join(accumulated))
        ledger.trim()
        logger.info(f"Session {session_id}: request #{request_id} complete ({len(ledger)} message(s) in ledger).")
        self._emit(self.on_complete, session_id, request_id)

    def _rollback(self, ledger: ConversationLedger, user_message: ConversationMessage):
        if ledger.last() is user_message:
            ledger.rollback_last_user()
        else:
            # A newer turn was appended on top of this one
            ledger.discard(user_message)

    async def _run(self, session_id: str, request_id: int, prompt: str, context: str):
        if self.transport is None:
            logger.warning(f"Session {session_id}: request #{request_id} rejected, no model configured.")
            self._emit(self.on_failure, session_id, request_id, NO_MODEL_MESSAGE)
            return

        ledger = self.ledger_for(session_id)
        user_message = ledger.append_user(compose_user_message(prompt, context))
        ledger.trim()

        messages = [{"role": "system", "content": self.system_prompt_builder()}]
        messages.extend(message.to_dict() for message in ledger.snapshot())

        accumulated: List[str] = []
        completed = False
        try:
            async for fragment, done in self.transport.stream_chat(messages):
                if fragment:
                    accumulated.append(fragment)
                    self._emit(self.on_chunk, session_id, request_id, fragment)
                if done:
                    completed = True
                    self._finish(session_id, request_id, ledger, accumulated)
                    break
            if not completed:
                # Stream closed without an explicit done marker
                completed = True
                self._finish(session_id, request_id, ledger, accumulated)
        except asyncio.CancelledError:
            if not completed:
                self._rollback(ledger, user_message)
            raise
        except (ConnectionError, httpx.HTTPError, ollama.ResponseError) as e:
            if completed:
                logger.warning(f"Session {session_id}: transport error after completion of #{request_id} ignored: {e}")
                return
            logger.warning(f"Session {session_id}: request #{request_id} failed: {e}")
            self._rollback(ledger, user_message)
            self._emit(self.on_failure, session_id, request_id, describe_transport_error(e, self.host))
        except Exception as e:
            if completed:
                logger.error(f"Session {session_id}: error after completion of #{request_id}: {e}", exc_info=True)
                return
            logger.error(f"Session {session_id}: unexpected error in request #{request_id}: {e}", exc_info=True)
            self._rollback(ledger, user_message)
            self._emit(self.on_failure, session_id, request_id, describe_transport_error(e, self.host))

# tests/test_pty_shell.py

import asyncio
import os
import sys

import pytest

from open_os.pty_shell import PtyShell, default_shell, process_cwd

pytestmark = pytest.mark.skipif(not sys.platform.startswith("linux"), reason="uses /proc and a real pty")


def test_default_shell_prefers_environment(monkeypatch):
    monkeypatch.setenv("SHELL", "/usr/bin/zsh")
    assert default_shell() == "/usr/bin/zsh"


def test_process_cwd_of_current_process():
    assert process_cwd(os.getpid()) == os.getcwd()


@pytest.mark.asyncio
async def test_shell_runs_commands_and_reports_exit(tmp_path):
    loop = asyncio.get_running_loop()
    exited = loop.create_future()
    output = []

    shell = PtyShell(on_output=output.append, on_exit=exited.set_result,
                     shell_path="/bin/sh", cwd=str(tmp_path), cols=100, rows=30)
    shell.start()

    shell.write("echo pty-$((20 + 22))\r")
    for _ in range(200):
        if "pty-42" in "".join(output):
            break
        await asyncio.sleep(0.05)
    assert shell.cwd() == os.path.realpath(tmp_path)

    shell.write("exit 3\r")
    code = await asyncio.wait_for(exited, timeout=10)

    assert code == 3
    assert "pty-42" in "".join(output)
    shell.write("ignored")  # no longer running


def test_write_before_start_is_ignored():
    shell = PtyShell(on_output=lambda text: None, on_exit=lambda code: None)
    shell.write("ls\r")
    shell.resize(120, 40)
    assert (shell.cols, shell.rows) == (120, 40)
    assert shell.cwd() is None

# open_os/pty_shell.py

import asyncio
import codecs
import fcntl
import logging
import os
import platform
import pty
import shutil
import signal
import struct
import subprocess
import termios
from typing import Callable, Optional

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096


def default_shell() -> str:
    """$SHELL, else bash, else /bin/sh."""
    return os.environ.get("SHELL") or shutil.which("bash") or "/bin/sh"


def process_cwd(pid: int) -> Optional[str]:
    """The live working directory of `pid`, or None if it cannot be determined."""
    system = platform.system()
    try:
        if system == "Linux":
            return os.readlink(f"/proc/{pid}/cwd")
        if system == "Darwin":
            result = subprocess.run(["lsof", "-a", "-p", str(pid), "-d", "cwd", "-Fn"],
                                    capture_output=True, text=True, check=False, timeout=2)
            for line in result.stdout.splitlines():
                if line.startswith("n"):
                    return line[1:]
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"Could not resolve cwd of pid {pid}: {e}")
    return None


class PtyShell:
    """
    A real shell running in a pseudo-terminal.

    Output is delivered through `on_output(text)` from the event loop's reader
    callback; when the shell goes away `on_exit(code)` is called once.
    """

    def __init__(self, on_output: Callable[[str], None], on_exit: Callable[[Optional[int]], None],
                 shell_path: Optional[str] = None, cwd: Optional[str] = None, cols: int = 80, rows: int = 24):
        self.on_output = on_output
        self.on_exit = on_exit
        self.shell_path = shell_path or default_shell()
        self.start_dir = cwd or os.path.expanduser("~")
        self.cols = cols
        self.rows = rows
        self.pid: Optional[int] = None
        self.master_fd: Optional[int] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._exited = False

    def start(self):
        self._loop = asyncio.get_running_loop()
        pid, master_fd = pty.fork()
        if pid == pty.CHILD:
            try:
                os.chdir(self.start_dir)
            except OSError:
                pass
            env = os.environ.copy()
            env["TERM"] = env.get("TERM", "xterm-256color")
            try:
                os.execve(self.shell_path, [self.shell_path], env)
            except OSError:
                os._exit(127)

        self.pid = pid
        self.master_fd = master_fd
        self.resize(self.cols, self.rows)
        self._loop.add_reader(master_fd, self._on_readable)
        logger.info(f"Spawned shell '{self.shell_path}' (pid {pid}, pty fd {master_fd}) in {self.start_dir}")

    def write(self, text: str):
        if self.master_fd is None or self._exited:
            logger.warning("Write to a shell that is not running ignored.")
            return
        os.write(self.master_fd, text.encode("utf-8"))

    def resize(self, cols: int, rows: int):
        self.cols, self.rows = cols, rows
        if self.master_fd is None or self._exited:
            return
        winsize = struct.pack("HHHH", rows, cols, 0, 0)
        fcntl.ioctl(self.master_fd, termios.TIOCSWINSZ, winsize)
        logger.debug(f"PTY resized to {cols}x{rows}.")

    def cwd(self) -> Optional[str]:
        if self.pid is None:
            return None
        return process_cwd(self.pid)

    def _on_readable(self):
        try:
            data = os.read(self.master_fd, READ_CHUNK_SIZE)
        except OSError:
            # EIO on Linux once the child has closed its side
            data = b""
        if not data:
            self._handle_exit()
            return
        text = self._decoder.decode(data)
        if text:
            self.on_output(text)

    def _reap(self) -> Optional[int]:
        try:
            _, status = os.waitpid(self.pid, 0)
        except ChildProcessError:
            return None
        return os.waitstatus_to_exitcode(status)

    def _handle_exit(self):
        if self._exited:
            return
        self._exited = True
        self._loop.remove_reader(self.master_fd)
        code = self._reap()
        os.close(self.master_fd)
        logger.info(f"Shell pid {self.pid} exited with code {code}.")
        self.on_exit(code)

    def close(self):
        """Hangs up on the shell. The exit is reported through on_exit as usual."""
        if self.pid is None or self._exited:
            return
        try:
            os.kill(self.pid, signal.SIGHUP)
        except ProcessLookupError:
            pass
        self._handle_exit()

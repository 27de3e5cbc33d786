"""Local command execution session."""

from __future__ import annotations

import getpass
import logging
import os
import signal
import socket
import stat
import subprocess
import sys
from typing import Optional, TextIO

from ..base import ExecuteResult, Session
from ..cancel import CancelToken
from ..errors import SherlockError, SpawnError
from ..terminal import IS_WINDOWS, RawTerminal

logger = logging.getLogger(__name__)

DEFAULT_SHELL = "/bin/sh"


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


def _home_dir() -> str:
    home = os.path.expanduser("~")
    if home == "~":
        raise SherlockError("cannot determine home directory")
    return home


class LocalSession(Session):
    """
    Local command execution session.

    Provides the same interface as SSHSession but executes commands on this
    machine. Each command is a fresh shell process, so the session tracks
    the working directory itself: ``cd`` is interpreted rather than spawned
    and every later command starts in the tracked directory.
    """

    POLL_INTERVAL = 0.05

    def __init__(
        self,
        working_dir: Optional[str] = None,
        *,
        shell: str = DEFAULT_SHELL,
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
        stderr: Optional[TextIO] = None,
    ) -> None:
        """
        Initialize local session.

        Args:
            working_dir: Initial tracked directory. Defaults to the process cwd.
            shell: Shell used to run each command line.
            stdin/stdout/stderr: Streams for interactive commands. Default to
                the process's own streams.
        """
        if working_dir is None:
            try:
                working_dir = os.getcwd()
            except OSError:
                working_dir = "/"
        self._cwd = os.path.abspath(working_dir)
        self.shell = shell
        self.hostname = socket.gethostname() or "localhost"
        self.username = _current_user()
        self._stdin = stdin
        self._stdout = stdout
        self._stderr = stderr

    @property
    def cwd(self) -> str:
        """The directory the next command will run in."""
        return self._cwd

    @property
    def is_connected(self) -> bool:
        return True

    def close(self) -> None:
        """No-op for local session (for API compatibility with SSHSession)."""
        pass

    def host_info(self) -> str:
        return f"{self.username}@{self.hostname}:local"

    def execute(self, command: str, token: Optional[CancelToken] = None) -> ExecuteResult:
        token = token or CancelToken()
        command = command.strip()
        parts = command.split(None, 1)
        if parts and parts[0] == "cd":
            return self._change_directory(command, parts[1] if len(parts) > 1 else "")
        if token.cancelled:
            return ExecuteResult(command, exit_code=-1, error=token.error())

        try:
            process = subprocess.Popen(
                command,
                shell=True,
                executable=self.shell,
                cwd=self._cwd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=not IS_WINDOWS,
            )
        except OSError as exc:
            error = SpawnError(f"failed to start {self.shell} in {self._cwd}: {exc}")
            error.__cause__ = exc
            return ExecuteResult(command, exit_code=-1, error=error)

        while True:
            try:
                stdout, stderr = process.communicate(timeout=self.POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                if token.cancelled:
                    self._kill(process)
                    stdout, stderr = process.communicate()
                    return ExecuteResult(
                        command, stdout or b"", stderr or b"", exit_code=-1, error=token.error()
                    )

        return ExecuteResult(command, stdout, stderr, process.returncode)

    def _kill(self, process: subprocess.Popen) -> None:
        """Kill the command together with anything its shell spawned."""
        if IS_WINDOWS:
            process.kill()
            return
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass

    def _change_directory(self, command: str, target: str) -> ExecuteResult:
        result = ExecuteResult(command)
        target = target.strip()
        try:
            if target in ("", "~"):
                path = _home_dir()
            elif target.startswith("~/"):
                path = os.path.join(_home_dir(), target[2:])
            else:
                path = os.path.join(self._cwd, target)
        except SherlockError as exc:
            result.exit_code = -1
            result.error = exc
            return result
        path = os.path.normpath(path)

        try:
            mode = os.stat(path).st_mode
        except FileNotFoundError:
            return self._cd_failed(result, path, "No such file or directory")
        except NotADirectoryError:
            return self._cd_failed(result, path, "Not a directory")
        except OSError as exc:
            result.exit_code = -1
            result.error = SherlockError(f"cd: {path}: {exc.strerror or exc}")
            result.error.__cause__ = exc
            return result

        if not stat.S_ISDIR(mode):
            return self._cd_failed(result, path, "Not a directory")

        self._cwd = path
        logger.debug("Working directory is now %s", path)
        return result

    @staticmethod
    def _cd_failed(result: ExecuteResult, path: str, reason: str) -> ExecuteResult:
        result.stderr = f"cd: {path}: {reason}\n".encode("utf-8")
        result.exit_code = 1
        return result

    def execute_interactive(self, command: str, token: Optional[CancelToken] = None) -> None:
        token = token or CancelToken()
        token.raise_if_cancelled()

        with RawTerminal(self._stdin or sys.stdin):
            try:
                process = subprocess.Popen(
                    command,
                    shell=True,
                    executable=self.shell,
                    cwd=self._cwd,
                    stdin=self._stdin,
                    stdout=self._stdout,
                    stderr=self._stderr,
                )
            except OSError as exc:
                raise SpawnError(f"failed to start {self.shell} in {self._cwd}: {exc}") from exc

            while True:
                try:
                    process.wait(timeout=self.POLL_INTERVAL)
                    break
                except subprocess.TimeoutExpired:
                    if token.cancelled:
                        process.terminate()
                        try:
                            process.wait(timeout=1)
                        except subprocess.TimeoutExpired:
                            process.kill()
                            process.wait()
                        raise token.error()

        if process.returncode != 0:
            logger.debug("Interactive command exited with status %s", process.returncode)

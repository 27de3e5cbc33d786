"""
Execution contract shared by the SSH and local backends.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from .cancel import CancelToken
from .interactive import is_interactive_command


@dataclass
class ExecuteResult:
    """Outcome of one non-interactive command."""

    command: str
    stdout: bytes = b""
    stderr: bytes = b""
    exit_code: int = 0
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.exit_code == 0

    @property
    def stdout_text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace")

    def check(self) -> "ExecuteResult":
        """Raise the engine error if there is one, otherwise return self."""
        if self.error is not None:
            raise self.error
        return self


class Session(ABC):
    """
    Abstract command session.

    Implemented by SSHSession (remote exec channels) and LocalSession
    (local processes). Callers are written once against this interface.
    """

    def connect(self) -> None:
        """Establish the underlying connection, if the backend has one."""
        pass

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Is the session currently usable?"""
        pass

    @abstractmethod
    def execute(self, command: str, token: Optional[CancelToken] = None) -> ExecuteResult:
        """
        Run a command with captured output.

        A nonzero exit status is reported in ``ExecuteResult.exit_code``.
        Engine failures (not connected, spawn failure, cancellation) are
        reported in ``ExecuteResult.error``.
        """
        pass

    @abstractmethod
    def execute_interactive(self, command: str, token: Optional[CancelToken] = None) -> None:
        """
        Run a command attached to the local terminal.

        Blocks until the command ends. Raises on engine failure; a nonzero
        exit status is not a failure.
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the session. Safe to call more than once."""
        pass

    @abstractmethod
    def host_info(self) -> str:
        """Display string identifying the target."""
        pass

    def run(self, command: str, token: Optional[CancelToken] = None) -> Optional[ExecuteResult]:
        """
        Classify ``command`` and dispatch it to the matching capability.

        Returns the captured result, or None when the command ran attached
        to the terminal.
        """
        if is_interactive_command(command):
            self.execute_interactive(command, token)
            return None
        return self.execute(command, token)

    def __enter__(self) -> "Session":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

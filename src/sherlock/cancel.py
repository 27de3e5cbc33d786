"""Cancellation tokens threaded through every blocking engine call."""

from __future__ import annotations

import threading
import time
from typing import Optional

from .errors import CommandCancelled

DEADLINE_EXCEEDED = "deadline exceeded"


class CancelToken:
    """
    Caller-owned cancellation signal.

    A token is cancelled either explicitly via ``cancel()`` (from any thread)
    or implicitly once its optional deadline passes. Backends poll
    ``cancelled`` while a command is in flight and tear the command down as
    soon as it flips.

    Usage:
        token = CancelToken.with_timeout(30)
        result = session.execute("make test", token)
    """

    def __init__(self, deadline: Optional[float] = None) -> None:
        self._event = threading.Event()
        self._deadline = deadline
        self._reason: Optional[str] = None
        self._lock = threading.Lock()

    @classmethod
    def with_timeout(cls, seconds: float) -> "CancelToken":
        """Create a token that cancels itself ``seconds`` from now."""
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self, reason: str = "cancelled") -> None:
        with self._lock:
            if self._reason is None:
                self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self.cancel(DEADLINE_EXCEEDED)
            return True
        return False

    @property
    def reason(self) -> Optional[str]:
        """Why the token was cancelled, or None while it is still live."""
        if not self.cancelled:
            return None
        return self._reason

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None when there is no deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block up to ``timeout`` seconds (bounded by the deadline); return ``cancelled``."""
        remaining = self.remaining()
        if remaining is not None:
            timeout = remaining if timeout is None else min(timeout, remaining)
        self._event.wait(timeout)
        return self.cancelled

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise CommandCancelled(self._reason or "cancelled")

    def error(self) -> CommandCancelled:
        """Build the engine error describing this token's cancellation."""
        return CommandCancelled(self.reason or "cancelled")

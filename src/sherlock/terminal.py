"""
Local terminal helpers: terminal-type validation, sizing and raw mode.
"""

from __future__ import annotations

import io
import logging
import os
import re
import shutil
import sys
import threading
from typing import Optional, TextIO, Tuple

IS_WINDOWS = sys.platform == "win32"

if not IS_WINDOWS:
    import termios
    import tty

logger = logging.getLogger(__name__)

DEFAULT_TERM = "xterm-256color"
DEFAULT_SIZE = (80, 24)

_TERM_TYPE_RE = re.compile(r"[A-Za-z0-9_-]+")

# The local terminal mode is process-wide; one guard may hold it at a time.
_terminal_lock = threading.Lock()


def is_valid_term_type(term: str) -> bool:
    """
    Check that a terminal type is safe to embed in a remote PTY request.

    Only letters, digits, hyphen and underscore are accepted. This guards
    against shell injection, it does not check terminfo capabilities.
    """
    if not term:
        return False
    return _TERM_TYPE_RE.fullmatch(term) is not None


def terminal_size() -> Tuple[int, int]:
    """Return (cols, rows) of the local terminal, falling back to 80x24."""
    size = shutil.get_terminal_size(fallback=DEFAULT_SIZE)
    return size.columns, size.lines


def _fileno(stream) -> Optional[int]:
    try:
        return stream.fileno()
    except (AttributeError, ValueError, io.UnsupportedOperation):
        return None


class RawTerminal:
    """
    Scoped raw mode for the local terminal.

    Entering the guard switches ``stream`` (stdin by default) to raw mode
    when it is a real TTY; leaving it restores the exact prior state, on
    every exit path. If the stream is not a terminal, or raw mode cannot be
    entered, the guard is inactive and the caller simply proceeds in cooked
    mode.

    Usage:
        with RawTerminal() as term:
            relay_bytes()
    """

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self._stream = stream if stream is not None else sys.stdin
        self._fd: Optional[int] = None
        self._saved = None
        self._locked = False

    @property
    def active(self) -> bool:
        """Is the terminal currently in raw mode because of this guard?"""
        return self._saved is not None

    @property
    def fd(self) -> Optional[int]:
        return self._fd

    def __enter__(self) -> "RawTerminal":
        _terminal_lock.acquire()
        self._locked = True
        try:
            self._enter_raw()
        except BaseException:
            self._release()
            raise
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._release()

    def _enter_raw(self) -> None:
        if IS_WINDOWS:
            return
        fd = _fileno(self._stream)
        if fd is None or not os.isatty(fd):
            return
        self._fd = fd
        try:
            saved = termios.tcgetattr(fd)
            tty.setraw(fd, termios.TCSANOW)
        except (termios.error, OSError) as exc:
            logger.debug("Could not enter raw mode on fd %s: %s", fd, exc)
            return
        self._saved = saved

    def _release(self) -> None:
        try:
            if self._saved is not None:
                try:
                    termios.tcsetattr(self._fd, termios.TCSADRAIN, self._saved)
                finally:
                    self._saved = None
        finally:
            if self._locked:
                self._locked = False
                _terminal_lock.release()


def write_bytes(stream, data: bytes) -> None:
    """Write raw bytes to a text or binary stream and flush it."""
    buffer = getattr(stream, "buffer", None)
    if buffer is not None:
        stream.flush()
        buffer.write(data)
        buffer.flush()
        return
    if isinstance(stream, io.TextIOBase):
        stream.write(data.decode("utf-8", errors="replace"))
    else:
        stream.write(data)
    stream.flush()

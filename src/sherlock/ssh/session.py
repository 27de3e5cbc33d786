"""SSH session management built on Paramiko."""

from __future__ import annotations

import logging
import os
import select
import socket
import sys
from pathlib import Path
from typing import Callable, Optional, TextIO

import paramiko
from paramiko.hostkeys import HostKeyEntry

from ..base import ExecuteResult, Session
from ..cancel import CancelToken
from ..errors import HostKeyError, InvalidTermTypeError, SSHConnectionError
from ..terminal import (
    DEFAULT_TERM,
    IS_WINDOWS,
    RawTerminal,
    is_valid_term_type,
    terminal_size,
    write_bytes,
)
from .auth import AuthKind, AuthPlan, AuthResolver
from .credentials import DEFAULT_PORT, HostKeyPolicy, SSHCredentials

logger = logging.getLogger(__name__)

# Errors paramiko and the socket layer raise once a transport misbehaves.
_TRANSPORT_ERRORS = (paramiko.SSHException, OSError, EOFError)

TransportFactory = Callable[[str, int, float], paramiko.Transport]


def open_transport(host: str, port: int, timeout: float) -> paramiko.Transport:
    """Dial ``host:port`` and complete the SSH handshake within ``timeout`` seconds."""
    sock = socket.create_connection((host, port), timeout=timeout)
    transport = paramiko.Transport(sock)
    transport.banner_timeout = timeout
    try:
        transport.start_client(timeout=timeout)
    except BaseException:
        transport.close()
        raise
    return transport


def _wrap(error: Exception, cause: BaseException) -> Exception:
    error.__cause__ = cause
    return error


class SSHSession(Session):
    """
    High-level wrapper around a paramiko transport.

    Every command gets its own exec channel; the transport is reused for
    the lifetime of the session. One command may be in flight at a time.
    """

    POLL_INTERVAL = 0.05
    READ_SIZE = 32768

    def __init__(
        self,
        credentials: SSHCredentials,
        *,
        transport_factory: Optional[TransportFactory] = None,
        resolver: Optional[AuthResolver] = None,
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
        stderr: Optional[TextIO] = None,
    ) -> None:
        self.credentials = credentials
        self._transport_factory = transport_factory or open_transport
        self._resolver = resolver or AuthResolver(credentials)
        self._transport: Optional[paramiko.Transport] = None
        self._stdin = stdin
        self._stdout = stdout
        self._stderr = stderr
        # Fail early when the target cannot possibly authenticate.
        self._resolver.require().close()

    @property
    def is_connected(self) -> bool:
        return self._transport is not None and self._transport.is_active()

    def host_info(self) -> str:
        return self.credentials.host_info.host_key

    def connect(self) -> None:
        if self.is_connected:
            return
        # a transport the server dropped is discarded before redialing
        self.close()
        info = self.credentials.host_info
        with self._resolver.require() as plan:
            try:
                transport = self._transport_factory(info.host, info.port, self.credentials.timeout)
            except _TRANSPORT_ERRORS as exc:
                raise SSHConnectionError(
                    f"failed to connect to {info.host}:{info.port}: {exc}"
                ) from exc
            try:
                self._verify_host_key(transport)
                self._authenticate(transport, plan)
            except SSHConnectionError:
                transport.close()
                raise
            except _TRANSPORT_ERRORS as exc:
                transport.close()
                raise SSHConnectionError(
                    f"SSH handshake with {info.host}:{info.port} failed: {exc}"
                ) from exc
        self._transport = transport
        logger.info("Connected to %s", info.host_key)

    def close(self) -> None:
        transport, self._transport = self._transport, None
        if transport is not None:
            transport.close()
            logger.info("Disconnected from %s", self.host_info())

    # ------------------------------------------------------------------
    # Connection setup
    # ------------------------------------------------------------------

    def _known_hosts_name(self) -> str:
        info = self.credentials.host_info
        if info.port == DEFAULT_PORT:
            return info.host
        return f"[{info.host}]:{info.port}"

    def _verify_host_key(self, transport: paramiko.Transport) -> None:
        policy = self.credentials.host_key_policy
        name = self._known_hosts_name()
        if policy is HostKeyPolicy.OFF:
            logger.warning(
                "Host key verification is disabled for %s; the connection is open to MITM attacks",
                name,
            )
            return

        server_key = transport.get_remote_server_key()
        key_type = server_key.get_name()
        path = Path(self.credentials.known_hosts).expanduser()
        known = paramiko.HostKeys()
        if path.exists():
            try:
                known.load(str(path))
            except OSError as exc:
                raise HostKeyError(f"cannot read known_hosts {path}: {exc}") from exc

        entries = known.lookup(name)
        if entries is not None and key_type in entries:
            if entries[key_type].asbytes() == server_key.asbytes():
                return
            raise HostKeyError(
                f"host key for {name} has changed ({key_type} "
                f"{server_key.fingerprint}); refusing to connect"
            )

        if policy is HostKeyPolicy.STRICT:
            raise HostKeyError(
                f"host key for {name} ({key_type} {server_key.fingerprint}) "
                f"is not in {path}"
            )

        logger.info("Recording new host key for %s (%s) in %s", name, key_type, path)
        try:
            path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as handle:
                handle.write(HostKeyEntry([name], server_key).to_line())
        except OSError as exc:
            raise HostKeyError(f"cannot record host key in {path}: {exc}") from exc

    def _authenticate(self, transport: paramiko.Transport, plan: AuthPlan) -> None:
        info = self.credentials.host_info
        rejected = []
        for method in plan:
            logger.debug("Trying auth method: %s", method.describe())
            try:
                if method.kind is AuthKind.PASSWORD:
                    transport.auth_password(info.user, method.password)
                else:
                    transport.auth_publickey(info.user, method.key)
            except paramiko.AuthenticationException as exc:
                rejected.append(f"{method.describe()}: {exc}")
                continue
            if transport.is_authenticated():
                logger.debug("Authenticated to %s via %s", info.host_key, method.describe())
                return
            rejected.append(f"{method.describe()}: partial success only")
        raise SSHConnectionError(
            f"authentication failed for {info.host_key}: " + "; ".join(rejected)
        )

    def _require_transport(self) -> paramiko.Transport:
        transport = self._transport
        if transport is None or not transport.is_active():
            raise SSHConnectionError(f"not connected to {self.host_info()}")
        return transport

    # ------------------------------------------------------------------
    # Command execution
    # ------------------------------------------------------------------

    def execute(self, command: str, token: Optional[CancelToken] = None) -> ExecuteResult:
        token = token or CancelToken()
        try:
            transport = self._require_transport()
        except SSHConnectionError as exc:
            return ExecuteResult(command, exit_code=-1, error=exc)
        if token.cancelled:
            return ExecuteResult(command, exit_code=-1, error=token.error())

        try:
            channel = transport.open_session(timeout=self.credentials.timeout)
        except _TRANSPORT_ERRORS as exc:
            error = SSHConnectionError(f"failed to open session on {self.host_info()}: {exc}")
            return ExecuteResult(command, exit_code=-1, error=_wrap(error, exc))

        stdout = bytearray()
        stderr = bytearray()
        try:
            channel.exec_command(command)
            # captured commands get no input; EOF lets stdin readers finish
            channel.shutdown_write()
            while True:
                moved = self._drain(channel, stdout, stderr)
                if channel.exit_status_ready() and not (
                    channel.recv_ready() or channel.recv_stderr_ready()
                ):
                    break
                if token.cancelled:
                    # partial output is dropped with the channel
                    return ExecuteResult(command, exit_code=-1, error=token.error())
                if not moved:
                    token.wait(self.POLL_INTERVAL)
            exit_code = channel.recv_exit_status()
        except _TRANSPORT_ERRORS as exc:
            error = SSHConnectionError(f"command on {self.host_info()} failed: {exc}")
            return ExecuteResult(
                command, bytes(stdout), bytes(stderr), exit_code=-1, error=_wrap(error, exc)
            )
        finally:
            channel.close()

        return ExecuteResult(command, bytes(stdout), bytes(stderr), exit_code)

    def _drain(self, channel: paramiko.Channel, stdout: bytearray, stderr: bytearray) -> bool:
        moved = False
        while channel.recv_ready():
            chunk = channel.recv(self.READ_SIZE)
            if not chunk:
                break
            stdout.extend(chunk)
            moved = True
        while channel.recv_stderr_ready():
            chunk = channel.recv_stderr(self.READ_SIZE)
            if not chunk:
                break
            stderr.extend(chunk)
            moved = True
        return moved

    def _term_type(self) -> str:
        term = self.credentials.term_type or os.environ.get("TERM") or DEFAULT_TERM
        if not is_valid_term_type(term):
            raise InvalidTermTypeError(term)
        return term

    def execute_interactive(self, command: str, token: Optional[CancelToken] = None) -> None:
        token = token or CancelToken()
        term = self._term_type()
        transport = self._require_transport()
        token.raise_if_cancelled()

        cols, rows = terminal_size()
        channel = None
        try:
            channel = transport.open_session(timeout=self.credentials.timeout)
            channel.get_pty(term=term, width=cols, height=rows)
            channel.exec_command(command)
        except _TRANSPORT_ERRORS as exc:
            if channel is not None:
                channel.close()
            raise SSHConnectionError(
                f"failed to start interactive command on {self.host_info()}: {exc}"
            ) from exc

        stdin = self._stdin or sys.stdin
        try:
            with RawTerminal(stdin):
                self._relay(channel, token, stdin, (cols, rows))
        except _TRANSPORT_ERRORS as exc:
            raise SSHConnectionError(
                f"interactive command on {self.host_info()} failed: {exc}"
            ) from exc
        finally:
            channel.close()

    def _relay(
        self,
        channel: paramiko.Channel,
        token: CancelToken,
        stdin: TextIO,
        size: tuple,
    ) -> None:
        """Shuttle bytes between the local terminal and the channel until the command ends."""
        stdout = self._stdout or sys.stdout
        stderr = self._stderr or sys.stderr
        in_fd = None
        if not IS_WINDOWS:
            try:
                in_fd = stdin.fileno()
            except (AttributeError, ValueError, OSError):
                in_fd = None
        if in_fd is None:
            channel.shutdown_write()

        while True:
            if token.cancelled:
                channel.close()
                raise token.error()

            moved = False
            while channel.recv_ready():
                chunk = channel.recv(self.READ_SIZE)
                if not chunk:
                    break
                write_bytes(stdout, chunk)
                moved = True
            while channel.recv_stderr_ready():
                chunk = channel.recv_stderr(self.READ_SIZE)
                if not chunk:
                    break
                write_bytes(stderr, chunk)
                moved = True

            if channel.exit_status_ready() and not (
                channel.recv_ready() or channel.recv_stderr_ready()
            ):
                return

            if in_fd is not None:
                readable, _, _ = select.select([in_fd], [], [], self.POLL_INTERVAL)
                if readable:
                    data = os.read(in_fd, 1024)
                    if data:
                        channel.sendall(data)
                    else:
                        channel.shutdown_write()
                        in_fd = None
            elif not moved:
                token.wait(self.POLL_INTERVAL)

            current = terminal_size()
            if current != size:
                size = current
                channel.resize_pty(width=current[0], height=current[1])

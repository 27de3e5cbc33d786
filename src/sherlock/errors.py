"""Exception hierarchy for the sherlock execution engine."""

from __future__ import annotations


class SherlockError(Exception):
    """Base class for every error raised or returned by the engine."""

    pass


class ConfigurationError(SherlockError):
    """The supplied configuration cannot produce a usable connection."""

    pass


class NoAuthMethodError(ConfigurationError):
    """Raised when the auth chain produced zero methods."""

    def __init__(self, host_key: str) -> None:
        self.host_key = host_key
        super().__init__(
            f"no authentication method available for {host_key} "
            "(configure a password, an identity file, or start an ssh-agent)"
        )


class KeyLoadError(ConfigurationError):
    """An explicitly configured identity file could not be read or decrypted."""

    def __init__(self, path: str, message: str) -> None:
        self.path = path
        super().__init__(message)


class SSHConnectionError(SherlockError):
    """Raised when an SSH connection cannot be established or is not available."""

    pass


class HostKeyError(SSHConnectionError):
    """The server host key was rejected by the configured policy."""

    pass


class SpawnError(SherlockError):
    """A local process could not be created."""

    pass


class InvalidTermTypeError(SherlockError, ValueError):
    """A terminal type contains characters that are unsafe to send to a remote shell."""

    def __init__(self, term: str) -> None:
        self.term = term
        super().__init__(f"invalid terminal type: {term!r}")


class CommandCancelled(SherlockError):
    """The caller cancelled an in-flight command."""

    def __init__(self, reason: str = "cancelled") -> None:
        self.reason = reason
        super().__init__(f"command cancelled: {reason}")


class HistoryError(SherlockError):
    """The login history file could not be loaded or saved."""

    pass

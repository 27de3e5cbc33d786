"""Authentication-method resolution for SSH connections."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Tuple

import paramiko
from cryptography.exceptions import UnsupportedAlgorithm
from paramiko.pkey import UnknownKeyType

from ..errors import KeyLoadError, NoAuthMethodError
from .credentials import SSHCredentials

logger = logging.getLogger(__name__)

# Probed in this order when no identity file is configured.
DEFAULT_KEY_NAMES = ("id_ed25519", "id_ecdsa", "id_rsa", "id_dsa")

AGENT_SOCKET_ENV = "SSH_AUTH_SOCK"

_KEY_PARSE_ERRORS = (
    ValueError,
    # cryptography: passphrase missing for an encrypted key, or given for a plain one
    TypeError,
    paramiko.SSHException,
    UnknownKeyType,
    UnsupportedAlgorithm,
)


class AuthKind(str, Enum):
    PUBLICKEY = "publickey"
    PASSWORD = "password"


@dataclass(frozen=True)
class AuthMethod:
    """One candidate way of authenticating, in attempt order."""

    kind: AuthKind
    source: str
    key: Optional[paramiko.PKey] = None
    password: Optional[str] = field(default=None, repr=False)

    def describe(self) -> str:
        return f"{self.kind.value} ({self.source})"


@dataclass
class AuthPlan:
    """
    Ordered authentication methods for one connection attempt.

    Holds the agent connection (if any) so agent-backed keys can sign
    during the handshake; close the plan once authentication is over.
    """

    methods: List[AuthMethod] = field(default_factory=list)
    agent: Optional[paramiko.Agent] = None

    def __len__(self) -> int:
        return len(self.methods)

    def __iter__(self) -> Iterator[AuthMethod]:
        return iter(self.methods)

    def close(self) -> None:
        if self.agent is not None:
            self.agent.close()
            self.agent = None

    def __enter__(self) -> "AuthPlan":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def default_key_paths(home: Optional[Path] = None) -> List[Path]:
    """Return the default identity-file locations under ``<home>/.ssh``."""
    ssh_dir = Path(home if home is not None else Path.home()) / ".ssh"
    return [ssh_dir / name for name in DEFAULT_KEY_NAMES]


def load_private_key(path: str | Path, passphrase: Optional[str] = None) -> paramiko.PKey:
    """
    Load and decrypt a private key of any type paramiko supports.

    Raises:
        KeyLoadError: The file cannot be read, or cannot be parsed/decrypted
    """
    key_path = Path(path).expanduser()
    try:
        key_path.read_bytes()
    except OSError as exc:
        raise KeyLoadError(
            str(key_path),
            f"failed to read private key {key_path}: {exc.strerror or exc}",
        ) from exc

    secret = passphrase.encode("utf-8") if passphrase else None
    try:
        # positional: the keyword name differs across paramiko releases
        return paramiko.PKey.from_path(key_path, secret)
    except _KEY_PARSE_ERRORS as exc:
        raise KeyLoadError(
            str(key_path), f"failed to parse private key {key_path}: {exc}"
        ) from exc


def agent_keys(
    agent_factory: Callable[[], paramiko.Agent] = paramiko.Agent,
) -> Tuple[List[paramiko.AgentKey], Optional[paramiko.Agent]]:
    """
    Ask a running ssh-agent for its identities.

    An unset socket variable, an unreachable socket or an agent protocol
    error all yield no keys; agent absence is never an error.

    Returns:
        (keys, agent) - agent is None when no keys were obtained
    """
    if not os.environ.get(AGENT_SOCKET_ENV):
        return [], None
    try:
        agent = agent_factory()
        keys = list(agent.get_keys())
    except (paramiko.SSHException, OSError) as exc:
        logger.debug("ssh-agent unavailable: %s", exc)
        return [], None
    if not keys:
        agent.close()
        return [], None
    return keys, agent


class AuthResolver:
    """Builds the ordered authentication methods for a target."""

    def __init__(
        self,
        credentials: SSHCredentials,
        *,
        home: Optional[Path] = None,
        agent_factory: Callable[[], paramiko.Agent] = paramiko.Agent,
    ) -> None:
        self.credentials = credentials
        self._home = home
        self._agent_factory = agent_factory

    def resolve(self) -> AuthPlan:
        """
        Assemble a fresh plan: identity file(s), then agent keys, then password.

        Raises:
            KeyLoadError: The explicitly configured identity file is unusable
        """
        plan = AuthPlan()
        creds = self.credentials

        if creds.key_path:
            key = load_private_key(creds.key_path, creds.passphrase)
            plan.methods.append(
                AuthMethod(AuthKind.PUBLICKEY, source=str(creds.key_path), key=key)
            )
        else:
            for path in default_key_paths(self._home):
                try:
                    key = load_private_key(path)
                except KeyLoadError as exc:
                    logger.debug("Skipping default key: %s", exc)
                    continue
                plan.methods.append(AuthMethod(AuthKind.PUBLICKEY, source=str(path), key=key))

        keys, agent = agent_keys(self._agent_factory)
        for index, key in enumerate(keys):
            plan.methods.append(
                AuthMethod(AuthKind.PUBLICKEY, source=f"agent key #{index + 1}", key=key)
            )
        plan.agent = agent

        if creds.password:
            plan.methods.append(
                AuthMethod(AuthKind.PASSWORD, source="password", password=creds.password)
            )

        logger.debug(
            "Resolved %d auth method(s) for %s: %s",
            len(plan),
            creds.host_info.host_key,
            ", ".join(m.describe() for m in plan),
        )
        return plan

    def require(self) -> AuthPlan:
        """Resolve, failing when no method at all is available."""
        plan = self.resolve()
        if not plan:
            plan.close()
            raise NoAuthMethodError(self.credentials.host_info.host_key)
        return plan

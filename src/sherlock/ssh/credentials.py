"""SSH target and credential payloads."""

from __future__ import annotations

import getpass
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

DEFAULT_PORT = 22


class HostKeyPolicy(str, Enum):
    """What to do with the server host key during connect."""

    STRICT = "strict"  # key must already be in known_hosts
    ACCEPT_NEW = "accept-new"  # record unknown keys, reject changed ones
    OFF = "off"  # no verification


def default_known_hosts() -> str:
    return str(Path.home() / ".ssh" / "known_hosts")


@dataclass(frozen=True)
class HostInfo:
    """Identifies a remote endpoint."""

    host: str
    user: str
    port: int = DEFAULT_PORT

    @property
    def host_key(self) -> str:
        return f"{self.user}@{self.host}:{self.port}"

    @classmethod
    def parse(
        cls,
        target: str,
        *,
        user: Optional[str] = None,
        port: Optional[int] = None,
        default_port: int = DEFAULT_PORT,
    ) -> "HostInfo":
        """
        Parse ``[user@]host[:port]``.

        Explicit ``user``/``port`` arguments win over the parsed values.
        A missing user falls back to the local login name and a missing
        port to ``default_port``.
        """
        target = target.strip()
        parsed_user = None
        if "@" in target:
            parsed_user, target = target.rsplit("@", 1)
        parsed_port = None
        if target.startswith("["):
            # [2001:db8::1]:2222
            host, _, rest = target[1:].partition("]")
            if rest.startswith(":") and rest[1:]:
                parsed_port = int(rest[1:])
        elif target.count(":") == 1:
            host, port_text = target.split(":", 1)
            if port_text:
                parsed_port = int(port_text)
        else:
            host = target
        if not host:
            raise ValueError(f"invalid target: missing host in {target!r}")
        return cls(
            host=host,
            user=user or parsed_user or getpass.getuser(),
            port=port or parsed_port or default_port,
        )


@dataclass
class SSHCredentials:
    """Normalized connection payload from CLI/config."""

    host_info: HostInfo
    password: Optional[str] = None
    key_path: Optional[str] = None
    passphrase: Optional[str] = None
    term_type: Optional[str] = None
    timeout: float = 20
    known_hosts: str = field(default_factory=default_known_hosts)
    host_key_policy: HostKeyPolicy = HostKeyPolicy.ACCEPT_NEW

    def __post_init__(self) -> None:
        self.host_key_policy = HostKeyPolicy(self.host_key_policy)

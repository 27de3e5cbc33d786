"""SSH backend for sherlock."""

from .auth import (
    AuthKind,
    AuthMethod,
    AuthPlan,
    AuthResolver,
    agent_keys,
    default_key_paths,
    load_private_key,
)
from .credentials import HostInfo, HostKeyPolicy, SSHCredentials
from .session import SSHSession, open_transport

__all__ = [
    "AuthKind",
    "AuthMethod",
    "AuthPlan",
    "AuthResolver",
    "agent_keys",
    "default_key_paths",
    "load_private_key",
    "HostInfo",
    "HostKeyPolicy",
    "SSHCredentials",
    "SSHSession",
    "open_transport",
]

"""Configuration loading utilities for sherlock."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .paths import get_config_path, get_history_path
from .ssh.credentials import DEFAULT_PORT, HostKeyPolicy, default_known_hosts

# Load .env file if it exists
load_dotenv()


@dataclass
class ConnectionConfig:
    """Defaults for remote connections."""

    host: Optional[str] = None
    port: int = DEFAULT_PORT
    user: Optional[str] = None
    password: Optional[str] = None
    key_path: Optional[str] = None
    passphrase: Optional[str] = None
    term_type: Optional[str] = None
    timeout: float = 20
    known_hosts: str = field(default_factory=default_known_hosts)
    host_key_policy: str = HostKeyPolicy.ACCEPT_NEW.value


@dataclass
class LocalConfig:
    """Settings for the local backend."""

    shell: str = "/bin/sh"


@dataclass
class HistoryConfig:
    enabled: bool = True
    path: Optional[str] = None

    def resolved_path(self) -> Path:
        return Path(self.path).expanduser() if self.path else get_history_path()


@dataclass
class AppConfig:
    """Top-level configuration."""

    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    local: LocalConfig = field(default_factory=LocalConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    log_level: str = "WARNING"

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AppConfig":
        connection_payload = _strip_comments(payload.get("connection", {}) or {})
        local_payload = _strip_comments(payload.get("local", {}) or {})
        history_payload = _strip_comments(payload.get("history", {}) or {})
        config = cls(
            connection=ConnectionConfig(**{**ConnectionConfig().__dict__, **connection_payload}),
            local=LocalConfig(**{**LocalConfig().__dict__, **local_payload}),
            history=HistoryConfig(**{**HistoryConfig().__dict__, **history_payload}),
        )
        if payload.get("log_level"):
            config.log_level = str(payload["log_level"])
        # validates the policy name early
        HostKeyPolicy(config.connection.host_key_policy)
        return config


def _strip_comments(section: Dict[str, Any]) -> Dict[str, Any]:
    """Drop keys starting with an underscore (used as comments in JSON files)."""
    return {k: v for k, v in section.items() if not k.startswith("_")}


def _apply_env(config: AppConfig) -> None:
    conn = config.connection
    env_host = os.getenv("SHERLOCK_SSH_HOST")
    if env_host:
        conn.host = env_host

    env_port = os.getenv("SHERLOCK_SSH_PORT")
    if env_port:
        conn.port = int(env_port)

    env_user = os.getenv("SHERLOCK_SSH_USER")
    if env_user:
        conn.user = env_user

    env_password = os.getenv("SHERLOCK_SSH_PASSWORD")
    if env_password:
        conn.password = env_password

    env_key_path = os.getenv("SHERLOCK_SSH_KEY_PATH")
    if env_key_path:
        conn.key_path = env_key_path

    env_passphrase = os.getenv("SHERLOCK_SSH_PASSPHRASE")
    if env_passphrase:
        conn.passphrase = env_passphrase

    env_term = os.getenv("SHERLOCK_TERM")
    if env_term:
        conn.term_type = env_term

    env_policy = os.getenv("SHERLOCK_HOST_KEY_POLICY")
    if env_policy:
        conn.host_key_policy = HostKeyPolicy(env_policy).value

    env_history = os.getenv("SHERLOCK_HISTORY_PATH")
    if env_history:
        config.history.path = env_history

    env_level = os.getenv("SHERLOCK_LOG_LEVEL")
    if env_level:
        config.log_level = env_level


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from `path` or the default location.

    An explicit `path` must exist. When no path is given and the default
    file (~/.config/sherlock/config.json) is absent, defaults are used.

    Environment variables (higher priority than config file):
    - SHERLOCK_SSH_HOST / SHERLOCK_SSH_PORT / SHERLOCK_SSH_USER: default target
    - SHERLOCK_SSH_PASSWORD: SSH password
    - SHERLOCK_SSH_KEY_PATH / SHERLOCK_SSH_PASSPHRASE: identity file
    - SHERLOCK_TERM: terminal type for interactive commands
    - SHERLOCK_HOST_KEY_POLICY: strict | accept-new | off
    - SHERLOCK_HISTORY_PATH: login history file
    - SHERLOCK_LOG_LEVEL: logging level name
    """
    if path:
        candidate = Path(path).expanduser()
        if not candidate.is_file():
            raise FileNotFoundError(f"Could not find configuration file: {candidate}")
    else:
        candidate = get_config_path()

    if candidate.is_file():
        with candidate.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        config = AppConfig.from_dict(data)
    else:
        config = AppConfig()

    _apply_env(config)
    return config

"""Unified path helpers for sherlock.

All user data lives under ~/.config/sherlock:
- ~/.config/sherlock/config.json    # optional settings file
- ~/.config/sherlock/history.json   # login history
"""

from pathlib import Path

APP_DIR_NAME = "sherlock"
CONFIG_FILE_NAME = "config.json"
HISTORY_FILE_NAME = "history.json"


def get_base_dir() -> Path:
    """Base directory, resolved from the current home directory."""
    return Path.home() / ".config" / APP_DIR_NAME


def get_config_path() -> Path:
    return get_base_dir() / CONFIG_FILE_NAME


def get_history_path() -> Path:
    return get_base_dir() / HISTORY_FILE_NAME

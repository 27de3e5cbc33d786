"""Login history management.

Records are kept in a JSON list keyed by ``user@host:port``; connecting to a
known target updates its record in place instead of appending a new one.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .errors import HistoryError
from .paths import get_history_path

logger = logging.getLogger(__name__)


@dataclass
class Record:
    """One remembered login target."""

    host: str
    port: int
    user: str
    timestamp: datetime
    has_pub_key: bool = False

    @property
    def host_key(self) -> str:
        return f"{self.user}@{self.host}:{self.port}"

    def to_dict(self) -> dict:
        return {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "timestamp": self.timestamp.isoformat(),
            "has_pub_key": self.has_pub_key,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Record":
        return cls(
            host=data["host"],
            port=int(data["port"]),
            user=data["user"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            has_pub_key=bool(data.get("has_pub_key", False)),
        )


class HistoryManager:
    """
    Loads, updates and persists login history.

    Usage:
        manager = HistoryManager()
        manager.add_record("example.com", 22, "root")
        print(format_records(manager.get_recent_records(10)))
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path is not None else get_history_path()
        self._records: List[Record] = []
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
            self._records = [Record.from_dict(item) for item in payload or []]
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise HistoryError(f"failed to load history from {self.path}: {exc}") from exc
        logger.debug("Loaded %d history record(s) from %s", len(self._records), self.path)

    def _save(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(
                json.dumps([r.to_dict() for r in self._records], indent=2),
                encoding="utf-8",
            )
            os.chmod(self.path, 0o600)
        except OSError as exc:
            raise HistoryError(f"failed to save history to {self.path}: {exc}") from exc

    def _find(self, host_key: str) -> Optional[Record]:
        for record in self._records:
            if record.host_key == host_key:
                return record
        return None

    def add_record(
        self,
        host: str,
        port: int,
        user: str,
        has_pub_key: bool = False,
        *,
        timestamp: Optional[datetime] = None,
    ) -> Record:
        """Record a login, updating the existing entry for the same target."""
        record = Record(
            host=host,
            port=port,
            user=user,
            timestamp=timestamp or datetime.now(),
            has_pub_key=has_pub_key,
        )
        existing = self._find(record.host_key)
        if existing is not None:
            # most recent login wins; an older timestamp never overwrites
            if record.timestamp > existing.timestamp:
                existing.timestamp = record.timestamp
            if has_pub_key:
                existing.has_pub_key = True
            record = existing
        else:
            self._records.append(record)
        self._save()
        return record

    def mark_pub_key_added(self, host: str, port: int, user: str) -> None:
        record = self._find(f"{user}@{host}:{port}")
        if record is not None:
            record.has_pub_key = True
            self._save()

    def has_pub_key(self, host: str, port: int, user: str) -> bool:
        record = self._find(f"{user}@{host}:{port}")
        return record.has_pub_key if record is not None else False

    def get_records(self) -> List[Record]:
        """All records, newest first."""
        return sorted(self._records, key=lambda r: r.timestamp, reverse=True)

    def get_recent_records(self, n: int) -> List[Record]:
        return self.get_records()[: max(n, 0)]

    def search_records(self, query: str) -> List[Record]:
        """Case-insensitive match against host, user or ``user@host:port``."""
        query = query.lower()
        matches = [
            r
            for r in self._records
            if query in r.host.lower() or query in r.user.lower() or query in r.host_key.lower()
        ]
        return sorted(matches, key=lambda r: r.timestamp, reverse=True)


def format_records(records: List[Record]) -> str:
    if not records:
        return "No login history found.\n"

    lines = ["Login History:", "-" * 60]
    for index, record in enumerate(records, start=1):
        key_status = " [key]" if record.has_pub_key else ""
        lines.append(f"{index:2d}. {record.host_key}{key_status}")
        lines.append(f"    Last login: {record.timestamp.strftime('%Y-%m-%d %H:%M:%S')}")
    return "\n".join(lines) + "\n"

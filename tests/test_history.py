import json
import os
from datetime import datetime, timedelta

import pytest

from sherlock.errors import HistoryError
from sherlock.history import HistoryManager, Record, format_records


@pytest.fixture
def history_path(tmp_path):
    return tmp_path / "sherlock" / "history.json"


def test_missing_file_starts_empty(history_path):
    manager = HistoryManager(history_path)
    assert manager.get_records() == []
    assert not history_path.exists()


def test_add_record_persists(history_path):
    HistoryManager(history_path).add_record("example.com", 22, "root")

    reloaded = HistoryManager(history_path)
    records = reloaded.get_records()
    assert len(records) == 1
    assert records[0].host_key == "root@example.com:22"
    assert oct(os.stat(history_path).st_mode & 0o777) == oct(0o600)


def test_same_target_updates_in_place(history_path):
    manager = HistoryManager(history_path)
    first = datetime(2024, 1, 1, 10, 0, 0)
    manager.add_record("example.com", 22, "root", timestamp=first)
    manager.add_record("example.com", 22, "root", timestamp=first + timedelta(hours=1))
    manager.add_record("example.com", 22, "root", timestamp=first - timedelta(days=1))

    records = manager.get_records()
    assert len(records) == 1
    assert records[0].timestamp == first + timedelta(hours=1)


def test_distinct_ports_are_distinct_targets(history_path):
    manager = HistoryManager(history_path)
    manager.add_record("example.com", 22, "root")
    manager.add_record("example.com", 2222, "root")
    assert len(manager.get_records()) == 2


def test_pub_key_flag_only_turns_on(history_path):
    manager = HistoryManager(history_path)
    manager.add_record("example.com", 22, "root", has_pub_key=True)
    manager.add_record("example.com", 22, "root")
    assert manager.has_pub_key("example.com", 22, "root")
    assert not manager.has_pub_key("other.com", 22, "root")


def test_mark_pub_key_added(history_path):
    manager = HistoryManager(history_path)
    manager.add_record("example.com", 22, "deploy")
    manager.mark_pub_key_added("example.com", 22, "deploy")
    assert HistoryManager(history_path).has_pub_key("example.com", 22, "deploy")


def test_recent_records_newest_first(history_path):
    manager = HistoryManager(history_path)
    base = datetime(2024, 5, 1)
    for offset, host in enumerate(["a.example", "b.example", "c.example"]):
        manager.add_record(host, 22, "root", timestamp=base + timedelta(minutes=offset))

    recent = manager.get_recent_records(2)
    assert [r.host for r in recent] == ["c.example", "b.example"]
    assert manager.get_recent_records(0) == []


def test_search_records(history_path):
    manager = HistoryManager(history_path)
    manager.add_record("web.example.com", 22, "deploy")
    manager.add_record("db.internal", 5432, "postgres")

    assert [r.host for r in manager.search_records("EXAMPLE")] == ["web.example.com"]
    assert [r.user for r in manager.search_records("postgres")] == ["postgres"]
    assert manager.search_records("nothing") == []


def test_malformed_file_raises(history_path):
    history_path.parent.mkdir(parents=True)
    history_path.write_text("{not json")
    with pytest.raises(HistoryError):
        HistoryManager(history_path)


def test_file_format(history_path):
    HistoryManager(history_path).add_record(
        "example.com", 22, "root", timestamp=datetime(2024, 1, 2, 3, 4, 5)
    )
    payload = json.loads(history_path.read_text())
    assert payload == [
        {
            "host": "example.com",
            "port": 22,
            "user": "root",
            "timestamp": "2024-01-02T03:04:05",
            "has_pub_key": False,
        }
    ]


def test_format_records():
    assert format_records([]) == "No login history found.\n"

    text = format_records(
        [
            Record("example.com", 22, "root", datetime(2024, 1, 2, 3, 4, 5), has_pub_key=True),
            Record("db.internal", 2222, "admin", datetime(2023, 12, 31, 23, 59, 59)),
        ]
    )
    lines = text.splitlines()
    assert lines[0] == "Login History:"
    assert lines[1] == "-" * 60
    assert lines[2] == " 1. root@example.com:22 [key]"
    assert lines[3] == "    Last login: 2024-01-02 03:04:05"
    assert lines[4] == " 2. admin@db.internal:2222"

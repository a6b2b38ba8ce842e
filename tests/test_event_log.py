import json
from pathlib import Path

import pytest

from wifi_provision.event_log import EventCategory, EventLog, EventLogEntry


def test_record_drops_empty_metadata_values() -> None:
    log = EventLog()

    entry = log.record(
        EventCategory.NETWORK, "connected", "Connected.", metadata={"address": "10.0.0.2", "ssid": None}
    )

    assert entry.metadata == {"address": "10.0.0.2"}
    assert entry.to_dict() == {
        "timestamp": entry.timestamp,
        "category": "network",
        "event": "connected",
        "message": "Connected.",
        "metadata": {"address": "10.0.0.2"},
    }


def test_unknown_category_is_filed_under_system() -> None:
    log = EventLog()

    entry = log.record("kernel", "oops", "Something happened.")

    assert entry.category is EventCategory.SYSTEM


def test_tail_filters_and_limits() -> None:
    log = EventLog(max_entries=3)
    for index in range(4):
        category = EventCategory.NETWORK if index % 2 else EventCategory.PROVISIONING
        log.record(category, f"event{index}", "message")

    assert [entry.event for entry in log.tail()] == ["event1", "event2", "event3"]
    assert [entry.event for entry in log.tail(2)] == ["event2", "event3"]
    assert [entry.event for entry in log.tail(category="network")] == ["event1", "event3"]
    assert [entry.event for entry in log.tail(event="event2")] == ["event2"]
    assert log.tail(category=EventCategory.SYSTEM) == []


def test_entries_are_restored_from_disk(tmp_path: Path) -> None:
    path = tmp_path / "logs" / "provision_log.jsonl"
    log = EventLog(path)
    log.record(EventCategory.PROVISIONING, "session_start", "Starting provisioning session.")
    with path.open("a", encoding="utf-8") as handle:
        handle.write("not json\n")
        handle.write(json.dumps({"event": 5, "message": "bad"}) + "\n")

    restored = EventLog(path)

    entries = restored.tail()
    assert len(entries) == 1
    assert entries[0].event == "session_start"
    assert entries[0].category is EventCategory.PROVISIONING


def test_from_dict_rejects_entries_without_event() -> None:
    assert EventLogEntry.from_dict({"message": "orphan"}) is None

    entry = EventLogEntry.from_dict(
        {"timestamp": "oops", "category": "network", "event": "scan", "message": "Scanned.", "metadata": []}
    )

    assert entry is not None
    assert entry.category is EventCategory.NETWORK
    assert entry.metadata is None


def test_file_is_compacted_once_it_doubles(tmp_path: Path) -> None:
    path = tmp_path / "provision_log.jsonl"
    log = EventLog(path, max_entries=2)
    for index in range(5):
        log.record(EventCategory.NETWORK, f"event{index}", "message")

    lines = path.read_text(encoding="utf-8").splitlines()

    # Four appended lines, then the fifth record rewrote the file.
    assert [json.loads(line)["event"] for line in lines] == ["event3", "event4"]
    assert [entry.event for entry in EventLog(path, max_entries=2).tail()] == ["event3", "event4"]


def test_max_entries_must_be_positive() -> None:
    with pytest.raises(ValueError):
        EventLog(max_entries=0)

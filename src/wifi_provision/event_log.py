"""Bounded event log shared by the connectivity and provisioning layers."""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Deque, Mapping


class EventCategory(str, Enum):
    """Which layer recorded an event."""

    NETWORK = "network"
    PROVISIONING = "provisioning"
    SYSTEM = "system"

    @classmethod
    def parse(cls, value: object) -> "EventCategory":
        try:
            return cls(value)
        except ValueError:
            return cls.SYSTEM


@dataclass(slots=True)
class EventLogEntry:
    """A single connectivity or provisioning event."""

    timestamp: float
    category: EventCategory
    event: str
    message: str
    metadata: dict[str, object] | None = None

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "timestamp": self.timestamp,
            "category": self.category.value,
            "event": self.event,
            "message": self.message,
        }
        if self.metadata:
            payload["metadata"] = self.metadata
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "EventLogEntry | None":
        """Rebuild an entry from its persisted form; ``None`` if malformed."""

        event = payload.get("event")
        message = payload.get("message")
        if not isinstance(event, str) or not isinstance(message, str):
            return None
        try:
            timestamp = float(payload.get("timestamp", time.time()))
        except (TypeError, ValueError):
            timestamp = time.time()
        metadata = payload.get("metadata")
        return cls(
            timestamp=timestamp,
            category=EventCategory.parse(payload.get("category")),
            event=event,
            message=message,
            metadata=metadata if isinstance(metadata, dict) else None,
        )


class EventLog:
    """Troubleshooting log kept in memory and mirrored to a JSON-lines file.

    Only the newest ``max_entries`` are retained. The file is rewritten from
    memory once it holds twice that many lines so it cannot grow unbounded on
    a device that runs for months.
    """

    def __init__(
        self,
        path: Path | str | None = None,
        *,
        max_entries: int = 200,
    ) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._path: Path | None = Path(path) if path is not None else None
        self._max_entries = max_entries
        self._entries: Deque[EventLogEntry] = deque(maxlen=max_entries)
        self._lines_on_disk = 0
        self._lock = threading.Lock()
        if self._path is not None:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as exc:  # pragma: no cover - filesystem errors are rare
                logging.getLogger(__name__).warning(
                    "Unable to prepare event log directory: %s", exc
                )
                self._path = None
        self._load()

    @property
    def path(self) -> Path | None:
        return self._path

    def record(
        self,
        category: EventCategory | str,
        event: str,
        message: str,
        *,
        metadata: Mapping[str, object | None] | None = None,
    ) -> EventLogEntry:
        """Append an event and return the stored entry.

        ``None`` metadata values are dropped.
        """

        cleaned = {key: value for key, value in (metadata or {}).items() if value is not None}
        entry = EventLogEntry(
            timestamp=time.time(),
            category=EventCategory.parse(category),
            event=event,
            message=message,
            metadata=cleaned or None,
        )
        with self._lock:
            self._entries.append(entry)
            self._append_locked(entry)
        return entry

    def tail(
        self,
        limit: int | None = None,
        *,
        category: EventCategory | str | None = None,
        event: str | None = None,
    ) -> list[EventLogEntry]:
        """Return the most recent matching entries, oldest first."""

        with self._lock:
            entries = list(self._entries)
        if category:
            wanted = EventCategory.parse(category)
            entries = [entry for entry in entries if entry.category is wanted]
        if event:
            entries = [entry for entry in entries if entry.event == event]
        if limit is not None:
            entries = entries[-max(1, int(limit)):]
        return entries

    # ------------------------------- storage -------------------------------
    def _load(self) -> None:
        if self._path is None or not self._path.exists():
            return
        try:
            lines = self._path.read_text(encoding="utf-8").splitlines()
        except OSError as exc:  # pragma: no cover - best effort logging
            logging.getLogger(__name__).warning("Unable to load event log: %s", exc)
            return
        self._lines_on_disk = len(lines)
        for line in lines:
            try:
                payload = json.loads(line)
            except ValueError:
                continue
            if isinstance(payload, dict):
                entry = EventLogEntry.from_dict(payload)
                if entry is not None:
                    self._entries.append(entry)

    def _append_locked(self, entry: EventLogEntry) -> None:
        if self._path is None:
            return
        if self._lines_on_disk >= 2 * self._max_entries:
            self._compact_locked()
            return
        try:
            with self._path.open("a", encoding="utf-8") as handle:
                handle.write(_encode(entry) + "\n")
        except OSError as exc:  # pragma: no cover - best effort logging
            logging.getLogger(__name__).warning("Unable to persist event log: %s", exc)
            return
        self._lines_on_disk += 1

    def _compact_locked(self) -> None:
        assert self._path is not None
        text = "".join(_encode(entry) + "\n" for entry in self._entries)
        try:
            self._path.write_text(text, encoding="utf-8")
        except OSError as exc:  # pragma: no cover - best effort logging
            logging.getLogger(__name__).warning("Unable to compact event log: %s", exc)
            return
        self._lines_on_disk = len(self._entries)


def _encode(entry: EventLogEntry) -> str:
    return json.dumps(entry.to_dict(), separators=(",", ":"))


__all__ = ["EventCategory", "EventLog", "EventLogEntry"]

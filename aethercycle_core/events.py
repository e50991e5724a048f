"""
Structured event records for AetherCycle components.

Each component owns an :class:`EventLog` and appends an :class:`Event`
for every observable outcome (releases, skips, swap attempts, stakes).
These records are the audit trail: partial failures inside a cycle are
visible here even when the cycle itself reports success.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterator


@dataclass
class Event:
    """A single emitted record."""
    name: str
    timestamp: int
    source: str
    fields: dict[str, Any] = field(default_factory=dict)

    def __getitem__(self, key: str) -> Any:
        return self.fields[key]

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "timestamp": self.timestamp,
            "source": self.source,
            "fields": dict(self.fields),
        }


class EventLog:
    """Append-only list of events with simple filtering helpers."""

    def __init__(self, source: str, logger: logging.Logger | None = None,
                 max_events: int = 10_000):
        self.source = source
        self._events: list[Event] = []
        self._logger = logger or logging.getLogger(f"aethercycle.{source}")
        self._max_events = max_events

    def emit(self, name: str, timestamp: int, **fields: Any) -> Event:
        event = Event(name=name, timestamp=timestamp, source=self.source, fields=fields)
        self._events.append(event)
        if len(self._events) > self._max_events:
            del self._events[: len(self._events) - self._max_events]
        self._logger.debug(f"{name} {fields}", extra={"event": name, "fields": fields})
        return event

    def named(self, name: str) -> list[Event]:
        return [e for e in self._events if e.name == name]

    def last(self, name: str | None = None) -> Event | None:
        for event in reversed(self._events):
            if name is None or event.name == name:
                return event
        return None

    def since(self, index: int) -> list[Event]:
        return self._events[index:]

    def recent(self, limit: int = 50) -> list[dict]:
        return [e.to_dict() for e in self._events[-limit:]]

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[Event]:
        return iter(self._events)

"""Broadcast channels and positioning diagnostics.

A Broadcaster delivers every published value to each subscriber in emission
order. Subscribers are plain callables; one failing subscriber is logged and
does not stop delivery to the others.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Subscriber = Callable[[T], None]


class Broadcaster(Generic[T]):
    """Publish/subscribe channel with multiple registered consumers."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._subscribers: list[Subscriber[T]] = []
        self._closed = False
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber[T]) -> Callable[[], None]:
        """Register a consumer and return a function that unregisters it."""
        with self._lock:
            if self._closed:
                raise RuntimeError(f"Broadcaster '{self.name}' is closed")
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            self.unsubscribe(callback)

        return _unsubscribe

    def unsubscribe(self, callback: Subscriber[T]) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def publish(self, value: T) -> None:
        with self._lock:
            if self._closed:
                return
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(value)
            except Exception:
                logger.exception("Subscriber of '%s' failed", self.name)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._subscribers.clear()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


@dataclass(frozen=True, slots=True)
class PositioningEvent:
    """Diagnostic event raised by the positioning pipeline."""

    type: str
    message: str
    data: dict[str, Any] | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_json(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
        }

    def __str__(self) -> str:
        return f"[{self.type}] {self.message}"


class PositioningEventLog:
    """Bounded in-memory record of positioning events for admin debugging."""

    def __init__(self, max_entries: int = 1000) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be > 0")
        self._entries: deque[PositioningEvent] = deque(maxlen=max_entries)

    def record(self, event: PositioningEvent) -> None:
        self._entries.append(event)

    def entries(self, event_type: str | None = None) -> list[PositioningEvent]:
        if event_type is None:
            return list(self._entries)
        return [entry for entry in self._entries if entry.type == event_type]

    def recent(self, count: int) -> list[PositioningEvent]:
        if count <= 0:
            return []
        return list(self._entries)[-count:]

    def counts_by_type(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for entry in self._entries:
            counts[entry.type] = counts.get(entry.type, 0) + 1
        return counts

    def to_jsonl(self) -> str:
        """Export entries as JSON lines, oldest first."""
        return "\n".join(json.dumps(entry.to_json()) for entry in self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

"""ESD status-change events and the bounded alert log.

Events are immutable records appended by the StatusStore whenever a sensor
field flips or a reading classifies as unsafe. The EventLog keeps the most
recent MAX_ALERTS of them, newest first.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional

MAX_ALERTS = 50


class EventType(str, Enum):
    OPERATOR_STATUS_CHANGE = "OPERATOR_STATUS_CHANGE"
    WRIST_STRAP_STATUS_CHANGE = "WRIST_STRAP_STATUS_CHANGE"
    GROUNDING_STATUS_CHANGE = "GROUNDING_STATUS_CHANGE"
    SAFETY_VIOLATION = "SAFETY_VIOLATION"


@dataclass(frozen=True)
class StatusFields:
    """Sensor fields of the ESD status at a point in time (no alert history)."""

    operator_present: bool = False
    wrist_strap_connected: bool = False
    properly_grounded: bool = False
    last_update: Optional[datetime] = None


@dataclass(frozen=True)
class Event:
    """A single entry of the alert log."""

    type: EventType
    details: Mapping[str, Any]
    status_snapshot: StatusFields
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        # Freeze details so the record cannot change after it is logged
        object.__setattr__(self, "details", MappingProxyType(dict(self.details)))


class EventLog:
    """Bounded, newest-first ring of events.

    Appending beyond capacity evicts the oldest entry. All access is
    guarded by a lock, and readers only ever get copies.
    """

    def __init__(self, capacity: int = MAX_ALERTS):
        if capacity < 1:
            raise ValueError(f"EventLog capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._events: deque[Event] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def append(self, event: Event) -> None:
        with self._lock:
            # appendleft on a full deque drops the rightmost (oldest) entry
            self._events.appendleft(event)

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def snapshot(self) -> list[Event]:
        """Return the events newest first, as a new list."""
        with self._lock:
            return list(self._events)

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

"""Authoritative ESD status record.

The StatusStore owns the single mutable ESDStatus of the monitored
workstation. Every sensor reading goes through apply_reading(), which
updates the three fields, logs one event per changed field and one
SAFETY_VIOLATION event when the new status is not SAFE. The whole
update happens under one lock so readers never see the booleans out of
step with the alert log.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from .classifier import SafetyClassification, classify
from .events import Event, EventLog, EventType, StatusFields

logger = structlog.get_logger(__name__)

# Field name -> event type logged when that field flips
_FIELD_EVENTS = (
    ("operator_present", EventType.OPERATOR_STATUS_CHANGE),
    ("wrist_strap_connected", EventType.WRIST_STRAP_STATUS_CHANGE),
    ("properly_grounded", EventType.GROUNDING_STATUS_CHANGE),
)


@dataclass
class ESDStatus:
    """Current ESD status plus recent alert history (newest first)."""

    operator_present: bool = False
    wrist_strap_connected: bool = False
    properly_grounded: bool = False
    last_update: Optional[datetime] = None
    alerts: list[Event] = field(default_factory=list)

    @property
    def fields(self) -> StatusFields:
        return StatusFields(
            operator_present=self.operator_present,
            wrist_strap_connected=self.wrist_strap_connected,
            properly_grounded=self.properly_grounded,
            last_update=self.last_update,
        )


@dataclass(frozen=True)
class ReadingResult:
    """Outcome of applying one sensor reading."""

    classification: SafetyClassification
    changed_fields: frozenset[str]
    events: tuple[Event, ...]


class StatusStore:
    """Single-instance owner of the ESD status and its event log."""

    def __init__(self, event_log: Optional[EventLog] = None):
        self._fields = StatusFields()
        self._log = event_log if event_log is not None else EventLog()
        self._lock = threading.RLock()

    def apply_reading(
        self,
        operator_present: bool,
        wrist_strap_connected: bool,
        properly_grounded: bool,
    ) -> ReadingResult:
        """Apply a sensor reading and log the resulting transitions.

        Up to four events may be appended: one per changed field and one
        SAFETY_VIOLATION when the new status is not SAFE.

        Returns:
            ReadingResult with the new classification, the names of the
            fields that changed and the events that were appended
        """
        now = datetime.now(timezone.utc)
        with self._lock:
            previous = self._fields
            current = StatusFields(
                operator_present=bool(operator_present),
                wrist_strap_connected=bool(wrist_strap_connected),
                properly_grounded=bool(properly_grounded),
                last_update=now,
            )
            self._fields = current

            appended: list[Event] = []
            changed: set[str] = set()
            for name, event_type in _FIELD_EVENTS:
                old = getattr(previous, name)
                new = getattr(current, name)
                if old != new:
                    changed.add(name)
                    appended.append(self._log_event(
                        event_type,
                        {"previous": old, "current": new},
                        current,
                        now,
                    ))

            classification = classify(
                current.operator_present,
                current.wrist_strap_connected,
                current.properly_grounded,
            )
            if classification is not SafetyClassification.SAFE:
                appended.append(self._log_event(
                    EventType.SAFETY_VIOLATION,
                    {
                        "safetyStatus": classification.value,
                        "operatorPresent": current.operator_present,
                        "wristStrapConnected": current.wrist_strap_connected,
                        "properlyGrounded": current.properly_grounded,
                    },
                    current,
                    now,
                ))

        return ReadingResult(
            classification=classification,
            changed_fields=frozenset(changed),
            events=tuple(appended),
        )

    def _log_event(
        self,
        event_type: EventType,
        details: dict[str, Any],
        snapshot: StatusFields,
        timestamp: datetime,
    ) -> Event:
        event = Event(
            type=event_type,
            details=details,
            status_snapshot=snapshot,
            timestamp=timestamp,
        )
        self._log.append(event)
        log = logger.warning if event_type is EventType.SAFETY_VIOLATION else logger.info
        log("esd_event", event_type=event_type.value, details=dict(details))
        return event

    def get_status(self) -> ESDStatus:
        """Return a copy of the current status, alerts included."""
        with self._lock:
            fields = self._fields
            alerts = self._log.snapshot()
        return ESDStatus(
            operator_present=fields.operator_present,
            wrist_strap_connected=fields.wrist_strap_connected,
            properly_grounded=fields.properly_grounded,
            last_update=fields.last_update,
            alerts=alerts,
        )

    def get_classification(self) -> SafetyClassification:
        with self._lock:
            fields = self._fields
        return classify(
            fields.operator_present,
            fields.wrist_strap_connected,
            fields.properly_grounded,
        )

    def get_alerts(self) -> list[Event]:
        return self._log.snapshot()

    def clear_alerts(self) -> None:
        with self._lock:
            self._log.clear()
        logger.info("esd_alerts_cleared")

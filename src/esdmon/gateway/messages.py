"""
Outbound WebSocket/HTTP message builders.

Every message is a JSON object discriminated by ``type`` and stamped with an
ISO-8601 UTC ``timestamp`` (millisecond precision, ``Z`` suffix) so browser
clients can parse it with ``new Date()``.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from ..status.classifier import SafetyClassification
from ..status.events import Event, StatusFields
from ..status.store import ESDStatus

STATUS_UPDATE = "esd_status_update"
DATA_ACK = "esd_data_ack"
STATUS_RESPONSE = "esd_status_response"
ALERTS_RESPONSE = "esd_alerts_response"
ALERTS_CLEARED = "esd_alerts_cleared"
ERROR = "error"


def iso_timestamp(value: Optional[datetime] = None) -> str:
    """
    Format a datetime the way JavaScript's Date.toISOString() does.

    Examples:
        >>> iso_timestamp(datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc))
        '2024-01-02T03:04:05.678Z'
    """
    if value is None:
        value = datetime.now(timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def serialize_fields(fields: StatusFields) -> dict[str, Any]:
    return {
        "operatorPresent": fields.operator_present,
        "wristStrapConnected": fields.wrist_strap_connected,
        "properlyGrounded": fields.properly_grounded,
        "lastUpdate": iso_timestamp(fields.last_update) if fields.last_update else None,
    }


def serialize_event(event: Event) -> dict[str, Any]:
    return {
        "type": event.type.value,
        "details": dict(event.details),
        "timestamp": iso_timestamp(event.timestamp),
        "esdStatus": serialize_fields(event.status_snapshot),
    }


def serialize_alerts(alerts: Iterable[Event]) -> list[dict[str, Any]]:
    return [serialize_event(event) for event in alerts]


def serialize_status(status: ESDStatus) -> dict[str, Any]:
    payload = serialize_fields(status.fields)
    payload["alerts"] = serialize_alerts(status.alerts)
    return payload


def status_update(status: ESDStatus, classification: SafetyClassification) -> dict[str, Any]:
    """Build the unsolicited broadcast / initial-connect push."""
    return {
        "type": STATUS_UPDATE,
        "status": serialize_status(status),
        "safetyStatus": classification.value,
        "timestamp": iso_timestamp(),
    }


def status_response(status: ESDStatus, classification: SafetyClassification) -> dict[str, Any]:
    return {
        "type": STATUS_RESPONSE,
        "status": serialize_status(status),
        "safetyStatus": classification.value,
        "timestamp": iso_timestamp(),
    }


def data_ack() -> dict[str, Any]:
    return {"type": DATA_ACK, "received": True, "timestamp": iso_timestamp()}


def alerts_response(alerts: Iterable[Event]) -> dict[str, Any]:
    return {
        "type": ALERTS_RESPONSE,
        "alerts": serialize_alerts(alerts),
        "timestamp": iso_timestamp(),
    }


def alerts_cleared() -> dict[str, Any]:
    return {"type": ALERTS_CLEARED, "timestamp": iso_timestamp()}


def error(message: str = "Invalid message format") -> dict[str, Any]:
    return {"type": ERROR, "message": message, "timestamp": iso_timestamp()}


def encode(message: dict[str, Any]) -> str:
    return json.dumps(message, separators=(",", ":"))

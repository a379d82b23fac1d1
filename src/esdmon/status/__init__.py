"""
ESD status core.

Safety classification, the bounded alert log and the authoritative
status store.
"""

from .classifier import SafetyClassification, classify
from .events import MAX_ALERTS, Event, EventLog, EventType, StatusFields
from .store import ESDStatus, ReadingResult, StatusStore

__all__ = [
    "MAX_ALERTS",
    "ESDStatus",
    "Event",
    "EventLog",
    "EventType",
    "ReadingResult",
    "SafetyClassification",
    "StatusFields",
    "StatusStore",
    "classify",
]

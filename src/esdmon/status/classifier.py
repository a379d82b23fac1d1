"""Safety classification of an ESD workstation."""

from enum import Enum


class SafetyClassification(str, Enum):
    """Derived safety label for the three sensor readings."""

    NO_OPERATOR = "NO_OPERATOR"
    WRIST_STRAP_NOT_CONNECTED = "WRIST_STRAP_NOT_CONNECTED"
    NOT_PROPERLY_GROUNDED = "NOT_PROPERLY_GROUNDED"
    SAFE = "SAFE"


def classify(
    operator_present: bool,
    wrist_strap_connected: bool,
    properly_grounded: bool,
) -> SafetyClassification:
    """Classify a reading; the first failing check wins.

    Operator absence outranks a missing wrist strap, which outranks
    missing ground continuity.
    """
    if not operator_present:
        return SafetyClassification.NO_OPERATOR
    if not wrist_strap_connected:
        return SafetyClassification.WRIST_STRAP_NOT_CONNECTED
    if not properly_grounded:
        return SafetyClassification.NOT_PROPERLY_GROUNDED
    return SafetyClassification.SAFE

"""Domain enumerations and state-transition rules."""

import enum

from .errors import ValidationError


class HandoffStatus(str, enum.Enum):
    LOCATING = "LOCATING"
    VERIFYING = "VERIFYING"
    GUEST_VERIFIED = "GUEST_VERIFIED"
    HANDOFF_COMPLETE = "HANDOFF_COMPLETE"
    EXPIRED = "EXPIRED"
    BYPASSED = "BYPASSED"
    ERROR = "ERROR"


# Server-side state machine: maps current status -> set of valid next statuses
HANDOFF_TRANSITIONS: dict[HandoffStatus, set[HandoffStatus]] = {
    HandoffStatus.LOCATING: {
        HandoffStatus.VERIFYING,
        HandoffStatus.GUEST_VERIFIED,
        HandoffStatus.BYPASSED,
        HandoffStatus.ERROR,
    },
    HandoffStatus.VERIFYING: {
        HandoffStatus.VERIFYING,
        HandoffStatus.GUEST_VERIFIED,
        HandoffStatus.BYPASSED,
        HandoffStatus.ERROR,
    },
    HandoffStatus.ERROR: {
        HandoffStatus.LOCATING,
        HandoffStatus.VERIFYING,
        HandoffStatus.GUEST_VERIFIED,
        HandoffStatus.BYPASSED,
    },
    HandoffStatus.GUEST_VERIFIED: {
        HandoffStatus.HANDOFF_COMPLETE,
        HandoffStatus.EXPIRED,
    },
    HandoffStatus.HANDOFF_COMPLETE: set(),
    HandoffStatus.BYPASSED: set(),
    HandoffStatus.EXPIRED: set(),
}

TERMINAL_HANDOFF_STATUSES = frozenset(
    {HandoffStatus.HANDOFF_COMPLETE, HandoffStatus.BYPASSED, HandoffStatus.EXPIRED}
)


class ClientHandoffState(str, enum.Enum):
    """States of the per-device handoff state machine."""

    LOCATING = "LOCATING"
    VERIFYING = "VERIFYING"
    GUEST_VERIFIED = "GUEST_VERIFIED"
    TOO_FAR = "TOO_FAR"
    HANDOFF_COMPLETE = "HANDOFF_COMPLETE"
    EXPIRED = "EXPIRED"
    ERROR = "ERROR"


CLIENT_TRANSITIONS: dict[ClientHandoffState, set[ClientHandoffState]] = {
    ClientHandoffState.LOCATING: {
        ClientHandoffState.VERIFYING,
        ClientHandoffState.ERROR,
        ClientHandoffState.HANDOFF_COMPLETE,
    },
    ClientHandoffState.VERIFYING: {
        ClientHandoffState.GUEST_VERIFIED,
        ClientHandoffState.TOO_FAR,
        ClientHandoffState.ERROR,
    },
    ClientHandoffState.TOO_FAR: {ClientHandoffState.LOCATING},
    ClientHandoffState.GUEST_VERIFIED: {
        ClientHandoffState.HANDOFF_COMPLETE,
        ClientHandoffState.EXPIRED,
    },
    ClientHandoffState.ERROR: {ClientHandoffState.LOCATING},
    ClientHandoffState.EXPIRED: {ClientHandoffState.HANDOFF_COMPLETE},
    ClientHandoffState.HANDOFF_COMPLETE: set(),
}


class GeolocationStage(str, enum.Enum):
    ATTEMPT_HIGH_ACCURACY = "ATTEMPT_HIGH_ACCURACY"
    ATTEMPT_LOW_ACCURACY = "ATTEMPT_LOW_ACCURACY"
    ACQUIRED = "ACQUIRED"
    FAILED = "FAILED"


class CompletionMode(str, enum.Enum):
    """How a handoff reached completion (audit flag only)."""

    HOST_CONFIRMED = "HOST_CONFIRMED"
    AUTO_FALLBACK = "AUTO_FALLBACK"
    BYPASSED = "BYPASSED"
    DEGRADED = "DEGRADED"


class FuelLevel(str, enum.Enum):
    EMPTY = "Empty"
    QUARTER = "1/4"
    HALF = "1/2"
    THREE_QUARTERS = "3/4"
    FULL = "Full"

    @property
    def ordinal(self) -> int:
        return _FUEL_ORDER.index(self)

    @classmethod
    def parse(cls, value, field: str = "fuelLevel") -> "FuelLevel":
        """Accept enum members or their labels (case-insensitive)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            needle = value.strip().lower()
            for level in cls:
                if level.value.lower() == needle or level.name.lower() == needle:
                    return level
        raise ValidationError(field, f"Unrecognised fuel level: {value!r}")


_FUEL_ORDER = [
    FuelLevel.EMPTY,
    FuelLevel.QUARTER,
    FuelLevel.HALF,
    FuelLevel.THREE_QUARTERS,
    FuelLevel.FULL,
]


class ChargeStatus(str, enum.Enum):
    NONE = "NONE"
    PENDING = "PENDING"
    CAPTURE_REQUESTED = "CAPTURE_REQUESTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    DISPUTED = "DISPUTED"


class PaymentChoice(str, enum.Enum):
    PAY_NOW = "pay_now"
    REQUEST_REVIEW = "request_review"


class DisputeType(str, enum.Enum):
    MILEAGE = "MILEAGE"
    FUEL = "FUEL"
    LATE_RETURN = "LATE_RETURN"
    DAMAGE = "DAMAGE"
    CLEANING = "CLEANING"
    OTHER = "OTHER"

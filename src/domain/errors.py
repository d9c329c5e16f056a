"""Domain exceptions shared by the settlement, handoff and lifecycle code."""

from __future__ import annotations


class ValidationError(Exception):
    """Caller-correctable input problem scoped to a single field."""

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message

    def as_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}


class TransientError(Exception):
    """Environment failure (GPS timeout, network); recovered by retrying."""


class InvalidStateTransition(Exception):
    """Raised when a status change violates a state machine."""


class TripSequenceError(Exception):
    """Trip start/end attempted out of order."""


class RequestRejected(Exception):
    """The server refused a request (unknown booking, feature disabled)."""

    def __init__(self, status_code: int, detail: str):
        super().__init__(f"{status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail

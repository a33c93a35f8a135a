"""
Error taxonomy for the appointment core.

Every caller-facing failure carries a machine readable ``kind`` plus enough
detail (current and requested state, where it applies) for a client to render
an actionable message.
"""
from typing import Any, Dict, Optional


class PortalError(Exception):
    kind = "error"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {"detail": self.message, "kind": self.kind}
        body.update(self.details)
        return body


class SlotUnavailable(PortalError):
    kind = "slot_unavailable"
    status_code = 409

    def __init__(self, date: str, time_slot: str, reason: str = "booked"):
        super().__init__(
            "This time slot is no longer available. Please select another time.",
            {"date": date, "timeSlot": time_slot, "reason": reason},
        )


class InvalidTransition(PortalError):
    kind = "invalid_transition"
    status_code = 409

    def __init__(self, current: str, requested: str, message: Optional[str] = None):
        super().__init__(
            message or f"Cannot {requested} an appointment that is {current}",
            {"currentStatus": current, "requested": requested},
        )


class NotFound(PortalError):
    kind = "not_found"
    status_code = 404


class ValidationFailure(PortalError):
    kind = "validation_failure"
    status_code = 400


class PermissionDenied(PortalError):
    kind = "forbidden"
    status_code = 403


class StoreFailure(PortalError):
    """A document store call failed. Never retried here."""
    kind = "io_failure"
    status_code = 503

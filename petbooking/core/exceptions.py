"""Booking error taxonomy.

Services raise these; the API layer maps each category onto an HTTP status
(see ``petbooking.main``). Database driver errors are always wrapped in
``PersistenceError`` before they leave the service layer.
"""

from datetime import date
from typing import Any, Optional


class BookingError(Exception):
    """Base class for every error the booking core reports to callers."""

    category = "booking_error"
    status_code = 400

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        payload = {"error": self.category, "detail": self.message}
        payload.update(
            {k: v for k, v in self.context.items() if v is not None}
        )
        return payload


class BookingValidationError(BookingError):
    """Structurally invalid request: missing field, unknown entity, closed day."""

    category = "invalid_request"
    status_code = 400


class BookingConflictError(BookingError):
    """The slot overlaps an existing appointment for a required staff member.

    Callers may retry the same request with ``override_conflicts=True``.
    """

    category = "conflict"
    status_code = 409

    def __init__(
        self,
        reason: str,
        conflicting_appointment_ids: Optional[list[int]] = None,
        **context: Any,
    ):
        super().__init__(reason, **context)
        self.reason = reason
        self.conflicting_appointment_ids = conflicting_appointment_ids or []

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["reason"] = self.reason
        payload["override_allowed"] = True
        payload["conflicting_appointment_ids"] = self.conflicting_appointment_ids
        return payload


class SlotUnavailableError(BookingError):
    """Staff explicitly blocked part of the requested window.

    A conflict override does not lift this; only ``override_availability`` does.
    """

    category = "unavailable"
    status_code = 409

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["override_allowed"] = False
        return payload


class DuplicateBookingError(BookingError):
    """An identical booking request is already being committed."""

    category = "duplicate_submission"
    status_code = 409


class PersistenceError(BookingError):
    """The store rejected the write. Never retried automatically."""

    category = "persistence_error"
    status_code = 500


class AvailabilityUpdateError(PersistenceError):
    """An availability write failed; carries the staff/date/slot attempted."""

    def __init__(
        self,
        message: str,
        staff_id: int,
        day: date,
        time_slots: Optional[list[str]] = None,
    ):
        super().__init__(
            message,
            staff_id=staff_id,
            date=day.isoformat(),
            time_slots=time_slots,
        )
        self.staff_id = staff_id
        self.day = day
        self.time_slots = time_slots or []

# carebook/exceptions.py
from typing import Optional


class BookingError(Exception):
    """Base class for every failure the booking core reports to callers."""
    status_code = 500
    code = "INTERNAL"
    default_message = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(BookingError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Resource not found"


class InvalidInput(BookingError):
    status_code = 400
    code = "INVALID_INPUT"
    default_message = "Invalid input"


class Unavailable(BookingError):
    status_code = 403
    code = "UNAVAILABLE"
    default_message = "This provider is not accepting bookings at the moment"


class QuotaExceeded(BookingError):
    status_code = 403
    code = "QUOTA_EXCEEDED"
    default_message = "This provider has reached their patient limit for this month. Please try again later."


class SlotConflict(BookingError):
    status_code = 409
    code = "SLOT_CONFLICT"
    default_message = "This time slot is no longer available. Please choose another slot."


class InternalError(BookingError):
    pass

"""
Booking error taxonomy.

Every failure in the booking flow is recoverable: the conversation is reset or
the actor is re-prompted. The message is shown to the actor as-is.
"""

from typing import Optional

from .core.responses import ErrorCodes


class BookingError(Exception):
    """Base class for failures reported back to the actor."""

    code = ErrorCodes.VALIDATION_ERROR
    status_code = 400

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details
        super().__init__(message)


class ValidationError(BookingError):
    """Malformed date, time or name supplied by the actor."""

    code = ErrorCodes.VALIDATION_ERROR
    status_code = 422


class StateMismatch(BookingError):
    """Action does not match the actor's current conversation step."""

    code = ErrorCodes.STATE_MISMATCH
    status_code = 409


class StaleSession(StateMismatch):
    """Confirmation arrived without the conversation data it refers to."""

    code = ErrorCodes.SESSION_EXPIRED


class SlotConflict(BookingError):
    """The requested start instant is already claimed."""

    code = ErrorCodes.SLOT_CONFLICT
    status_code = 409


class NotFound(BookingError):
    """Lesson does not exist or the actor is not allowed to act on it."""

    code = ErrorCodes.NOT_FOUND
    status_code = 404


class PersistenceFailure(BookingError):
    """Storage boundary unavailable. Not retried here."""

    code = ErrorCodes.PERSISTENCE_FAILURE
    status_code = 503

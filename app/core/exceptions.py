"""Domain errors raised by the booking core.

Each error carries the HTTP status it maps to so the API layer can render
it without knowing the individual classes.
"""


class BookingError(Exception):
    status_code = 500
    default_message = "Booking operation failed"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundError(BookingError):
    status_code = 404
    default_message = "Resource not found"


class SlotNotFoundError(NotFoundError):
    default_message = "Slot not found"


class BookingNotFoundError(NotFoundError):
    default_message = "Booking not found"


class DoctorNotFoundError(NotFoundError):
    default_message = "Doctor not found"


class ConflictError(BookingError):
    status_code = 409
    default_message = "Conflict"


class SlotUnavailableError(ConflictError):
    """Raised when the slot already has an active booking."""

    default_message = "Slot already booked"


class BookingNotCancellableError(ConflictError):
    default_message = "Booking not cancellable"


class SlotExistsError(ConflictError):
    default_message = "Slot already exists for that doctor and time"


class SweepInProgressError(ConflictError):
    default_message = "A reconciliation sweep is already running"


class NotOwnerError(BookingError):
    status_code = 403
    default_message = "Booking belongs to another user"


class TransactionFailedError(BookingError):
    """Storage failure; the transaction has been rolled back."""

    status_code = 503
    default_message = "Transaction failed, no changes were applied"


__all__ = [
    "BookingError",
    "NotFoundError",
    "SlotNotFoundError",
    "BookingNotFoundError",
    "DoctorNotFoundError",
    "ConflictError",
    "SlotUnavailableError",
    "BookingNotCancellableError",
    "SlotExistsError",
    "SweepInProgressError",
    "NotOwnerError",
    "TransactionFailedError",
]

from .user import User
from .doctor import Doctor
from .slot import Slot
from .booking import Booking, BookingStatus, ACTIVE_STATUSES, TERMINAL_STATUSES

__all__ = [
    "User",
    "Doctor",
    "Slot",
    "Booking",
    "BookingStatus",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
]

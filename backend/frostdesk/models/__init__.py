"""ORM models; importing this package registers every table on Base.metadata."""

from .audit_log import SYSTEM_ACTOR, BookingAudit
from .booking import (
    BLOCKING_STATUSES,
    CREATABLE_STATUSES,
    NON_PARTICIPATING_STATUSES,
    Booking,
    BookingStatus,
)
from .calendar_connection import InstructorCalendarConnection

__all__ = [
    "BLOCKING_STATUSES",
    "CREATABLE_STATUSES",
    "NON_PARTICIPATING_STATUSES",
    "SYSTEM_ACTOR",
    "Booking",
    "BookingAudit",
    "BookingStatus",
    "InstructorCalendarConnection",
]

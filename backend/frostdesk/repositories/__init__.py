"""Data access layer; repositories flush, services commit."""

from .audit_repository import AuditRepository
from .base_repository import BaseRepository
from .booking_repository import BookingCreateResult, BookingRepository
from .calendar_connection_repository import CalendarConnectionRepository
from .factory import RepositoryFactory

__all__ = [
    "AuditRepository",
    "BaseRepository",
    "BookingCreateResult",
    "BookingRepository",
    "CalendarConnectionRepository",
    "RepositoryFactory",
]

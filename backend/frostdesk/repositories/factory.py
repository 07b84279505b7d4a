# backend/frostdesk/repositories/factory.py
"""
Repository Factory for the booking engine.

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

# Avoid circular imports
if TYPE_CHECKING:
    from .audit_repository import AuditRepository
    from .booking_repository import BookingRepository
    from .calendar_connection_repository import CalendarConnectionRepository


class RepositoryFactory:
    """
    Factory class for creating repository instances.

    Centralizes repository creation to ensure consistent initialization
    and makes it easy to swap implementations if needed.
    """

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        """Create repository for booking operations."""
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_audit_repository(db: Session) -> "AuditRepository":
        """Create repository for booking transition history."""
        from .audit_repository import AuditRepository

        return AuditRepository(db)

    @staticmethod
    def create_calendar_connection_repository(db: Session) -> "CalendarConnectionRepository":
        """Create repository for instructor calendar credentials."""
        from .calendar_connection_repository import CalendarConnectionRepository

        return CalendarConnectionRepository(db)

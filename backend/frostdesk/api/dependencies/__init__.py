# backend/frostdesk/api/dependencies/__init__.py
"""
Central export point for all dependencies.
"""

from .auth import get_current_instructor_id
from .database import get_db
from .services import (
    get_audit_service,
    get_booking_service,
    get_calendar_client,
    get_calendar_service,
    get_payment_service,
)

__all__ = [
    # Auth
    "get_current_instructor_id",
    # Database
    "get_db",
    # Services
    "get_audit_service",
    "get_booking_service",
    "get_calendar_client",
    "get_calendar_service",
    "get_payment_service",
]

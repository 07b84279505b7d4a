# backend/frostdesk/services/__init__.py
"""
Service layer for the booking lifecycle engine.

Services own transaction boundaries; repositories only flush.
"""

from .audit_service import AuditService
from .base import BaseService
from .booking_service import BookingService
from .calendar_service import CalendarService
from .payment_service import PaymentService
from .saga import BookingSaga

__all__ = [
    "AuditService",
    "BaseService",
    "BookingSaga",
    "BookingService",
    "CalendarService",
    "PaymentService",
]

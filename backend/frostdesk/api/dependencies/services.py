# backend/frostdesk/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

This module provides factory functions that create service instances
with their required dependencies properly injected.
"""

from functools import lru_cache
import logging

from fastapi import Depends
from sqlalchemy.orm import Session

from ...integrations import CalendarClient
from ...services.audit_service import AuditService
from ...services.booking_service import BookingService
from ...services.calendar_service import CalendarService, build_calendar_client
from ...services.payment_service import PaymentService
from .database import get_db

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_calendar_client() -> CalendarClient:
    """Process-wide calendar client; the fake provider keeps its events in memory."""
    return build_calendar_client()


def get_calendar_service(
    db: Session = Depends(get_db),
    client: CalendarClient = Depends(get_calendar_client),
) -> CalendarService:
    return CalendarService(db, client)


def get_payment_service(db: Session = Depends(get_db)) -> PaymentService:
    return PaymentService(db)


def get_audit_service(db: Session = Depends(get_db)) -> AuditService:
    return AuditService(db)


def get_booking_service(
    db: Session = Depends(get_db),
    calendar_service: CalendarService = Depends(get_calendar_service),
    payment_service: PaymentService = Depends(get_payment_service),
    audit_service: AuditService = Depends(get_audit_service),
) -> BookingService:
    """
    Get BookingService instance with proper dependencies.

    Args:
        db: Database session
        calendar_service: Calendar adapter
        payment_service: Payment adapter
        audit_service: Transition ledger writer

    Returns:
        BookingService instance
    """
    return BookingService(
        db,
        calendar_service=calendar_service,
        payment_service=payment_service,
        audit_service=audit_service,
    )

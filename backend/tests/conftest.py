# backend/tests/conftest.py
"""
Pytest configuration for the booking engine.

Every test gets a fresh in-memory SQLite database (StaticPool so all sessions
share one connection). SQLite ignores FOR UPDATE; the locking behaviour itself
is covered by the PostgreSQL-only tests under tests/integration.
"""

import os

# Settings are read at import time; pin them before importing frostdesk
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["CALENDAR_PROVIDER"] = "fake"
os.environ["AUDIT_ENABLED"] = "true"
os.environ.pop("STRIPE_SECRET_KEY", None)

from typing import Any, Callable, Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from frostdesk.core.config import settings
from frostdesk.database import Base
from frostdesk.integrations.google_calendar_client import FakeCalendarClient
import frostdesk.models  # noqa: F401
from frostdesk.models.booking import Booking, BookingStatus
from frostdesk.services.audit_service import AuditService
from frostdesk.services.booking_service import BookingService
from frostdesk.services.calendar_service import CalendarService
from frostdesk.services.payment_service import PaymentService
from lesson_time import INSTRUCTOR_ID, at

settings.is_testing = True


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def db(engine: Engine) -> Generator[Session, None, None]:
    """Database session for a single test."""
    TestSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    session = TestSession()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def calendar_client() -> FakeCalendarClient:
    return FakeCalendarClient()


@pytest.fixture
def calendar_service(db: Session, calendar_client: FakeCalendarClient) -> CalendarService:
    return CalendarService(db, calendar_client, require_connection=False)


@pytest.fixture
def audit_service(db: Session) -> AuditService:
    return AuditService(db, enabled=True)


@pytest.fixture
def payment_service(db: Session) -> PaymentService:
    return PaymentService(db)


@pytest.fixture
def booking_service(
    db: Session,
    calendar_service: CalendarService,
    payment_service: PaymentService,
    audit_service: AuditService,
) -> BookingService:
    return BookingService(
        db,
        calendar_service=calendar_service,
        payment_service=payment_service,
        audit_service=audit_service,
    )


@pytest.fixture
def make_booking(db: Session) -> Callable[..., Booking]:
    """Insert a booking row directly, bypassing overlap checks and audit."""

    def _make(
        start_hour: int = 10,
        end_hour: int = 12,
        *,
        status: str = BookingStatus.PROPOSED.value,
        instructor_id: str = INSTRUCTOR_ID,
        **fields: Any,
    ) -> Booking:
        booking = Booking(
            instructor_id=instructor_id,
            start_time=at(start_hour),
            end_time=at(end_hour),
            status=status,
            **fields,
        )
        db.add(booking)
        db.commit()
        return booking

    return _make

# backend/frostdesk/models/booking.py
"""
Booking model for the booking lifecycle engine.

One row per appointment between an instructor and a customer. Rows are never
physically deleted; cancellation and expiry are terminal statuses.
"""

from enum import Enum
from typing import Any

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from ..core.time_utils import utc_now
from ..core.ulid_helper import generate_ulid
from ..database import Base


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    DRAFT = "draft"
    PROPOSED = "proposed"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    MODIFIED = "modified"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


# Status values that occupy the instructor's calendar for overlap purposes.
BLOCKING_STATUSES = frozenset(
    {BookingStatus.CONFIRMED.value, BookingStatus.MODIFIED.value, BookingStatus.PENDING.value}
)
# Status values never considered by the overlap lock.
NON_PARTICIPATING_STATUSES = frozenset({BookingStatus.CANCELLED.value, BookingStatus.EXPIRED.value})
CREATABLE_STATUSES = frozenset({BookingStatus.DRAFT.value, BookingStatus.PROPOSED.value})

_STATUS_VALUES = ", ".join(f"'{status.value}'" for status in BookingStatus)


class Booking(Base):
    """Single lesson booking owned by one instructor."""

    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, index=True, default=generate_ulid)
    instructor_id = Column(String(64), nullable=False)

    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)

    # Party
    customer_id = Column(String(64), nullable=True)
    customer_name = Column(String(255), nullable=True)
    party_size = Column(Integer, nullable=True)
    skill_level = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)

    # Commercial (informational only)
    amount_cents = Column(Integer, nullable=True)
    currency = Column(String(3), nullable=True)
    payment_status = Column(String(50), nullable=True, comment="Last known Stripe intent status")
    payment_intent_id = Column(String(255), nullable=True, comment="Stripe payment intent")

    status = Column(String(20), nullable=False, default=BookingStatus.DRAFT.value, index=True)
    calendar_event_id = Column(String(255), nullable=True)
    idempotency_key = Column(String(255), nullable=True)

    created_at = Column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now()
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=func.now(),
        onupdate=utc_now,
    )

    __table_args__ = (
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="ck_bookings_status"),
        CheckConstraint("start_time < end_time", name="ck_bookings_time_order"),
        CheckConstraint("party_size IS NULL OR party_size > 0", name="ck_bookings_party_size"),
        CheckConstraint(
            "amount_cents IS NULL OR amount_cents >= 0", name="ck_bookings_amount_non_negative"
        ),
        UniqueConstraint(
            "instructor_id", "idempotency_key", name="uq_bookings_instructor_idempotency_key"
        ),
        Index("ix_bookings_instructor_window", "instructor_id", "start_time", "end_time"),
    )

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if not self.status:
            self.status = BookingStatus.DRAFT.value

    def __repr__(self) -> str:
        return (
            f"<Booking {self.id}: instructor={self.instructor_id}, "
            f"time={self.start_time}-{self.end_time}, status={self.status}>"
        )

    @property
    def is_blocking(self) -> bool:
        return self.status in BLOCKING_STATUSES

# backend/frostdesk/models/audit_log.py
"""
Append-only ledger of booking status transitions.

Rows are written once and never updated or deleted; the booking row remains
the source of truth for current state.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Optional

from sqlalchemy import Column, DateTime, Index, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from sqlalchemy.types import JSON

from ..core.time_utils import utc_now
from ..core.ulid_helper import generate_ulid
from ..database import Base

SYSTEM_ACTOR = "system"


class BookingAudit(Base):
    """Persistence model for one booking status transition."""

    __tablename__ = "booking_audit"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    booking_id = Column(String(26), nullable=False)
    instructor_id = Column(String(64), nullable=False)
    previous_state = Column(String(20), nullable=False)
    new_state = Column(String(20), nullable=False)
    actor = Column(String(64), nullable=False, default=SYSTEM_ACTOR)
    occurred_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=func.now(),
    )
    context = Column(
        "metadata",
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"),
        nullable=True,
    )

    __table_args__ = (
        Index("ix_booking_audit_booking_occurred", "booking_id", "occurred_at"),
        Index("ix_booking_audit_instructor_occurred", "instructor_id", "occurred_at"),
    )

    @classmethod
    def from_transition(
        cls,
        *,
        booking_id: str,
        instructor_id: str,
        previous_state: str,
        new_state: str,
        actor: Optional[str],
        occurred_at: Optional[datetime] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> "BookingAudit":
        """Factory helper to build an audit row from transition metadata."""
        return cls(
            booking_id=booking_id,
            instructor_id=instructor_id,
            previous_state=previous_state,
            new_state=new_state,
            actor=(actor or SYSTEM_ACTOR),
            occurred_at=occurred_at or utc_now(),
            context=dict(context) if context else None,
        )

    def __repr__(self) -> str:
        return (
            f"<BookingAudit {self.booking_id}: {self.previous_state} -> {self.new_state} "
            f"by {self.actor}>"
        )

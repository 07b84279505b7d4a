"""Service for booking transition audit rows.

Writes are best-effort: a failure is logged and counted but never propagated,
because the booking mutation being described has already been committed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Any, Mapping, Optional

from sqlalchemy.orm import Session

from frostdesk.core.config import settings
from frostdesk.core.exceptions import BookingNotFoundError
from frostdesk.models.audit_log import SYSTEM_ACTOR, BookingAudit
from frostdesk.monitoring.prometheus_metrics import prometheus_metrics
from frostdesk.repositories.factory import RepositoryFactory

logger = logging.getLogger(__name__)

BOOKING_CREATED = "booking_created"
STATUS_TRANSITION = "status_transition"


@dataclass(frozen=True)
class TimelineEvent:
    """One entry of a booking's lifecycle timeline."""

    event_type: str
    booking_id: str
    instructor_id: str
    previous_state: Optional[str]
    new_state: str
    actor: str
    occurred_at: datetime
    id: Optional[str] = None
    context: Optional[dict[str, Any]] = None

    @classmethod
    def from_audit_row(cls, row: BookingAudit) -> TimelineEvent:
        return cls(
            event_type=STATUS_TRANSITION,
            booking_id=row.booking_id,
            instructor_id=row.instructor_id,
            previous_state=row.previous_state,
            new_state=row.new_state,
            actor=row.actor,
            occurred_at=row.occurred_at,
            id=row.id,
            context=row.context,
        )


class AuditService:
    """Append and read booking transition history."""

    def __init__(self, db: Session, *, enabled: Optional[bool] = None):
        self.db = db
        self.enabled = settings.audit_enabled if enabled is None else enabled
        self.audit_repository = RepositoryFactory.create_audit_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)

    def record_transition(
        self,
        *,
        booking_id: str,
        instructor_id: str,
        previous_state: str,
        new_state: str,
        actor: Optional[str] = SYSTEM_ACTOR,
        occurred_at: Optional[datetime] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> Optional[BookingAudit]:
        """Persist one transition row in its own commit; returns None if it was not written."""
        if not self.enabled:
            return None

        entry = BookingAudit.from_transition(
            booking_id=booking_id,
            instructor_id=instructor_id,
            previous_state=previous_state,
            new_state=new_state,
            actor=actor,
            occurred_at=occurred_at,
            context=context,
        )
        try:
            self.audit_repository.write(entry)
            self.db.commit()
        except Exception:
            try:
                self.db.rollback()
            except Exception:
                logger.debug("Rollback after audit failure also failed", exc_info=True)
            logger.exception(
                "Failed to write booking audit row",
                extra={
                    "booking_id": booking_id,
                    "previous_state": previous_state,
                    "new_state": new_state,
                    "actor": entry.actor,
                },
            )
            try:
                prometheus_metrics.record_audit_failure(new_state)
            except Exception:
                logger.debug("Failed to record audit failure metric", exc_info=True)
            return None
        return entry

    def get_booking_timeline(
        self, booking_id: str, instructor_id: Optional[str] = None
    ) -> list[TimelineEvent]:
        """
        Oldest-first lifecycle of one booking, scoped to its owner when given.

        The first event is derived from the booking row itself; creation is
        not a transition and has no audit row. Its status is the first
        transition's previous state, or the current status when the booking
        has never moved.
        """
        booking = self.booking_repository.get_booking_by_id(booking_id, instructor_id)
        if booking is None:
            raise BookingNotFoundError(booking_id)
        rows = self.audit_repository.list_for_booking(booking_id)

        created = TimelineEvent(
            event_type=BOOKING_CREATED,
            booking_id=booking.id,
            instructor_id=booking.instructor_id,
            previous_state=None,
            new_state=rows[0].previous_state if rows else booking.status,
            actor=SYSTEM_ACTOR,
            occurred_at=booking.created_at,
        )
        return [created] + [TimelineEvent.from_audit_row(row) for row in rows]

    def list_for_instructor(
        self,
        instructor_id: str,
        *,
        booking_id: Optional[str] = None,
        new_state: Optional[str] = None,
        actor: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[BookingAudit], int]:
        return self.audit_repository.list(
            instructor_id=instructor_id,
            booking_id=booking_id,
            new_state=new_state,
            actor=actor,
            start=start,
            end=end,
            limit=limit,
            offset=offset,
        )

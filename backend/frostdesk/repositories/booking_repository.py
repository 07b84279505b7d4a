# backend/frostdesk/repositories/booking_repository.py
"""
Booking Repository for the booking lifecycle engine.

This repository handles:
- Lock-and-insert creation with per-instructor overlap locking
- Idempotency-key lookups
- Ownership-scoped reads and listings
- Narrow field writes (status, details, calendar/payment references)

Overlap locking uses SELECT ... FOR UPDATE on the rows of one instructor that
intersect the requested interval, so different instructors never contend.
SQLite ignores FOR UPDATE; the lock is only effective on PostgreSQL.
"""

from datetime import datetime
import logging
from typing import Any, Dict, List, NamedTuple, Optional, cast

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import (
    AvailabilityConflictError,
    BookingNotFoundError,
    RepositoryException,
)
from ..core.time_utils import utc_now
from ..models.booking import (
    NON_PARTICIPATING_STATUSES,
    Booking,
    BookingStatus,
)
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

# Non-temporal fields an instructor may edit in place.
EDITABLE_DETAIL_FIELDS = frozenset(
    {
        "customer_id",
        "customer_name",
        "party_size",
        "skill_level",
        "notes",
        "amount_cents",
        "currency",
    }
)


class BookingCreateResult(NamedTuple):
    booking: Booking
    created: bool


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        """Initialize with Booking model."""
        super().__init__(db, Booking)
        self.logger = logging.getLogger(__name__)

    # Reads

    def get_booking_by_id(
        self, booking_id: str, instructor_id: Optional[str] = None
    ) -> Optional[Booking]:
        """
        Get a booking, scoped to its owner when ``instructor_id`` is given.

        Returns None both for missing rows and for rows owned by someone else.
        """
        try:
            query = self.db.query(Booking).filter(Booking.id == booking_id)
            if instructor_id is not None:
                query = query.filter(Booking.instructor_id == instructor_id)
            return cast(Optional[Booking], query.first())
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to get booking: {str(e)}") from e

    def find_by_idempotency_key(
        self, instructor_id: str, idempotency_key: str
    ) -> Optional[Booking]:
        return self.find_one_by(instructor_id=instructor_id, idempotency_key=idempotency_key)

    def list_instructor_bookings(
        self,
        instructor_id: str,
        *,
        status: Optional[str] = None,
        start_from: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Booking]:
        """List an instructor's bookings ordered by start time."""
        query = self._build_query().filter(Booking.instructor_id == instructor_id)
        if status:
            query = query.filter(Booking.status == status)
        if start_from is not None:
            query = query.filter(Booking.end_time > start_from)
        query = (
            query.order_by(Booking.start_time.asc(), Booking.id.asc())
            .offset(max(0, offset))
            .limit(max(0, limit))
        )
        return self._execute_query(query)

    def list_stale_proposals(self, cutoff: datetime, limit: int = 200) -> List[Booking]:
        """Proposed bookings created before ``cutoff``, oldest first."""
        query = (
            self._build_query()
            .filter(
                Booking.status == BookingStatus.PROPOSED.value,
                Booking.created_at < cutoff,
            )
            .order_by(Booking.created_at.asc())
            .limit(limit)
        )
        return self._execute_query(query)

    # Locking

    def lock_booking_window(
        self,
        instructor_id: str,
        start_time: datetime,
        end_time: datetime,
        *,
        include_booking_id: Optional[str] = None,
    ) -> List[Booking]:
        """
        Lock every live booking of one instructor overlapping ``[start_time, end_time)``.

        ``include_booking_id`` adds that booking's own row to the same locking
        statement so the caller holds its row and all neighbours in one
        id-ordered pass. Cancelled and expired rows are never locked.
        Locks are held until the caller's transaction ends.
        """
        overlap = and_(
            Booking.instructor_id == instructor_id,
            Booking.start_time < end_time,
            Booking.end_time > start_time,
            Booking.status.notin_(list(NON_PARTICIPATING_STATUSES)),
        )
        condition = overlap if include_booking_id is None else or_(
            Booking.id == include_booking_id, overlap
        )
        query = (
            self.db.query(Booking)
            .filter(condition)
            .order_by(Booking.id.asc())
            .with_for_update()
            .populate_existing()
        )
        return self._execute_query(query)

    def lock_booking(self, booking_id: str) -> Optional[Booking]:
        """Lock one booking row for a status-only transition."""
        try:
            query = (
                self.db.query(Booking)
                .filter(Booking.id == booking_id)
                .with_for_update()
                .populate_existing()
            )
            return cast(Optional[Booking], query.first())
        except SQLAlchemyError as e:
            self.logger.error(f"Error locking booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to lock booking: {str(e)}") from e

    @staticmethod
    def blocking_conflicts(
        locked: List[Booking], *, exclude_booking_id: Optional[str] = None
    ) -> List[Booking]:
        return [
            row
            for row in locked
            if row.id != exclude_booking_id and row.is_blocking
        ]

    # Writes

    def create_booking(
        self,
        *,
        instructor_id: str,
        start_time: datetime,
        end_time: datetime,
        status: str = BookingStatus.DRAFT.value,
        idempotency_key: Optional[str] = None,
        **details: Any,
    ) -> BookingCreateResult:
        """
        Insert a booking after locking the overlapping blocking rows.

        Does not commit; the locks are released by the caller's commit or
        rollback.

        Raises:
            AvailabilityConflictError: if a blocking booking overlaps the interval
            RepositoryException: on other database failures
        """
        if idempotency_key:
            existing = self.find_by_idempotency_key(instructor_id, idempotency_key)
            if existing is not None:
                self.logger.info(
                    "Idempotent booking create returned existing row",
                    extra={"booking_id": existing.id, "instructor_id": instructor_id},
                )
                return BookingCreateResult(existing, False)

        locked = self.lock_booking_window(instructor_id, start_time, end_time)
        conflicts = self.blocking_conflicts(locked)
        if conflicts:
            raise AvailabilityConflictError(
                conflicting_booking_ids=[row.id for row in conflicts],
                details={"instructor_id": instructor_id},
            )

        booking = Booking(
            instructor_id=instructor_id,
            start_time=start_time,
            end_time=end_time,
            status=status,
            idempotency_key=idempotency_key,
            **{key: value for key, value in details.items() if key in EDITABLE_DETAIL_FIELDS},
        )
        try:
            self.db.add(booking)
            self.db.flush()
        except IntegrityError as exc:
            self.db.rollback()
            if idempotency_key:
                # Concurrent create with the same key won the unique constraint
                existing = self.find_by_idempotency_key(instructor_id, idempotency_key)
                if existing is not None:
                    return BookingCreateResult(existing, False)
            self.logger.error("Integrity error creating booking: %s", exc)
            raise RepositoryException(f"Integrity constraint violated: {exc}") from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            self.logger.error("Error creating booking: %s", exc)
            raise RepositoryException(f"Failed to create booking: {exc}") from exc

        self.logger.info(
            "Created booking",
            extra={"booking_id": booking.id, "instructor_id": instructor_id, "status": status},
        )
        return BookingCreateResult(booking, True)

    def update_booking_state(self, booking_id: str, new_status: str) -> Booking:
        """Unconditional status write; callers validate the transition first."""
        return self._write_fields(
            booking_id,
            status=str(getattr(new_status, "value", new_status)),
            updated_at=utc_now(),
        )

    def update_booking_details(
        self, booking_id: str, instructor_id: str, patch: Dict[str, Any]
    ) -> Optional[Booking]:
        """
        Apply a partial detail patch to a booking owned by ``instructor_id``.

        Keys outside the editable detail set are ignored; absent keys are left
        untouched. Returns None when the booking is missing or not owned.
        """
        booking = self.get_booking_by_id(booking_id, instructor_id)
        if booking is None:
            return None
        changes = {key: value for key, value in patch.items() if key in EDITABLE_DETAIL_FIELDS}
        if not changes:
            return booking
        try:
            for key, value in changes.items():
                setattr(booking, key, value)
            booking.updated_at = utc_now()
            self.db.flush()
            return booking
        except SQLAlchemyError as e:
            self.logger.error(f"Error updating booking {booking_id}: {str(e)}")
            self.db.rollback()
            raise RepositoryException(f"Failed to update booking: {str(e)}") from e

    def update_booking_window(
        self, booking_id: str, start_time: datetime, end_time: datetime
    ) -> Booking:
        return self._write_fields(
            booking_id, start_time=start_time, end_time=end_time, updated_at=utc_now()
        )

    def attach_calendar_event(self, booking_id: str, calendar_event_id: str) -> Booking:
        return self._write_fields(booking_id, calendar_event_id=calendar_event_id)

    def detach_calendar_event(self, booking_id: str) -> Booking:
        return self._write_fields(booking_id, calendar_event_id=None)

    def attach_payment_intent(self, booking_id: str, payment_intent_id: str) -> Booking:
        return self._write_fields(booking_id, payment_intent_id=payment_intent_id)

    def detach_payment_intent(self, booking_id: str) -> Booking:
        return self._write_fields(booking_id, payment_intent_id=None, payment_status=None)

    def set_payment_status(self, booking_id: str, payment_status: Optional[str]) -> Booking:
        return self._write_fields(booking_id, payment_status=payment_status)

    def _write_fields(self, booking_id: str, **fields: Any) -> Booking:
        booking = self.update(booking_id, **fields)
        if booking is None:
            raise BookingNotFoundError(booking_id)
        return booking

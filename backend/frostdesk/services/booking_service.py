# backend/frostdesk/services/booking_service.py
"""
Booking Service for the booking lifecycle engine.

Coordinates the booking store, calendar adapter, payment adapter and audit
log:
- Creating bookings under a per-instructor overlap lock
- Confirming, modifying and cancelling as compensating sagas
- Proposing and expiring bookings (status-only transitions)
- Detail edits and ownership-scoped reads

Invariant kept across every saga: a booking carries a calendar_event_id only
while a live calendar event exists, and it is confirmed only after its event
id was durably attached.
"""

from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    AvailabilityConflictError,
    BookingCollisionError,
    BookingNotFoundError,
    RepositoryException,
    ServiceException,
    ValidationException,
)
from ..core.time_utils import ensure_utc, utc_now
from ..domain.booking_state_machine import transition_booking_state
from ..models.audit_log import SYSTEM_ACTOR
from ..models.booking import CREATABLE_STATUSES, Booking, BookingStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.booking_repository import EDITABLE_DETAIL_FIELDS
from ..repositories.factory import RepositoryFactory
from .audit_service import AuditService
from .base import BaseService
from .calendar_service import CalendarCredentials, CalendarEventDetails, CalendarService
from .payment_service import PaymentService
from .saga import BookingSaga

if TYPE_CHECKING:
    from ..repositories.booking_repository import BookingRepository

logger = logging.getLogger(__name__)

# Detail fields that appear on the calendar event
CALENDAR_DETAIL_FIELDS = frozenset({"customer_name", "notes"})


class BookingService(BaseService):
    """
    Service layer for booking lifecycle operations.

    ``instructor_id`` arguments scope reads and writes to the owning
    instructor; system callers (expiry sweep) pass None.
    """

    repository: "BookingRepository"

    @staticmethod
    def _is_deadlock_error(exc: Optional[BaseException]) -> bool:
        if not isinstance(exc, OperationalError):
            return False
        orig = getattr(exc, "orig", None)
        pgcode = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
        if pgcode == "40P01":
            return True
        return "deadlock detected" in str(exc).lower()

    def __init__(
        self,
        db: Session,
        *,
        calendar_service: Optional[CalendarService] = None,
        payment_service: Optional[PaymentService] = None,
        audit_service: Optional[AuditService] = None,
        repository: Optional["BookingRepository"] = None,
    ):
        """
        Initialize booking service.

        Args:
            db: Database session
            calendar_service: Calendar adapter (defaults to the configured provider)
            payment_service: Payment adapter
            audit_service: Transition ledger writer
            repository: Optional BookingRepository instance
        """
        super().__init__(db)
        self.repository = repository or RepositoryFactory.create_booking_repository(db)
        self.calendar_service = calendar_service or CalendarService(db)
        self.payment_service = payment_service or PaymentService(db)
        self.audit_service = audit_service or AuditService(db)

    # ── Reads ────────────────────────────────────────────────────────────

    def get_booking(self, booking_id: str, instructor_id: Optional[str] = None) -> Booking:
        booking = self.repository.get_booking_by_id(booking_id, instructor_id)
        if booking is None:
            raise BookingNotFoundError(booking_id)
        return booking

    def list_instructor_bookings(
        self,
        instructor_id: str,
        *,
        status: Optional[str] = None,
        start_from: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Booking]:
        return self.repository.list_instructor_bookings(
            instructor_id,
            status=status,
            start_from=ensure_utc(start_from) if start_from else None,
            limit=limit,
            offset=offset,
        )

    # ── Creation ─────────────────────────────────────────────────────────

    @BaseService.measure_operation("create_booking")
    def create_booking(
        self,
        *,
        instructor_id: str,
        start_time: datetime,
        end_time: datetime,
        status: str = BookingStatus.DRAFT.value,
        idempotency_key: Optional[str] = None,
        **details: Any,
    ) -> Booking:
        """
        Create a booking in draft or proposed status.

        Creation is not a status transition and writes no audit row; the
        timeline derives its creation event from the booking row. A repeated
        call with the same idempotency key returns the original booking.

        Raises:
            ValidationException: bad interval or initial status
            AvailabilityConflictError: a blocking booking overlaps the interval
        """
        start_utc = ensure_utc(start_time)
        end_utc = ensure_utc(end_time)
        if start_utc >= end_utc:
            raise ValidationException(
                "start_time must be before end_time",
                code="INVALID_TIME_RANGE",
                details={"start_time": start_utc.isoformat(), "end_time": end_utc.isoformat()},
            )
        status_value = str(getattr(status, "value", status))
        if status_value not in CREATABLE_STATUSES:
            raise ValidationException(
                f"Bookings can only be created as {', '.join(sorted(CREATABLE_STATUSES))}",
                code="INVALID_INITIAL_STATUS",
                details={"status": status_value},
            )
        unknown = set(details) - EDITABLE_DETAIL_FIELDS
        if unknown:
            raise ValidationException(
                "Unknown booking fields",
                code="UNKNOWN_FIELDS",
                details={"fields": sorted(unknown)},
            )

        try:
            with self.transaction():
                result = self.repository.create_booking(
                    instructor_id=instructor_id,
                    start_time=start_utc,
                    end_time=end_utc,
                    status=status_value,
                    idempotency_key=idempotency_key,
                    **details,
                )
        except AvailabilityConflictError:
            self._record_conflict("create")
            raise
        except RepositoryException as exc:
            if self._is_deadlock_error(exc.__cause__):
                self._record_conflict("create")
                raise AvailabilityConflictError(
                    details={"instructor_id": instructor_id}
                ) from exc
            raise

        booking = result.booking
        if result.created:
            self.log_operation(
                "booking_created",
                booking_id=booking.id,
                instructor_id=instructor_id,
                status=status_value,
            )
        return booking

    # ── Status-only transitions ──────────────────────────────────────────

    @BaseService.measure_operation("propose_booking_slots")
    def propose_booking_slots(
        self,
        booking_id: str,
        *,
        instructor_id: Optional[str] = None,
        actor: Optional[str] = SYSTEM_ACTOR,
    ) -> Booking:
        """draft -> proposed; no external calls."""
        return self._status_only_transition(
            booking_id, BookingStatus.PROPOSED, instructor_id=instructor_id, actor=actor
        )

    @BaseService.measure_operation("expire_booking")
    def expire_booking(self, booking_id: str, *, instructor_id: Optional[str] = None) -> Booking:
        """proposed -> expired; no external calls. Always audited as the system actor."""
        return self._status_only_transition(
            booking_id, BookingStatus.EXPIRED, instructor_id=instructor_id, actor=SYSTEM_ACTOR
        )

    def _status_only_transition(
        self,
        booking_id: str,
        target: BookingStatus,
        *,
        instructor_id: Optional[str],
        actor: Optional[str],
    ) -> Booking:
        booking = self.get_booking(booking_id, instructor_id)
        transition_booking_state(booking.status, target)

        with self.transaction():
            current = self.repository.lock_booking(booking_id)
            if current is None:
                raise BookingNotFoundError(booking_id)
            previous = current.status
            # Re-check under the row lock; a concurrent request may have moved it
            transition_booking_state(previous, target)
            booking = self.repository.update_booking_state(booking_id, target.value)

        self._record_transition(booking, previous, target.value, actor)
        return booking

    # ── Confirm ──────────────────────────────────────────────────────────

    @BaseService.measure_operation("confirm_booking")
    def confirm_booking(
        self,
        booking_id: str,
        payment_intent_id: Optional[str] = None,
        *,
        instructor_id: Optional[str] = None,
        actor: Optional[str] = SYSTEM_ACTOR,
    ) -> Booking:
        """
        Confirm a proposed booking.

        Steps:
            A. attach the payment intent (committed; never rolled back)
            lock the instructor's overlapping rows and check for collisions
            B. create the calendar event        (undo: delete the event)
            C. attach calendar_event_id         (undo: clear calendar_event_id)
            D. persist status=confirmed and commit

        Raises:
            BookingNotFoundError, InvalidBookingTransitionError,
            BookingCollisionError, CalendarNotConnectedError,
            CalendarSyncException, RepositoryException/ServiceException
        """
        booking = self.get_booking(booking_id, instructor_id)
        previous = booking.status
        transition_booking_state(previous, BookingStatus.CONFIRMED)
        owner = booking.instructor_id
        start_time, end_time = booking.start_time, booking.end_time

        # Token refresh commits, so resolve credentials before taking locks
        credentials = self.calendar_service.get_credentials(owner)

        if payment_intent_id:
            # Step A: a failure here aborts before any other side effect
            self.payment_service.attach_payment_intent(booking_id, payment_intent_id)

        saga = BookingSaga("confirm_booking", booking_id=booking_id, on_failure=self.db.rollback)
        saga.add_step(
            "lock_and_check_overlap",
            lambda _: self._lock_and_check_overlap(
                booking_id,
                owner,
                start_time,
                end_time,
                BookingStatus.CONFIRMED,
                operation="confirm",
            ),
        )
        saga.add_step(
            "create_calendar_event",
            lambda results: self.calendar_service.create_event(
                CalendarEventDetails.from_booking(results["lock_and_check_overlap"]),
                credentials,
            ),
            compensation=lambda event_id: self.calendar_service.delete_event(
                owner, event_id, credentials
            ),
        )
        saga.add_step(
            "attach_calendar_event",
            lambda results: self.repository.attach_calendar_event(
                booking_id, results["create_calendar_event"]
            ),
            compensation=lambda _: self._clear_calendar_event(booking_id),
        )
        saga.add_step(
            "persist_confirmed",
            lambda _: self._commit_status(booking_id, BookingStatus.CONFIRMED),
        )
        results = saga.run()

        booking = results["persist_confirmed"]
        self._record_transition(
            booking,
            previous,
            BookingStatus.CONFIRMED.value,
            actor,
            context={
                "calendar_event_id": results["create_calendar_event"],
                "payment_intent_id": payment_intent_id,
            },
        )
        return booking

    # ── Modify ───────────────────────────────────────────────────────────

    @BaseService.measure_operation("modify_booking")
    def modify_booking(
        self,
        booking_id: str,
        *,
        instructor_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        actor: Optional[str] = SYSTEM_ACTOR,
        **details: Any,
    ) -> Booking:
        """
        confirmed -> modified with a new interval and/or details.

        The new interval is checked for collisions under lock; the calendar
        event is patched (undo: restore the previous event) before the row is
        written.
        """
        booking = self.get_booking(booking_id, instructor_id)
        previous = booking.status
        transition_booking_state(previous, BookingStatus.MODIFIED)
        owner = booking.instructor_id

        new_start = ensure_utc(start_time) if start_time else ensure_utc(booking.start_time)
        new_end = ensure_utc(end_time) if end_time else ensure_utc(booking.end_time)
        if new_start >= new_end:
            raise ValidationException(
                "start_time must be before end_time",
                code="INVALID_TIME_RANGE",
                details={"start_time": new_start.isoformat(), "end_time": new_end.isoformat()},
            )
        patch = {key: value for key, value in details.items() if key in EDITABLE_DETAIL_FIELDS}

        event_id = booking.calendar_event_id
        credentials = self.calendar_service.get_credentials(owner) if event_id else None
        previous_details = CalendarEventDetails.from_booking(booking)
        new_details = CalendarEventDetails.from_booking(
            booking,
            start_time=new_start,
            end_time=new_end,
            **{key: value for key, value in patch.items() if key in CALENDAR_DETAIL_FIELDS},
        )

        saga = BookingSaga("modify_booking", booking_id=booking_id, on_failure=self.db.rollback)
        saga.add_step(
            "lock_and_check_overlap",
            lambda _: self._lock_and_check_overlap(
                booking_id,
                owner,
                new_start,
                new_end,
                BookingStatus.MODIFIED,
                operation="modify",
            ),
        )
        if event_id:
            saga.add_step(
                "update_calendar_event",
                lambda _: self.calendar_service.update_event(event_id, new_details, credentials),
                compensation=lambda _: self.calendar_service.update_event(
                    event_id, previous_details, credentials
                ),
            )
        saga.add_step(
            "persist_modified",
            lambda _: self._commit_modification(booking_id, owner, new_start, new_end, patch),
        )
        results = saga.run()

        booking = results["persist_modified"]
        self._record_transition(
            booking,
            previous,
            BookingStatus.MODIFIED.value,
            actor,
            context={
                "start_time": new_start.isoformat(),
                "end_time": new_end.isoformat(),
                "fields": sorted(patch),
            },
        )
        return booking

    # ── Cancel ───────────────────────────────────────────────────────────

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(
        self,
        booking_id: str,
        *,
        instructor_id: Optional[str] = None,
        actor: Optional[str] = SYSTEM_ACTOR,
    ) -> Booking:
        """
        Cancel a confirmed or modified booking.

        Deletes the calendar event (undo: recreate it and re-attach the new
        id), then clears calendar_event_id and sets status=cancelled in one
        commit.
        """
        booking = self.get_booking(booking_id, instructor_id)
        previous = booking.status
        transition_booking_state(previous, BookingStatus.CANCELLED)
        owner = booking.instructor_id
        event_id = booking.calendar_event_id
        credentials = self.calendar_service.get_credentials(owner) if event_id else None

        saga = BookingSaga("cancel_booking", booking_id=booking_id, on_failure=self.db.rollback)
        saga.add_step(
            "lock_booking",
            lambda _: self._lock_for_transition(booking_id, BookingStatus.CANCELLED),
        )
        if event_id:
            saga.add_step(
                "delete_calendar_event",
                lambda results: self._delete_linked_event(
                    results["lock_booking"], owner, credentials
                ),
                compensation=lambda deleted: self._restore_calendar_event(deleted, credentials),
            )
        saga.add_step(
            "persist_cancelled",
            lambda _: self._commit_cancellation(booking_id),
        )
        results = saga.run()

        booking = results["persist_cancelled"]
        self._record_transition(
            booking,
            previous,
            BookingStatus.CANCELLED.value,
            actor,
            context={"calendar_event_id": event_id} if event_id else None,
        )
        return booking

    # ── Detail edits ─────────────────────────────────────────────────────

    @BaseService.measure_operation("update_booking_details")
    def update_booking_details(
        self, booking_id: str, instructor_id: str, patch: Dict[str, Any]
    ) -> Booking:
        """
        Patch non-temporal fields in place; no status change, so no audit row.

        When the edit touches fields shown on a linked calendar event, the
        event is patched first and restored if the database write fails.
        """
        booking = self.get_booking(booking_id, instructor_id)
        rejected = set(patch) - EDITABLE_DETAIL_FIELDS
        if rejected:
            raise ValidationException(
                "Only booking details can be edited in place",
                code="NON_EDITABLE_FIELDS",
                details={"fields": sorted(rejected)},
            )
        event_id = booking.calendar_event_id
        touches_calendar = bool(event_id) and bool(CALENDAR_DETAIL_FIELDS & set(patch))

        saga = BookingSaga(
            "update_booking_details", booking_id=booking_id, on_failure=self.db.rollback
        )
        if touches_calendar:
            credentials = self.calendar_service.get_credentials(booking.instructor_id)
            previous_details = CalendarEventDetails.from_booking(booking)
            new_details = CalendarEventDetails.from_booking(
                booking,
                **{key: value for key, value in patch.items() if key in CALENDAR_DETAIL_FIELDS},
            )
            saga.add_step(
                "update_calendar_event",
                lambda _: self.calendar_service.update_event(event_id, new_details, credentials),
                compensation=lambda _: self.calendar_service.update_event(
                    event_id, previous_details, credentials
                ),
            )
        saga.add_step(
            "persist_details",
            lambda _: self._commit_details(booking_id, instructor_id, patch),
        )
        return saga.run()["persist_details"]

    # ── Expiry sweep ─────────────────────────────────────────────────────

    @BaseService.measure_operation("expire_stale_proposals")
    def expire_stale_proposals(
        self,
        *,
        now: Optional[datetime] = None,
        ttl_hours: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Dict[str, int]:
        """Expire proposed bookings older than the TTL; one failure does not stop the sweep."""
        reference = ensure_utc(now) if now else utc_now()
        cutoff = reference - timedelta(hours=ttl_hours or settings.proposal_ttl_hours)
        batch = self.repository.list_stale_proposals(
            cutoff, limit=limit or settings.expiry_sweep_batch_size
        )
        expired = failed = 0
        for candidate in batch:
            booking_id = candidate.id
            try:
                self.expire_booking(booking_id)
                expired += 1
            except Exception:
                failed += 1
                self.db.rollback()
                self.logger.exception(
                    "Failed to expire stale proposal", extra={"booking_id": booking_id}
                )
        if batch:
            self.log_operation(
                "expire_stale_proposals",
                scanned=len(batch),
                expired=expired,
                failed=failed,
                cutoff=cutoff.isoformat(),
            )
        return {"scanned": len(batch), "expired": expired, "failed": failed}

    # ── Saga step helpers ────────────────────────────────────────────────

    def _lock_and_check_overlap(
        self,
        booking_id: str,
        instructor_id: str,
        start_time: datetime,
        end_time: datetime,
        target: BookingStatus,
        *,
        operation: str,
    ) -> Booking:
        """
        Lock the booking and every live neighbour overlapping the interval.

        The transition is re-validated against the locked row; any other
        locked row in a blocking status is a collision.
        """
        try:
            locked = self.repository.lock_booking_window(
                instructor_id,
                ensure_utc(start_time),
                ensure_utc(end_time),
                include_booking_id=booking_id,
            )
        except RepositoryException as exc:
            if self._is_deadlock_error(exc.__cause__):
                self._record_conflict(operation)
                raise BookingCollisionError(details={"booking_id": booking_id}) from exc
            raise

        current = next((row for row in locked if row.id == booking_id), None)
        if current is None:
            raise BookingNotFoundError(booking_id)
        transition_booking_state(current.status, target)

        conflicts = self.repository.blocking_conflicts(locked, exclude_booking_id=booking_id)
        if conflicts:
            self._record_conflict(operation)
            self.logger.info(
                "Booking collision detected",
                extra={
                    "booking_id": booking_id,
                    "instructor_id": instructor_id,
                    "conflicting_booking_ids": [row.id for row in conflicts],
                },
            )
            raise BookingCollisionError(
                conflicting_booking_ids=[row.id for row in conflicts],
                details={"booking_id": booking_id},
            )
        return current

    def _lock_for_transition(self, booking_id: str, target: BookingStatus) -> Booking:
        current = self.repository.lock_booking(booking_id)
        if current is None:
            raise BookingNotFoundError(booking_id)
        transition_booking_state(current.status, target)
        return current

    def _commit_status(self, booking_id: str, target: BookingStatus) -> Booking:
        booking = self.repository.update_booking_state(booking_id, target.value)
        self._commit()
        return booking

    def _commit_modification(
        self,
        booking_id: str,
        instructor_id: str,
        start_time: datetime,
        end_time: datetime,
        patch: Dict[str, Any],
    ) -> Booking:
        self.repository.update_booking_window(booking_id, start_time, end_time)
        if patch:
            self.repository.update_booking_details(booking_id, instructor_id, patch)
        booking = self.repository.update_booking_state(booking_id, BookingStatus.MODIFIED.value)
        self._commit()
        return booking

    def _commit_cancellation(self, booking_id: str) -> Booking:
        self.repository.detach_calendar_event(booking_id)
        booking = self.repository.update_booking_state(booking_id, BookingStatus.CANCELLED.value)
        self._commit()
        return booking

    def _commit_details(
        self, booking_id: str, instructor_id: str, patch: Dict[str, Any]
    ) -> Booking:
        booking = self.repository.update_booking_details(booking_id, instructor_id, patch)
        if booking is None:
            raise BookingNotFoundError(booking_id)
        self._commit()
        return booking

    def _clear_calendar_event(self, booking_id: str) -> None:
        """Undo an event attachment in its own commit."""
        self.db.rollback()
        self.repository.detach_calendar_event(booking_id)
        self._commit()

    def _delete_linked_event(
        self,
        booking: Booking,
        instructor_id: str,
        credentials: Optional[CalendarCredentials],
    ) -> CalendarEventDetails:
        """Delete the booking's event; returns what is needed to recreate it."""
        snapshot = CalendarEventDetails.from_booking(booking)
        self.calendar_service.delete_event(instructor_id, booking.calendar_event_id, credentials)
        return snapshot

    def _restore_calendar_event(
        self, snapshot: CalendarEventDetails, credentials: Optional[CalendarCredentials]
    ) -> None:
        """Recreate a deleted event and re-link the new id."""
        new_event_id = self.calendar_service.create_event(snapshot, credentials)
        self.db.rollback()
        try:
            self.repository.attach_calendar_event(snapshot.booking_id, new_event_id)
            self._commit()
        except Exception:
            self.logger.error(
                "Recreated calendar event could not be linked to its booking",
                extra={"booking_id": snapshot.booking_id, "event_id": new_event_id},
            )
            raise

    # ── Side channels ────────────────────────────────────────────────────

    def _record_transition(
        self,
        booking: Booking,
        previous: str,
        new_state: str,
        actor: Optional[str],
        *,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.log_operation(
            "booking_transition",
            booking_id=booking.id,
            instructor_id=booking.instructor_id,
            previous_state=previous,
            new_state=new_state,
            actor=actor or SYSTEM_ACTOR,
        )
        try:
            prometheus_metrics.record_booking_transition(previous, new_state)
        except Exception:
            self.logger.debug("Failed to record transition metric", exc_info=True)
        self.audit_service.record_transition(
            booking_id=booking.id,
            instructor_id=booking.instructor_id,
            previous_state=previous,
            new_state=new_state,
            actor=actor,
            context={k: v for k, v in (context or {}).items() if v is not None} or None,
        )

    def _record_conflict(self, operation: str) -> None:
        try:
            prometheus_metrics.record_booking_conflict(operation)
        except Exception:
            self.logger.debug("Failed to record conflict metric", exc_info=True)

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.logger.error(f"Commit failed: {str(exc)}")
            raise ServiceException(f"Database operation failed: {str(exc)}") from exc

# backend/tests/unit/services/test_booking_service_lifecycle.py
"""Create, cancel, modify and detail-edit flows of BookingService."""

from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import SQLAlchemyError

from frostdesk.core.exceptions import (
    AvailabilityConflictError,
    BookingCollisionError,
    BookingNotFoundError,
    CalendarSyncException,
    InvalidBookingTransitionError,
    RepositoryException,
    ValidationException,
)
from frostdesk.core.time_utils import utc_now
from frostdesk.integrations.google_calendar_client import CalendarError
from frostdesk.models.audit_log import BookingAudit
from frostdesk.models.booking import Booking
from lesson_time import INSTRUCTOR_ID, OTHER_INSTRUCTOR_ID, at


def _transitions(db, booking_id):
    rows = (
        db.query(BookingAudit)
        .filter(BookingAudit.booking_id == booking_id)
        .order_by(BookingAudit.occurred_at.asc(), BookingAudit.id.asc())
        .all()
    )
    return [(row.previous_state, row.new_state) for row in rows]


def _confirmed_booking(booking_service, make_booking, start=10, end=12, **fields):
    booking = make_booking(start, end, **fields)
    return booking_service.confirm_booking(booking.id)


class TestCreateBooking:
    def test_create_draft_writes_no_audit_row(self, db, booking_service):
        booking = booking_service.create_booking(
            instructor_id=INSTRUCTOR_ID,
            start_time=at(10),
            end_time=at(12),
            customer_name="Luca",
            party_size=2,
        )

        assert booking.status == "draft"
        assert booking.customer_name == "Luca"
        assert _transitions(db, booking.id) == []

    def test_create_proposed(self, booking_service):
        booking = booking_service.create_booking(
            instructor_id=INSTRUCTOR_ID, start_time=at(10), end_time=at(12), status="proposed"
        )

        assert booking.status == "proposed"

    @pytest.mark.parametrize("status", ["confirmed", "pending", "cancelled"])
    def test_create_rejects_other_initial_statuses(self, booking_service, status):
        with pytest.raises(ValidationException) as exc_info:
            booking_service.create_booking(
                instructor_id=INSTRUCTOR_ID, start_time=at(10), end_time=at(12), status=status
            )
        assert exc_info.value.code == "INVALID_INITIAL_STATUS"

    @pytest.mark.parametrize("start,end", [(12, 10), (10, 10)])
    def test_create_rejects_empty_or_inverted_interval(self, booking_service, start, end):
        with pytest.raises(ValidationException):
            booking_service.create_booking(
                instructor_id=INSTRUCTOR_ID, start_time=at(start), end_time=at(end)
            )

    def test_naive_datetimes_are_read_as_utc(self, booking_service):
        booking = booking_service.create_booking(
            instructor_id=INSTRUCTOR_ID,
            start_time=at(10).replace(tzinfo=None),
            end_time=at(12).replace(tzinfo=None),
        )

        assert booking.start_time.replace(tzinfo=None) == at(10).replace(tzinfo=None)

    def test_idempotent_create_returns_original_booking(self, db, booking_service):
        first = booking_service.create_booking(
            instructor_id=INSTRUCTOR_ID,
            start_time=at(10),
            end_time=at(12),
            idempotency_key="msg-42",
        )
        second = booking_service.create_booking(
            instructor_id=INSTRUCTOR_ID,
            start_time=at(14),
            end_time=at(16),
            idempotency_key="msg-42",
        )

        assert second.id == first.id
        assert db.query(Booking).count() == 1
        assert second.start_time == first.start_time

    def test_idempotency_key_is_scoped_per_instructor(self, db, booking_service):
        first = booking_service.create_booking(
            instructor_id=INSTRUCTOR_ID, start_time=at(10), end_time=at(12), idempotency_key="k"
        )
        other = booking_service.create_booking(
            instructor_id=OTHER_INSTRUCTOR_ID,
            start_time=at(10),
            end_time=at(12),
            idempotency_key="k",
        )

        assert other.id != first.id
        assert db.query(Booking).count() == 2

    @pytest.mark.parametrize("status", ["confirmed", "modified", "pending"])
    def test_create_conflicts_with_blocking_booking(self, db, booking_service, make_booking, status):
        existing = make_booking(10, 12, status=status)

        with pytest.raises(AvailabilityConflictError) as exc_info:
            booking_service.create_booking(
                instructor_id=INSTRUCTOR_ID, start_time=at(11), end_time=at(13)
            )

        assert exc_info.value.code == "AVAILABILITY_CONFLICT"
        assert exc_info.value.conflicting_booking_ids == [existing.id]
        assert db.query(Booking).count() == 1

    @pytest.mark.parametrize("status", ["cancelled", "expired", "draft", "proposed"])
    def test_create_ignores_non_blocking_bookings(self, booking_service, make_booking, status):
        make_booking(10, 12, status=status)

        booking = booking_service.create_booking(
            instructor_id=INSTRUCTOR_ID, start_time=at(10), end_time=at(12)
        )

        assert booking.id is not None

    def test_create_rejects_unknown_fields(self, booking_service):
        with pytest.raises(ValidationException):
            booking_service.create_booking(
                instructor_id=INSTRUCTOR_ID,
                start_time=at(10),
                end_time=at(12),
                calendar_event_id="evt_forged",
            )

    def test_audit_failure_does_not_undo_the_transition(self, db, booking_service, make_booking):
        booking = make_booking(status="draft")

        with patch.object(
            booking_service.audit_service.audit_repository,
            "write",
            side_effect=SQLAlchemyError("audit table locked"),
        ):
            proposed = booking_service.propose_booking_slots(booking.id)

        assert proposed.status == "proposed"
        assert db.get(Booking, booking.id).status == "proposed"
        assert _transitions(db, booking.id) == []


class TestCancelBooking:
    def test_cancel_deletes_event_and_clears_reference(
        self, db, booking_service, calendar_client, make_booking
    ):
        booking = _confirmed_booking(booking_service, make_booking)

        cancelled = booking_service.cancel_booking(booking.id, actor=INSTRUCTOR_ID)

        assert cancelled.status == "cancelled"
        assert cancelled.calendar_event_id is None
        assert calendar_client.events == {}
        assert _transitions(db, booking.id) == [
            ("proposed", "confirmed"),
            ("confirmed", "cancelled"),
        ]

    def test_cancel_when_event_already_gone_upstream(
        self, booking_service, calendar_client, make_booking
    ):
        booking = _confirmed_booking(booking_service, make_booking)
        calendar_client.events.clear()

        assert booking_service.cancel_booking(booking.id).status == "cancelled"

    def test_cancel_frees_the_slot(self, booking_service, make_booking):
        booking = _confirmed_booking(booking_service, make_booking)
        booking_service.cancel_booking(booking.id)

        replacement = booking_service.create_booking(
            instructor_id=INSTRUCTOR_ID, start_time=at(10), end_time=at(12)
        )

        assert replacement.id != booking.id

    def test_cancel_delete_failure_leaves_booking_confirmed(
        self, db, booking_service, calendar_client, make_booking
    ):
        booking = _confirmed_booking(booking_service, make_booking)
        event_id = booking.calendar_event_id
        calendar_client.set_error("delete_event", CalendarError("unavailable", 503))

        with pytest.raises(CalendarSyncException):
            booking_service.cancel_booking(booking.id)

        db.refresh(booking)
        assert booking.status == "confirmed"
        assert booking.calendar_event_id == event_id
        assert event_id in calendar_client.events

    def test_cancel_persist_failure_recreates_event(
        self, db, booking_service, calendar_client, make_booking
    ):
        booking = _confirmed_booking(booking_service, make_booking, customer_name="Sara")
        old_event_id = booking.calendar_event_id

        with patch.object(
            booking_service.repository,
            "update_booking_state",
            side_effect=RepositoryException("write failed"),
        ):
            with pytest.raises(RepositoryException):
                booking_service.cancel_booking(booking.id)

        db.refresh(booking)
        assert booking.status == "confirmed"
        assert list(calendar_client.events) == [booking.calendar_event_id]
        assert booking.calendar_event_id != old_event_id
        assert calendar_client.events[booking.calendar_event_id]["summary"] == "Lesson – Sara"

    @pytest.mark.parametrize("status", ["draft", "proposed", "cancelled", "expired"])
    def test_cancel_requires_confirmed_or_modified(self, booking_service, make_booking, status):
        booking = make_booking(status=status)

        with pytest.raises(InvalidBookingTransitionError):
            booking_service.cancel_booking(booking.id)


class TestModifyBooking:
    def test_modify_moves_event_and_booking(
        self, db, booking_service, calendar_client, make_booking
    ):
        booking = _confirmed_booking(booking_service, make_booking)

        modified = booking_service.modify_booking(
            booking.id, start_time=at(13), end_time=at(15), notes="Bring poles"
        )

        assert modified.status == "modified"
        assert modified.notes == "Bring poles"
        event = calendar_client.events[modified.calendar_event_id]
        assert event["start"]["dateTime"].startswith("2026-01-15T13:00:00")
        assert event["description"] == "Bring poles"
        assert _transitions(db, booking.id)[-1] == ("confirmed", "modified")

    def test_modify_into_a_blocking_booking_collides(
        self, db, booking_service, calendar_client, make_booking
    ):
        booking = _confirmed_booking(booking_service, make_booking)
        make_booking(14, 16, status="confirmed")

        with pytest.raises(BookingCollisionError):
            booking_service.modify_booking(booking.id, start_time=at(13), end_time=at(15))

        db.refresh(booking)
        assert booking.status == "confirmed"
        event = calendar_client.events[booking.calendar_event_id]
        assert event["start"]["dateTime"].startswith("2026-01-15T10:00:00")

    def test_modify_overlapping_its_own_slot_is_allowed(self, booking_service, make_booking):
        booking = _confirmed_booking(booking_service, make_booking)

        modified = booking_service.modify_booking(booking.id, end_time=at(13))

        assert modified.end_time.replace(tzinfo=None) == at(13).replace(tzinfo=None)

    def test_modify_persist_failure_restores_event(
        self, db, booking_service, calendar_client, make_booking
    ):
        booking = _confirmed_booking(booking_service, make_booking)

        with patch.object(
            booking_service.repository,
            "update_booking_window",
            side_effect=RepositoryException("write failed"),
        ):
            with pytest.raises(RepositoryException):
                booking_service.modify_booking(booking.id, start_time=at(13), end_time=at(15))

        db.refresh(booking)
        assert booking.status == "confirmed"
        event = calendar_client.events[booking.calendar_event_id]
        assert event["start"]["dateTime"].startswith("2026-01-15T10:00:00")

    def test_modified_booking_cannot_be_modified_again(self, booking_service, make_booking):
        booking = _confirmed_booking(booking_service, make_booking)
        booking_service.modify_booking(booking.id, notes="first change")

        with pytest.raises(InvalidBookingTransitionError):
            booking_service.modify_booking(booking.id, notes="second change")

    def test_modify_rejects_inverted_interval(self, booking_service, make_booking):
        booking = _confirmed_booking(booking_service, make_booking)

        with pytest.raises(ValidationException):
            booking_service.modify_booking(booking.id, start_time=at(12, 30))

    def test_modified_booking_can_be_cancelled(self, booking_service, make_booking):
        booking = _confirmed_booking(booking_service, make_booking)
        booking_service.modify_booking(booking.id, notes="moved")

        assert booking_service.cancel_booking(booking.id).status == "cancelled"


class TestUpdateBookingDetails:
    def test_patch_leaves_other_fields_and_status(self, db, booking_service, make_booking):
        booking = make_booking(customer_name="Luca", party_size=2, skill_level="beginner")

        updated = booking_service.update_booking_details(
            booking.id, INSTRUCTOR_ID, {"party_size": 3}
        )

        assert updated.party_size == 3
        assert updated.customer_name == "Luca"
        assert updated.skill_level == "beginner"
        assert updated.status == "proposed"
        assert _transitions(db, booking.id) == []

    def test_patch_updates_linked_calendar_event(
        self, booking_service, calendar_client, make_booking
    ):
        booking = _confirmed_booking(booking_service, make_booking, customer_name="Luca")

        booking_service.update_booking_details(
            booking.id, INSTRUCTOR_ID, {"customer_name": "Luca Rossi"}
        )

        event = calendar_client.events[booking.calendar_event_id]
        assert event["summary"] == "Lesson – Luca Rossi"

    def test_patch_not_shown_on_calendar_skips_provider(
        self, booking_service, calendar_client, make_booking
    ):
        booking = _confirmed_booking(booking_service, make_booking)
        calls_before = len(calendar_client.calls)

        booking_service.update_booking_details(booking.id, INSTRUCTOR_ID, {"amount_cents": 9000})

        assert len(calendar_client.calls) == calls_before

    def test_patch_is_ownership_scoped(self, booking_service, make_booking):
        booking = make_booking()

        with pytest.raises(BookingNotFoundError):
            booking_service.update_booking_details(booking.id, OTHER_INSTRUCTOR_ID, {"notes": "x"})

    def test_patch_rejects_status_and_time_fields(self, booking_service, make_booking):
        booking = make_booking()

        with pytest.raises(ValidationException):
            booking_service.update_booking_details(
                booking.id, INSTRUCTOR_ID, {"status": "confirmed"}
            )


class TestExpireStaleProposals:
    def test_sweep_expires_only_old_proposals(self, db, booking_service, make_booking):
        stale = make_booking(10, 12, created_at=utc_now() - timedelta(hours=30))
        fresh = make_booking(14, 16)
        old_draft = make_booking(16, 17, status="draft", created_at=utc_now() - timedelta(days=3))

        results = booking_service.expire_stale_proposals(ttl_hours=24)

        assert results == {"scanned": 1, "expired": 1, "failed": 0}
        for booking in (stale, fresh, old_draft):
            db.refresh(booking)
        assert stale.status == "expired"
        assert fresh.status == "proposed"
        assert old_draft.status == "draft"
        assert _transitions(db, stale.id) == [("proposed", "expired")]

    def test_sweep_continues_after_a_failure(self, db, booking_service, make_booking):
        first = make_booking(8, 9, created_at=utc_now() - timedelta(hours=30))
        second = make_booking(10, 11, created_at=utc_now() - timedelta(hours=29))
        original = booking_service.repository.lock_booking

        def flaky_lock(booking_id):
            if booking_id == first.id:
                raise RepositoryException("row vanished")
            return original(booking_id)

        with patch.object(booking_service.repository, "lock_booking", side_effect=flaky_lock):
            results = booking_service.expire_stale_proposals(ttl_hours=24)

        assert results == {"scanned": 2, "expired": 1, "failed": 1}
        db.refresh(second)
        assert second.status == "expired"

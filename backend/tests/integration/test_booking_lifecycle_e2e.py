# backend/tests/integration/test_booking_lifecycle_e2e.py
"""
End-to-end booking scenarios through BookingService.

Walks bookings through the full lifecycle and checks that the booking rows,
the calendar events and the audit ledger agree at each step.
"""

import pytest

from frostdesk.core.exceptions import BookingCollisionError
from frostdesk.models.audit_log import BookingAudit
from frostdesk.models.booking import Booking
from lesson_time import INSTRUCTOR_ID, at


def _ledger(db, booking_id):
    return [
        (row.previous_state, row.new_state)
        for row in db.query(BookingAudit)
        .filter(BookingAudit.booking_id == booking_id)
        .order_by(BookingAudit.occurred_at.asc(), BookingAudit.id.asc())
    ]


def _propose(booking_service, start, end, **details):
    return booking_service.create_booking(
        instructor_id=INSTRUCTOR_ID,
        start_time=at(start),
        end_time=at(end),
        status="proposed",
        **details,
    )


def test_two_proposals_for_one_slot_only_one_confirms(db, booking_service, calendar_client):
    morning = _propose(booking_service, 10, 12, customer_name="Giulia")
    overlapping = _propose(booking_service, 11, 13, customer_name="Paolo")

    booking_service.confirm_booking(morning.id, actor=INSTRUCTOR_ID)

    with pytest.raises(BookingCollisionError) as exc_info:
        booking_service.confirm_booking(overlapping.id, actor=INSTRUCTOR_ID)
    assert exc_info.value.conflicting_booking_ids == [morning.id]

    db.refresh(overlapping)
    assert overlapping.status == "proposed"
    assert overlapping.calendar_event_id is None
    assert len(calendar_client.events) == 1

    afternoon = _propose(booking_service, 14, 16, customer_name="Paolo")
    booking_service.confirm_booking(afternoon.id, actor=INSTRUCTOR_ID)

    assert len(calendar_client.events) == 2
    assert _ledger(db, afternoon.id) == [("proposed", "confirmed")]


def test_full_lifecycle_keeps_calendar_and_ledger_in_step(db, booking_service, calendar_client):
    booking = booking_service.create_booking(
        instructor_id=INSTRUCTOR_ID, start_time=at(9), end_time=at(11), customer_name="Lea"
    )
    booking_service.propose_booking_slots(booking.id, actor="assistant")
    booking_service.confirm_booking(booking.id, "pi_lea", actor=INSTRUCTOR_ID)
    booking_service.modify_booking(
        booking.id, start_time=at(13), end_time=at(15), actor=INSTRUCTOR_ID
    )

    db.refresh(booking)
    event = calendar_client.events[booking.calendar_event_id]
    assert event["start"]["dateTime"] == "2026-01-15T13:00:00+00:00"

    booking_service.cancel_booking(booking.id, actor=INSTRUCTOR_ID)

    db.refresh(booking)
    assert booking.status == "cancelled"
    assert booking.calendar_event_id is None
    assert booking.payment_intent_id == "pi_lea"
    assert calendar_client.events == {}
    assert _ledger(db, booking.id) == [
        ("draft", "proposed"),
        ("proposed", "confirmed"),
        ("confirmed", "modified"),
        ("modified", "cancelled"),
    ]
    timeline = booking_service.audit_service.get_booking_timeline(booking.id, INSTRUCTOR_ID)
    assert [(e.event_type, e.new_state) for e in timeline] == [
        ("booking_created", "draft"),
        ("status_transition", "proposed"),
        ("status_transition", "confirmed"),
        ("status_transition", "modified"),
        ("status_transition", "cancelled"),
    ]
    assert db.query(Booking).count() == 1


def test_cancelled_slot_can_be_rebooked_and_confirmed(db, booking_service, calendar_client):
    first = _propose(booking_service, 10, 12)
    booking_service.confirm_booking(first.id)
    booking_service.cancel_booking(first.id)

    second = _propose(booking_service, 10, 12)
    confirmed = booking_service.confirm_booking(second.id)

    assert confirmed.status == "confirmed"
    assert list(calendar_client.events) == [confirmed.calendar_event_id]

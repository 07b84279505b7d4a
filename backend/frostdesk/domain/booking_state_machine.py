"""Booking lifecycle transitions shared across services, tasks, and tests."""

from __future__ import annotations

from typing import Mapping, Union

from frostdesk.core.exceptions import InvalidBookingTransitionError
from frostdesk.models.booking import BookingStatus

StatusLike = Union[BookingStatus, str]

ALLOWED_TRANSITIONS: Mapping[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.DRAFT: frozenset({BookingStatus.PROPOSED}),
    BookingStatus.PROPOSED: frozenset({BookingStatus.CONFIRMED, BookingStatus.EXPIRED}),
    BookingStatus.PENDING: frozenset(),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.CANCELLED, BookingStatus.MODIFIED}),
    BookingStatus.MODIFIED: frozenset({BookingStatus.CANCELLED}),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.EXPIRED: frozenset(),
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in ALLOWED_TRANSITIONS.items() if not targets
) - {BookingStatus.PENDING}


def _coerce(value: StatusLike) -> BookingStatus | None:
    try:
        return BookingStatus(value)
    except ValueError:
        return None


def can_transition(current: StatusLike, requested: StatusLike) -> bool:
    source = _coerce(current)
    target = _coerce(requested)
    if source is None or target is None:
        return False
    return target in ALLOWED_TRANSITIONS[source]


def transition_booking_state(current: StatusLike, requested: StatusLike) -> BookingStatus:
    """Return the requested status if the lifecycle allows it.

    Raises:
        InvalidBookingTransitionError: for any pair outside the allowed table,
            including unknown status strings.
    """
    if not can_transition(current, requested):
        raise InvalidBookingTransitionError(
            current_status=str(getattr(current, "value", current)),
            requested_status=str(getattr(requested, "value", requested)),
        )
    return BookingStatus(requested)

# backend/tests/unit/services/test_calendar_service.py
from datetime import timedelta

import pytest

from frostdesk.core.exceptions import CalendarNotConnectedError, CalendarSyncException
from frostdesk.core.time_utils import utc_now
from frostdesk.integrations.google_calendar_client import CalendarError
from frostdesk.repositories.calendar_connection_repository import CalendarConnectionRepository
from frostdesk.services.calendar_service import (
    FAKE_ACCESS_TOKEN,
    CalendarCredentials,
    CalendarEventDetails,
    CalendarService,
)
from lesson_time import INSTRUCTOR_ID, at


@pytest.fixture
def connections(db):
    return CalendarConnectionRepository(db)


@pytest.fixture
def strict_calendar_service(db, calendar_client):
    return CalendarService(db, calendar_client, require_connection=True)


def _details(**overrides):
    values = {
        "booking_id": "01HF4G12ABCDEF3456789XYZAB",
        "instructor_id": INSTRUCTOR_ID,
        "start_time": at(10),
        "end_time": at(12),
        "customer_name": "Marta",
    }
    values.update(overrides)
    return CalendarEventDetails(**values)


class TestGetCredentials:
    def test_without_connection_fake_mode_uses_placeholder(self, calendar_service):
        creds = calendar_service.get_credentials(INSTRUCTOR_ID)

        assert creds == CalendarCredentials(FAKE_ACCESS_TOKEN, "primary")

    def test_without_connection_strict_mode_raises(self, strict_calendar_service):
        with pytest.raises(CalendarNotConnectedError) as exc_info:
            strict_calendar_service.get_credentials(INSTRUCTOR_ID)
        assert exc_info.value.code == "CALENDAR_NOT_CONNECTED"

    def test_fresh_token_is_used_as_is(
        self, db, connections, strict_calendar_service, calendar_client
    ):
        connections.upsert_connection(
            INSTRUCTOR_ID,
            access_token="tok-live",
            refresh_token="refresh-1",
            expires_at=utc_now() + timedelta(hours=1),
            calendar_id="lessons@group.calendar.google.com",
        )
        db.commit()

        creds = strict_calendar_service.get_credentials(INSTRUCTOR_ID)

        assert creds == CalendarCredentials("tok-live", "lessons@group.calendar.google.com")
        assert calendar_client.calls == []

    def test_expiring_token_is_refreshed_and_stored(
        self, db, connections, strict_calendar_service, calendar_client
    ):
        connections.upsert_connection(
            INSTRUCTOR_ID,
            access_token="tok-old",
            refresh_token="refresh-1",
            expires_at=utc_now() + timedelta(seconds=10),
        )
        db.commit()

        creds = strict_calendar_service.get_credentials(INSTRUCTOR_ID)

        assert creds.access_token.startswith("fake-access-")
        assert [c["method"] for c in calendar_client.calls] == ["refresh_access_token"]
        stored = connections.get_for_instructor(INSTRUCTOR_ID)
        assert stored.access_token == creds.access_token
        assert not stored.expires_within(60)

    def test_expiring_token_without_refresh_token_means_not_connected(
        self, db, connections, strict_calendar_service
    ):
        connections.upsert_connection(
            INSTRUCTOR_ID, access_token="tok-old", expires_at=utc_now() - timedelta(minutes=5)
        )
        db.commit()

        with pytest.raises(CalendarNotConnectedError):
            strict_calendar_service.get_credentials(INSTRUCTOR_ID)

    def test_refresh_failure_is_wrapped(
        self, db, connections, strict_calendar_service, calendar_client
    ):
        connections.upsert_connection(
            INSTRUCTOR_ID,
            access_token="tok-old",
            refresh_token="revoked",
            expires_at=utc_now() - timedelta(minutes=5),
        )
        db.commit()
        calendar_client.set_error("refresh_access_token", CalendarError("invalid_grant", 400))

        with pytest.raises(CalendarSyncException) as exc_info:
            strict_calendar_service.get_credentials(INSTRUCTOR_ID)

        assert isinstance(exc_info.value.__cause__, CalendarError)
        assert exc_info.value.details["status_code"] == 400

    def test_reconnect_keeps_previous_refresh_token(self, db, connections):
        connections.upsert_connection(INSTRUCTOR_ID, access_token="a", refresh_token="keep-me")
        connections.upsert_connection(INSTRUCTOR_ID, access_token="b")
        db.commit()

        stored = connections.get_for_instructor(INSTRUCTOR_ID)
        assert stored.access_token == "b"
        assert stored.refresh_token == "keep-me"


class TestEventCalls:
    def test_create_sends_booking_link(self, calendar_service, calendar_client):
        event_id = calendar_service.create_event(_details(notes="Red run"))

        event = calendar_client.events[event_id]
        assert event["summary"] == "Lesson – Marta"
        assert event["description"] == "Red run"
        assert event["start"] == {"dateTime": "2026-01-15T10:00:00+00:00", "timeZone": "UTC"}

    def test_update_patches_existing_event(self, calendar_service, calendar_client):
        event_id = calendar_service.create_event(_details())

        calendar_service.update_event(event_id, _details(start_time=at(11), end_time=at(13)))

        assert calendar_client.events[event_id]["end"]["dateTime"] == "2026-01-15T13:00:00+00:00"

    def test_update_of_unknown_event_raises_sync_error(self, calendar_service):
        with pytest.raises(CalendarSyncException) as exc_info:
            calendar_service.update_event("evt_missing", _details())

        assert exc_info.value.details["status_code"] == 404
        assert exc_info.value.details["event_id"] == "evt_missing"

    def test_delete_is_idempotent(self, calendar_service, calendar_client):
        event_id = calendar_service.create_event(_details())

        calendar_service.delete_event(INSTRUCTOR_ID, event_id)
        calendar_service.delete_event(INSTRUCTOR_ID, event_id)

        assert calendar_client.events == {}

    def test_create_failure_is_wrapped_as_bad_gateway(self, calendar_service, calendar_client):
        calendar_client.set_error("create_event", CalendarError("backend error", 500))

        with pytest.raises(CalendarSyncException) as exc_info:
            calendar_service.create_event(_details())

        assert exc_info.value.to_http_exception().status_code == 502
        assert exc_info.value.code == "CALENDAR_SYNC_FAILED"

# backend/frostdesk/services/calendar_service.py
"""
Calendar adapter used by the booking saga.

Resolves the instructor's calendar credentials (refreshing OAuth tokens that
are about to expire) and performs create/update/delete against the configured
client. Provider failures surface as CalendarSyncException with the client
error chained; nothing is retried here.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import CalendarNotConnectedError, CalendarSyncException
from ..core.time_utils import utc_now
from ..integrations.google_calendar_client import (
    CalendarClient,
    CalendarError,
    FakeCalendarClient,
    GoogleCalendarClient,
    build_event_payload,
)
from ..repositories.factory import RepositoryFactory
from .base import BaseService

if TYPE_CHECKING:
    from ..models.booking import Booking
    from ..repositories.calendar_connection_repository import CalendarConnectionRepository

logger = logging.getLogger(__name__)

FAKE_ACCESS_TOKEN = "fake-access-token"
DEFAULT_CALENDAR_ID = "primary"


@dataclass(frozen=True)
class CalendarCredentials:
    access_token: str
    calendar_id: str


@dataclass(frozen=True)
class CalendarEventDetails:
    booking_id: str
    instructor_id: str
    start_time: datetime
    end_time: datetime
    customer_name: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def from_booking(cls, booking: "Booking", **overrides: Any) -> "CalendarEventDetails":
        values: dict[str, Any] = {
            "booking_id": booking.id,
            "instructor_id": booking.instructor_id,
            "start_time": booking.start_time,
            "end_time": booking.end_time,
            "customer_name": booking.customer_name,
            "notes": booking.notes,
        }
        values.update(overrides)
        return cls(**values)

    def to_event(self, *, include_booking_link: bool = True) -> dict[str, Any]:
        return build_event_payload(
            booking_id=self.booking_id,
            start_time=self.start_time,
            end_time=self.end_time,
            customer_name=self.customer_name,
            notes=self.notes,
            include_booking_link=include_booking_link,
        )


def build_calendar_client() -> CalendarClient:
    """Client for the configured provider."""
    if settings.calendar_provider == "google":
        return GoogleCalendarClient(
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            base_url=settings.google_calendar_api_base,
            token_url=settings.google_token_url,
            timeout=settings.calendar_timeout_seconds,
        )
    return FakeCalendarClient()


class CalendarService(BaseService):
    """Create, update and delete the one calendar event linked to a booking."""

    connection_repository: "CalendarConnectionRepository"

    def __init__(
        self,
        db: Session,
        client: Optional[CalendarClient] = None,
        *,
        require_connection: Optional[bool] = None,
    ):
        super().__init__(db)
        self.client = client or build_calendar_client()
        self.connection_repository = RepositoryFactory.create_calendar_connection_repository(db)
        # Fake provider works without a stored connection
        self.require_connection = (
            settings.calendar_provider == "google"
            if require_connection is None
            else require_connection
        )

    @BaseService.measure_operation("calendar_get_credentials")
    def get_credentials(self, instructor_id: str) -> CalendarCredentials:
        """
        Return usable credentials for the instructor, refreshing the token if needed.

        A refreshed token is committed immediately, so call this before taking
        any booking locks.

        Raises:
            CalendarNotConnectedError: no connection, or an expiring token with no refresh token
            CalendarSyncException: the token endpoint failed
        """
        connection = self.connection_repository.get_for_instructor(instructor_id)
        if connection is None:
            if self.require_connection:
                raise CalendarNotConnectedError(instructor_id)
            return CalendarCredentials(FAKE_ACCESS_TOKEN, DEFAULT_CALENDAR_ID)

        margin = settings.calendar_token_refresh_margin_seconds
        if not connection.expires_within(margin):
            return CalendarCredentials(connection.access_token, connection.calendar_id)

        if not connection.refresh_token:
            self.logger.warning(
                "Calendar token expired and no refresh token stored",
                extra={"instructor_id": instructor_id},
            )
            raise CalendarNotConnectedError(instructor_id)

        try:
            token = self.client.refresh_access_token(connection.refresh_token)
        except CalendarError as exc:
            raise CalendarSyncException(
                f"Calendar token refresh failed: {exc.message}",
                details={"instructor_id": instructor_id, "status_code": exc.status_code},
            ) from exc

        expires_in = token.get("expires_in")
        expires_at = utc_now() + timedelta(seconds=int(expires_in)) if expires_in else None
        with self.transaction():
            self.connection_repository.store_refreshed_token(
                connection, access_token=token["access_token"], expires_at=expires_at
            )
        return CalendarCredentials(token["access_token"], connection.calendar_id)

    @BaseService.measure_operation("calendar_create_event")
    def create_event(
        self,
        details: CalendarEventDetails,
        credentials: Optional[CalendarCredentials] = None,
    ) -> str:
        """Create the booking's event and return its id."""
        creds = credentials or self.get_credentials(details.instructor_id)
        try:
            event_id = self.client.create_event(
                access_token=creds.access_token,
                calendar_id=creds.calendar_id,
                event=details.to_event(),
            )
        except CalendarError as exc:
            raise self._wrap("create", exc, booking_id=details.booking_id) from exc
        self.log_operation(
            "calendar_event_created", booking_id=details.booking_id, event_id=event_id
        )
        return event_id

    @BaseService.measure_operation("calendar_update_event")
    def update_event(
        self,
        event_id: str,
        details: CalendarEventDetails,
        credentials: Optional[CalendarCredentials] = None,
    ) -> None:
        creds = credentials or self.get_credentials(details.instructor_id)
        try:
            self.client.update_event(
                access_token=creds.access_token,
                calendar_id=creds.calendar_id,
                event_id=event_id,
                event=details.to_event(include_booking_link=False),
            )
        except CalendarError as exc:
            raise self._wrap(
                "update", exc, booking_id=details.booking_id, event_id=event_id
            ) from exc
        self.log_operation(
            "calendar_event_updated", booking_id=details.booking_id, event_id=event_id
        )

    @BaseService.measure_operation("calendar_delete_event")
    def delete_event(
        self,
        instructor_id: str,
        event_id: str,
        credentials: Optional[CalendarCredentials] = None,
    ) -> None:
        """Delete an event; deleting an already-deleted event succeeds."""
        creds = credentials or self.get_credentials(instructor_id)
        try:
            self.client.delete_event(
                access_token=creds.access_token,
                calendar_id=creds.calendar_id,
                event_id=event_id,
            )
        except CalendarError as exc:
            raise self._wrap("delete", exc, event_id=event_id) from exc
        self.log_operation("calendar_event_deleted", event_id=event_id)

    @staticmethod
    def _wrap(operation: str, exc: CalendarError, **details: Any) -> CalendarSyncException:
        return CalendarSyncException(
            f"Calendar {operation} failed: {exc.message}",
            details={
                **details,
                "status_code": exc.status_code,
                "timed_out": exc.timed_out,
            },
        )

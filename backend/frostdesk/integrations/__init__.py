from .google_calendar_client import (
    CalendarClient,
    CalendarError,
    FakeCalendarClient,
    GoogleCalendarClient,
)

__all__ = [
    "CalendarClient",
    "CalendarError",
    "FakeCalendarClient",
    "GoogleCalendarClient",
]

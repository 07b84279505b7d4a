"""Google Calendar REST integration client.

Thin RPC wrapper over the Calendar v3 events API and the OAuth token endpoint.
Holds no booking state; every call carries the caller's access token and the
target calendar id. Deleting an event that is already gone (404/410) is
treated as success.
"""

from __future__ import annotations

from datetime import datetime
import logging
import time
from typing import Any, Mapping, Optional, Protocol, cast
from urllib.parse import quote
from uuid import uuid4

import httpx
from pydantic import SecretStr

from ..core.time_utils import ensure_utc
from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

BOOKING_ID_PROPERTY = "frostdesk_booking_id"
DELETE_GONE_STATUSES = frozenset({404, 410})


class CalendarError(RuntimeError):
    """Raised when the calendar provider responds with an error or is unreachable."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        *,
        details: Any | None = None,
        timed_out: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details
        self.timed_out = timed_out


def build_event_title(customer_name: Optional[str]) -> str:
    return f"Lesson – {customer_name}" if customer_name else "Lesson"


def build_event_payload(
    *,
    booking_id: str,
    start_time: datetime,
    end_time: datetime,
    customer_name: Optional[str] = None,
    notes: Optional[str] = None,
    include_booking_link: bool = True,
) -> dict[str, Any]:
    """Google event body for a booking; times are always sent in UTC."""
    payload: dict[str, Any] = {
        "summary": build_event_title(customer_name),
        "start": {"dateTime": ensure_utc(start_time).isoformat(), "timeZone": "UTC"},
        "end": {"dateTime": ensure_utc(end_time).isoformat(), "timeZone": "UTC"},
    }
    if notes:
        payload["description"] = notes
    if include_booking_link:
        payload["extendedProperties"] = {"private": {BOOKING_ID_PROPERTY: booking_id}}
    return payload


class CalendarClient(Protocol):
    def create_event(
        self, *, access_token: str, calendar_id: str, event: Mapping[str, Any]
    ) -> str:
        ...

    def update_event(
        self, *, access_token: str, calendar_id: str, event_id: str, event: Mapping[str, Any]
    ) -> None:
        ...

    def delete_event(self, *, access_token: str, calendar_id: str, event_id: str) -> None:
        ...

    def refresh_access_token(self, refresh_token: str) -> dict[str, Any]:
        ...


class GoogleCalendarClient:
    """HTTP client for the Google Calendar v3 REST API."""

    def __init__(
        self,
        *,
        client_id: str | None = None,
        client_secret: str | SecretStr | None = None,
        base_url: str = "https://www.googleapis.com/calendar/v3",
        token_url: str = "https://oauth2.googleapis.com/token",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = (
            client_secret.get_secret_value()
            if isinstance(client_secret, SecretStr)
            else client_secret
        )
        self._base_url = base_url.rstrip("/")
        self._token_url = token_url
        self._timeout = timeout
        self._transport = transport

    def _send(
        self,
        operation: str,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        started = time.monotonic()
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            _record_call(operation, "timeout", time.monotonic() - started)
            logger.error("Google Calendar %s timed out after %.1fs", operation, self._timeout)
            raise CalendarError(
                message=f"Google Calendar {operation} timed out",
                timed_out=True,
            ) from exc
        except httpx.TransportError as exc:
            _record_call(operation, "error", time.monotonic() - started)
            logger.error("Google Calendar unreachable for %s: %s", operation, exc)
            raise CalendarError(message=f"Google Calendar unreachable: {exc}") from exc

        outcome = "success" if response.status_code < 400 else "error"
        _record_call(operation, outcome, time.monotonic() - started)
        return response

    def _events_url(self, calendar_id: str, event_id: str | None = None) -> str:
        url = f"{self._base_url}/calendars/{quote(calendar_id, safe='')}/events"
        if event_id is not None:
            url = f"{url}/{quote(event_id, safe='')}"
        return url

    @staticmethod
    def _raise_for_status(operation: str, response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        details: Any
        try:
            details = response.json()
        except ValueError:
            details = {"raw": response.text[:500]}
        logger.error(
            "Google Calendar %s failed with %s: %s",
            operation,
            response.status_code,
            response.text[:500],
        )
        raise CalendarError(
            message=f"Google Calendar {operation} failed: {response.status_code}",
            status_code=response.status_code,
            details=details,
        )

    # ── Events ───────────────────────────────────────────────────────────

    def create_event(
        self, *, access_token: str, calendar_id: str, event: Mapping[str, Any]
    ) -> str:
        """Create an event and return its provider id."""
        response = self._send(
            "create_event",
            "POST",
            self._events_url(calendar_id),
            headers={"Authorization": f"Bearer {access_token}"},
            json=dict(event),
        )
        self._raise_for_status("create_event", response)
        body = cast(dict[str, Any], response.json())
        event_id = body.get("id")
        if not event_id:
            raise CalendarError(
                message="Google Calendar create_event returned no event id",
                status_code=response.status_code,
                details=body,
            )
        return str(event_id)

    def update_event(
        self, *, access_token: str, calendar_id: str, event_id: str, event: Mapping[str, Any]
    ) -> None:
        """Patch an existing event in place."""
        response = self._send(
            "update_event",
            "PATCH",
            self._events_url(calendar_id, event_id),
            headers={"Authorization": f"Bearer {access_token}"},
            json=dict(event),
        )
        self._raise_for_status("update_event", response)

    def delete_event(self, *, access_token: str, calendar_id: str, event_id: str) -> None:
        """Delete an event; an already-deleted or unknown event counts as deleted."""
        response = self._send(
            "delete_event",
            "DELETE",
            self._events_url(calendar_id, event_id),
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if response.status_code in DELETE_GONE_STATUSES:
            logger.info(
                "Calendar event already gone",
                extra={"event_id": event_id, "status_code": response.status_code},
            )
            return
        self._raise_for_status("delete_event", response)

    # ── OAuth ────────────────────────────────────────────────────────────

    def refresh_access_token(self, refresh_token: str) -> dict[str, Any]:
        """Exchange a refresh token for a new access token.

        Returns the token endpoint body (``access_token``, ``expires_in``).
        """
        if not self._client_id or not self._client_secret:
            raise CalendarError(message="Google OAuth client credentials are not configured")
        response = self._send(
            "refresh_token",
            "POST",
            self._token_url,
            data={
                "refresh_token": refresh_token,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "grant_type": "refresh_token",
            },
        )
        self._raise_for_status("refresh_token", response)
        body = cast(dict[str, Any], response.json())
        if "access_token" not in body:
            raise CalendarError(message="Token refresh returned no access_token", details=body)
        return body


class FakeCalendarClient:
    """In-memory stub for tests and non-production environments."""

    def __init__(self, **kwargs: Any) -> None:
        self.events: dict[str, dict[str, Any]] = {}
        self.calls: list[dict[str, Any]] = []
        self._errors: dict[str, Exception] = {}
        self._logger = logging.getLogger(self.__class__.__name__)

    def set_error(self, method: str, error: Exception) -> None:
        """Inject a method-specific error for deterministic failure testing."""
        self._errors[method] = error

    def clear_errors(self) -> None:
        self._errors.clear()

    def _raise_if_injected(self, method: str) -> None:
        error = self._errors.get(method)
        if error is not None:
            raise error

    def create_event(
        self, *, access_token: str, calendar_id: str, event: Mapping[str, Any]
    ) -> str:
        self.calls.append({"method": "create_event", "calendar_id": calendar_id})
        self._raise_if_injected("create_event")
        event_id = f"evt_fake_{uuid4().hex}"
        self.events[event_id] = {"calendar_id": calendar_id, **dict(event)}
        self._logger.debug("Fake calendar event created", extra={"event_id": event_id})
        return event_id

    def update_event(
        self, *, access_token: str, calendar_id: str, event_id: str, event: Mapping[str, Any]
    ) -> None:
        self.calls.append({"method": "update_event", "event_id": event_id})
        self._raise_if_injected("update_event")
        if event_id not in self.events:
            raise CalendarError(message="Not Found", status_code=404)
        self.events[event_id].update(dict(event))

    def delete_event(self, *, access_token: str, calendar_id: str, event_id: str) -> None:
        self.calls.append({"method": "delete_event", "event_id": event_id})
        self._raise_if_injected("delete_event")
        self.events.pop(event_id, None)

    def refresh_access_token(self, refresh_token: str) -> dict[str, Any]:
        self.calls.append({"method": "refresh_access_token"})
        self._raise_if_injected("refresh_access_token")
        return {"access_token": f"fake-access-{uuid4().hex}", "expires_in": 3600}


def _record_call(operation: str, outcome: str, duration: float) -> None:
    try:
        prometheus_metrics.record_external_call("google_calendar", operation, outcome, duration)
    except Exception:
        logger.debug("Failed to record calendar metric", exc_info=True)

# backend/frostdesk/schemas/booking.py
"""
Booking schemas for the booking lifecycle API.

All datetimes are accepted with or without an offset; naive values are read
as UTC, and responses always carry UTC.
"""

from typing import Any, Dict, Literal, Optional

from pydantic import Field, field_validator, model_validator

from ..models.booking import BookingStatus
from .base import StandardizedModel, StrictRequestModel, UTCDateTime


class BookingDetailsMixin(StrictRequestModel):
    """Non-temporal booking fields an instructor can set."""

    customer_id: Optional[str] = Field(None, max_length=64)
    customer_name: Optional[str] = Field(None, max_length=255)
    party_size: Optional[int] = Field(None, ge=1, le=50)
    skill_level: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = Field(None, max_length=2000)
    amount_cents: Optional[int] = Field(None, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: Optional[str]) -> Optional[str]:
        return value.upper() if value else value

    @field_validator("customer_name", "notes", "skill_level")
    @classmethod
    def _strip_text(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        stripped = value.strip()
        return stripped or None

    def details(self) -> Dict[str, Any]:
        """Only the detail fields the client actually sent."""
        fields = set(BookingDetailsMixin.model_fields)
        sent = self.model_dump(exclude_unset=True)
        return {key: value for key, value in sent.items() if key in fields}


class BookingCreate(BookingDetailsMixin):
    """Create a booking in draft (default) or proposed status."""

    start_time: UTCDateTime = Field(..., description="Lesson start (UTC if no offset)")
    end_time: UTCDateTime = Field(..., description="Lesson end (UTC if no offset)")
    status: Literal["draft", "proposed"] = Field(BookingStatus.DRAFT.value)
    idempotency_key: Optional[str] = Field(
        None,
        max_length=255,
        description="Repeat requests with the same key return the original booking",
    )

    @model_validator(mode="after")
    def _check_interval(self) -> "BookingCreate":
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class BookingDetailsUpdate(BookingDetailsMixin):
    """PATCH body; omitted fields are left unchanged."""

    @model_validator(mode="after")
    def _require_a_field(self) -> "BookingDetailsUpdate":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class BookingConfirm(StrictRequestModel):
    payment_intent_id: Optional[str] = Field(
        None, max_length=255, description="Stripe payment intent to record on the booking"
    )


class BookingModify(BookingDetailsMixin):
    """Move a confirmed booking and/or change its details."""

    start_time: Optional[UTCDateTime] = None
    end_time: Optional[UTCDateTime] = None

    @model_validator(mode="after")
    def _check_interval(self) -> "BookingModify":
        if self.start_time and self.end_time and self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class BookingResponse(StandardizedModel):
    id: str
    instructor_id: str
    status: str
    start_time: UTCDateTime
    end_time: UTCDateTime
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    party_size: Optional[int] = None
    skill_level: Optional[str] = None
    notes: Optional[str] = None
    amount_cents: Optional[int] = None
    currency: Optional[str] = None
    payment_status: Optional[str] = None
    payment_intent_id: Optional[str] = None
    calendar_event_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    created_at: UTCDateTime
    updated_at: UTCDateTime


class AuditEntryResponse(StandardizedModel):
    id: str
    booking_id: str
    instructor_id: str
    previous_state: str
    new_state: str
    actor: str
    occurred_at: UTCDateTime
    context: Optional[Dict[str, Any]] = Field(None, serialization_alias="metadata")


class TimelineEntryResponse(StandardizedModel):
    """Timeline event; the creation event has no audit row and so no id."""

    event_type: Literal["booking_created", "status_transition"]
    id: Optional[str] = None
    booking_id: str
    instructor_id: str
    previous_state: Optional[str] = None
    new_state: str
    actor: str
    occurred_at: UTCDateTime
    context: Optional[Dict[str, Any]] = Field(None, serialization_alias="metadata")


class ExpirySweepResponse(StandardizedModel):
    scanned: int
    expired: int
    failed: int

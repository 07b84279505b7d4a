# backend/frostdesk/routes/v1/bookings.py
"""
Booking lifecycle routes - API v1

Versioned booking endpoints under /api/v1/bookings.
All business logic delegated to BookingService.

Endpoints:
    POST / - Create a draft or proposed booking
    GET / - List the instructor's bookings
    GET /{booking_id} - Booking details
    PATCH /{booking_id} - Edit non-temporal details
    POST /{booking_id}/propose - draft -> proposed
    POST /{booking_id}/confirm - proposed -> confirmed (creates the calendar event)
    POST /{booking_id}/modify - confirmed -> modified (moves the calendar event)
    POST /{booking_id}/cancel - confirmed/modified -> cancelled (deletes the calendar event)
    POST /{booking_id}/expire - proposed -> expired
    POST /{booking_id}/payment-status - Refresh payment status from Stripe
    GET /{booking_id}/audit - Lifecycle timeline (creation plus transitions)
"""

import asyncio
from datetime import datetime
import logging
from typing import Any, List, NoReturn, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from fastapi.params import Path

from ...api.dependencies import (
    get_audit_service,
    get_booking_service,
    get_current_instructor_id,
    get_payment_service,
)
from ...core.exceptions import DomainException
from ...models.booking import BookingStatus
from ...schemas.base import PaginatedResponse
from ...schemas.booking import (
    BookingConfirm,
    BookingCreate,
    BookingDetailsUpdate,
    BookingModify,
    BookingResponse,
    TimelineEntryResponse,
)
from ...services.audit_service import AuditService
from ...services.booking_service import BookingService
from ...services.payment_service import PaymentService

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["bookings-v1"])

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _booking_id_path() -> Any:
    return Path(
        ...,
        description="Booking ULID",
        pattern=ULID_PATH_PATTERN,
        examples=["01HF4G12ABCDEF3456789XYZAB"],
    )


# ============================================================================
# SECTION 1: Collection routes
# ============================================================================


@router.post(
    "",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"description": "Overlaps a blocking booking"}},
)
async def create_booking(
    booking_data: BookingCreate = Body(...),
    instructor_id: str = Depends(get_current_instructor_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """Create a booking; repeated idempotency keys return the original booking."""
    try:
        booking = await asyncio.to_thread(
            lambda: booking_service.create_booking(
                instructor_id=instructor_id,
                start_time=booking_data.start_time,
                end_time=booking_data.end_time,
                status=booking_data.status,
                idempotency_key=booking_data.idempotency_key,
                **booking_data.details(),
            )
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("", response_model=PaginatedResponse[BookingResponse])
async def list_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    start_from: Optional[datetime] = Query(None, description="Only bookings ending after this"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    instructor_id: str = Depends(get_current_instructor_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> PaginatedResponse[BookingResponse]:
    """List the caller's bookings ordered by start time."""
    try:
        bookings = await asyncio.to_thread(
            lambda: booking_service.list_instructor_bookings(
                instructor_id,
                status=status_filter.value if status_filter else None,
                start_from=start_from,
                limit=limit,
                offset=offset,
            )
        )
        items = [BookingResponse.model_validate(booking) for booking in bookings]
        return PaginatedResponse[BookingResponse](
            items=items, total=len(items), limit=limit, offset=offset
        )
    except DomainException as e:
        handle_domain_exception(e)


# ============================================================================
# SECTION 2: Single booking routes
# ============================================================================


@router.get(
    "/{booking_id}",
    response_model=BookingResponse,
    responses={404: {"description": "Booking not found"}},
)
async def get_booking(
    booking_id: str = _booking_id_path(),
    instructor_id: str = Depends(get_current_instructor_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(booking_service.get_booking, booking_id, instructor_id)
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.patch(
    "/{booking_id}",
    response_model=BookingResponse,
    responses={404: {"description": "Booking not found"}},
)
async def update_booking_details(
    booking_id: str = _booking_id_path(),
    update_data: BookingDetailsUpdate = Body(...),
    instructor_id: str = Depends(get_current_instructor_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """Edit customer and lesson details; status and times are unchanged."""
    try:
        booking = await asyncio.to_thread(
            booking_service.update_booking_details,
            booking_id,
            instructor_id,
            update_data.details(),
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/{booking_id}/propose",
    response_model=BookingResponse,
    responses={404: {"description": "Booking not found"}},
)
async def propose_booking(
    booking_id: str = _booking_id_path(),
    instructor_id: str = Depends(get_current_instructor_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            lambda: booking_service.propose_booking_slots(
                booking_id, instructor_id=instructor_id, actor=instructor_id
            )
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/{booking_id}/confirm",
    response_model=BookingResponse,
    responses={
        404: {"description": "Booking not found"},
        409: {"description": "Collides with another booking"},
        502: {"description": "Calendar provider failed"},
    },
)
async def confirm_booking(
    booking_id: str = _booking_id_path(),
    confirm_data: Optional[BookingConfirm] = Body(None),
    instructor_id: str = Depends(get_current_instructor_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """Confirm a proposed booking and create its calendar event."""
    payment_intent_id = confirm_data.payment_intent_id if confirm_data else None
    try:
        booking = await asyncio.to_thread(
            lambda: booking_service.confirm_booking(
                booking_id,
                payment_intent_id,
                instructor_id=instructor_id,
                actor=instructor_id,
            )
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/{booking_id}/modify",
    response_model=BookingResponse,
    responses={
        404: {"description": "Booking not found"},
        409: {"description": "Collides with another booking"},
    },
)
async def modify_booking(
    booking_id: str = _booking_id_path(),
    modify_data: BookingModify = Body(...),
    instructor_id: str = Depends(get_current_instructor_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            lambda: booking_service.modify_booking(
                booking_id,
                instructor_id=instructor_id,
                start_time=modify_data.start_time,
                end_time=modify_data.end_time,
                actor=instructor_id,
                **modify_data.details(),
            )
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/{booking_id}/cancel",
    response_model=BookingResponse,
    responses={404: {"description": "Booking not found"}},
)
async def cancel_booking(
    booking_id: str = _booking_id_path(),
    instructor_id: str = Depends(get_current_instructor_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """Cancel a booking and delete its calendar event."""
    try:
        booking = await asyncio.to_thread(
            lambda: booking_service.cancel_booking(
                booking_id, instructor_id=instructor_id, actor=instructor_id
            )
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/{booking_id}/expire",
    response_model=BookingResponse,
    responses={404: {"description": "Booking not found"}},
)
async def expire_booking(
    booking_id: str = _booking_id_path(),
    instructor_id: str = Depends(get_current_instructor_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            lambda: booking_service.expire_booking(booking_id, instructor_id=instructor_id)
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/{booking_id}/payment-status",
    response_model=BookingResponse,
    responses={404: {"description": "Booking not found"}},
)
async def refresh_payment_status(
    booking_id: str = _booking_id_path(),
    instructor_id: str = Depends(get_current_instructor_id),
    payment_service: PaymentService = Depends(get_payment_service),
) -> BookingResponse:
    """Copy the Stripe intent status onto the booking (informational only)."""
    try:
        booking = await asyncio.to_thread(
            lambda: payment_service.refresh_payment_status(booking_id, instructor_id=instructor_id)
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.get(
    "/{booking_id}/audit",
    response_model=List[TimelineEntryResponse],
    responses={404: {"description": "Booking not found"}},
)
async def get_booking_audit(
    booking_id: str = _booking_id_path(),
    instructor_id: str = Depends(get_current_instructor_id),
    audit_service: AuditService = Depends(get_audit_service),
) -> List[TimelineEntryResponse]:
    """Oldest-first lifecycle of one booking: its creation, then every transition."""
    try:
        events = await asyncio.to_thread(
            audit_service.get_booking_timeline, booking_id, instructor_id
        )
        return [TimelineEntryResponse.model_validate(event) for event in events]
    except DomainException as e:
        handle_domain_exception(e)

# backend/frostdesk/routes/v1/audit.py
"""
Provider-wide audit routes - API v1

Read-only view over booking transitions for the calling instructor.
"""

import asyncio
from datetime import datetime
from typing import NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...api.dependencies import get_audit_service, get_current_instructor_id
from ...core.exceptions import DomainException
from ...models.booking import BookingStatus
from ...schemas.base import PaginatedResponse
from ...schemas.booking import AuditEntryResponse
from ...services.audit_service import AuditService

router = APIRouter(tags=["audit-v1"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.get("", response_model=PaginatedResponse[AuditEntryResponse])
async def list_audit_entries(
    booking_id: Optional[str] = Query(None, max_length=26),
    new_state: Optional[BookingStatus] = Query(None),
    actor: Optional[str] = Query(None, max_length=64),
    start: Optional[datetime] = Query(None, description="Inclusive lower bound on occurred_at"),
    end: Optional[datetime] = Query(None, description="Inclusive upper bound on occurred_at"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    instructor_id: str = Depends(get_current_instructor_id),
    audit_service: AuditService = Depends(get_audit_service),
) -> PaginatedResponse[AuditEntryResponse]:
    """Newest-first transitions across all of the caller's bookings."""
    try:
        rows, total = await asyncio.to_thread(
            lambda: audit_service.list_for_instructor(
                instructor_id,
                booking_id=booking_id,
                new_state=new_state.value if new_state else None,
                actor=actor,
                start=start,
                end=end,
                limit=limit,
                offset=offset,
            )
        )
        return PaginatedResponse[AuditEntryResponse](
            items=[AuditEntryResponse.model_validate(row) for row in rows],
            total=total,
            limit=limit,
            offset=offset,
        )
    except DomainException as e:
        handle_domain_exception(e)

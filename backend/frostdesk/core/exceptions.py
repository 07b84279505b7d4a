# backend/frostdesk/core/exceptions.py
"""
Domain-specific exceptions for the booking lifecycle engine.

These exceptions carry a stable error code and structured details so the API
layer can render them without knowing which service raised them.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when request validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


class ExternalServiceException(ServiceException):
    """Raised when a third-party provider call fails."""

    status_code = status.HTTP_502_BAD_GATEWAY


# Specific business exceptions


class BookingNotFoundError(NotFoundException):
    """Booking does not exist, or the caller does not own it."""

    def __init__(self, booking_id: str):
        super().__init__(
            message=f"Booking {booking_id} not found",
            code="BOOKING_NOT_FOUND",
            details={"booking_id": booking_id},
        )


class InvalidBookingTransitionError(BusinessRuleException):
    """Raised when the state machine rejects a status change."""

    def __init__(self, current_status: str, requested_status: str):
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(
            message=f"Invalid booking transition: {current_status} -> {requested_status}",
            code="INVALID_BOOKING_TRANSITION",
            details={"from": current_status, "to": requested_status},
        )


class AvailabilityConflictError(ConflictException):
    """Raised when the requested interval overlaps a blocking booking."""

    default_message = "This time slot conflicts with an existing booking"
    default_code = "AVAILABILITY_CONFLICT"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        conflicting_booking_ids: Optional[list[str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        merged: Dict[str, Any] = dict(details or {})
        if conflicting_booking_ids:
            merged["conflicting_booking_ids"] = list(conflicting_booking_ids)
        self.conflicting_booking_ids = list(conflicting_booking_ids or [])
        super().__init__(
            message=message or self.default_message,
            code=self.default_code,
            details=merged,
        )


class BookingCollisionError(AvailabilityConflictError):
    """Overlap detected while confirming or modifying an existing booking."""

    default_message = "Booking collides with another booking for this instructor"
    default_code = "BOOKING_COLLISION"


class CalendarNotConnectedError(BusinessRuleException):
    """The instructor has no calendar connection to sync bookings into."""

    def __init__(self, instructor_id: str):
        super().__init__(
            message="Calendar not connected for this instructor",
            code="CALENDAR_NOT_CONNECTED",
            details={"instructor_id": instructor_id},
        )


class CalendarSyncException(ExternalServiceException):
    """Calendar provider call failed."""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="CALENDAR_SYNC_FAILED", details=details)


class PaymentProviderException(ExternalServiceException):
    """Payment provider call failed."""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="PAYMENT_PROVIDER_ERROR", details=details)


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """

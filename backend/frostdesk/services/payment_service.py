# backend/frostdesk/services/payment_service.py
"""
Payment reference handling for bookings.

Payment is informational: the booking lifecycle never reads payment_status,
and a booking may be confirmed without any payment intent. This service only
records intent references and reads intent status from Stripe.
"""

import logging
import time
from typing import Optional

from sqlalchemy.orm import Session
import stripe

from ..core.config import settings
from ..core.exceptions import (
    BookingNotFoundError,
    PaymentProviderException,
    ServiceException,
)
from ..models.booking import Booking
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


class PaymentService(BaseService):
    """Attach and read Stripe payment intents for bookings."""

    def __init__(self, db: Session, *, api_key: Optional[str] = None):
        super().__init__(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)

        secret = settings.stripe_secret_key.get_secret_value() if settings.stripe_secret_key else None
        self.api_key = api_key or secret
        self.stripe_configured = bool(self.api_key)
        if self.stripe_configured:
            # Bounded timeout, no SDK-level retries; callers decide on retry
            stripe.default_http_client = stripe.RequestsClient(
                timeout=settings.stripe_timeout_seconds
            )
            stripe.max_network_retries = 0
        else:
            self.logger.warning("Stripe secret key not configured - intent reads are disabled")

    def _check_stripe_configured(self) -> None:
        """Check if Stripe is properly configured before making API calls."""
        if not self.stripe_configured:
            raise ServiceException(
                "Stripe service not configured. Please check STRIPE_SECRET_KEY environment variable.",
                code="STRIPE_NOT_CONFIGURED",
            )

    @BaseService.measure_operation("attach_payment_intent")
    def attach_payment_intent(
        self,
        booking_id: str,
        payment_intent_id: str,
        *,
        instructor_id: Optional[str] = None,
    ) -> Booking:
        """Record the intent reference on the booking and commit."""
        if self.booking_repository.get_booking_by_id(booking_id, instructor_id) is None:
            raise BookingNotFoundError(booking_id)
        with self.transaction():
            booking = self.booking_repository.attach_payment_intent(booking_id, payment_intent_id)
        self.log_operation(
            "payment_intent_attached", booking_id=booking_id, payment_intent_id=payment_intent_id
        )
        return booking

    @BaseService.measure_operation("get_payment_intent")
    def get_payment_intent(self, payment_intent_id: str) -> str:
        """Return the Stripe status of an intent (read-only)."""
        self._check_stripe_configured()
        started = time.monotonic()
        try:
            intent = stripe.PaymentIntent.retrieve(payment_intent_id, api_key=self.api_key)
        except stripe.StripeError as exc:
            _record_call("retrieve_intent", "error", time.monotonic() - started)
            self.logger.error(
                "Stripe intent retrieve failed",
                extra={"payment_intent_id": payment_intent_id, "error": str(exc)},
            )
            raise PaymentProviderException(
                f"Failed to retrieve payment intent: {exc}",
                details={"payment_intent_id": payment_intent_id},
            ) from exc
        _record_call("retrieve_intent", "success", time.monotonic() - started)
        return str(intent["status"])

    @BaseService.measure_operation("refresh_payment_status")
    def refresh_payment_status(
        self, booking_id: str, *, instructor_id: Optional[str] = None
    ) -> Booking:
        """Copy the intent's current Stripe status onto the booking."""
        booking = self.booking_repository.get_booking_by_id(booking_id, instructor_id)
        if booking is None:
            raise BookingNotFoundError(booking_id)
        if not booking.payment_intent_id:
            return booking
        status = self.get_payment_intent(booking.payment_intent_id)
        with self.transaction():
            booking = self.booking_repository.set_payment_status(booking_id, status)
        return booking


def _record_call(operation: str, outcome: str, duration: float) -> None:
    try:
        prometheus_metrics.record_external_call("stripe", operation, outcome, duration)
    except Exception:
        logger.debug("Failed to record stripe metric", exc_info=True)

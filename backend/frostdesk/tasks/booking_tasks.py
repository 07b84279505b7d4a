# backend/frostdesk/tasks/booking_tasks.py
"""
Celery tasks for booking lifecycle housekeeping.
"""

import logging
from typing import Any, Dict

from frostdesk.database import SessionLocal
from frostdesk.services.booking_service import BookingService
from frostdesk.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def run_expiry_sweep() -> Dict[str, int]:
    """Expire stale proposals using a dedicated session."""
    db = SessionLocal()
    try:
        return BookingService(db).expire_stale_proposals()
    finally:
        db.close()


@celery_app.task(bind=True, max_retries=3, name="frostdesk.tasks.booking_tasks.expire_stale_proposals")
def expire_stale_proposals(self: Any) -> Dict[str, int]:
    """
    Move proposed bookings past their TTL to expired.

    Individual booking failures are counted, not raised; only a failure of
    the sweep itself (e.g. the database being unreachable) triggers a retry.
    """
    try:
        results = run_expiry_sweep()
    except Exception as exc:
        logger.error(f"Expiry sweep failed: {str(exc)}")
        raise self.retry(exc=exc, countdown=60)
    if results["failed"]:
        logger.warning("Expiry sweep finished with failures", extra=results)
    return results

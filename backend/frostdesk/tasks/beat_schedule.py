# backend/frostdesk/tasks/beat_schedule.py
"""
Celery Beat schedule for the booking engine.
"""

from typing import Any, Dict

from celery.schedules import crontab


def get_beat_schedule() -> Dict[str, Dict[str, Any]]:
    return {
        # Proposals older than PROPOSAL_TTL_HOURS move to expired
        "expire-stale-proposals": {
            "task": "frostdesk.tasks.booking_tasks.expire_stale_proposals",
            "schedule": crontab(minute="*/15"),
            "options": {"queue": "bookings", "expires": 600},
        },
    }

# backend/tests/unit/tasks/test_booking_tasks.py
from datetime import timedelta
from unittest.mock import patch

from celery.exceptions import Retry
import pytest

from frostdesk.core.time_utils import utc_now
from frostdesk.models.booking import Booking
from frostdesk.tasks import booking_tasks
from frostdesk.tasks.beat_schedule import get_beat_schedule
from frostdesk.tasks.celery_app import celery_app


def test_beat_schedule_points_at_registered_task():
    entry = get_beat_schedule()["expire-stale-proposals"]

    assert entry["task"] == booking_tasks.expire_stale_proposals.name
    assert entry["task"] in celery_app.tasks


def test_run_expiry_sweep_uses_and_closes_its_own_session(db, make_booking):
    stale_id = make_booking(created_at=utc_now() - timedelta(hours=48)).id

    with patch.object(booking_tasks, "SessionLocal", return_value=db), patch.object(
        db, "close", wraps=db.close
    ) as close:
        results = booking_tasks.run_expiry_sweep()

    assert results == {"scanned": 1, "expired": 1, "failed": 0}
    close.assert_called_once()
    assert db.get(Booking, stale_id).status == "expired"


def test_task_returns_sweep_counts():
    counts = {"scanned": 2, "expired": 1, "failed": 1}

    with patch.object(booking_tasks, "run_expiry_sweep", return_value=counts):
        assert booking_tasks.expire_stale_proposals() == counts


def test_task_retries_when_sweep_cannot_run():
    failure = RuntimeError("database unreachable")

    with patch.object(booking_tasks, "run_expiry_sweep", side_effect=failure), patch.object(
        booking_tasks.expire_stale_proposals, "retry", side_effect=Retry()
    ) as retry:
        with pytest.raises(Retry):
            booking_tasks.expire_stale_proposals()

    retry.assert_called_once_with(exc=failure, countdown=60)

# backend/frostdesk/models/calendar_connection.py
"""Per-instructor calendar provider credentials."""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.sql import func

from ..core.time_utils import ensure_utc, utc_now
from ..core.ulid_helper import generate_ulid
from ..database import Base


class InstructorCalendarConnection(Base):
    """OAuth tokens and target calendar for one instructor."""

    __tablename__ = "instructor_calendar_connections"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    instructor_id = Column(String(64), nullable=False, unique=True)
    provider = Column(String(20), nullable=False, default="google")
    calendar_id = Column(String(255), nullable=False, default="primary")
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now()
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=func.now(),
        onupdate=utc_now,
    )

    def expires_within(self, margin_seconds: int, now: Optional[datetime] = None) -> bool:
        """True when the access token expires inside the given margin."""
        if self.expires_at is None:
            return False
        reference = now or utc_now()
        return ensure_utc(self.expires_at) <= reference + timedelta(seconds=margin_seconds)

    def __repr__(self) -> str:
        return f"<InstructorCalendarConnection {self.instructor_id}: {self.calendar_id}>"

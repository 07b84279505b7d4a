# backend/frostdesk/repositories/calendar_connection_repository.py
"""Calendar connection lookups and token persistence."""

from datetime import datetime
import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..models.calendar_connection import InstructorCalendarConnection
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class CalendarConnectionRepository(BaseRepository[InstructorCalendarConnection]):
    def __init__(self, db: Session):
        super().__init__(db, InstructorCalendarConnection)

    def get_for_instructor(self, instructor_id: str) -> Optional[InstructorCalendarConnection]:
        return self.find_one_by(instructor_id=instructor_id)

    def upsert_connection(
        self,
        instructor_id: str,
        *,
        access_token: str,
        refresh_token: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        calendar_id: str = "primary",
    ) -> InstructorCalendarConnection:
        """Create or replace the instructor's connection; keeps the old refresh token if none given."""
        connection = self.get_for_instructor(instructor_id)
        if connection is None:
            return self.create(
                instructor_id=instructor_id,
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=expires_at,
                calendar_id=calendar_id,
            )
        connection.access_token = access_token
        if refresh_token:
            connection.refresh_token = refresh_token
        connection.expires_at = expires_at
        connection.calendar_id = calendar_id or connection.calendar_id
        self.flush()
        return connection

    def store_refreshed_token(
        self,
        connection: InstructorCalendarConnection,
        *,
        access_token: str,
        expires_at: Optional[datetime],
    ) -> InstructorCalendarConnection:
        connection.access_token = access_token
        connection.expires_at = expires_at
        self.flush()
        self.logger.info(
            "Stored refreshed calendar token", extra={"instructor_id": connection.instructor_id}
        )
        return connection

# backend/frostdesk/repositories/audit_repository.py
"""
Repository helpers for booking_audit persistence and querying.

Exposes insert and read paths only; audit rows are never updated or deleted.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Select, and_, func, select
from sqlalchemy.orm import Session

from frostdesk.models.audit_log import BookingAudit


class AuditRepository:
    """Persist and query booking transition rows."""

    def __init__(self, db: Session):
        self.db = db

    def write(self, audit: BookingAudit) -> BookingAudit:
        """Persist a new audit row inside the active transaction."""
        self.db.add(audit)
        self.db.flush()
        return audit

    def list_for_booking(self, booking_id: str) -> list[BookingAudit]:
        """Oldest-first timeline for one booking."""
        stmt = (
            select(BookingAudit)
            .where(BookingAudit.booking_id == booking_id)
            .order_by(BookingAudit.occurred_at.asc(), BookingAudit.id.asc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def list(
        self,
        *,
        instructor_id: Optional[str] = None,
        booking_id: Optional[str] = None,
        new_state: Optional[str] = None,
        actor: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[BookingAudit], int]:
        """Return audit rows matching supplied filters ordered descending by timestamp."""
        limit = max(0, limit)
        offset = max(0, offset)

        conditions = _build_filters(instructor_id, booking_id, new_state, actor)
        if start is not None:
            conditions.append(BookingAudit.occurred_at >= start)
        if end is not None:
            conditions.append(BookingAudit.occurred_at <= end)

        stmt: Select[Any] = select(BookingAudit).order_by(
            BookingAudit.occurred_at.desc(), BookingAudit.id.desc()
        )
        count_stmt = select(func.count()).select_from(BookingAudit)

        if conditions:
            stmt = stmt.where(and_(*conditions))
            count_stmt = count_stmt.where(and_(*conditions))

        stmt = stmt.offset(offset).limit(limit)

        rows = list(self.db.execute(stmt).scalars().all())
        total = self.db.execute(count_stmt).scalar_one()

        return rows, int(total)


def _build_filters(
    instructor_id: Optional[str],
    booking_id: Optional[str],
    new_state: Optional[str],
    actor: Optional[str],
) -> list[Any]:
    clauses: list[Any] = []
    if instructor_id:
        clauses.append(BookingAudit.instructor_id == instructor_id)
    if booking_id:
        clauses.append(BookingAudit.booking_id == booking_id)
    if new_state:
        clauses.append(BookingAudit.new_state == new_state)
    if actor:
        clauses.append(BookingAudit.actor == actor)
    return clauses

# backend/frostdesk/routes/v1/__init__.py
"""API v1 routers."""

from . import audit, bookings

__all__ = ["audit", "bookings"]

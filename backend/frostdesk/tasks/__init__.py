# backend/frostdesk/tasks/__init__.py
"""Background jobs (Celery) for the booking engine."""

# backend/alembic/versions/001_booking_core.py
"""Booking core - bookings, transition audit, calendar connections

Revision ID: 001_booking_core
Revises:
Create Date: 2026-10-19 00:00:00.000000

Bookings carry their own interval and the references to the external
calendar event and payment intent. booking_audit is append-only.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_booking_core"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

STATUSES = ("draft", "proposed", "pending", "confirmed", "modified", "cancelled", "expired")


def upgrade() -> None:
    """Create booking lifecycle tables."""
    print("Creating booking lifecycle tables...")

    op.create_table(
        "bookings",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("instructor_id", sa.String(64), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("customer_id", sa.String(64), nullable=True),
        sa.Column("customer_name", sa.String(255), nullable=True),
        sa.Column("party_size", sa.Integer(), nullable=True),
        sa.Column("skill_level", sa.String(50), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=True),
        sa.Column("currency", sa.String(3), nullable=True),
        sa.Column("payment_status", sa.String(50), nullable=True, comment="Last known Stripe intent status"),
        sa.Column("payment_intent_id", sa.String(255), nullable=True, comment="Stripe payment intent"),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("calendar_event_id", sa.String(255), nullable=True),
        sa.Column("idempotency_key", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "instructor_id", "idempotency_key", name="uq_bookings_instructor_idempotency_key"
        ),
        sa.CheckConstraint(
            "status IN (" + ", ".join(f"'{status}'" for status in STATUSES) + ")",
            name="ck_bookings_status",
        ),
        sa.CheckConstraint("start_time < end_time", name="ck_bookings_time_order"),
        sa.CheckConstraint("party_size IS NULL OR party_size > 0", name="ck_bookings_party_size"),
        sa.CheckConstraint(
            "amount_cents IS NULL OR amount_cents >= 0", name="ck_bookings_amount_non_negative"
        ),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("ix_bookings_status", "bookings", ["status"])
    # Overlap lock scans one instructor's rows by interval
    op.create_index(
        "ix_bookings_instructor_window", "bookings", ["instructor_id", "start_time", "end_time"]
    )

    op.create_table(
        "booking_audit",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("booking_id", sa.String(26), nullable=False),
        sa.Column("instructor_id", sa.String(64), nullable=False),
        sa.Column("previous_state", sa.String(20), nullable=False),
        sa.Column("new_state", sa.String(20), nullable=False),
        sa.Column("actor", sa.String(64), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_booking_audit_booking_occurred", "booking_audit", ["booking_id", "occurred_at"]
    )
    op.create_index(
        "ix_booking_audit_instructor_occurred", "booking_audit", ["instructor_id", "occurred_at"]
    )

    op.create_table(
        "instructor_calendar_connections",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("instructor_id", sa.String(64), nullable=False),
        sa.Column("provider", sa.String(20), nullable=False, server_default="google"),
        sa.Column("calendar_id", sa.String(255), nullable=False, server_default="primary"),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("instructor_id", name="uq_instructor_calendar_connections_instructor"),
    )

    print("Booking lifecycle tables created successfully!")


def downgrade() -> None:
    """Drop booking lifecycle tables."""
    print("Dropping booking lifecycle tables...")

    op.drop_table("instructor_calendar_connections")
    op.drop_index("ix_booking_audit_instructor_occurred", table_name="booking_audit")
    op.drop_index("ix_booking_audit_booking_occurred", table_name="booking_audit")
    op.drop_table("booking_audit")
    op.drop_index("ix_bookings_instructor_window", table_name="bookings")
    op.drop_index("ix_bookings_status", table_name="bookings")
    op.drop_index("ix_bookings_id", table_name="bookings")
    op.drop_table("bookings")

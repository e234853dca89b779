"""Initial schema: events, seats, seat locks, bookings with indexes and constraints.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # Events table (read-only for this service)
    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("venue", sa.String(255), nullable=True),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("seat_count", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("seat_count > 0", name="check_seat_count_positive"),
    )
    op.create_index("ix_events_id", "events", ["id"])
    op.create_index("ix_events_starts_at", "events", ["starts_at"])

    # Seat locks: provisional holds with a fixed deadline
    op.create_table(
        "seat_locks",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("holder_id", sa.String(64), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    # Sweeper scan: WHERE status = 'ACTIVE' AND expires_at <= now ORDER BY expires_at
    op.create_index("ix_seat_locks_status_expires", "seat_locks", ["status", "expires_at"])
    op.create_index("ix_seat_locks_holder_event", "seat_locks", ["holder_id", "event_id"])

    # Bookings: the idempotency key is unique so racing retries collapse onto one row
    op.create_table(
        "bookings",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("holder_id", sa.String(64), nullable=False),
        sa.Column("lock_id", sa.Uuid(), sa.ForeignKey("seat_locks.id", ondelete="SET NULL"), nullable=True),
        sa.Column("idempotency_key", sa.String(128), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("payment_ref", sa.String(255), nullable=True),
        sa.Column("payment_gateway", sa.String(32), nullable=True),
        sa.Column("payment_session_id", sa.String(255), nullable=True),
        sa.Column("payment_redirect_url", sa.String(1024), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("idempotency_key", name="uq_bookings_idempotency_key"),
    )
    op.create_index("ix_bookings_holder_created", "bookings", ["holder_id", "created_at"])
    op.create_index("ix_bookings_status_expires", "bookings", ["status", "expires_at"])

    # Seats: status only changes through a conditional UPDATE that bumps version
    op.create_table(
        "seats",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("section", sa.String(50), nullable=False),
        sa.Column("row_label", sa.String(10), nullable=False),
        sa.Column("seat_number", sa.Integer(), nullable=False),
        sa.Column("label", sa.String(50), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("lock_id", sa.Uuid(), sa.ForeignKey("seat_locks.id", ondelete="SET NULL"), nullable=True),
        sa.Column("booking_id", sa.Uuid(), sa.ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
        sa.UniqueConstraint("event_id", "section", "row_label", "seat_number", name="uq_event_seat_location"),
    )
    op.create_index("ix_seats_id", "seats", ["id"])
    # Availability counts: WHERE event_id = ? AND status = 'AVAILABLE'
    op.create_index("ix_seats_event_status", "seats", ["event_id", "status"])
    op.create_index("ix_seats_lock_id", "seats", ["lock_id"])
    op.create_index("ix_seats_booking_id", "seats", ["booking_id"])

    op.create_table(
        "seat_lock_items",
        sa.Column("lock_id", sa.Uuid(), sa.ForeignKey("seat_locks.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("seat_id", sa.Integer(), sa.ForeignKey("seats.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
    )

    op.create_table(
        "booked_seats",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.Uuid(), sa.ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("seat_id", sa.Integer(), sa.ForeignKey("seats.id", ondelete="CASCADE"), nullable=False),
        sa.Column("section", sa.String(50), nullable=False),
        sa.Column("row_label", sa.String(10), nullable=False),
        sa.Column("seat_number", sa.Integer(), nullable=False),
        sa.Column("label", sa.String(50), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
    )
    op.create_index("ix_booked_seats_booking_id", "booked_seats", ["booking_id"])


def downgrade() -> None:
    op.drop_table("booked_seats")
    op.drop_table("seat_lock_items")
    op.drop_table("seats")
    op.drop_table("bookings")
    op.drop_table("seat_locks")
    op.drop_table("events")

"""Per-holder acquisition rows, waitlist entries and booking ticket codes.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Upserted at the start of every acquisition to queue a holder's requests
    op.create_table(
        "lock_holders",
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("holder_id", sa.String(64), primary_key=True),
        sa.Column("last_acquired_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "waitlist_entries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("holder_id", sa.String(64), nullable=False),
        sa.Column("section", sa.String(50), nullable=True),
        sa.Column("seat_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("notified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("event_id", "holder_id", name="uq_waitlist_event_holder"),
        sa.CheckConstraint("seat_count > 0", name="check_waitlist_seat_count_positive"),
    )
    # Notification scan: WHERE event_id = ? AND status = 'WAITING' ORDER BY id
    op.create_index("ix_waitlist_event_status", "waitlist_entries", ["event_id", "status", "id"])

    op.add_column("bookings", sa.Column("ticket_code", sa.Text(), nullable=True))


def downgrade() -> None:
    op.drop_column("bookings", "ticket_code")
    op.drop_index("ix_waitlist_event_status", table_name="waitlist_entries")
    op.drop_table("waitlist_entries")
    op.drop_table("lock_holders")

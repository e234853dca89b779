"""
Seat model - the authoritative inventory row.

Key design decisions:
- `status` is only ever changed by a conditional UPDATE (compare-and-swap)
- `lock_id` is set iff status is LOCKED, `booking_id` iff status is BOOKED
- `version` increases by one on every successful transition, giving a total
  order of changes per seat that subscribers use to drop stale events
- Composite index on (event_id, status) serves availability counts
"""

import enum

from sqlalchemy import (
    Column, Integer, String, Numeric, ForeignKey, Enum, Index, UniqueConstraint, Uuid,
)

from app.db.base import Base, TimestampMixin


class SeatStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    LOCKED = "LOCKED"
    BOOKED = "BOOKED"
    BLOCKED = "BLOCKED"


class Seat(Base, TimestampMixin):
    __tablename__ = "seats"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    section = Column(String(50), nullable=False)
    row_label = Column(String(10), nullable=False)
    seat_number = Column(Integer, nullable=False)
    label = Column(String(50), nullable=True)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")
    status = Column(
        Enum(SeatStatus, native_enum=False, length=16),
        nullable=False,
        default=SeatStatus.AVAILABLE,
    )
    lock_id = Column(Uuid, ForeignKey("seat_locks.id", ondelete="SET NULL"), nullable=True)
    booking_id = Column(Uuid, ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True)
    version = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("event_id", "section", "row_label", "seat_number", name="uq_event_seat_location"),
        Index("ix_seats_event_status", "event_id", "status"),
        Index("ix_seats_lock_id", "lock_id"),
        Index("ix_seats_booking_id", "booking_id"),
    )

    @property
    def seat_label(self) -> str:
        return self.label or f"{self.section}-{self.row_label}-{self.seat_number}"

    def __repr__(self) -> str:
        return f"<Seat(id={self.id}, event={self.event_id}, {self.seat_label}, status={self.status.value})>"

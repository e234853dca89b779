"""
Booking model - a durable claim created from a consumed lock.

Key design decisions:
- Unique constraint on `idempotency_key` makes retried requests collapse onto
  one row; the loser of a race re-reads the winner's booking
- Seats are copied with their lock-time price so the booking is self-contained
- `expires_at` bounds how long a PENDING booking may wait for payment
- `ticket_code` is a signed token issued on confirmation; it stops verifying
  once the booking leaves CONFIRMED
"""

import enum
import uuid

from sqlalchemy import (
    Column, Integer, String, Numeric, ForeignKey, Enum, Index, UniqueConstraint, Uuid, Text,
)
from sqlalchemy.orm import relationship

from app.db.base import Base, TimestampMixin, UTCDateTime


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    REFUNDED = "REFUNDED"


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    holder_id = Column(String(64), nullable=False)
    lock_id = Column(Uuid, ForeignKey("seat_locks.id", ondelete="SET NULL"), nullable=True)
    idempotency_key = Column(String(128), nullable=False)
    status = Column(
        Enum(BookingStatus, native_enum=False, length=16),
        nullable=False,
        default=BookingStatus.PENDING,
    )
    total_amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")

    payment_ref = Column(String(255), nullable=True)
    payment_gateway = Column(String(32), nullable=True)
    payment_session_id = Column(String(255), nullable=True)
    payment_redirect_url = Column(String(1024), nullable=True)
    failure_reason = Column(Text, nullable=True)

    expires_at = Column(UTCDateTime, nullable=True)
    confirmed_at = Column(UTCDateTime, nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)
    ticket_code = Column(Text, nullable=True)

    seats = relationship(
        "BookedSeat",
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="BookedSeat.position",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_bookings_idempotency_key"),
        Index("ix_bookings_holder_created", "holder_id", "created_at"),
        Index("ix_bookings_status_expires", "status", "expires_at"),
    )

    @property
    def seat_ids(self) -> list[int]:
        return [seat.seat_id for seat in self.seats]

    @property
    def has_ticket(self) -> bool:
        return self.ticket_code is not None

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, holder={self.holder_id}, event={self.event_id}, status={self.status.value})>"


class BookedSeat(Base):
    __tablename__ = "booked_seats"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(Uuid, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    seat_id = Column(Integer, ForeignKey("seats.id", ondelete="CASCADE"), nullable=False)
    section = Column(String(50), nullable=False)
    row_label = Column(String(10), nullable=False)
    seat_number = Column(Integer, nullable=False)
    label = Column(String(50), nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)

    booking = relationship("Booking", back_populates="seats")

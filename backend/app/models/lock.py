"""
Seat lock model - a provisional, time-bounded hold on a set of seats.

Key design decisions:
- TTL is fixed at creation (`expires_at`); there is no extension path
- Items snapshot each seat's price at lock time so the booking total cannot
  change between selection and checkout
- Status transitions are conditional UPDATEs on (id, status) so release,
  booking and the sweeper race safely: exactly one of them wins
"""

import enum
import uuid

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, Enum, Index, Uuid
from sqlalchemy.orm import relationship

from app.db.base import Base, TimestampMixin, UTCDateTime


class LockStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    RELEASED = "RELEASED"
    EXPIRED = "EXPIRED"
    CONSUMED = "CONSUMED"


class SeatLock(Base, TimestampMixin):
    __tablename__ = "seat_locks"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    holder_id = Column(String(64), nullable=False)
    status = Column(
        Enum(LockStatus, native_enum=False, length=16),
        nullable=False,
        default=LockStatus.ACTIVE,
    )
    expires_at = Column(UTCDateTime, nullable=False)
    closed_at = Column(UTCDateTime, nullable=True)

    items = relationship(
        "SeatLockItem",
        back_populates="lock",
        cascade="all, delete-orphan",
        order_by="SeatLockItem.seat_id",
        lazy="selectin",
    )

    __table_args__ = (
        # Sweeper scan: ACTIVE locks ordered by deadline
        Index("ix_seat_locks_status_expires", "status", "expires_at"),
        Index("ix_seat_locks_holder_event", "holder_id", "event_id"),
    )

    @property
    def seat_ids(self) -> list[int]:
        return [item.seat_id for item in self.items]

    def __repr__(self) -> str:
        return f"<SeatLock(id={self.id}, holder={self.holder_id}, status={self.status.value})>"


class SeatLockItem(Base):
    __tablename__ = "seat_lock_items"

    lock_id = Column(Uuid, ForeignKey("seat_locks.id", ondelete="CASCADE"), primary_key=True)
    seat_id = Column(Integer, ForeignKey("seats.id", ondelete="CASCADE"), primary_key=True)
    price = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)

    lock = relationship("SeatLock", back_populates="items")


class LockHolder(Base):
    """
    One row per (event, holder) that has ever requested seats.

    Acquisition upserts this row before counting the holder's seats, so two
    acquisitions by the same holder on the same event queue behind each
    other and the per-holder cap is checked against committed locks only.
    """
    __tablename__ = "lock_holders"

    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), primary_key=True)
    holder_id = Column(String(64), primary_key=True)
    last_acquired_at = Column(UTCDateTime, nullable=False)

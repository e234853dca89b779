"""
Waitlist entry - a holder asking to be told when seats free up.

Entries are served first come, first served by their autoincrement id.
A holder has at most one entry per event.
"""

import enum

from sqlalchemy import CheckConstraint, Column, Integer, String, ForeignKey, Enum, Index, UniqueConstraint

from app.db.base import Base, TimestampMixin, UTCDateTime


class WaitlistStatus(str, enum.Enum):
    WAITING = "WAITING"
    NOTIFIED = "NOTIFIED"


class WaitlistEntry(Base, TimestampMixin):
    __tablename__ = "waitlist_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    holder_id = Column(String(64), nullable=False)
    section = Column(String(50), nullable=True)
    seat_count = Column(Integer, nullable=False, default=1)
    status = Column(
        Enum(WaitlistStatus, native_enum=False, length=16),
        nullable=False,
        default=WaitlistStatus.WAITING,
    )
    notified_at = Column(UTCDateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("event_id", "holder_id", name="uq_waitlist_event_holder"),
        CheckConstraint("seat_count > 0", name="check_waitlist_seat_count_positive"),
        Index("ix_waitlist_event_status", "event_id", "status", "id"),
    )

    def __repr__(self) -> str:
        return f"<WaitlistEntry(id={self.id}, event={self.event_id}, holder={self.holder_id}, status={self.status.value})>"

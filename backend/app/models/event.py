"""
Event model.

Events are created by the organizer workflow; this service only reads them.
Availability is derived from seat rows on demand and never stored here, so it
cannot drift from the seats themselves.
"""

from sqlalchemy import Column, Integer, String, Index, CheckConstraint

from app.db.base import Base, TimestampMixin, UTCDateTime


class Event(Base, TimestampMixin):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    venue = Column(String(255), nullable=True)
    starts_at = Column(UTCDateTime, nullable=False)
    seat_count = Column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("seat_count > 0", name="check_seat_count_positive"),
        # Index on start time for range queries (upcoming events)
        Index("ix_events_starts_at", "starts_at"),
    )

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, title={self.title}, seats={self.seat_count})>"

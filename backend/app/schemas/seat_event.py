"""
Wire record for seat-state changes pushed to watchers.

Events are invalidation hints, not authoritative diffs: delivery is
at-least-once, so each event carries the seat versions produced by the
transition and clients drop anything older than what they already hold.
"""

import enum
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from app.db.base import utcnow


class SeatEventType(str, enum.Enum):
    SEAT_LOCKED = "SEAT_LOCKED"
    SEAT_RELEASED = "SEAT_RELEASED"
    SEAT_BOOKED = "SEAT_BOOKED"
    AVAILABILITY_UPDATE = "AVAILABILITY_UPDATE"
    WAITLIST_NOTIFIED = "WAITLIST_NOTIFIED"


class SeatEvent(BaseModel):
    event_id: int
    type: SeatEventType
    seat_ids: list[int]
    user_id: Optional[str] = None
    status: Optional[str] = None
    seat_versions: dict[int, int] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
    cursor: Optional[int] = None

    def to_message(self, stream_id: str) -> dict:
        message = self.model_dump(mode="json")
        message["stream"] = stream_id
        return message

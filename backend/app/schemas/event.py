"""
Pydantic schemas for event reads.

available_seats is a count of AVAILABLE rows at read time. Seats that are
LOCKED by an unexpired hold are not counted even though they may come back.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, computed_field


class EventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    venue: Optional[str]
    starts_at: datetime
    seat_count: int
    available_seats: int

    @computed_field
    @property
    def sold_out(self) -> bool:
        return self.seat_count > 0 and self.available_seats == 0


class EventListResponse(BaseModel):
    events: list[EventResponse]
    total: int
    page: int
    page_size: int
    cached: bool = False

    @computed_field
    @property
    def has_more(self) -> bool:
        return self.page * self.page_size < self.total

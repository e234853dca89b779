"""
Pydantic schemas for the per-event waitlist.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from app.models.waitlist import WaitlistStatus


class WaitlistJoinRequest(BaseModel):
    section: Optional[str] = Field(None, max_length=50)
    seat_count: int = Field(1, ge=1)


class WaitlistEntryResponse(BaseModel):
    id: int
    event_id: int
    holder_id: str
    section: Optional[str]
    seat_count: int
    status: WaitlistStatus
    notified_at: Optional[datetime]
    created_at: datetime

    model_config = {"from_attributes": True}


class WaitlistPositionResponse(BaseModel):
    event_id: int
    status: WaitlistStatus
    # 1-based among WAITING entries; 0 once notified
    position: int
    waiting: int

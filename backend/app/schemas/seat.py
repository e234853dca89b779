"""
Pydantic schemas for seat locking and inventory reads.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.models.lock import LockStatus
from app.models.seat import SeatStatus


class SeatLockRequest(BaseModel):
    event_id: int
    seat_ids: list[int] = Field(..., min_length=1)


class SeatLockResponse(BaseModel):
    lock_id: UUID
    event_id: int
    seat_ids: list[int]
    status: LockStatus
    expires_at: datetime


class SeatBlockRequest(BaseModel):
    event_id: int
    seat_ids: list[int] = Field(..., min_length=1)


class SeatResponse(BaseModel):
    id: int
    event_id: int
    section: str
    row_label: str
    seat_number: int
    label: Optional[str]
    price: Decimal
    currency: str
    status: SeatStatus
    version: int

    model_config = {"from_attributes": True}


class SeatStatusResponse(BaseModel):
    seat_id: int
    status: SeatStatus
    version: int


class SectionAvailability(BaseModel):
    section: str
    available: int
    total: int
    min_price: Decimal
    currency: str


class AvailabilityResponse(BaseModel):
    event_id: int
    available: int
    total: int
    sections: list[SectionAvailability]
    last_updated: datetime
    cached: bool = False

"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.models.booking import BookingStatus


class BookingCreate(BaseModel):
    event_id: int
    seat_ids: list[int] = Field(..., min_length=1)
    idempotency_key: str = Field(..., min_length=8, max_length=128)
    lock_id: Optional[UUID] = None


class BookedSeatResponse(BaseModel):
    seat_id: int
    section: str
    row_label: str
    seat_number: int
    label: Optional[str]
    price: Decimal
    currency: str

    model_config = {"from_attributes": True}


class BookingResponse(BaseModel):
    id: UUID
    event_id: int
    holder_id: str
    lock_id: Optional[UUID]
    idempotency_key: str
    status: BookingStatus
    total_amount: Decimal
    currency: str
    seats: list[BookedSeatResponse]
    payment_ref: Optional[str]
    payment_gateway: Optional[str]
    failure_reason: Optional[str]
    expires_at: Optional[datetime]
    confirmed_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    has_ticket: bool = False
    created_at: datetime

    model_config = {"from_attributes": True}


class BookingCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class TicketResponse(BaseModel):
    booking_id: UUID
    ticket_code: str
    # PNG data URL of the ticket code, ready for an <img> tag
    qr_code: str


class TicketVerifyRequest(BaseModel):
    ticket_code: str = Field(..., min_length=1)


class TicketVerification(BaseModel):
    valid: bool
    booking_id: UUID
    event_id: int
    holder_id: str
    seat_ids: list[int]
    status: BookingStatus

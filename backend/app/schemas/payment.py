"""
Pydantic schemas for the payment initiation contract and gateway callbacks.
"""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class PaymentInitiateRequest(BaseModel):
    booking_id: UUID
    gateway: str = Field("STRIPE", max_length=32)
    return_url: str = Field("", max_length=2048)


class PaymentSessionResponse(BaseModel):
    session_id: str
    redirect_url: str
    gateway: str


class PaymentCallback(BaseModel):
    booking_id: UUID
    payment_ref: str = Field(..., min_length=1, max_length=255)
    succeeded: bool
    reason: Optional[str] = Field(None, max_length=500)

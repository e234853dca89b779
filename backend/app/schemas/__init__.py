from app.schemas.event import EventResponse, EventListResponse
from app.schemas.seat import (
    SeatLockRequest, SeatLockResponse, SeatBlockRequest, SeatResponse,
    SeatStatusResponse, SectionAvailability, AvailabilityResponse,
)
from app.schemas.booking import (
    BookingCreate, BookingResponse, BookedSeatResponse, BookingCancelRequest,
    TicketResponse, TicketVerifyRequest, TicketVerification,
)
from app.schemas.payment import PaymentInitiateRequest, PaymentSessionResponse, PaymentCallback
from app.schemas.seat_event import SeatEvent, SeatEventType
from app.schemas.waitlist import WaitlistJoinRequest, WaitlistEntryResponse, WaitlistPositionResponse

__all__ = [
    "EventResponse", "EventListResponse",
    "SeatLockRequest", "SeatLockResponse", "SeatBlockRequest", "SeatResponse",
    "SeatStatusResponse", "SectionAvailability", "AvailabilityResponse",
    "BookingCreate", "BookingResponse", "BookedSeatResponse", "BookingCancelRequest",
    "TicketResponse", "TicketVerifyRequest", "TicketVerification",
    "PaymentInitiateRequest", "PaymentSessionResponse", "PaymentCallback",
    "SeatEvent", "SeatEventType",
    "WaitlistJoinRequest", "WaitlistEntryResponse", "WaitlistPositionResponse",
]

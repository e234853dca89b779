"""
Domain error taxonomy.

Every error carries the HTTP status and a machine-readable code so the API
layer can render it without knowing which service raised it. Extra fields
(e.g. the seats that were unavailable) are passed through to the response body.
"""

from typing import Any, Iterable, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse


class BookingEngineError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "BOOKING_ENGINE_ERROR"

    def __init__(self, detail: Optional[str] = None, **extra: Any):
        self.detail = detail or self.__class__.__doc__ or self.code
        self.extra = extra
        super().__init__(self.detail)

    def to_dict(self) -> dict:
        return {"code": self.code, "detail": self.detail, **self.extra}


class InvalidRequestError(BookingEngineError):
    """Request is malformed."""
    status_code = status.HTTP_400_BAD_REQUEST
    code = "INVALID_REQUEST"


class ConflictError(BookingEngineError):
    """One or more seats are no longer available. Please select different seats."""
    status_code = status.HTTP_409_CONFLICT
    code = "SEATS_UNAVAILABLE"

    def __init__(self, unavailable_seat_ids: Iterable[int], detail: Optional[str] = None):
        self.unavailable_seat_ids = sorted(set(unavailable_seat_ids))
        super().__init__(detail, unavailable_seat_ids=self.unavailable_seat_ids)


class SeatLimitExceededError(BookingEngineError):
    """Maximum seat limit exceeded."""
    status_code = status.HTTP_409_CONFLICT
    code = "SEAT_LIMIT_EXCEEDED"


class NotFoundError(BookingEngineError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class EventNotFoundError(NotFoundError):
    """Event not found."""
    code = "EVENT_NOT_FOUND"


class SeatNotFoundError(NotFoundError):
    """One or more seats do not belong to this event."""
    code = "SEAT_NOT_FOUND"


class LockNotFoundError(NotFoundError):
    """Seat lock not found. Your session is no longer valid, please re-select seats."""
    code = "LOCK_NOT_FOUND"


class BookingNotFoundError(NotFoundError):
    """Booking not found."""
    code = "BOOKING_NOT_FOUND"


class WaitlistEntryNotFoundError(NotFoundError):
    """You are not on the waitlist for this event."""
    code = "WAITLIST_ENTRY_NOT_FOUND"


class TicketInvalidError(BookingEngineError):
    """Ticket code is malformed or was not issued by this service."""
    status_code = status.HTTP_400_BAD_REQUEST
    code = "TICKET_INVALID"


class ForbiddenError(BookingEngineError):
    """This resource belongs to another user. Please re-select seats."""
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"


class LockExpiredError(BookingEngineError):
    """Time expired, please re-select your seats."""
    status_code = status.HTTP_410_GONE
    code = "LOCK_EXPIRED"


class LockMismatchError(BookingEngineError):
    """Requested seats do not match the seats held by your lock."""
    status_code = status.HTTP_409_CONFLICT
    code = "LOCK_MISMATCH"


class LockStateError(BookingEngineError):
    """Lock can no longer be changed."""
    status_code = status.HTTP_409_CONFLICT
    code = "LOCK_STATE_INVALID"


class BookingStateError(BookingEngineError):
    """Booking is not in the correct state for this operation."""
    status_code = status.HTTP_409_CONFLICT
    code = "BOOKING_STATE_INVALID"


class DuplicateIdempotencyKeyError(BookingEngineError):
    """Internal: another request committed the same idempotency key first."""
    status_code = status.HTTP_409_CONFLICT
    code = "DUPLICATE_IDEMPOTENCY_KEY"


class StoreUnavailableError(BookingEngineError):
    """Seat inventory is temporarily unavailable. Please try again."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "STORE_UNAVAILABLE"


class PaymentGatewayError(BookingEngineError):
    """Payment provider could not start a checkout session."""
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "PAYMENT_GATEWAY_ERROR"


async def booking_engine_error_handler(request: Request, exc: BookingEngineError) -> JSONResponse:
    headers = None
    if isinstance(exc, StoreUnavailableError):
        headers = {"Retry-After": "1"}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

"""
Booking endpoints: lock -> booking conversion and lifecycle transitions.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.schemas.booking import (
    BookingCancelRequest,
    BookingCreate,
    BookingResponse,
    TicketResponse,
    TicketVerification,
    TicketVerifyRequest,
)
from app.services.booking_service import (
    cancel_booking,
    create_booking,
    get_booking,
    list_user_bookings,
    refund_booking,
)
from app.services.ticket_service import get_ticket, verify_ticket
from app.core.security import get_current_user_id, require_admin
from app.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking_endpoint(
    booking_data: BookingCreate,
    response: Response,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Book the seats held by your lock.

    Safe to retry: a request carrying an idempotency key that was already
    used returns the original booking with 200 instead of 201.
    """
    booking, created = await create_booking(
        db,
        booking_data.event_id,
        booking_data.seat_ids,
        user_id,
        booking_data.idempotency_key,
        lock_id=booking_data.lock_id,
    )
    if not created:
        response.status_code = status.HTTP_200_OK
    return booking


@router.get("/", response_model=list[BookingResponse])
async def list_bookings(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Get all bookings for the authenticated user."""
    return await list_user_bookings(db, user_id, limit=limit, offset=offset)


@router.post("/tickets/verify", response_model=TicketVerification)
async def verify_ticket_endpoint(
    request: TicketVerifyRequest,
    admin_id: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Check a ticket presented at the venue. Requires the admin role."""
    return await verify_ticket(db, request.ticket_code)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking_endpoint(
    booking_id: UUID,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await get_booking(db, booking_id, user_id)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking_endpoint(
    booking_id: UUID,
    request: Optional[BookingCancelRequest] = None,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a booking and release its seats back to the event."""
    reason = request.reason if request else None
    return await cancel_booking(db, booking_id, holder_id=user_id, reason=reason or "Cancelled by user")


@router.post("/{booking_id}/refund", response_model=BookingResponse)
async def refund_booking_endpoint(
    booking_id: UUID,
    request: Optional[BookingCancelRequest] = None,
    admin_id: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Refund a confirmed booking. Requires the admin role."""
    reason = request.reason if request else None
    logger.info("refund_requested", booking_id=str(booking_id), admin_id=admin_id)
    return await refund_booking(db, booking_id, reason=reason or "Refunded")


@router.get("/{booking_id}/ticket", response_model=TicketResponse)
async def get_ticket_endpoint(
    booking_id: UUID,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Ticket code and QR image of a confirmed booking."""
    return await get_ticket(db, booking_id, user_id)

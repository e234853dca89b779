"""
Ticket codes for confirmed bookings.

A ticket code is a JWT signed with the engine's key naming the booking, its
event, holder and seats. It is stored on the booking when payment confirms,
so a refunded or cancelled booking keeps its code but no longer verifies.
"""

import base64
import io
import uuid

import jwt
import qrcode
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.exceptions import BookingNotFoundError, BookingStateError, ForbiddenError, TicketInvalidError
from app.core.logging import get_logger
from app.db.base import utcnow
from app.models.booking import Booking, BookingStatus

logger = get_logger(__name__)

TICKET_TOKEN_TYPE = "ticket"


async def _load_booking(db: AsyncSession, booking_id: uuid.UUID) -> Booking:
    booking = (await db.execute(
        select(Booking)
        .where(Booking.id == booking_id)
        .execution_options(populate_existing=True)
    )).scalar_one_or_none()
    if booking is None:
        raise BookingNotFoundError()
    return booking


def issue_ticket_code(booking: Booking) -> str:
    settings = get_settings()
    claims = {
        "typ": TICKET_TOKEN_TYPE,
        "bid": str(booking.id),
        "eid": booking.event_id,
        "sub": booking.holder_id,
        "seats": sorted(booking.seat_ids),
        "iat": int(utcnow().timestamp()),
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def render_qr(ticket_code: str) -> str:
    """PNG QR code of the ticket as a data URL."""
    img = qrcode.make(ticket_code)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("utf-8")


def decode_ticket_code(ticket_code: str) -> dict:
    settings = get_settings()
    try:
        claims = jwt.decode(ticket_code, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.PyJWTError as e:
        raise TicketInvalidError(f"Ticket code is not valid: {e}")
    if claims.get("typ") != TICKET_TOKEN_TYPE or "bid" not in claims:
        raise TicketInvalidError("Not a ticket code")
    return claims


async def get_ticket(db: AsyncSession, booking_id: uuid.UUID, holder_id: str) -> dict:
    booking = await _load_booking(db, booking_id)
    if booking.holder_id != holder_id:
        raise ForbiddenError()
    if booking.status != BookingStatus.CONFIRMED or not booking.ticket_code:
        raise BookingStateError(
            f"No ticket for a {booking.status.value} booking",
            status=booking.status.value,
        )
    return {
        "booking_id": booking.id,
        "ticket_code": booking.ticket_code,
        "qr_code": render_qr(booking.ticket_code),
    }


async def verify_ticket(db: AsyncSession, ticket_code: str) -> dict:
    """
    Check a presented ticket at the door. Valid only while the booking is
    CONFIRMED and the code is the one issued for it.
    """
    claims = decode_ticket_code(ticket_code)
    try:
        booking_id = uuid.UUID(claims["bid"])
    except (TypeError, ValueError):
        raise TicketInvalidError("Ticket names no booking")

    booking = await _load_booking(db, booking_id)
    valid = booking.status == BookingStatus.CONFIRMED and booking.ticket_code == ticket_code
    logger.info("ticket_verified", booking_id=str(booking.id), valid=valid, status=booking.status.value)
    return {
        "valid": valid,
        "booking_id": booking.id,
        "event_id": booking.event_id,
        "holder_id": booking.holder_id,
        "seat_ids": booking.seat_ids,
        "status": booking.status,
    }

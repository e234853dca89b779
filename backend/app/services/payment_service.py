"""
Payment initiation and gateway callbacks.

Gateway calls never happen inside a database transaction: the booking is read
and validated in one unit of work, the provider is called, and the session is
stored in a second unit of work guarded by the booking still being PENDING.
"""

import hashlib
import hmac
import uuid
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.exceptions import BookingStateError, ForbiddenError
from app.core.logging import get_logger
from app.db.base import utcnow
from app.db.retry import with_store_retry
from app.db.session import unit_of_work
from app.models.booking import Booking, BookingStatus
from app.services.booking_service import cancel_booking, confirm_payment, get_booking
from app.services.gateway_factory import get_payment_gateway
from app.services.interfaces.payment_gateway import PaymentSession

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-Payment-Signature"


def sign_payload(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: Optional[str]) -> None:
    """Reject callbacks not signed with PAYMENT_WEBHOOK_SECRET (when one is configured)."""
    secret = get_settings().PAYMENT_WEBHOOK_SECRET
    if not secret:
        return
    expected = sign_payload(body, secret)
    if not signature or not hmac.compare_digest(expected, signature):
        logger.warning("payment_callback_bad_signature")
        raise ForbiddenError("Invalid payment signature")


@with_store_retry("load_payable_booking")
async def _load_payable_booking(db: AsyncSession, booking_id: uuid.UUID, holder_id: str) -> Booking:
    async with unit_of_work(db):
        booking = await get_booking(db, booking_id, holder_id)
        if booking.status != BookingStatus.PENDING:
            raise BookingStateError(
                f"Booking is {booking.status.value}, only PENDING bookings can be paid",
                status=booking.status.value,
            )
        if booking.expires_at is not None and booking.expires_at <= utcnow():
            raise BookingStateError("Payment window has closed", status=booking.status.value)
    return booking


@with_store_retry("store_payment_session")
async def _store_session(db: AsyncSession, booking_id: uuid.UUID, session: PaymentSession) -> None:
    async with unit_of_work(db):
        result = await db.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.status == BookingStatus.PENDING)
            .values(
                payment_gateway=session.gateway,
                payment_session_id=session.session_id,
                payment_redirect_url=session.redirect_url,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise BookingStateError("Booking changed while starting payment")


async def initiate_payment(
    db: AsyncSession,
    booking_id: uuid.UUID,
    holder_id: str,
    gateway_name: str = "STRIPE",
    return_url: str = "",
) -> PaymentSession:
    """Start (or resume) checkout for a PENDING booking."""
    gateway = get_payment_gateway(gateway_name)
    booking = await _load_payable_booking(db, booking_id, holder_id)

    if (
        booking.payment_session_id
        and booking.payment_gateway == gateway.name
        and booking.payment_redirect_url
    ):
        logger.info("payment_session_reused", booking_id=str(booking_id), gateway=gateway.name)
        return PaymentSession(
            session_id=booking.payment_session_id,
            redirect_url=booking.payment_redirect_url,
            gateway=gateway.name,
        )

    session = await gateway.create_session(booking, return_url)
    await _store_session(db, booking_id, session)

    logger.info(
        "payment_initiated",
        booking_id=str(booking_id),
        gateway=session.gateway,
        session_id=session.session_id,
        amount=str(booking.total_amount),
        currency=booking.currency,
    )
    return session


async def handle_payment_callback(
    db: AsyncSession,
    booking_id: uuid.UUID,
    payment_ref: str,
    succeeded: bool,
    reason: Optional[str] = None,
) -> Booking:
    """
    Apply a provider outcome. Success confirms the booking; failure cancels a
    PENDING booking and records the reason. Redelivered callbacks are no-ops.
    """
    logger.info(
        "payment_callback_received",
        booking_id=str(booking_id),
        payment_ref=payment_ref,
        succeeded=succeeded,
    )
    if succeeded:
        return await confirm_payment(db, booking_id, payment_ref)

    booking = await get_booking(db, booking_id)
    status = booking.status
    if status in (BookingStatus.CANCELLED, BookingStatus.EXPIRED):
        logger.info("payment_failure_replayed", booking_id=str(booking_id), status=status.value)
        return booking
    if status != BookingStatus.PENDING:
        raise BookingStateError(
            f"Cannot apply a failed payment to a {status.value} booking",
            status=status.value,
        )
    return await cancel_booking(db, booking_id, reason=reason or "Payment failed")

"""
Booking orchestrator: converts a held lock into a durable booking.

IDEMPOTENCY STRATEGY: Replay Lookup + Unique Key
================================================

Problem:
  A client submits "book these seats", the response is lost, and the client
  retries. At the transport layer the retry is indistinguishable from a new
  request. Without protection the user gets charged twice, or the retry
  fails because the seats are already BOOKED.

Solution:
  Two levels, both required:

  1. Replay lookup: before doing anything, look for a booking with the same
     idempotency key and return it unchanged
  2. Unique constraint on bookings.idempotency_key: two requests that race
     past step 1 both try to INSERT; the database rejects the loser, which
     rolls back and re-reads the winner's booking by key

  Creating the booking is one unit of work:

  a. lock ACTIVE -> CONSUMED      (only while unexpired)
  b. INSERT booking (PENDING) + booked seats with their lock-time prices
  c. seats LOCKED -> BOOKED       (batch CAS, owner must be the lock)

  Any failure rolls back all three. The lock row is swapped first so
  release, sweeper and booking always contend on the lock before the seats.

Booking lifecycle:
  PENDING -> CONFIRMED | CANCELLED | EXPIRED
  CONFIRMED -> CANCELLED | REFUNDED

  Every transition except CONFIRMED returns the seats to AVAILABLE in the
  same unit of work. CONFIRMED stores the booking's signed ticket code.
  Events are published only after commit.
"""

import uuid
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.exceptions import (
    BookingNotFoundError,
    BookingStateError,
    ConflictError,
    DuplicateIdempotencyKeyError,
    ForbiddenError,
    InvalidRequestError,
    LockExpiredError,
    LockMismatchError,
    LockNotFoundError,
)
from app.core.logging import get_logger
from app.core.metrics import booking_transitions, lock_transitions, record_booking_attempt
from app.db.base import utcnow
from app.db.retry import with_store_retry
from app.db.session import unit_of_work
from app.models.booking import BookedSeat, Booking, BookingStatus
from app.models.lock import LockStatus, SeatLock, SeatLockItem
from app.models.seat import Seat, SeatStatus
from app.schemas.seat_event import SeatEventType
from app.services.inventory_service import (
    announce_transition,
    batch_compare_and_swap,
    transition_lock,
)
from app.services.ticket_service import issue_ticket_code

logger = get_logger(__name__)

ALLOWED_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED, BookingStatus.EXPIRED},
    BookingStatus.CONFIRMED: {BookingStatus.CANCELLED, BookingStatus.REFUNDED},
}


async def _find_by_key(db: AsyncSession, idempotency_key: str) -> Optional[Booking]:
    result = await db.execute(
        select(Booking)
        .where(Booking.idempotency_key == idempotency_key)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _load_booking(db: AsyncSession, booking_id: uuid.UUID, for_update: bool = False) -> Optional[Booking]:
    query = (
        select(Booking)
        .where(Booking.id == booking_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        query = query.with_for_update()
    return (await db.execute(query)).scalar_one_or_none()


def _replay(booking: Booking, holder_id: str) -> Booking:
    if booking.holder_id != holder_id:
        record_booking_attempt("rejected")
        raise ForbiddenError("Idempotency key is already used by another booking")
    record_booking_attempt("replayed")
    logger.info("booking_replayed", booking_id=str(booking.id), idempotency_key=booking.idempotency_key)
    return booking


async def _locate_lock(
    db: AsyncSession,
    event_id: int,
    seat_ids: list[int],
    holder_id: str,
    lock_id: Optional[uuid.UUID],
) -> SeatLock:
    if lock_id is not None:
        result = await db.execute(
            select(SeatLock)
            .where(SeatLock.id == lock_id)
            .execution_options(populate_existing=True)
        )
        lock = result.scalar_one_or_none()
        if lock is None or lock.event_id != event_id:
            raise LockNotFoundError()
        if lock.holder_id != holder_id:
            raise ForbiddenError()
    else:
        # Most recent lock of this holder touching the seats, ACTIVE ones first
        result = await db.execute(
            select(SeatLock)
            .join(SeatLockItem, SeatLockItem.lock_id == SeatLock.id)
            .where(
                SeatLock.event_id == event_id,
                SeatLock.holder_id == holder_id,
                SeatLockItem.seat_id.in_(seat_ids),
            )
            .order_by(
                case((SeatLock.status == LockStatus.ACTIVE, 0), else_=1),
                SeatLock.created_at.desc(),
            )
            .limit(1)
            .execution_options(populate_existing=True)
        )
        lock = result.scalars().first()
        if lock is None:
            raise LockNotFoundError()

    now = utcnow()
    if lock.status == LockStatus.EXPIRED or (lock.status == LockStatus.ACTIVE and lock.expires_at <= now):
        raise LockExpiredError()
    if lock.status != LockStatus.ACTIVE:
        raise LockNotFoundError()
    if sorted(lock.seat_ids) != sorted(seat_ids):
        raise LockMismatchError(lock_seat_ids=lock.seat_ids, requested_seat_ids=sorted(seat_ids))
    return lock


@with_store_retry("create_booking")
async def create_booking(
    db: AsyncSession,
    event_id: int,
    seat_ids: Iterable[int],
    holder_id: str,
    idempotency_key: str,
    lock_id: Optional[uuid.UUID] = None,
) -> tuple[Booking, bool]:
    """
    Create a PENDING booking from the holder's lock on exactly `seat_ids`.

    Returns (booking, created). `created` is False when the key was already
    used by this holder and the original booking is returned unchanged.
    """
    settings = get_settings()
    requested = list(seat_ids)
    if not requested:
        raise InvalidRequestError("At least one seat is required")
    if len(set(requested)) != len(requested):
        raise InvalidRequestError("Seat ids must be distinct")

    existing = await _find_by_key(db, idempotency_key)
    if existing is not None:
        return _replay(existing, holder_id), False

    try:
        lock = await _locate_lock(db, event_id, requested, holder_id, lock_id)
    except (LockNotFoundError, LockExpiredError, LockMismatchError, ForbiddenError):
        # The lock may have just been consumed by a request carrying the same key
        winner = await _find_by_key(db, idempotency_key)
        if winner is not None:
            return _replay(winner, holder_id), False
        record_booking_attempt("rejected")
        raise

    held_lock_id = lock.id
    expires_at = lock.expires_at
    items = {item.seat_id: item for item in lock.items}

    try:
        async with unit_of_work(db):
            now = utcnow()
            if not await transition_lock(
                db, held_lock_id, LockStatus.ACTIVE, LockStatus.CONSUMED, now=now, unexpired=True,
            ):
                if expires_at <= now:
                    raise LockExpiredError()
                raise LockNotFoundError()

            seat_rows = (await db.execute(
                select(Seat.id, Seat.section, Seat.row_label, Seat.seat_number, Seat.label)
                .where(Seat.id.in_(requested))
            )).all()
            seats_by_id = {row.id: row for row in seat_rows}

            booking = Booking(
                id=uuid.uuid4(),
                event_id=event_id,
                holder_id=holder_id,
                lock_id=held_lock_id,
                idempotency_key=idempotency_key,
                status=BookingStatus.PENDING,
                total_amount=sum(items[seat_id].price for seat_id in requested),
                currency=items[requested[0]].currency,
                expires_at=now + timedelta(seconds=settings.BOOKING_PAYMENT_WINDOW_SECONDS),
                seats=[
                    BookedSeat(
                        position=position,
                        seat_id=seat_id,
                        section=seats_by_id[seat_id].section,
                        row_label=seats_by_id[seat_id].row_label,
                        seat_number=seats_by_id[seat_id].seat_number,
                        label=seats_by_id[seat_id].label,
                        price=items[seat_id].price,
                        currency=items[seat_id].currency,
                    )
                    for position, seat_id in enumerate(requested)
                ],
            )
            db.add(booking)
            try:
                await db.flush()
            except IntegrityError as e:
                raise DuplicateIdempotencyKeyError() from e

            versions = await batch_compare_and_swap(
                db, event_id, requested, SeatStatus.LOCKED, SeatStatus.BOOKED,
                expected_owner=held_lock_id, owner=booking.id, operation="book",
            )
    except (DuplicateIdempotencyKeyError, ConflictError, LockExpiredError, LockNotFoundError) as e:
        # A concurrent request with the same key may have won the race
        winner = await _find_by_key(db, idempotency_key)
        if winner is not None:
            logger.info("booking_race_lost", idempotency_key=idempotency_key, error=type(e).__name__)
            return _replay(winner, holder_id), False
        record_booking_attempt("rejected")
        raise

    record_booking_attempt("created")
    lock_transitions.labels(status="consumed").inc()
    logger.info(
        "booking_created",
        booking_id=str(booking.id),
        lock_id=str(held_lock_id),
        event_id=event_id,
        holder_id=holder_id,
        seat_ids=requested,
        total_amount=str(booking.total_amount),
    )
    await announce_transition(event_id, SeatEventType.SEAT_BOOKED, versions, SeatStatus.BOOKED, holder_id)
    return booking, True


async def get_booking(db: AsyncSession, booking_id: uuid.UUID, holder_id: Optional[str] = None) -> Booking:
    booking = await _load_booking(db, booking_id)
    if booking is None:
        raise BookingNotFoundError()
    if holder_id is not None and booking.holder_id != holder_id:
        raise ForbiddenError()
    return booking


async def list_user_bookings(
    db: AsyncSession,
    holder_id: str,
    limit: int = 50,
    offset: int = 0,
) -> list[Booking]:
    """Bookings of a holder, newest first."""
    result = await db.execute(
        select(Booking)
        .where(Booking.holder_id == holder_id)
        .order_by(Booking.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all())


async def _transition_booking(
    db: AsyncSession,
    booking_id: uuid.UUID,
    new: BookingStatus,
    *,
    holder_id: Optional[str] = None,
    payment_ref: Optional[str] = None,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
    only_if_overdue: bool = False,
) -> Booking:
    now = now or utcnow()

    async with unit_of_work(db):
        booking = await _load_booking(db, booking_id, for_update=True)
        if booking is None:
            raise BookingNotFoundError()
        if holder_id is not None and booking.holder_id != holder_id:
            raise ForbiddenError()

        current = booking.status
        if new not in ALLOWED_TRANSITIONS.get(current, set()):
            raise BookingStateError(
                f"Cannot move booking from {current.value} to {new.value}",
                status=current.value,
            )

        values = {"status": new, "updated_at": now}
        if new == BookingStatus.CONFIRMED:
            values.update(confirmed_at=now, payment_ref=payment_ref, ticket_code=issue_ticket_code(booking))
        else:
            values.update(cancelled_at=now, failure_reason=reason)

        conditions = [Booking.id == booking_id, Booking.status == current]
        if only_if_overdue:
            conditions.append(Booking.expires_at <= now)

        result = await db.execute(
            update(Booking)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise BookingStateError("Booking changed concurrently", status=current.value)

        event_id = booking.event_id
        versions = {}
        if new != BookingStatus.CONFIRMED:
            versions = await batch_compare_and_swap(
                db, event_id, booking.seat_ids, SeatStatus.BOOKED, SeatStatus.AVAILABLE,
                expected_owner=booking.id, operation=new.value.lower(),
            )
        await db.refresh(booking)

    booking_transitions.labels(status=new.value.lower()).inc()
    logger.info(
        "booking_transitioned",
        booking_id=str(booking_id),
        event_id=event_id,
        from_status=current.value,
        to_status=new.value,
        reason=reason,
    )
    if versions:
        await announce_transition(
            event_id, SeatEventType.AVAILABILITY_UPDATE, versions, SeatStatus.AVAILABLE, booking.holder_id,
        )
    return booking


@with_store_retry("confirm_payment")
async def confirm_payment(db: AsyncSession, booking_id: uuid.UUID, payment_ref: str) -> Booking:
    """
    PENDING -> CONFIRMED. Repeating the call with the same payment_ref
    returns the confirmed booking; any other ref is rejected.
    """
    booking = await get_booking(db, booking_id)
    if booking.status == BookingStatus.CONFIRMED and booking.payment_ref == payment_ref:
        logger.info("payment_confirmation_replayed", booking_id=str(booking_id))
        return booking

    try:
        return await _transition_booking(db, booking_id, BookingStatus.CONFIRMED, payment_ref=payment_ref)
    except BookingStateError:
        booking = await get_booking(db, booking_id)
        if booking.status == BookingStatus.CONFIRMED and booking.payment_ref == payment_ref:
            return booking
        raise


@with_store_retry("cancel_booking")
async def cancel_booking(
    db: AsyncSession,
    booking_id: uuid.UUID,
    holder_id: Optional[str] = None,
    reason: Optional[str] = None,
) -> Booking:
    return await _transition_booking(
        db, booking_id, BookingStatus.CANCELLED, holder_id=holder_id, reason=reason,
    )


@with_store_retry("refund_booking")
async def refund_booking(db: AsyncSession, booking_id: uuid.UUID, reason: Optional[str] = None) -> Booking:
    """CONFIRMED -> REFUNDED; the seats go back on sale."""
    return await _transition_booking(db, booking_id, BookingStatus.REFUNDED, reason=reason)


@with_store_retry("expire_booking")
async def expire_booking(
    db: AsyncSession,
    booking_id: uuid.UUID,
    now: Optional[datetime] = None,
) -> Optional[Booking]:
    """
    Expire a PENDING booking whose payment window has closed.
    Returns None if it was confirmed or cancelled first.
    """
    try:
        return await _transition_booking(
            db, booking_id, BookingStatus.EXPIRED,
            reason="Payment window expired", now=now, only_if_overdue=True,
        )
    except BookingStateError:
        logger.info("booking_expiry_skipped", booking_id=str(booking_id))
        return None

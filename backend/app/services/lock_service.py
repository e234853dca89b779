"""
Lock manager: time-bounded, exclusive holds on sets of seats.

A lock is all-or-nothing. Either every requested seat moves AVAILABLE ->
LOCKED under the new lock, or the request fails with the list of seats that
were not available and nothing changes.

The TTL is fixed when the lock is created. There is no way to extend it:
re-acquiring the same seats after release issues a fresh lock with a fresh
deadline, so one client cannot hold inventory indefinitely.
"""

import time
import uuid
from datetime import timedelta
from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidRequestError,
    LockNotFoundError,
    LockStateError,
    SeatLimitExceededError,
    SeatNotFoundError,
)
from app.core.logging import get_logger
from app.core.metrics import lock_latency, lock_transitions, record_lock_attempt
from app.db.base import utcnow
from app.db.retry import with_store_retry
from app.db.session import unit_of_work
from app.models.lock import LockHolder, LockStatus, SeatLock, SeatLockItem
from app.models.seat import Seat, SeatStatus
from app.schemas.seat_event import SeatEventType
from app.services.expiry_sweeper import expiry_sweeper
from app.services.inventory_service import (
    announce_transition,
    batch_compare_and_swap,
    ensure_event,
    transition_lock,
)

logger = get_logger(__name__)


async def _load_lock(db: AsyncSession, lock_id: uuid.UUID, for_update: bool = False):
    query = (
        select(SeatLock)
        .where(SeatLock.id == lock_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        query = query.with_for_update()
    return (await db.execute(query)).scalar_one_or_none()


async def claim_holder_slot(db: AsyncSession, event_id: int, holder_id: str) -> None:
    """
    Upsert the holder's row for this event. The row stays locked until the
    unit of work ends, so the same holder's next acquisition on the event
    waits here and then counts seats that include this one's lock.
    """
    insert = postgresql.insert if db.get_bind().dialect.name == "postgresql" else sqlite.insert
    now = utcnow()
    stmt = insert(LockHolder).values(event_id=event_id, holder_id=holder_id, last_acquired_at=now)
    await db.execute(stmt.on_conflict_do_update(
        index_elements=[LockHolder.event_id, LockHolder.holder_id],
        set_={"last_acquired_at": now},
    ))


async def count_held_seats(db: AsyncSession, event_id: int, holder_id: str) -> int:
    """Seats the holder currently has under unexpired ACTIVE locks for the event."""
    result = await db.execute(
        select(func.count(SeatLockItem.seat_id))
        .join(SeatLock, SeatLock.id == SeatLockItem.lock_id)
        .where(
            SeatLock.event_id == event_id,
            SeatLock.holder_id == holder_id,
            SeatLock.status == LockStatus.ACTIVE,
            SeatLock.expires_at > utcnow(),
        )
    )
    return result.scalar() or 0


@with_store_retry("acquire_seats")
async def acquire_seats(
    db: AsyncSession,
    event_id: int,
    seat_ids: Iterable[int],
    holder_id: str,
) -> SeatLock:
    """
    Lock every requested seat for `holder_id` or none of them.

    Raises ConflictError listing the seats that were not AVAILABLE. The lock
    row is inserted before the seats are swapped so the seats' foreign key
    resolves and lock-before-seat ordering holds for everyone.
    """
    settings = get_settings()
    start_time = time.perf_counter()
    requested = list(seat_ids)

    if not requested:
        raise InvalidRequestError("At least one seat is required")
    if len(set(requested)) != len(requested):
        raise InvalidRequestError("Seat ids must be distinct")
    if len(requested) > settings.MAX_SEATS_PER_LOCK:
        record_lock_attempt("rejected")
        raise SeatLimitExceededError(
            f"Cannot lock more than {settings.MAX_SEATS_PER_LOCK} seats at once",
            max_seats=settings.MAX_SEATS_PER_LOCK,
        )

    try:
        async with unit_of_work(db):
            await ensure_event(db, event_id)
            await claim_holder_slot(db, event_id, holder_id)

            seats = (await db.execute(
                select(Seat.id, Seat.price, Seat.currency)
                .where(Seat.event_id == event_id, Seat.id.in_(requested))
            )).all()
            found = {seat.id: seat for seat in seats}
            missing = sorted(set(requested) - set(found))
            if missing:
                raise SeatNotFoundError(
                    f"Seats {missing} do not belong to event {event_id}",
                    seat_ids=missing,
                )

            if len({seat.currency for seat in seats}) > 1:
                raise InvalidRequestError("Seats priced in different currencies cannot be locked together")

            held = await count_held_seats(db, event_id, holder_id)
            if held + len(requested) > settings.MAX_SEATS_PER_USER:
                raise SeatLimitExceededError(
                    f"Maximum {settings.MAX_SEATS_PER_USER} seats per user for an event",
                    max_seats=settings.MAX_SEATS_PER_USER,
                    held=held,
                )

            now = utcnow()
            lock = SeatLock(
                id=uuid.uuid4(),
                event_id=event_id,
                holder_id=holder_id,
                status=LockStatus.ACTIVE,
                expires_at=now + timedelta(seconds=settings.LOCK_TTL_SECONDS),
                items=[
                    SeatLockItem(seat_id=seat_id, price=found[seat_id].price, currency=found[seat_id].currency)
                    for seat_id in sorted(requested)
                ],
            )
            db.add(lock)
            await db.flush()

            versions = await batch_compare_and_swap(
                db, event_id, requested, SeatStatus.AVAILABLE, SeatStatus.LOCKED,
                owner=lock.id, operation="acquire",
            )
    except ConflictError as e:
        record_lock_attempt("conflict")
        logger.info(
            "lock_conflict",
            event_id=event_id,
            holder_id=holder_id,
            requested=sorted(requested),
            unavailable=e.unavailable_seat_ids,
        )
        raise
    except (SeatLimitExceededError, SeatNotFoundError, InvalidRequestError):
        record_lock_attempt("rejected")
        raise

    lock_latency.observe(time.perf_counter() - start_time)
    record_lock_attempt("acquired")
    logger.info(
        "seats_locked",
        lock_id=str(lock.id),
        event_id=event_id,
        holder_id=holder_id,
        seat_ids=sorted(versions),
        expires_at=lock.expires_at.isoformat(),
    )

    expiry_sweeper.schedule(lock.expires_at)
    await announce_transition(event_id, SeatEventType.SEAT_LOCKED, versions, SeatStatus.LOCKED, holder_id)
    return lock


@with_store_retry("release_lock")
async def release_lock(db: AsyncSession, lock_id: uuid.UUID, holder_id: str) -> SeatLock:
    """
    Release a lock and return its seats to AVAILABLE.

    Releasing a lock that already ended (RELEASED or EXPIRED) is a no-op.
    A CONSUMED lock has become a booking and cannot be released.
    """
    async with unit_of_work(db):
        lock = await _load_lock(db, lock_id, for_update=True)
        if lock is None:
            raise LockNotFoundError()
        if lock.holder_id != holder_id:
            raise ForbiddenError()
        if lock.status in (LockStatus.RELEASED, LockStatus.EXPIRED):
            return lock
        if lock.status == LockStatus.CONSUMED:
            raise LockStateError("Lock was already used for a booking; cancel the booking instead")

        event_id = lock.event_id
        now = utcnow()
        if not await transition_lock(db, lock.id, LockStatus.ACTIVE, LockStatus.RELEASED, now=now):
            # Lost to the sweeper or a booking between the read and the swap
            await db.refresh(lock)
            if lock.status in (LockStatus.RELEASED, LockStatus.EXPIRED):
                return lock
            raise LockStateError("Lock was already used for a booking; cancel the booking instead")

        versions = await batch_compare_and_swap(
            db, event_id, lock.seat_ids, SeatStatus.LOCKED, SeatStatus.AVAILABLE,
            expected_owner=lock.id, operation="release",
        )
        await db.refresh(lock)

    lock_transitions.labels(status="released").inc()
    logger.info("lock_released", lock_id=str(lock_id), event_id=event_id, holder_id=holder_id)
    await announce_transition(event_id, SeatEventType.SEAT_RELEASED, versions, SeatStatus.AVAILABLE, holder_id)
    return lock


async def get_lock(db: AsyncSession, lock_id: uuid.UUID, holder_id: str) -> SeatLock:
    lock = await _load_lock(db, lock_id)
    if lock is None:
        raise LockNotFoundError()
    if lock.holder_id != holder_id:
        raise ForbiddenError()
    return lock

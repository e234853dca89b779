"""
Background sweeper that reclaims expired locks and unpaid bookings.

Wakes up at the earliest scheduled lock deadline or every
SWEEP_INTERVAL_SECONDS, whichever comes first. The periodic scan also picks up
locks created by other processes, and anything missed while this one was down.

Every candidate is its own unit of work and goes through the same CAS as
release and booking, so a lock that was consumed or released in the meantime
is simply skipped. Sweeping twice is harmless.
"""

import asyncio
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.exceptions import BookingEngineError
from app.core.logging import bind_context, get_logger
from app.core.metrics import lock_transitions, sweeper_errors, sweeper_reclaimed
from app.db.base import utcnow
from app.db.session import get_sessionmaker, unit_of_work
from app.models.booking import Booking, BookingStatus
from app.models.lock import LockStatus, SeatLock, SeatLockItem
from app.models.seat import SeatStatus
from app.schemas.seat_event import SeatEventType
from app.services.booking_service import expire_booking
from app.services.inventory_service import (
    announce_transition,
    batch_compare_and_swap,
    transition_lock,
)

logger = get_logger(__name__)


class ExpirySweeper:
    def __init__(self, interval: Optional[float] = None, batch_size: Optional[int] = None):
        settings = get_settings()
        self.interval = interval or settings.SWEEP_INTERVAL_SECONDS
        self.batch_size = batch_size or settings.SWEEP_BATCH_SIZE
        self.task: Optional[asyncio.Task] = None
        self._wakeup = asyncio.Event()
        self._next_deadline: Optional[datetime] = None

    def schedule(self, deadline: datetime) -> None:
        """Make sure the sweeper runs no later than `deadline`."""
        if self._next_deadline is None or deadline < self._next_deadline:
            self._next_deadline = deadline
            self._wakeup.set()

    @property
    def running(self) -> bool:
        return self.task is not None and not self.task.done()

    async def start(self):
        if self.running:
            logger.warning("expiry_sweeper_already_running")
            return

        self.task = asyncio.create_task(self._run())
        logger.info("expiry_sweeper_started", interval=self.interval)

    async def stop(self):
        if self.task is None:
            return

        self.task.cancel()
        try:
            await self.task
        except asyncio.CancelledError:
            pass
        self.task = None
        logger.info("expiry_sweeper_stopped")

    def _seconds_until_next(self) -> float:
        if self._next_deadline is None:
            return self.interval
        delay = (self._next_deadline - utcnow()).total_seconds()
        return max(0.0, min(self.interval, delay))

    async def _run(self):
        bind_context(component="expiry_sweeper")
        while True:
            self._wakeup.clear()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self._seconds_until_next())
                # An earlier deadline was scheduled; recompute the wait
                continue
            except asyncio.TimeoutError:
                pass

            started_at = utcnow()
            if self._next_deadline is not None and self._next_deadline <= started_at:
                self._next_deadline = None

            try:
                await self.sweep_once(now=started_at)
            except Exception as e:
                # A failed pass never ends the loop
                sweeper_errors.inc()
                logger.exception("sweep_failed", error_type=type(e).__name__)

    async def _expire_lock(self, db: AsyncSession, lock_id, now: datetime) -> bool:
        async with unit_of_work(db):
            event_id = (await db.execute(
                select(SeatLock.event_id).where(SeatLock.id == lock_id)
            )).scalar_one()
            seat_ids = list((await db.execute(
                select(SeatLockItem.seat_id).where(SeatLockItem.lock_id == lock_id)
            )).scalars().all())

            if not await transition_lock(db, lock_id, LockStatus.ACTIVE, LockStatus.EXPIRED, now=now, expired=True):
                return False

            versions = await batch_compare_and_swap(
                db, event_id, seat_ids, SeatStatus.LOCKED, SeatStatus.AVAILABLE,
                expected_owner=lock_id, operation="expire",
            )

        lock_transitions.labels(status="expired").inc()
        sweeper_reclaimed.labels(kind="lock").inc()
        logger.info("lock_expired", lock_id=str(lock_id), event_id=event_id, seat_ids=sorted(versions))
        await announce_transition(event_id, SeatEventType.SEAT_RELEASED, versions, SeatStatus.AVAILABLE)
        return True

    async def sweep_once(self, now: Optional[datetime] = None) -> dict:
        """
        Reclaim everything whose deadline is at or before `now`.
        Returns counts of reclaimed locks, expired bookings and failures.
        """
        now = now or utcnow()
        counts = {"locks": 0, "bookings": 0, "errors": 0}

        async with get_sessionmaker()() as db:
            lock_ids = list((await db.execute(
                select(SeatLock.id)
                .where(SeatLock.status == LockStatus.ACTIVE, SeatLock.expires_at <= now)
                .order_by(SeatLock.expires_at)
                .limit(self.batch_size)
            )).scalars().all())
            await db.rollback()

            for lock_id in lock_ids:
                try:
                    if await self._expire_lock(db, lock_id, now):
                        counts["locks"] += 1
                except (BookingEngineError, SQLAlchemyError) as e:
                    counts["errors"] += 1
                    sweeper_errors.inc()
                    logger.error("lock_expiry_failed", lock_id=str(lock_id), error=str(e))

            booking_ids = list((await db.execute(
                select(Booking.id)
                .where(Booking.status == BookingStatus.PENDING, Booking.expires_at <= now)
                .order_by(Booking.expires_at)
                .limit(self.batch_size)
            )).scalars().all())
            await db.rollback()

            for booking_id in booking_ids:
                try:
                    if await expire_booking(db, booking_id, now=now) is not None:
                        counts["bookings"] += 1
                        sweeper_reclaimed.labels(kind="booking").inc()
                except (BookingEngineError, SQLAlchemyError) as e:
                    counts["errors"] += 1
                    sweeper_errors.inc()
                    logger.error("booking_expiry_failed", booking_id=str(booking_id), error=str(e))

        if any(counts.values()):
            logger.info("sweep_completed", **counts)
        return counts


# Global sweeper instance
expiry_sweeper = ExpirySweeper()

"""
Waitlist: holders queue for an event and are told when seats free up.

Joining is idempotent per (event, holder). Entries are served in id order.
Every transition that returns seats to AVAILABLE (release, expiry, cancel,
refund, unblock) runs notify_waitlist() after its commit. That pass walks the
oldest WAITING entries and marks NOTIFIED each one whose seat_count still
fits into what is currently AVAILABLE (in its section, if it named one).

A notification is a hint, not a reservation: the notified holder still has
to win the lock like everybody else.
"""

from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.exceptions import (
    EventNotFoundError,
    InvalidRequestError,
    SeatLimitExceededError,
    WaitlistEntryNotFoundError,
)
from app.core.logging import get_logger
from app.core.metrics import waitlist_notifications
from app.db.base import utcnow
from app.db.retry import with_store_retry
from app.db.session import get_sessionmaker, unit_of_work
from app.models.event import Event
from app.models.seat import Seat, SeatStatus
from app.models.waitlist import WaitlistEntry, WaitlistStatus
from app.schemas.seat_event import SeatEvent, SeatEventType
from app.services.broadcaster import broadcaster
from app.services.event_relay import event_relay

logger = get_logger(__name__)


async def _find_entry(db: AsyncSession, event_id: int, holder_id: str) -> Optional[WaitlistEntry]:
    result = await db.execute(
        select(WaitlistEntry)
        .where(WaitlistEntry.event_id == event_id, WaitlistEntry.holder_id == holder_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _count_waiting(db: AsyncSession, event_id: int, up_to_id: Optional[int] = None) -> int:
    query = select(func.count(WaitlistEntry.id)).where(
        WaitlistEntry.event_id == event_id,
        WaitlistEntry.status == WaitlistStatus.WAITING,
    )
    if up_to_id is not None:
        query = query.where(WaitlistEntry.id <= up_to_id)
    return (await db.execute(query)).scalar() or 0


@with_store_retry("join_waitlist")
async def join_waitlist(
    db: AsyncSession,
    event_id: int,
    holder_id: str,
    seat_count: int = 1,
    section: Optional[str] = None,
) -> tuple[WaitlistEntry, bool]:
    """
    Put the holder on the event's waitlist.
    Returns (entry, created); joining again returns the existing entry.
    """
    settings = get_settings()
    if seat_count > settings.MAX_SEATS_PER_LOCK:
        raise SeatLimitExceededError(
            f"Cannot wait for more than {settings.MAX_SEATS_PER_LOCK} seats",
            max_seats=settings.MAX_SEATS_PER_LOCK,
        )

    existing = await _find_entry(db, event_id, holder_id)
    if existing is not None:
        return existing, False

    try:
        async with unit_of_work(db):
            if await db.get(Event, event_id) is None:
                raise EventNotFoundError(f"Event {event_id} not found")
            if section is not None:
                has_section = (await db.execute(
                    select(Seat.id).where(Seat.event_id == event_id, Seat.section == section).limit(1)
                )).first()
                if has_section is None:
                    raise InvalidRequestError(f"Event {event_id} has no section {section!r}")

            entry = WaitlistEntry(
                event_id=event_id,
                holder_id=holder_id,
                section=section,
                seat_count=seat_count,
                status=WaitlistStatus.WAITING,
            )
            db.add(entry)
            await db.flush()
    except IntegrityError:
        # Same holder joined concurrently
        existing = await _find_entry(db, event_id, holder_id)
        if existing is None:
            raise
        return existing, False

    logger.info(
        "waitlist_joined",
        event_id=event_id,
        holder_id=holder_id,
        entry_id=entry.id,
        section=section,
        seat_count=seat_count,
    )
    return entry, True


@with_store_retry("leave_waitlist")
async def leave_waitlist(db: AsyncSession, event_id: int, holder_id: str) -> bool:
    """Remove the holder's entry. Leaving a list you are not on is a no-op."""
    async with unit_of_work(db):
        result = await db.execute(
            delete(WaitlistEntry)
            .where(WaitlistEntry.event_id == event_id, WaitlistEntry.holder_id == holder_id)
            .execution_options(synchronize_session=False)
        )
    removed = result.rowcount == 1
    if removed:
        logger.info("waitlist_left", event_id=event_id, holder_id=holder_id)
    return removed


async def get_position(db: AsyncSession, event_id: int, holder_id: str) -> dict:
    entry = await _find_entry(db, event_id, holder_id)
    if entry is None:
        raise WaitlistEntryNotFoundError()

    position = 0
    if entry.status == WaitlistStatus.WAITING:
        position = await _count_waiting(db, event_id, up_to_id=entry.id)
    return {
        "event_id": event_id,
        "status": entry.status,
        "position": position,
        "waiting": await _count_waiting(db, event_id),
    }


async def list_event_waitlist(
    db: AsyncSession,
    event_id: int,
    limit: int = 50,
    offset: int = 0,
) -> list[WaitlistEntry]:
    """WAITING entries of an event in the order they will be served."""
    result = await db.execute(
        select(WaitlistEntry)
        .where(WaitlistEntry.event_id == event_id, WaitlistEntry.status == WaitlistStatus.WAITING)
        .order_by(WaitlistEntry.id)
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all())


async def list_holder_entries(db: AsyncSession, holder_id: str) -> list[WaitlistEntry]:
    result = await db.execute(
        select(WaitlistEntry)
        .where(WaitlistEntry.holder_id == holder_id)
        .order_by(WaitlistEntry.id.desc())
    )
    return list(result.scalars().all())


async def _available_by_section(db: AsyncSession, event_id: int) -> dict[str, int]:
    result = await db.execute(
        select(Seat.section, func.count(Seat.id))
        .where(Seat.event_id == event_id, Seat.status == SeatStatus.AVAILABLE)
        .group_by(Seat.section)
    )
    return {section: count for section, count in result}


async def notify_waitlist(event_id: int) -> list[WaitlistEntry]:
    """
    Notify the oldest WAITING entries that fit into the seats available now.
    Uses its own session; callers have already committed their transition.
    """
    settings = get_settings()
    now = utcnow()
    notified: list[WaitlistEntry] = []

    async with get_sessionmaker()() as db:
        async with unit_of_work(db):
            entries = list((await db.execute(
                select(WaitlistEntry)
                .where(WaitlistEntry.event_id == event_id, WaitlistEntry.status == WaitlistStatus.WAITING)
                .order_by(WaitlistEntry.id)
                .limit(settings.WAITLIST_NOTIFY_BATCH_SIZE)
            )).scalars().all())
            if not entries:
                return notified

            by_section = await _available_by_section(db, event_id)
            remaining = sum(by_section.values())

            for entry in entries:
                if remaining <= 0:
                    break
                fits_in = remaining
                if entry.section is not None:
                    fits_in = min(remaining, by_section.get(entry.section, 0))
                if entry.seat_count > fits_in:
                    continue

                # Another instance may be notifying the same entry
                result = await db.execute(
                    update(WaitlistEntry)
                    .where(WaitlistEntry.id == entry.id, WaitlistEntry.status == WaitlistStatus.WAITING)
                    .values(status=WaitlistStatus.NOTIFIED, notified_at=now, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    continue

                remaining -= entry.seat_count
                if entry.section is not None:
                    by_section[entry.section] -= entry.seat_count
                notified.append(entry)

    for entry in notified:
        waitlist_notifications.inc()
        logger.info(
            "waitlist_notified",
            event_id=event_id,
            holder_id=entry.holder_id,
            entry_id=entry.id,
            seat_count=entry.seat_count,
        )
        event = broadcaster.publish(
            event_id,
            SeatEvent(
                event_id=event_id,
                type=SeatEventType.WAITLIST_NOTIFIED,
                seat_ids=[],
                user_id=entry.holder_id,
                status=WaitlistStatus.NOTIFIED.value,
            ),
        )
        await event_relay.forward(event)
    return notified

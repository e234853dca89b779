"""
Seat inventory store - the single source of truth for seat availability.

CONCURRENCY STRATEGY: Batch Compare-and-Swap
============================================

Problem:
  Two users select overlapping seats at the same moment. Both read
  "AVAILABLE", both write "LOCKED", and each believes it holds the seats.
  Worse, a multi-seat request could end up half-granted: seat A locked by
  me, seat B locked by someone else.

Solution:
  Every seat mutation (lock, release, book, revert, block) is a batch CAS:

  1. SELECT ... FOR UPDATE the requested rows, ordered by id, so two
     overlapping batches always take row locks in the same order
  2. Check every seat has the expected status (and owner, when given).
     Any mismatch rejects the whole batch with ConflictError naming the seats
  3. UPDATE seats SET status = :new, version = version + 1, ...
     WHERE id IN (...) AND status = :expected [AND owner = :owner]
     RETURNING id, version
  4. If fewer rows come back than were requested, another writer slipped in
     between 2 and 3 (possible on SQLite, which has no row locks): reject

  The caller runs the CAS inside unit_of_work(), so a rejection rolls back
  every statement of the unit. A failed batch never changes any seat.

  There is no event-wide lock. Contention is per seat, so unrelated seats in
  the same event are claimed concurrently without waiting on each other.

Ordering:
  `version` increases by one per successful CAS. The sequence of CAS winners
  is the total order of a seat's transitions, and broadcast events carry the
  new versions so watchers can discard stale or duplicate events.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError, EventNotFoundError, InvalidRequestError, SeatNotFoundError
from app.core.logging import get_logger
from app.core.metrics import cas_conflicts, waitlist_errors
from app.db.base import utcnow
from app.db.retry import with_store_retry
from app.db.session import unit_of_work
from app.models.event import Event
from app.models.lock import LockStatus, SeatLock
from app.models.seat import Seat, SeatStatus
from app.schemas.seat_event import SeatEvent, SeatEventType
from app.services.broadcaster import broadcaster
from app.services.cache_service import (
    get_cached_availability,
    invalidate_event_cache,
    set_cached_availability,
)
from app.services.event_relay import event_relay
from app.services.waitlist_service import notify_waitlist

logger = get_logger(__name__)


@dataclass(frozen=True)
class SeatState:
    seat_id: int
    status: SeatStatus
    version: int


def _owner_column(status: SeatStatus):
    if status == SeatStatus.LOCKED:
        return Seat.lock_id
    if status == SeatStatus.BOOKED:
        return Seat.booking_id
    return None


async def ensure_event(db: AsyncSession, event_id: int) -> Event:
    event = await db.get(Event, event_id)
    if event is None:
        raise EventNotFoundError(f"Event {event_id} not found")
    return event


async def get_status(db: AsyncSession, event_id: int, seat_ids: Iterable[int]) -> dict[int, SeatStatus]:
    """Current status of the given seats. Unknown ids are simply absent."""
    ids = list(set(seat_ids))
    if not ids:
        return {}
    result = await db.execute(
        select(Seat.id, Seat.status).where(Seat.event_id == event_id, Seat.id.in_(ids))
    )
    return {row.id: row.status for row in result}


async def get_seat_states(
    db: AsyncSession,
    event_id: int,
    seat_ids: Optional[Iterable[int]] = None,
) -> list[SeatState]:
    """Status and version per seat; the full-state snapshot for re-syncing watchers."""
    query = select(Seat.id, Seat.status, Seat.version).where(Seat.event_id == event_id)
    if seat_ids is not None:
        query = query.where(Seat.id.in_(list(set(seat_ids))))
    result = await db.execute(query.order_by(Seat.id))
    return [SeatState(row.id, row.status, row.version) for row in result]


async def list_seats(db: AsyncSession, event_id: int) -> list[Seat]:
    await ensure_event(db, event_id)
    result = await db.execute(
        select(Seat)
        .where(Seat.event_id == event_id)
        .order_by(Seat.section, Seat.row_label, Seat.seat_number)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def batch_compare_and_swap(
    db: AsyncSession,
    event_id: int,
    seat_ids: Iterable[int],
    expected: SeatStatus,
    new: SeatStatus,
    *,
    expected_owner: Optional[UUID] = None,
    owner: Optional[UUID] = None,
    operation: str = "cas",
) -> dict[int, int]:
    """
    Move every seat from `expected` to `new`, or none of them.

    `expected_owner` additionally requires the seats to point at that lock
    (expected LOCKED) or booking (expected BOOKED). `owner` is recorded on the
    seats when `new` is LOCKED or BOOKED; other statuses clear both owners.

    Returns {seat_id: new_version}. Raises ConflictError naming the seats that
    did not match. Must run inside unit_of_work so a rejection rolls back.
    """
    ids = sorted(set(seat_ids))
    if not ids:
        raise InvalidRequestError("At least one seat is required")

    expected_owner_col = _owner_column(expected) if expected_owner is not None else None

    # Lock the rows in id order before checking them
    current = await db.execute(
        select(Seat.id, Seat.status, Seat.lock_id, Seat.booking_id)
        .where(Seat.event_id == event_id, Seat.id.in_(ids))
        .order_by(Seat.id)
        .with_for_update()
    )
    rows = {row.id: row for row in current}

    missing = [seat_id for seat_id in ids if seat_id not in rows]
    if missing:
        raise SeatNotFoundError(
            f"Seats {missing} do not belong to event {event_id}",
            seat_ids=missing,
        )

    unavailable = []
    for seat_id in ids:
        row = rows[seat_id]
        if row.status != expected:
            unavailable.append(seat_id)
        elif expected_owner_col is not None and getattr(row, expected_owner_col.key) != expected_owner:
            unavailable.append(seat_id)

    if unavailable:
        cas_conflicts.labels(operation=operation).inc()
        logger.info(
            "seat_cas_rejected",
            operation=operation,
            event_id=event_id,
            expected=expected.value,
            unavailable=unavailable,
        )
        raise ConflictError(unavailable)

    conditions = [Seat.event_id == event_id, Seat.id.in_(ids), Seat.status == expected]
    if expected_owner_col is not None:
        conditions.append(expected_owner_col == expected_owner)

    result = await db.execute(
        update(Seat)
        .where(*conditions)
        .values(
            status=new,
            lock_id=owner if new == SeatStatus.LOCKED else None,
            booking_id=owner if new == SeatStatus.BOOKED else None,
            version=Seat.version + 1,
            updated_at=utcnow(),
        )
        .returning(Seat.id, Seat.version)
        .execution_options(synchronize_session=False)
    )
    versions = {row.id: row.version for row in result}

    if len(versions) != len(ids):
        lost = [seat_id for seat_id in ids if seat_id not in versions]
        cas_conflicts.labels(operation=operation).inc()
        logger.info("seat_cas_lost_race", operation=operation, event_id=event_id, unavailable=lost)
        raise ConflictError(lost)

    return versions


async def compare_and_swap(
    db: AsyncSession,
    event_id: int,
    seat_id: int,
    expected: SeatStatus,
    new: SeatStatus,
    owner_ref: Optional[UUID] = None,
    expected_owner: Optional[UUID] = None,
) -> int:
    """Single-seat CAS; returns the seat's new version."""
    versions = await batch_compare_and_swap(
        db, event_id, [seat_id], expected, new,
        expected_owner=expected_owner, owner=owner_ref,
    )
    return versions[seat_id]


async def transition_lock(
    db: AsyncSession,
    lock_id: UUID,
    expected: LockStatus,
    new: LockStatus,
    *,
    now: Optional[datetime] = None,
    unexpired: bool = False,
    expired: bool = False,
) -> bool:
    """
    CAS on a lock row. Lock rows are always swapped before their seats, so
    release, booking and the sweeper contend on the lock first and only the
    winner goes on to touch seats.

    `unexpired` / `expired` additionally require the deadline to be in the
    future / past relative to `now`. Returns False if another writer won.
    """
    now = now or utcnow()
    conditions = [SeatLock.id == lock_id, SeatLock.status == expected]
    if unexpired:
        conditions.append(SeatLock.expires_at > now)
    if expired:
        conditions.append(SeatLock.expires_at <= now)

    result = await db.execute(
        update(SeatLock)
        .where(*conditions)
        .values(status=new, closed_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def announce_transition(
    event_id: int,
    event_type: SeatEventType,
    versions: dict[int, int],
    status: SeatStatus,
    user_id: Optional[str] = None,
) -> SeatEvent:
    """
    Publish a committed transition, relay it to the other instances and drop
    cached views of the event. Seats coming back to AVAILABLE also wake the
    waitlist. Only call after commit: watchers must never see an uncommitted
    state.
    """
    event = broadcaster.publish(
        event_id,
        SeatEvent(
            event_id=event_id,
            type=event_type,
            seat_ids=sorted(versions),
            user_id=user_id,
            status=status.value,
            seat_versions=versions,
        ),
    )
    await invalidate_event_cache(event_id)
    await event_relay.forward(event)
    if status == SeatStatus.AVAILABLE:
        try:
            await notify_waitlist(event_id)
        except SQLAlchemyError:
            # The transition is committed; a missed notification is retried by the next one
            waitlist_errors.inc()
            logger.exception("waitlist_notify_failed", event_id=event_id)
    return event


async def compute_availability(db: AsyncSession, event_id: int) -> dict:
    available_expr = func.sum(case((Seat.status == SeatStatus.AVAILABLE, 1), else_=0))
    result = await db.execute(
        select(
            Seat.section,
            func.count(Seat.id).label("total"),
            available_expr.label("available"),
            func.min(Seat.price).label("min_price"),
            func.min(Seat.currency).label("currency"),
        )
        .where(Seat.event_id == event_id)
        .group_by(Seat.section)
        .order_by(Seat.section)
    )
    sections = [
        {
            "section": row.section,
            "available": int(row.available or 0),
            "total": int(row.total),
            "min_price": row.min_price,
            "currency": row.currency,
        }
        for row in result
    ]
    return {
        "event_id": event_id,
        "available": sum(s["available"] for s in sections),
        "total": sum(s["total"] for s in sections),
        "sections": sections,
        "last_updated": utcnow(),
    }


async def get_availability(db: AsyncSession, event_id: int) -> dict:
    """Per-section availability, served from cache between transitions."""
    lookup = await get_cached_availability(event_id)
    if lookup.value:
        return {**lookup.value, "cached": True}

    await ensure_event(db, event_id)
    snapshot = await compute_availability(db, event_id)
    await set_cached_availability(event_id, lookup.generation, snapshot)
    snapshot["cached"] = False
    return snapshot


async def count_available(db: AsyncSession, event_ids: Iterable[int]) -> dict[int, int]:
    ids = list(set(event_ids))
    if not ids:
        return {}
    result = await db.execute(
        select(Seat.event_id, func.count(Seat.id))
        .where(Seat.event_id.in_(ids), Seat.status == SeatStatus.AVAILABLE)
        .group_by(Seat.event_id)
    )
    counts = {event_id: 0 for event_id in ids}
    counts.update({row[0]: row[1] for row in result})
    return counts


async def _set_blocked(
    db: AsyncSession,
    event_id: int,
    seat_ids: list[int],
    actor_id: str,
    expected: SeatStatus,
    new: SeatStatus,
) -> dict[int, int]:
    if len(set(seat_ids)) != len(seat_ids):
        raise InvalidRequestError("Seat ids must be distinct")

    async with unit_of_work(db):
        await ensure_event(db, event_id)
        versions = await batch_compare_and_swap(
            db, event_id, seat_ids, expected, new, operation=f"set_{new.value.lower()}",
        )

    logger.info(
        "seats_administratively_changed",
        event_id=event_id,
        seat_ids=sorted(versions),
        status=new.value,
        actor=actor_id,
    )
    await announce_transition(event_id, SeatEventType.AVAILABILITY_UPDATE, versions, new, actor_id)
    return versions


@with_store_retry("block_seats")
async def block_seats(db: AsyncSession, event_id: int, seat_ids: list[int], actor_id: str) -> dict[int, int]:
    """Administrative override: AVAILABLE -> BLOCKED."""
    return await _set_blocked(db, event_id, seat_ids, actor_id, SeatStatus.AVAILABLE, SeatStatus.BLOCKED)


@with_store_retry("unblock_seats")
async def unblock_seats(db: AsyncSession, event_id: int, seat_ids: list[int], actor_id: str) -> dict[int, int]:
    """Clear an administrative override: BLOCKED -> AVAILABLE."""
    return await _set_blocked(db, event_id, seat_ids, actor_id, SeatStatus.BLOCKED, SeatStatus.AVAILABLE)

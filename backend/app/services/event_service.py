"""
Event reads with availability derived from the seat rows.
"""

from datetime import datetime, timezone

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.event import Event
from app.schemas.event import EventListResponse, EventResponse
from app.services.cache_service import get_cached_events, set_cached_events
from app.services.inventory_service import count_available, ensure_event
from app.core.logging import get_logger

logger = get_logger(__name__)


def _to_dict(event: Event, available: int) -> dict:
    return {
        "id": event.id,
        "title": event.title,
        "venue": event.venue,
        "starts_at": event.starts_at,
        "seat_count": event.seat_count,
        "available_seats": available,
    }


async def get_event(db: AsyncSession, event_id: int) -> dict:
    """Get a single event with its live count of AVAILABLE seats."""
    event = await ensure_event(db, event_id)
    counts = await count_available(db, [event.id])
    return _to_dict(event, counts[event.id])


async def list_events(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    upcoming_only: bool = True,
) -> tuple[list[dict], int]:
    """
    List events with pagination.
    Uses the ix_events_starts_at index for the upcoming filter and ordering.
    """
    query = select(Event)

    if upcoming_only:
        query = query.where(Event.starts_at >= datetime.now(timezone.utc))

    # Get total count
    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar()

    events_query = (
        query
        .order_by(Event.starts_at.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(events_query)
    events = list(result.scalars().all())

    counts = await count_available(db, [e.id for e in events])
    return [_to_dict(e, counts[e.id]) for e in events], total


async def list_events_page(
    db: AsyncSession,
    page: int,
    page_size: int,
    upcoming_only: bool = True,
) -> EventListResponse:
    """
    One page of the event listing, served from Redis when a fresh copy exists.
    Any seat transition on any event drops every cached page.
    """
    lookup = await get_cached_events(page, page_size, upcoming_only)
    if lookup.value:
        logger.debug("events_page_from_cache", page=page, page_size=page_size)
        return EventListResponse(**{**lookup.value, "cached": True})

    events, total = await list_events(db, page, page_size, upcoming_only)
    response = EventListResponse(
        events=[EventResponse(**e) for e in events],
        total=total,
        page=page,
        page_size=page_size,
    )
    await set_cached_events(page, page_size, upcoming_only, lookup.generation, response.model_dump(mode="json"))
    return response

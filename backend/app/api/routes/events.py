"""
Event read endpoints. Listing goes through the Redis page cache; a single
event is always counted live.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.schemas.event import EventListResponse, EventResponse
from app.services import event_service

router = APIRouter(prefix="/events", tags=["Events"])


@router.get("/", response_model=EventListResponse)
async def list_events(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    upcoming_only: bool = Query(True),
    db: AsyncSession = Depends(get_db),
):
    return await event_service.list_events_page(db, page, page_size, upcoming_only)


@router.get("/{event_id}", response_model=EventResponse)
async def get_event(event_id: int, db: AsyncSession = Depends(get_db)):
    """Seat counts here are never served from cache."""
    return EventResponse(**await event_service.get_event(db, event_id))

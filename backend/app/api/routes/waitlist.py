"""
Waitlist endpoints: join, leave and check your place for a sold-out event.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.schemas.waitlist import WaitlistEntryResponse, WaitlistJoinRequest, WaitlistPositionResponse
from app.services.waitlist_service import (
    get_position,
    join_waitlist,
    leave_waitlist,
    list_event_waitlist,
    list_holder_entries,
)
from app.core.security import get_current_user_id, require_admin

router = APIRouter(prefix="/waitlist", tags=["Waitlist"])


@router.get("/me", response_model=list[WaitlistEntryResponse])
async def my_waitlist_entries(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await list_holder_entries(db, user_id)


@router.post("/{event_id}", response_model=WaitlistEntryResponse, status_code=status.HTTP_201_CREATED)
async def join_waitlist_endpoint(
    event_id: int,
    response: Response,
    request: Optional[WaitlistJoinRequest] = None,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Queue for seats of an event. You are notified over the seat stream when
    enough seats free up; joining again returns your existing entry with 200.
    """
    request = request or WaitlistJoinRequest()
    entry, created = await join_waitlist(
        db, event_id, user_id, seat_count=request.seat_count, section=request.section,
    )
    if not created:
        response.status_code = status.HTTP_200_OK
    return entry


@router.delete("/{event_id}", status_code=status.HTTP_204_NO_CONTENT)
async def leave_waitlist_endpoint(
    event_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    await leave_waitlist(db, event_id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{event_id}/position", response_model=WaitlistPositionResponse)
async def waitlist_position(
    event_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await get_position(db, event_id, user_id)


@router.get("/{event_id}", response_model=list[WaitlistEntryResponse])
async def event_waitlist(
    event_id: int,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    admin_id: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Entries still waiting, in the order they will be served. Requires the admin role."""
    return await list_event_waitlist(db, event_id, limit=limit, offset=offset)

"""
Seat locking and inventory endpoints.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.schemas.seat import (
    AvailabilityResponse,
    SeatBlockRequest,
    SeatLockRequest,
    SeatLockResponse,
    SeatResponse,
    SeatStatusResponse,
)
from app.services.inventory_service import block_seats, get_availability, list_seats, unblock_seats
from app.services.lock_service import acquire_seats, get_lock, release_lock
from app.core.security import get_current_user_id, require_admin
from app.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/seats", tags=["Seats"])


def _lock_response(lock) -> SeatLockResponse:
    return SeatLockResponse(
        lock_id=lock.id,
        event_id=lock.event_id,
        seat_ids=lock.seat_ids,
        status=lock.status,
        expires_at=lock.expires_at,
    )


@router.post("/lock", response_model=SeatLockResponse, status_code=status.HTTP_201_CREATED)
async def lock_seats(
    request: SeatLockRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Hold a set of seats for checkout.

    All-or-nothing: if any seat is taken the response is 409 with the list of
    unavailable seats and nothing is held. The hold expires after a fixed TTL.
    """
    lock = await acquire_seats(db, request.event_id, request.seat_ids, user_id)
    return _lock_response(lock)


@router.post("/release/{lock_id}", status_code=status.HTTP_204_NO_CONTENT)
async def release_seats(
    lock_id: UUID,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Give held seats back before the lock expires."""
    await release_lock(db, lock_id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/locks/{lock_id}", response_model=SeatLockResponse)
async def get_lock_endpoint(
    lock_id: UUID,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    lock = await get_lock(db, lock_id, user_id)
    return _lock_response(lock)


@router.get("/availability/{event_id}", response_model=AvailabilityResponse)
async def availability(
    event_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Per-section availability. Cached briefly, invalidated on every seat change."""
    return await get_availability(db, event_id)


@router.get("/event/{event_id}", response_model=list[SeatResponse])
async def event_seats(
    event_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Every seat of an event with its status and version."""
    return await list_seats(db, event_id)


@router.post("/block", response_model=list[SeatStatusResponse])
async def block(
    request: SeatBlockRequest,
    admin_id: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    versions = await block_seats(db, request.event_id, request.seat_ids, admin_id)
    return [
        SeatStatusResponse(seat_id=seat_id, status="BLOCKED", version=version)
        for seat_id, version in sorted(versions.items())
    ]


@router.post("/unblock", response_model=list[SeatStatusResponse])
async def unblock(
    request: SeatBlockRequest,
    admin_id: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    versions = await unblock_seats(db, request.event_id, request.seat_ids, admin_id)
    return [
        SeatStatusResponse(seat_id=seat_id, status="AVAILABLE", version=version)
        for seat_id, version in sorted(versions.items())
    ]

"""
Tests for the event waitlist: joining, position, leaving and notification
when seats come back on sale.
"""

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from app.core.config import get_settings
from app.db.base import utcnow
from app.models.waitlist import WaitlistEntry, WaitlistStatus
from app.schemas.seat_event import SeatEventType
from app.services.broadcaster import broadcaster
from app.services.expiry_sweeper import ExpirySweeper
from app.services.waitlist_service import notify_waitlist
from tests.helpers import create_event, event_seat_ids, make_headers


async def lock_seats(client: AsyncClient, headers: dict, event_id: int, seat_ids: list[int]) -> str:
    response = await client.post("/api/v1/seats/lock", json={"event_id": event_id, "seat_ids": seat_ids}, headers=headers)
    assert response.status_code == 201
    return response.json()["lock_id"]


async def join(client: AsyncClient, headers: dict, event_id: int, **body):
    return await client.post(f"/api/v1/waitlist/{event_id}", json=body or None, headers=headers)


async def entry_statuses(db_session, event_id: int) -> dict[str, WaitlistStatus]:
    result = await db_session.execute(
        select(WaitlistEntry.holder_id, WaitlistEntry.status).where(WaitlistEntry.event_id == event_id)
    )
    return {holder_id: status for holder_id, status in result}


@pytest.mark.asyncio
async def test_join_is_idempotent(client: AsyncClient, auth_headers, test_event):
    event_id = test_event.id

    first = await join(client, auth_headers, event_id, seat_count=2)
    assert first.status_code == 201
    entry = first.json()
    assert entry["status"] == "WAITING"
    assert entry["seat_count"] == 2
    assert entry["holder_id"] == "user-1"

    again = await join(client, auth_headers, event_id, seat_count=4)
    assert again.status_code == 200
    assert again.json()["id"] == entry["id"]
    assert again.json()["seat_count"] == 2


@pytest.mark.asyncio
async def test_position_and_leave(client: AsyncClient, auth_headers, other_headers, test_event):
    event_id = test_event.id
    await join(client, auth_headers, event_id)
    await join(client, other_headers, event_id)

    mine = await client.get(f"/api/v1/waitlist/{event_id}/position", headers=auth_headers)
    theirs = await client.get(f"/api/v1/waitlist/{event_id}/position", headers=other_headers)
    assert mine.json() == {"event_id": event_id, "status": "WAITING", "position": 1, "waiting": 2}
    assert theirs.json()["position"] == 2

    left = await client.delete(f"/api/v1/waitlist/{event_id}", headers=auth_headers)
    assert left.status_code == 204
    left_again = await client.delete(f"/api/v1/waitlist/{event_id}", headers=auth_headers)
    assert left_again.status_code == 204

    gone = await client.get(f"/api/v1/waitlist/{event_id}/position", headers=auth_headers)
    assert gone.status_code == 404
    assert gone.json()["code"] == "WAITLIST_ENTRY_NOT_FOUND"

    theirs = await client.get(f"/api/v1/waitlist/{event_id}/position", headers=other_headers)
    assert theirs.json()["position"] == 1
    assert theirs.json()["waiting"] == 1


@pytest.mark.asyncio
async def test_join_validation(client: AsyncClient, auth_headers, test_event):
    unknown_section = await join(client, auth_headers, test_event.id, section="Z")
    assert unknown_section.status_code == 400

    too_many = await join(client, auth_headers, test_event.id, seat_count=get_settings().MAX_SEATS_PER_LOCK + 1)
    assert too_many.status_code == 409
    assert too_many.json()["code"] == "SEAT_LIMIT_EXCEEDED"

    unknown_event = await join(client, auth_headers, 999999)
    assert unknown_event.status_code == 404

    no_token = await client.post(f"/api/v1/waitlist/{test_event.id}")
    assert no_token.status_code == 401


@pytest.mark.asyncio
async def test_release_notifies_waiting_holder(client: AsyncClient, auth_headers, other_headers, test_event, seat_ids):
    event_id = test_event.id
    lock_id = await lock_seats(client, auth_headers, event_id, seat_ids[:2])
    await join(client, other_headers, event_id, seat_count=2)

    # Locking takes seats, it never frees any
    position = await client.get(f"/api/v1/waitlist/{event_id}/position", headers=other_headers)
    assert position.json()["status"] == "WAITING"

    async with broadcaster.subscribe(event_id) as subscription:
        released = await client.post(f"/api/v1/seats/release/{lock_id}", headers=auth_headers)
        assert released.status_code == 204

        received = []
        while (event := await subscription.next_event(timeout=0.5)) is not None:
            received.append(event)

    assert [event.type for event in received] == [SeatEventType.SEAT_RELEASED, SeatEventType.WAITLIST_NOTIFIED]
    assert received[1].user_id == "user-2"
    assert received[1].status == "NOTIFIED"

    position = await client.get(f"/api/v1/waitlist/{event_id}/position", headers=other_headers)
    assert position.json()["status"] == "NOTIFIED"
    assert position.json()["position"] == 0
    assert position.json()["waiting"] == 0

    entries = await client.get("/api/v1/waitlist/me", headers=other_headers)
    assert entries.json()[0]["notified_at"] is not None


@pytest.mark.asyncio
async def test_notification_respects_section_and_count(client: AsyncClient, db_session):
    event = await create_event(db_session, sections={"A": Decimal("50.00"), "B": Decimal("80.00")}, seats_per_section=2)
    event_id = event.id
    seat_ids = await event_seat_ids(db_session, event_id)
    owner = make_headers("owner")
    section_a_lock = await lock_seats(client, owner, event_id, seat_ids[:2])
    await lock_seats(client, owner, event_id, seat_ids[2:])

    await join(client, make_headers("wants-b"), event_id, section="B", seat_count=2)
    await join(client, make_headers("wants-a"), event_id, section="A", seat_count=1)
    await join(client, make_headers("wants-three"), event_id, seat_count=3)

    released = await client.post(f"/api/v1/seats/release/{section_a_lock}", headers=owner)
    assert released.status_code == 204

    assert await entry_statuses(db_session, event_id) == {
        "wants-b": WaitlistStatus.WAITING,
        "wants-a": WaitlistStatus.NOTIFIED,
        "wants-three": WaitlistStatus.WAITING,
    }
    position = await client.get(f"/api/v1/waitlist/{event_id}/position", headers=make_headers("wants-three"))
    assert position.json()["position"] == 2

    # Nothing changed since; a second pass notifies nobody new
    assert await notify_waitlist(event_id) == []


@pytest.mark.asyncio
async def test_cancel_and_expiry_notify(client: AsyncClient, auth_headers, db_session, test_event, seat_ids):
    event_id = test_event.id
    lock_id = await lock_seats(client, auth_headers, event_id, seat_ids[:1])
    booking = await client.post(
        "/api/v1/bookings/",
        json={
            "event_id": event_id,
            "seat_ids": seat_ids[:1],
            "idempotency_key": f"wl-{uuid.uuid4().hex}",
            "lock_id": lock_id,
        },
        headers=auth_headers,
    )
    assert booking.status_code == 201
    await lock_seats(client, auth_headers, event_id, seat_ids[1:2])

    await join(client, make_headers("first-in-line"), event_id)
    cancelled = await client.post(f"/api/v1/bookings/{booking.json()['id']}/cancel", headers=auth_headers)
    assert cancelled.status_code == 200
    assert (await entry_statuses(db_session, event_id))["first-in-line"] == WaitlistStatus.NOTIFIED

    await join(client, make_headers("second-in-line"), event_id)
    past_ttl = timedelta(seconds=get_settings().LOCK_TTL_SECONDS + 1)
    counts = await ExpirySweeper().sweep_once(now=utcnow() + past_ttl)
    assert counts["locks"] == 1
    assert (await entry_statuses(db_session, event_id))["second-in-line"] == WaitlistStatus.NOTIFIED


@pytest.mark.asyncio
async def test_event_waitlist_requires_admin(client: AsyncClient, auth_headers, other_headers, admin_headers, test_event):
    event_id = test_event.id
    await join(client, other_headers, event_id)
    await join(client, auth_headers, event_id, section="A", seat_count=3)

    forbidden = await client.get(f"/api/v1/waitlist/{event_id}", headers=auth_headers)
    assert forbidden.status_code == 403

    listed = await client.get(f"/api/v1/waitlist/{event_id}", headers=admin_headers)
    assert listed.status_code == 200
    assert [entry["holder_id"] for entry in listed.json()] == ["user-2", "user-1"]
    assert listed.json()[1]["section"] == "A"

    mine = await client.get("/api/v1/waitlist/me", headers=auth_headers)
    assert [entry["event_id"] for entry in mine.json()] == [event_id]

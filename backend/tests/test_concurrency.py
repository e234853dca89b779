"""
Concurrency tests: racing requests against the same seats.

Requests run concurrently through the ASGI app, each on its own database
connection. On SQLite writers are serialized by the database lock; the
stress test needs PostgreSQL row locks and only runs with TEST_DATABASE_URL.
"""

import asyncio
import random
import uuid
from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from app.core.config import get_settings
from app.db.base import utcnow
from app.models.booking import BookedSeat, Booking, BookingStatus
from app.models.seat import Seat, SeatStatus
from app.services.expiry_sweeper import ExpirySweeper
from tests.helpers import is_postgres, make_headers


def lock_request(client: AsyncClient, user: str, event_id: int, seat_ids: list[int]):
    return client.post(
        "/api/v1/seats/lock",
        json={"event_id": event_id, "seat_ids": seat_ids},
        headers=make_headers(user),
    )


@pytest.mark.asyncio
async def test_only_one_lock_wins(client: AsyncClient, test_event, seat_ids):
    responses = await asyncio.gather(*[
        lock_request(client, f"racer-{i}", test_event.id, [seat_ids[0], seat_ids[1]])
        for i in range(8)
    ])

    codes = sorted(r.status_code for r in responses)
    assert codes.count(201) == 1
    assert codes.count(409) == 7

    seat = (await client.get(f"/api/v1/seats/event/{test_event.id}")).json()[0]
    assert seat["status"] == "LOCKED"
    assert seat["version"] == 1


@pytest.mark.asyncio
async def test_overlapping_requests_never_share_a_seat(client: AsyncClient, test_event, seat_ids):
    requests = [[seat_ids[0], seat_ids[1]], [seat_ids[1], seat_ids[2]], [seat_ids[2], seat_ids[3]]]

    responses = await asyncio.gather(*[
        lock_request(client, f"overlap-{i}", test_event.id, seats)
        for i, seats in enumerate(requests)
    ])

    won = [seats for seats, r in zip(requests, responses) if r.status_code == 201]
    claimed = [seat for seats in won for seat in seats]
    assert len(claimed) == len(set(claimed))
    assert won

    states = {s["id"]: s["status"] for s in (await client.get(f"/api/v1/seats/event/{test_event.id}")).json()}
    assert sorted(seat for seat, status in states.items() if status == "LOCKED") == sorted(claimed)


@pytest.mark.asyncio
async def test_concurrent_retries_create_one_booking(
    client: AsyncClient, auth_headers, db_session, test_event, seat_ids,
):
    lock = (await lock_request(client, "user-1", test_event.id, seat_ids[:2])).json()
    body = {
        "event_id": test_event.id,
        "seat_ids": seat_ids[:2],
        "idempotency_key": "concurrent-retry-01",
        "lock_id": lock["lock_id"],
    }

    responses = await asyncio.gather(*[
        client.post("/api/v1/bookings/", json=body, headers=auth_headers)
        for _ in range(5)
    ])

    assert sorted(r.status_code for r in responses) == [200, 200, 200, 200, 201]
    assert len({r.json()["id"] for r in responses}) == 1

    count = (await db_session.execute(
        select(func.count(Booking.id)).where(Booking.idempotency_key == "concurrent-retry-01")
    )).scalar()
    assert count == 1


@pytest.mark.asyncio
async def test_release_racing_sweeper(client: AsyncClient, auth_headers, test_event, seat_ids):
    """Exactly one of release and expiry returns the seats."""
    lock = (await lock_request(client, "user-1", test_event.id, seat_ids[:2])).json()
    sweeper = ExpirySweeper()

    release, counts = await asyncio.gather(
        client.post(f"/api/v1/seats/release/{lock['lock_id']}", headers=auth_headers),
        sweeper.sweep_once(now=utcnow() + timedelta(seconds=601)),
    )

    assert release.status_code == 204
    assert counts["errors"] == 0

    seats = (await client.get(f"/api/v1/seats/event/{test_event.id}")).json()
    for seat in seats[:2]:
        assert seat["status"] == "AVAILABLE"
        assert seat["version"] == 2

    details = (await client.get(f"/api/v1/seats/locks/{lock['lock_id']}", headers=auth_headers)).json()
    assert details["status"] in ("RELEASED", "EXPIRED")
    assert (details["status"] == "EXPIRED") == (counts["locks"] == 1)


@pytest.mark.asyncio
async def test_concurrent_locks_respect_per_holder_cap(
    client: AsyncClient, db_session, test_event, seat_ids, monkeypatch,
):
    monkeypatch.setattr(get_settings(), "MAX_SEATS_PER_USER", 4)
    batches = [seat_ids[i:i + 3] for i in range(0, 12, 3)]

    responses = await asyncio.gather(*[
        lock_request(client, "greedy-holder", test_event.id, seats) for seats in batches
    ])

    assert sorted(r.status_code for r in responses) == [201, 409, 409, 409]
    rejected = [r.json() for r in responses if r.status_code == 409]
    assert all(body["code"] == "SEAT_LIMIT_EXCEEDED" and body["held"] == 3 for body in rejected)

    locked = (await db_session.execute(
        select(func.count(Seat.id)).where(Seat.event_id == test_event.id, Seat.status == SeatStatus.LOCKED)
    )).scalar()
    assert locked == 3


@pytest.mark.asyncio
@pytest.mark.skipif(not is_postgres(), reason="needs PostgreSQL row-level locking")
async def test_no_double_booking_under_load(client: AsyncClient, db_session, test_event, seat_ids):
    rng = random.Random(7)
    hot = seat_ids[:6]

    async def attempt(user: str):
        seats = rng.sample(hot, k=rng.randint(1, 3))
        locked = await lock_request(client, user, test_event.id, seats)
        if locked.status_code != 201:
            assert locked.status_code == 409
            return
        booked = await client.post(
            "/api/v1/bookings/",
            json={
                "event_id": test_event.id,
                "seat_ids": seats,
                "idempotency_key": uuid.uuid4().hex,
                "lock_id": locked.json()["lock_id"],
            },
            headers=make_headers(user),
        )
        assert booked.status_code == 201

    await asyncio.gather(*[attempt(f"load-{i}") for i in range(40)])

    duplicates = (await db_session.execute(
        select(BookedSeat.seat_id)
        .join(Booking, Booking.id == BookedSeat.booking_id)
        .where(Booking.status.in_([BookingStatus.PENDING, BookingStatus.CONFIRMED]))
        .group_by(BookedSeat.seat_id)
        .having(func.count() > 1)
    )).scalars().all()
    assert duplicates == []

    booked_seats = (await db_session.execute(
        select(func.count(Seat.id)).where(Seat.id.in_(hot), Seat.status == SeatStatus.BOOKED)
    )).scalar()
    active = (await db_session.execute(
        select(func.count(BookedSeat.id))
        .join(Booking, Booking.id == BookedSeat.booking_id)
        .where(Booking.status == BookingStatus.PENDING)
    )).scalar()
    assert booked_seats == active

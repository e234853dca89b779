"""
Tests for the Redis-backed availability and event-list caches.
"""

import pytest
import pytest_asyncio
from httpx import AsyncClient

from app.services import cache_service, inventory_service
from app.services import event_relay as relay_module
from tests.helpers import FakeRedis


@pytest_asyncio.fixture
async def fake_redis(monkeypatch) -> FakeRedis:
    fake = FakeRedis()

    async def get_fake_redis():
        return fake

    monkeypatch.setattr(cache_service, "get_redis", get_fake_redis)
    monkeypatch.setattr(relay_module, "get_redis", get_fake_redis)
    return fake


async def availability(client: AsyncClient, event_id: int) -> dict:
    response = await client.get(f"/api/v1/seats/availability/{event_id}")
    assert response.status_code == 200
    return response.json()


@pytest.mark.asyncio
async def test_availability_cached_until_transition(client: AsyncClient, auth_headers, fake_redis, test_event, seat_ids):
    event_id = test_event.id

    first = await availability(client, event_id)
    assert first["cached"] is False
    assert first["available"] == 20
    second = await availability(client, event_id)
    assert second["cached"] is True
    assert second["sections"] == first["sections"]

    lock = await client.post("/api/v1/seats/lock", json={"event_id": event_id, "seat_ids": seat_ids[:2]}, headers=auth_headers)
    assert lock.status_code == 201

    after_lock = await availability(client, event_id)
    assert after_lock["cached"] is False
    assert after_lock["available"] == 18
    assert (await availability(client, event_id))["cached"] is True


@pytest.mark.asyncio
async def test_fill_that_races_a_transition_is_never_served(client: AsyncClient, fake_redis, monkeypatch, test_event):
    event_id = test_event.id
    compute = inventory_service.compute_availability

    async def compute_then_commit_elsewhere(db, event_id):
        snapshot = await compute(db, event_id)
        # A transition commits between the read and the cache fill
        await cache_service.invalidate_event_cache(event_id)
        return snapshot

    monkeypatch.setattr(inventory_service, "compute_availability", compute_then_commit_elsewhere)
    raced = await availability(client, event_id)
    assert raced["cached"] is False
    monkeypatch.setattr(inventory_service, "compute_availability", compute)

    # The raced snapshot sits under the old generation only
    assert f"availability:{event_id}:g0" in fake_redis.values
    assert f"availability:{event_id}:g1" not in fake_redis.values

    fresh = await availability(client, event_id)
    assert fresh["cached"] is False
    assert (await availability(client, event_id))["cached"] is True


@pytest.mark.asyncio
async def test_event_pages_cached_and_invalidated(client: AsyncClient, auth_headers, fake_redis, test_event, seat_ids):
    first = await client.get("/api/v1/events/")
    assert first.json()["cached"] is False
    assert first.json()["events"][0]["available_seats"] == 20

    second = await client.get("/api/v1/events/")
    assert second.json()["cached"] is True
    assert second.json()["has_more"] is False

    await client.post("/api/v1/seats/lock", json={"event_id": test_event.id, "seat_ids": seat_ids[:3]}, headers=auth_headers)

    after_lock = await client.get("/api/v1/events/")
    assert after_lock.json()["cached"] is False
    assert after_lock.json()["events"][0]["available_seats"] == 17


@pytest.mark.asyncio
async def test_cache_stats_in_health(client: AsyncClient, fake_redis, test_event):
    await availability(client, test_event.id)
    await availability(client, test_event.id)

    cache = (await client.get("/health")).json()["cache"]

    assert cache["status"] == "connected"
    assert cache["availability_keys"] == 1
    assert cache["hits"] >= 1
    assert cache["hit_rate"] > 0


@pytest.mark.asyncio
async def test_transitions_are_relayed(client: AsyncClient, auth_headers, fake_redis, test_event, seat_ids):
    await client.post("/api/v1/seats/lock", json={"event_id": test_event.id, "seat_ids": seat_ids[:1]}, headers=auth_headers)

    assert [channel for channel, _ in fake_redis.published] == ["seat-events"]

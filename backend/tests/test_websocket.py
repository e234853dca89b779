"""
Tests for the seat updates WebSocket: snapshots, live events, resume.

The handler is driven with an in-memory socket so it shares the event loop
(and the database) with the HTTP client used to trigger seat changes.
"""

import asyncio
import json

import pytest
from fastapi import WebSocketDisconnect
from httpx import AsyncClient

from app.api.websocket import EVENT_NOT_FOUND_CLOSE_CODE, seat_updates
from app.core.config import get_settings
from app.services.broadcaster import broadcaster


class FakeWebSocket:
    def __init__(self):
        self.accepted = False
        self.close_code = None
        self.sent: asyncio.Queue = asyncio.Queue()
        self.incoming: asyncio.Queue = asyncio.Queue()

    async def accept(self):
        self.accepted = True

    async def send_json(self, message: dict):
        await self.sent.put(message)

    async def receive_text(self) -> str:
        message = await self.incoming.get()
        if message is None:
            raise WebSocketDisconnect(code=1000)
        return message

    async def close(self, code: int = 1000):
        self.close_code = code

    async def next_message(self, timeout: float = 5) -> dict:
        return await asyncio.wait_for(self.sent.get(), timeout)

    def disconnect(self):
        self.incoming.put_nowait(None)


async def lock_seats(client: AsyncClient, headers: dict, event_id: int, seat_ids: list[int]) -> dict:
    response = await client.post(
        "/api/v1/seats/lock",
        json={"event_id": event_id, "seat_ids": seat_ids},
        headers=headers,
    )
    assert response.status_code == 201
    return response.json()


@pytest.mark.asyncio
async def test_snapshot_then_live_events(client: AsyncClient, auth_headers, test_event, seat_ids):
    ws = FakeWebSocket()
    handler = asyncio.create_task(seat_updates(ws, test_event.id))

    snapshot = await ws.next_message()
    assert ws.accepted
    assert snapshot["type"] == "SNAPSHOT"
    assert snapshot["stream"] == broadcaster.stream_id
    assert len(snapshot["seats"]) == 20
    assert {s["status"] for s in snapshot["seats"]} == {"AVAILABLE"}

    lock = await lock_seats(client, auth_headers, test_event.id, seat_ids[:2])

    locked = await ws.next_message()
    assert locked["type"] == "SEAT_LOCKED"
    assert locked["seat_ids"] == seat_ids[:2]
    assert locked["cursor"] == snapshot["cursor"] + 1
    assert locked["seat_versions"] == {str(seat_id): 1 for seat_id in seat_ids[:2]}

    await client.post(f"/api/v1/seats/release/{lock['lock_id']}", headers=auth_headers)

    released = await ws.next_message()
    assert released["type"] == "SEAT_RELEASED"
    assert released["cursor"] == locked["cursor"] + 1
    assert released["seat_versions"] == {str(seat_id): 2 for seat_id in seat_ids[:2]}

    ws.disconnect()
    await asyncio.wait_for(handler, 5)
    assert broadcaster.subscriber_count(test_event.id) == 0


@pytest.mark.asyncio
async def test_ping_pong(client: AsyncClient, test_event):
    ws = FakeWebSocket()
    handler = asyncio.create_task(seat_updates(ws, test_event.id))
    assert (await ws.next_message())["type"] == "SNAPSHOT"

    ws.incoming.put_nowait("not json")
    ws.incoming.put_nowait(json.dumps({"type": "PING"}))

    assert (await ws.next_message())["type"] == "PONG"

    ws.disconnect()
    await asyncio.wait_for(handler, 5)


@pytest.mark.asyncio
async def test_resume_skips_snapshot(client: AsyncClient, auth_headers, test_event, seat_ids):
    cursor = broadcaster.current_cursor(test_event.id)
    await lock_seats(client, auth_headers, test_event.id, seat_ids[:1])

    ws = FakeWebSocket()
    handler = asyncio.create_task(
        seat_updates(ws, test_event.id, since=cursor, stream=broadcaster.stream_id)
    )

    replayed = await ws.next_message()
    assert replayed["type"] == "SEAT_LOCKED"
    assert replayed["cursor"] == cursor + 1

    ws.disconnect()
    await asyncio.wait_for(handler, 5)


@pytest.mark.asyncio
async def test_unknown_stream_gets_snapshot(client: AsyncClient, test_event):
    ws = FakeWebSocket()
    handler = asyncio.create_task(seat_updates(ws, test_event.id, since=1, stream="stale-stream"))

    assert (await ws.next_message())["type"] == "SNAPSHOT"

    ws.disconnect()
    await asyncio.wait_for(handler, 5)


@pytest.mark.asyncio
async def test_heartbeat_when_idle(client: AsyncClient, test_event, monkeypatch):
    monkeypatch.setattr(get_settings(), "HEARTBEAT_INTERVAL_SECONDS", 0.05)
    ws = FakeWebSocket()
    handler = asyncio.create_task(seat_updates(ws, test_event.id))

    snapshot = await ws.next_message()
    heartbeat = await ws.next_message()

    assert heartbeat["type"] == "HEARTBEAT"
    assert heartbeat["cursor"] == snapshot["cursor"]

    ws.disconnect()
    await asyncio.wait_for(handler, 5)


@pytest.mark.asyncio
async def test_unknown_event_closes(engine):
    ws = FakeWebSocket()

    await seat_updates(ws, 99999)

    error = await ws.next_message()
    assert error["type"] == "ERROR"
    assert error["code"] == "EVENT_NOT_FOUND"
    assert ws.close_code == EVENT_NOT_FOUND_CLOSE_CODE

"""
WebSocket endpoint for real-time seat updates.

Protocol (server -> client):
  SNAPSHOT        full seat states + versions, tagged with the cursor it covers
  SEAT_LOCKED / SEAT_RELEASED / SEAT_BOOKED / AVAILABILITY_UPDATE
  HEARTBEAT       sent when nothing else was sent for HEARTBEAT_INTERVAL_SECONDS
  PONG            reply to a client PING

Clients reconnect with ?since=<last cursor>&stream=<stream id> to resume. When
the server cannot replay everything after that cursor it sends a SNAPSHOT.
Events are hints: a client keeps the highest version it has seen per seat and
ignores anything older.
"""

import asyncio
import json
import uuid
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.core.config import get_settings
from app.core.exceptions import EventNotFoundError
from app.core.logging import bind_context, get_logger
from app.db.base import utcnow
from app.db.session import get_sessionmaker
from app.services.broadcaster import Subscription, SubscriptionLagged, broadcaster
from app.services.inventory_service import ensure_event, get_seat_states

logger = get_logger(__name__)
router = APIRouter()

EVENT_NOT_FOUND_CLOSE_CODE = 4404


async def build_snapshot(event_id: int, subscription: Subscription) -> dict:
    # Cursor is taken before reading so the snapshot covers at least that much
    cursor = broadcaster.current_cursor(event_id)
    async with get_sessionmaker()() as db:
        states = await get_seat_states(db, event_id)
    subscription.needs_snapshot = False
    subscription.cursor = cursor
    return {
        "type": "SNAPSHOT",
        "event_id": event_id,
        "cursor": cursor,
        "stream": broadcaster.stream_id,
        "seats": [
            {"seat_id": s.seat_id, "status": s.status.value, "version": s.version}
            for s in states
        ],
        "timestamp": utcnow().isoformat(),
    }


@router.websocket("/ws/seats/{event_id}")
async def seat_updates(
    websocket: WebSocket,
    event_id: int,
    since: Optional[int] = None,
    stream: Optional[str] = None,
):
    """Stream seat changes for one event."""
    await websocket.accept()
    bind_context(ws_event_id=event_id, connection_id=uuid.uuid4().hex[:8])
    settings = get_settings()

    async with get_sessionmaker()() as db:
        try:
            await ensure_event(db, event_id)
        except EventNotFoundError as e:
            await websocket.send_json({"type": "ERROR", **e.to_dict()})
            await websocket.close(code=EVENT_NOT_FOUND_CLOSE_CODE)
            return

    send_lock = asyncio.Lock()

    async def send(message: dict):
        async with send_lock:
            await websocket.send_json(message)

    async def read_client():
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                logger.warning("ws_invalid_json")
                continue
            if isinstance(message, dict) and message.get("type") == "PING":
                await send({"type": "PONG", "timestamp": utcnow().isoformat()})

    async def stream_events(subscription: Subscription):
        if subscription.needs_snapshot:
            await send(await build_snapshot(event_id, subscription))
        while True:
            try:
                event = await subscription.next_event(timeout=settings.HEARTBEAT_INTERVAL_SECONDS)
            except SubscriptionLagged:
                broadcaster.resync(subscription)
                await send(await build_snapshot(event_id, subscription))
                continue

            if event is None:
                await send({
                    "type": "HEARTBEAT",
                    "cursor": subscription.cursor,
                    "stream": broadcaster.stream_id,
                    "timestamp": utcnow().isoformat(),
                })
                continue
            await send(event.to_message(broadcaster.stream_id))

    async with broadcaster.subscribe(event_id, since_cursor=since, stream_id=stream) as subscription:
        reader = asyncio.create_task(read_client())
        writer = asyncio.create_task(stream_events(subscription))
        done, pending = await asyncio.wait({reader, writer}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.error("ws_stream_failed", error=str(exc))
                raise exc

    logger.info("ws_disconnected", event_id=event_id)

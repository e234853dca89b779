"""
Redis Pub/Sub relay between broadcaster instances.

Each instance publishes the seat events it commits to one Redis channel and
re-publishes into its local broadcaster whatever other instances send, so a
watcher connected to any worker sees every committed transition.

       instance A                  Redis                   instance B
  commit -> broadcaster.publish
         -> relay.forward  --PUBLISH seat-events-->  relay listener
                                                     -> broadcaster.publish
                                                     -> B's watchers

Messages carry the origin's stream id; an instance drops its own echoes.
Relayed events get a cursor from the receiving instance's channel, so
resume cursors stay local to the instance a client is connected to.

The relay is best-effort like the rest of the push path. If Redis is down,
remote watchers miss live events and catch up from their next snapshot.
"""

import asyncio
import json
from typing import Optional

from pydantic import ValidationError
from redis.exceptions import RedisError

from app.core.config import get_settings
from app.core.logging import bind_context, get_logger
from app.core.metrics import relayed_events
from app.infrastructure.redis_client import get_redis
from app.schemas.seat_event import SeatEvent
from app.services.broadcaster import EventBroadcaster, broadcaster as default_broadcaster

logger = get_logger(__name__)


class RedisEventRelay:
    def __init__(self, broadcaster: EventBroadcaster, channel: Optional[str] = None):
        settings = get_settings()
        self.broadcaster = broadcaster
        self.channel = channel or settings.EVENT_RELAY_CHANNEL
        self.enabled = settings.EVENT_RELAY_ENABLED
        self.task: Optional[asyncio.Task] = None
        self._pubsub = None

    @property
    def running(self) -> bool:
        return self.task is not None and not self.task.done()

    def encode(self, event: SeatEvent) -> str:
        return json.dumps({
            "origin": self.broadcaster.stream_id,
            "event": event.model_dump(mode="json", exclude={"cursor"}),
        })

    async def forward(self, event: SeatEvent) -> None:
        """Send a locally committed event to the other instances."""
        if not self.enabled:
            return
        client = await get_redis()
        if not client:
            return
        try:
            await client.publish(self.channel, self.encode(event))
        except RedisError as e:
            relayed_events.labels(direction="dropped").inc()
            logger.error("event_relay_publish_failed", event_id=event.event_id, error=str(e))
            return
        relayed_events.labels(direction="sent").inc()

    def handle_message(self, message: Optional[dict]) -> Optional[SeatEvent]:
        """Publish a remote event locally; own echoes and junk are dropped."""
        if not message or message.get("type") != "message":
            return None
        try:
            payload = json.loads(message["data"])
            if payload.get("origin") == self.broadcaster.stream_id:
                return None
            event = SeatEvent.model_validate(payload["event"])
        except (ValueError, KeyError, TypeError, ValidationError) as e:
            relayed_events.labels(direction="dropped").inc()
            logger.warning("event_relay_bad_message", error=str(e))
            return None

        relayed_events.labels(direction="received").inc()
        return self.broadcaster.publish(event.event_id, event)

    async def start(self) -> None:
        if not self.enabled or self.running:
            return
        client = await get_redis()
        if not client:
            logger.info("event_relay_disabled", reason="redis unavailable")
            return

        self._pubsub = client.pubsub()
        await self._pubsub.subscribe(self.channel)
        self.task = asyncio.create_task(self._listen())
        logger.info("event_relay_started", channel=self.channel, stream_id=self.broadcaster.stream_id)

    async def stop(self) -> None:
        if self.task is not None:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
            self.task = None
        if self._pubsub is not None:
            try:
                await self._pubsub.unsubscribe(self.channel)
                await self._pubsub.aclose()
            except RedisError as e:
                logger.warning("event_relay_close_failed", error=str(e))
            self._pubsub = None
            logger.info("event_relay_stopped")

    async def _listen(self) -> None:
        bind_context(component="event_relay")
        while True:
            try:
                message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except RedisError as e:
                logger.error("event_relay_receive_failed", error=str(e))
                await asyncio.sleep(1.0)
                continue
            self.handle_message(message)


# Global relay instance
event_relay = RedisEventRelay(default_broadcaster)

"""
Per-event seat-event fan-out for watchers.

DELIVERY CONTRACT
=================

Ordering:
  Every publish for an event is stamped with the next cursor of that event's
  channel and pushed into each subscriber's queue in the same synchronous
  step, so a subscriber sees one event's stream in publish order. There is no
  ordering across events.

At-least-once, not lossless:
  Subscribers treat events as hints and re-sync from the inventory store.
  A subscriber that falls behind (queue full) is not slowed down for: its
  queue is dropped and the next read raises SubscriptionLagged so the caller
  sends a fresh snapshot.

Resume:
  Each channel keeps a bounded replay buffer. A reconnecting client passes
  the last cursor it saw plus the stream id of this broadcaster instance; if
  the buffer still covers everything after that cursor the missed events are
  replayed, otherwise the subscription starts with `needs_snapshot` set.
  Stream ids change on restart, so cursors from a previous process are never
  trusted.

This is a single-process broadcaster. Every instance publishes what it
commits; it does not relay events between processes.
"""

import asyncio
import uuid
from collections import deque
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.metrics import active_subscribers, lagged_subscribers, published_events
from app.schemas.seat_event import SeatEvent

logger = get_logger(__name__)

_LAGGED = object()


class SubscriptionLagged(Exception):
    """Subscriber fell behind and must re-sync from a snapshot."""


class Subscription:
    def __init__(self, event_id: int, queue_size: int):
        self.event_id = event_id
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size + 1)
        self.queue_size = queue_size
        self.needs_snapshot = True
        self.lagged = False
        self.cursor = 0

    def _offer(self, event: SeatEvent) -> None:
        if self.lagged:
            return
        if self.queue.qsize() >= self.queue_size:
            self.lagged = True
            while not self.queue.empty():
                self.queue.get_nowait()
            # The extra slot is reserved for the lag marker
            self.queue.put_nowait(_LAGGED)
            lagged_subscribers.inc()
            logger.warning("subscriber_lagged", event_id=self.event_id, cursor=event.cursor)
            return
        self.queue.put_nowait(event)

    async def next_event(self, timeout: Optional[float] = None) -> Optional[SeatEvent]:
        """Wait for the next event; None when `timeout` elapses first."""
        try:
            item = await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None
        if item is _LAGGED:
            raise SubscriptionLagged()
        self.cursor = item.cursor
        return item

    def __aiter__(self):
        return self

    async def __anext__(self) -> SeatEvent:
        return await self.next_event()


class _EventChannel:
    def __init__(self, buffer_size: int):
        self.cursor = 0
        self.buffer: deque[SeatEvent] = deque(maxlen=buffer_size)
        self.subscribers: set[Subscription] = set()

    def covers(self, since_cursor: int) -> bool:
        if since_cursor > self.cursor or since_cursor < 0:
            return False
        if since_cursor == self.cursor:
            return True
        oldest = self.buffer[0].cursor if self.buffer else self.cursor + 1
        return since_cursor >= oldest - 1


class EventBroadcaster:
    def __init__(self, buffer_size: Optional[int] = None, queue_size: Optional[int] = None):
        settings = get_settings()
        self.buffer_size = buffer_size or settings.BROADCAST_BUFFER_SIZE
        self.queue_size = queue_size or settings.SUBSCRIBER_QUEUE_SIZE
        self.stream_id = uuid.uuid4().hex
        self._channels: dict[int, _EventChannel] = {}

    def _channel(self, event_id: int) -> _EventChannel:
        channel = self._channels.get(event_id)
        if channel is None:
            channel = self._channels[event_id] = _EventChannel(self.buffer_size)
        return channel

    def current_cursor(self, event_id: int) -> int:
        return self._channel(event_id).cursor

    def subscriber_count(self, event_id: int) -> int:
        channel = self._channels.get(event_id)
        return len(channel.subscribers) if channel else 0

    def publish(self, event_id: int, event: SeatEvent) -> SeatEvent:
        channel = self._channel(event_id)
        channel.cursor += 1
        stamped = event.model_copy(update={"cursor": channel.cursor})
        channel.buffer.append(stamped)

        for subscription in list(channel.subscribers):
            subscription._offer(stamped)

        published_events.labels(type=stamped.type.value).inc()
        logger.debug(
            "seat_event_published",
            event_id=event_id,
            type=stamped.type.value,
            cursor=stamped.cursor,
            seats=len(stamped.seat_ids),
            subscribers=len(channel.subscribers),
        )
        return stamped

    def resync(self, subscription: Subscription) -> int:
        """Clear a lagged subscription; returns the cursor its snapshot must cover."""
        channel = self._channel(subscription.event_id)
        while not subscription.queue.empty():
            subscription.queue.get_nowait()
        subscription.lagged = False
        subscription.needs_snapshot = True
        subscription.cursor = channel.cursor
        return channel.cursor

    def _open(self, event_id: int, since_cursor: Optional[int], stream_id: Optional[str]) -> Subscription:
        channel = self._channel(event_id)
        subscription = Subscription(event_id, self.queue_size)
        subscription.cursor = channel.cursor

        if since_cursor is not None and stream_id == self.stream_id and channel.covers(since_cursor):
            missed = [e for e in channel.buffer if e.cursor > since_cursor]
            if len(missed) <= self.queue_size:
                for event in missed:
                    subscription.queue.put_nowait(event)
                subscription.needs_snapshot = False
                subscription.cursor = since_cursor

        channel.subscribers.add(subscription)
        active_subscribers.inc()
        logger.info(
            "subscriber_joined",
            event_id=event_id,
            since_cursor=since_cursor,
            replay=not subscription.needs_snapshot,
            subscribers=len(channel.subscribers),
        )
        return subscription

    def _close(self, subscription: Subscription) -> None:
        channel = self._channels.get(subscription.event_id)
        if channel and subscription in channel.subscribers:
            channel.subscribers.discard(subscription)
            active_subscribers.dec()
            logger.info(
                "subscriber_left",
                event_id=subscription.event_id,
                subscribers=len(channel.subscribers),
            )

    @asynccontextmanager
    async def subscribe(
        self,
        event_id: int,
        since_cursor: Optional[int] = None,
        stream_id: Optional[str] = None,
    ) -> AsyncIterator[Subscription]:
        subscription = self._open(event_id, since_cursor, stream_id)
        try:
            yield subscription
        finally:
            self._close(subscription)


# Global broadcaster instance
broadcaster = EventBroadcaster()

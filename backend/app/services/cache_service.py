"""
Redis caching for availability snapshots and event listings.

CACHING STRATEGY
================

What we cache:
  - Per-event availability snapshot (section counts and prices)
    Key: "availability:{event_id}:g{generation}", short TTL (AVAILABILITY_CACHE_TTL)
  - Event listing responses (paginated)
    Key: "events:list:g{generation}:page={page}&size={size}&upcoming={upcoming}"

Why:
  - Availability is the hottest read during an on-sale: every seat-map client
    polls it, and a COUNT grouped by section per poll would hammer the seat table
  - Seat maps already treat availability as a hint and re-check on conflict

Invalidation strategy: generation counters
  - Each cached view has a counter ("cache-gen:availability:{event_id}" and
    "cache-gen:events:list") that is part of the data key
  - Every committed seat transition INCRs the counters of the event
  - A reader takes the generation BEFORE it reads the database and stores
    its result under that generation. A fill that raced a transition lands
    under a key nobody reads any more and dies with its TTL, so a snapshot
    computed before a commit is never served after it
  - TTL-based expiry cleans up superseded generations

Never cached:
  - Per-seat status used to decide a lock or booking; that always comes from
    the inventory store inside the transaction
"""

import json
from dataclasses import dataclass
from typing import Optional

from redis.exceptions import RedisError

from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.metrics import record_cache_operation
from app.infrastructure.redis_client import get_redis

logger = get_logger(__name__)

EVENT_LIST_GENERATION_KEY = "cache-gen:events:list"


@dataclass
class CacheLookup:
    value: Optional[dict]
    # None when Redis is unavailable; the caller must not try to fill
    generation: Optional[int]


def _availability_generation_key(event_id: int) -> str:
    return f"cache-gen:availability:{event_id}"


def _make_availability_key(event_id: int, generation: int) -> str:
    return f"availability:{event_id}:g{generation}"


def _make_event_list_key(generation: int, page: int, page_size: int, upcoming_only: bool) -> str:
    return f"events:list:g{generation}:page={page}&size={page_size}&upcoming={upcoming_only}"


async def _lookup(generation_key: str, make_key, operation: str) -> CacheLookup:
    client = await get_redis()
    if not client:
        return CacheLookup(None, None)

    try:
        generation = int(await client.get(generation_key) or 0)
        key = make_key(generation)
        data = await client.get(key)
    except RedisError as e:
        logger.error("cache_get_error", key=generation_key, error=str(e))
        return CacheLookup(None, None)

    record_cache_operation(operation, hit=data is not None)
    if data:
        logger.debug("cache_hit", key=key)
        return CacheLookup(json.loads(data), generation)
    logger.debug("cache_miss", key=key)
    return CacheLookup(None, generation)


async def _fill(key: str, ttl: int, data: dict) -> None:
    client = await get_redis()
    if not client:
        return

    try:
        await client.setex(key, ttl, json.dumps(data, default=str))
        logger.debug("cache_set", key=key, ttl=ttl)
    except RedisError as e:
        logger.error("cache_set_error", key=key, error=str(e))


async def get_cached_availability(event_id: int) -> CacheLookup:
    return await _lookup(
        _availability_generation_key(event_id),
        lambda generation: _make_availability_key(event_id, generation),
        "availability",
    )


async def set_cached_availability(event_id: int, generation: Optional[int], data: dict) -> None:
    """Store a snapshot computed after reading `generation`."""
    if generation is None:
        return
    settings = get_settings()
    await _fill(_make_availability_key(event_id, generation), settings.AVAILABILITY_CACHE_TTL, data)


async def get_cached_events(page: int, page_size: int, upcoming_only: bool) -> CacheLookup:
    return await _lookup(
        EVENT_LIST_GENERATION_KEY,
        lambda generation: _make_event_list_key(generation, page, page_size, upcoming_only),
        "event_list",
    )


async def set_cached_events(
    page: int,
    page_size: int,
    upcoming_only: bool,
    generation: Optional[int],
    data: dict,
) -> None:
    if generation is None:
        return
    settings = get_settings()
    await _fill(_make_event_list_key(generation, page, page_size, upcoming_only), settings.REDIS_CACHE_TTL, data)


async def invalidate_event_cache(event_id: int) -> None:
    """Move the event's availability and every list page to a new generation."""
    client = await get_redis()
    if not client:
        return

    try:
        availability_generation = await client.incr(_availability_generation_key(event_id))
        list_generation = await client.incr(EVENT_LIST_GENERATION_KEY)
    except RedisError as e:
        logger.error("cache_invalidation_error", event_id=event_id, error=str(e))
        return
    logger.debug(
        "cache_invalidated",
        event_id=event_id,
        availability_generation=availability_generation,
        list_generation=list_generation,
    )


def _hit_rate(hits: int, misses: int) -> float:
    total = hits + misses
    return round(hits / total * 100, 2) if total else 0.0


async def get_cache_stats() -> dict:
    """Server-wide hit counters plus how many keys each cache currently holds."""
    client = await get_redis()
    if not client:
        return {"status": "disabled"}

    try:
        stats = await client.info("stats")
        availability_keys = [key async for key in client.scan_iter(match="availability:*", count=100)]
        list_keys = [key async for key in client.scan_iter(match="events:list:*", count=100)]
    except RedisError as e:
        return {"status": "error", "error": str(e)}

    hits = stats.get("keyspace_hits", 0)
    misses = stats.get("keyspace_misses", 0)
    return {
        "status": "connected",
        "hit_rate": _hit_rate(hits, misses),
        "hits": hits,
        "misses": misses,
        "availability_keys": len(availability_keys),
        "event_list_keys": len(list_keys),
    }

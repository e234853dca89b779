"""
Shared test helpers: tokens and event/seat factories.
"""

import fnmatch
import os
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import create_access_token
from app.db.base import utcnow
from app.models.event import Event
from app.models.seat import Seat

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")


def is_postgres() -> bool:
    return bool(TEST_DATABASE_URL) and TEST_DATABASE_URL.startswith("postgresql")


def make_headers(user_id: str, role: Optional[str] = None) -> dict:
    claims = {"sub": user_id}
    if role:
        claims["role"] = role
    return {"Authorization": f"Bearer {create_access_token(data=claims)}"}


async def create_event(
    db: AsyncSession,
    title: str = "Test Concert",
    sections: Optional[dict] = None,
    seats_per_section: int = 10,
    currency: str = "USD",
) -> Event:
    """Create an event with `seats_per_section` seats in each priced section."""
    sections = sections or {"A": Decimal("50.00"), "B": Decimal("80.00")}
    event = Event(
        title=title,
        venue="Test Venue",
        starts_at=utcnow() + timedelta(days=30),
        seat_count=len(sections) * seats_per_section,
    )
    db.add(event)
    await db.flush()

    for section, price in sections.items():
        for number in range(1, seats_per_section + 1):
            db.add(Seat(
                event_id=event.id,
                section=section,
                row_label="1",
                seat_number=number,
                price=price,
                currency=currency,
            ))
    await db.commit()
    return event


async def event_seat_ids(db: AsyncSession, event_id: int) -> list[int]:
    result = await db.execute(select(Seat.id).where(Seat.event_id == event_id).order_by(Seat.id))
    return list(result.scalars().all())


class FakeRedis:
    """In-memory stand-in for the few redis.asyncio calls the engine makes."""

    def __init__(self):
        self.values: dict[str, str] = {}
        self.published: list[tuple[str, str]] = []
        self.hits = 0
        self.misses = 0

    async def get(self, key: str) -> Optional[str]:
        value = self.values.get(key)
        if value is None:
            self.misses += 1
        else:
            self.hits += 1
        return value

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        self.values[key] = value
        return True

    async def incr(self, key: str) -> int:
        value = int(self.values.get(key, 0)) + 1
        self.values[key] = str(value)
        return value

    async def scan_iter(self, match: str = "*", count: Optional[int] = None):
        for key in list(self.values):
            if fnmatch.fnmatch(key, match):
                yield key

    async def info(self, section: Optional[str] = None) -> dict:
        return {"keyspace_hits": self.hits, "keyspace_misses": self.misses}

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        return 1

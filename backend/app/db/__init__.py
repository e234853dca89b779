"""
Persistence layer: declarative base, engine/session management and the
unit-of-work boundary every seat transition runs inside.
"""

from .base import Base, TimestampMixin, UTCDateTime, utcnow
from .session import get_db, get_sessionmaker, init_engine, dispose_engine, unit_of_work

__all__ = [
    'Base', 'TimestampMixin', 'UTCDateTime', 'utcnow',
    'get_db', 'get_sessionmaker', 'init_engine', 'dispose_engine', 'unit_of_work',
]

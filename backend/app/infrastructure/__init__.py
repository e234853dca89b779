"""
Connections to systems outside the inventory database. Only Redis lives
here; the payment gateway adapters sit with the payment service.
"""

from .redis_client import close_redis, get_redis

__all__ = ["get_redis", "close_redis"]

"""Caching layer for the landed-cost engine.

Provides Redis-based import leases and FX rate caching.
"""

from landedcost.caching.redis_client import RedisClient, get_redis_client

__all__ = ["RedisClient", "get_redis_client"]

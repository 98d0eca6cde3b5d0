"""Caching layer for shared taxonomy lookups.

Provides a Redis-backed path cache so several workers share memoized
ancestor chains.
"""

from tariffsense.caching.redis_client import RedisClient, RedisPathCache, get_redis_client

__all__ = ["RedisClient", "RedisPathCache", "get_redis_client"]

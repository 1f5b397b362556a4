"""
Redis caching for derived inventory figures.

Cache failures are never fatal: a read error is a miss and a write error is
logged and ignored.
"""
import json
import logging
from typing import Any, Optional

import redis

logger = logging.getLogger(__name__)

INVENTORY_STATS_KEY = "clinic:inventory:stats"
# Bumped on every inventory write; statistics are cached under the current generation
INVENTORY_STATS_GENERATION_KEY = "clinic:inventory:stats:generation"


class Cache:
    """
    Thin JSON cache over a Redis client.

    Args:
        client: Redis client, or None to disable caching
    """

    def __init__(self, client: Optional["redis.Redis"] = None):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "Cache":
        if not url:
            return cls(None)
        return cls(redis.from_url(url, decode_responses=True))

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def get(self, key: str) -> Optional[Any]:
        """
        Get a value from the cache.

        Args:
            key: Cache key

        Returns:
            Cached value or None if not found
        """
        if self.client is None:
            return None
        try:
            value = self.client.get(key)
            if value:
                return json.loads(value)
            return None
        except redis.RedisError as e:
            logger.warning(f"Cache get error for {key}: {e}")
            return None

    def set(self, key: str, value: Any, ttl: int = 300) -> bool:
        """
        Set a value in the cache with TTL.

        Args:
            key: Cache key
            value: Value to cache (will be JSON serialized)
            ttl: Time to live in seconds

        Returns:
            True if successful, False otherwise
        """
        if self.client is None:
            return False
        try:
            self.client.setex(key, ttl, json.dumps(value))
            return True
        except redis.RedisError as e:
            logger.warning(f"Cache set error for {key}: {e}")
            return False

    def get_counter(self, key: str) -> Optional[int]:
        """
        Read an integer counter, treating a missing key as 0.

        Returns:
            Counter value, or None when caching is disabled or Redis fails
        """
        if self.client is None:
            return None
        try:
            return int(self.client.get(key) or 0)
        except redis.RedisError as e:
            logger.warning(f"Cache counter read error for {key}: {e}")
            return None

    def incr(self, key: str) -> Optional[int]:
        if self.client is None:
            return None
        try:
            return self.client.incr(key)
        except redis.RedisError as e:
            logger.warning(f"Cache increment error for {key}: {e}")
            return None

"""Redis KV service - atomic counters and TTL values shared by all workers"""
import json
from typing import Any, Optional
from redis import Redis
from redis.exceptions import WatchError

from src.core.config import settings
from src.core.logging import logger
from src.core.exceptions import (
    CacheConnectionException,
    CacheSerializationException,
)


class CacheService:
    """Redis-backed key/value store.

    Narrow interface used by the rate limiter, proxy manager and monitor:
    get / set (with TTL) / increment / compare_and_swap, plus hash tallies.
    """

    def __init__(self, redis_url: Optional[str] = None):
        """Initialise the Redis client"""
        try:
            self.redis_client = Redis.from_url(
                redis_url or settings.redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5
            )
            # Connection test
            self.redis_client.ping()
            logger.info("Redis connection established")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise CacheConnectionException(str(e))

    def get(self, key: str) -> Optional[str]:
        """Raw value or None"""
        try:
            return self.redis_client.get(key)
        except Exception as e:
            logger.error(f"Cache read error: {e}")
            raise CacheConnectionException(f"read failed for {key}: {e}")

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        """
        Store a value, optionally expiring after ttl seconds

        Args:
            key: cache key
            value: string value
            ttl: seconds to live (None = no expiry)

        Returns:
            success flag
        """
        try:
            if ttl:
                self.redis_client.setex(key, ttl, value)
            else:
                self.redis_client.set(key, value)
            return True
        except Exception as e:
            logger.error(f"Cache write error: {e}")
            raise CacheConnectionException(f"write failed for {key}: {e}")

    def delete(self, key: str) -> bool:
        try:
            return self.redis_client.delete(key) > 0
        except Exception as e:
            logger.error(f"Cache delete error: {e}")
            raise CacheConnectionException(f"delete failed for {key}: {e}")

    def increment(self, key: str, amount: int = 1, ttl: Optional[int] = None) -> int:
        """
        Atomically add `amount` to a counter

        The TTL is attached only when the counter is created, so a window
        counter expires at its window boundary no matter how often it is hit.

        Args:
            key: counter key
            amount: delta (may be negative)
            ttl: expiry for a newly created counter

        Returns:
            counter value after the increment
        """
        try:
            pipe = self.redis_client.pipeline(transaction=True)
            if ttl:
                pipe.set(key, 0, ex=ttl, nx=True)
            pipe.incrby(key, amount)
            results = pipe.execute()
            return int(results[-1])
        except Exception as e:
            logger.error(f"Cache increment error: {e}")
            raise CacheConnectionException(f"increment failed for {key}: {e}")

    def compare_and_swap(
        self,
        key: str,
        expected: Optional[str],
        new_value: str,
        ttl: Optional[int] = None,
        keep_ttl: bool = False,
    ) -> bool:
        """
        Replace the value only if it still equals `expected`

        Args:
            key: cache key
            expected: value read earlier (None = key must be absent)
            new_value: replacement
            ttl: expiry for the replacement
            keep_ttl: keep the current expiry instead (ignores ttl)

        Returns:
            True if the swap happened, False if another writer got there first
        """
        try:
            with self.redis_client.pipeline() as pipe:
                try:
                    pipe.watch(key)
                    current = pipe.get(key)
                    if current != expected:
                        pipe.unwatch()
                        return False
                    pipe.multi()
                    if keep_ttl:
                        pipe.set(key, new_value, keepttl=True)
                    elif ttl:
                        pipe.setex(key, ttl, new_value)
                    else:
                        pipe.set(key, new_value)
                    pipe.execute()
                    return True
                except WatchError:
                    return False
        except Exception as e:
            logger.error(f"Cache compare-and-swap error: {e}")
            raise CacheConnectionException(f"compare_and_swap failed for {key}: {e}")

    def hash_increment(self, key: str, field: str, amount: int = 1, ttl: Optional[int] = None) -> int:
        """Atomically add to one field of a hash (per-reason tallies)"""
        try:
            pipe = self.redis_client.pipeline(transaction=True)
            pipe.hincrby(key, field, amount)
            if ttl:
                pipe.expire(key, ttl)
            results = pipe.execute()
            return int(results[0])
        except Exception as e:
            logger.error(f"Cache hash increment error: {e}")
            raise CacheConnectionException(f"hash_increment failed for {key}: {e}")

    def hash_get_all(self, key: str) -> dict[str, str]:
        try:
            return dict(self.redis_client.hgetall(key) or {})
        except Exception as e:
            logger.error(f"Cache hash read error: {e}")
            raise CacheConnectionException(f"hash_get_all failed for {key}: {e}")

    def get_json(self, key: str) -> Optional[Any]:
        """Deserialised JSON value or None"""
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, ValueError) as e:
            logger.error(f"Failed to deserialize cache: {e}")
            raise CacheSerializationException("deserialize", str(e), {"key": key})

    def set_json(self, key: str, data: Any, ttl: Optional[int] = None) -> bool:
        try:
            value = json.dumps(data, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to serialize cache data: {e}")
            raise CacheSerializationException("serialize", str(e), {"key": key})
        return self.set(key, value, ttl)

    def health_check(self) -> bool:
        """Redis liveness"""
        try:
            return bool(self.redis_client.ping())
        except Exception as e:
            logger.warning(f"Redis health check failed: {e}")
            return False

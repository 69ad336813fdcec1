"""
Redis-backed Cache Provider for Multi-Instance Deployments

This module implements the cache provider on top of redis-py's asyncio client
so several engine processes can share authorization decisions. Each entry is
stored as a JSON envelope carrying the encoded value, its insertion time and
both TTLs:

- the Redis key TTL is always min(sliding TTL, remaining absolute TTL)
- every hit re-arms the key TTL with PEXPIRE, which implements the sliding
  window without exceeding the absolute ceiling
- prefix eviction walks the keyspace with SCAN and deletes in batches

Transient connection failures and timeouts are retried with exponential
backoff (tenacity); after the final attempt the original redis exception is
re-raised unchanged so callers can tell outages from denials.
"""

import json
import time
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple, Type

import structlog
from redis.exceptions import (
    ConnectionError as RedisConnectionError,
    TimeoutError as RedisTimeoutError,
)
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from authz_engine.cache.monitoring import cache_operation_metrics
from authz_engine.cache.provider import CacheProvider, Clock

logger = structlog.get_logger(__name__)

redis_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
    retry=retry_if_exception_type((RedisConnectionError, RedisTimeoutError)),
    reraise=True
)

_GLOB_SPECIAL = set('*?[]\\')


def escape_glob(text: str) -> str:
    """Escape Redis MATCH glob metacharacters in a literal key fragment."""
    return ''.join('\\' + char if char in _GLOB_SPECIAL else char for char in text)


class ValueCodec:
    """
    JSON codec for cached values.

    Handles None, sets (decoded as frozenset), registered Enum types and
    any JSON-native value.

    Args:
        enum_types: Enum classes that must round-trip as enum members
    """

    def __init__(self, enum_types: Optional[Iterable[Type[Enum]]] = None):
        self._enum_types: Dict[str, Type[Enum]] = {}
        for enum_type in enum_types or ():
            self.register_enum(enum_type)

    def register_enum(self, enum_type: Type[Enum]) -> None:
        self._enum_types[enum_type.__name__] = enum_type

    def encode(self, value: Any) -> Dict[str, Any]:
        if value is None:
            return {'kind': 'none'}
        if isinstance(value, (set, frozenset)):
            return {'kind': 'set', 'items': sorted(value)}
        if isinstance(value, Enum) and type(value).__name__ in self._enum_types:
            return {'kind': 'enum', 'type': type(value).__name__, 'value': value.value}
        if isinstance(value, Enum):
            return {'kind': 'json', 'value': value.value}
        return {'kind': 'json', 'value': value}

    def decode(self, payload: Dict[str, Any]) -> Any:
        kind = payload.get('kind')
        if kind == 'none':
            return None
        if kind == 'set':
            return frozenset(payload['items'])
        if kind == 'enum':
            return self._enum_types[payload['type']](payload['value'])
        return payload.get('value')


class RedisCacheProvider(CacheProvider):
    """
    Cache provider storing entries in Redis.

    Args:
        redis_client: redis.asyncio.Redis instance
        key_prefix: Namespace prepended to every engine key
        codec: Value codec (plain JSON plus sets by default)
        clock: Time source used for the absolute window
        scan_count: COUNT hint for SCAN during prefix eviction
    """

    cache_type = "redis"

    def __init__(
        self,
        redis_client: Any,
        key_prefix: str = "authz:",
        codec: Optional[ValueCodec] = None,
        clock: Optional[Clock] = None,
        scan_count: int = 100
    ):
        super().__init__()
        self._redis = redis_client
        self._key_prefix = key_prefix
        self._codec = codec or ValueCodec()
        self._clock = clock or time.time
        self._scan_count = scan_count

        logger.info(
            "Redis cache provider initialized",
            key_prefix=key_prefix,
            scan_count=scan_count
        )

    @property
    def client(self) -> Any:
        return self._redis

    @property
    def key_prefix(self) -> str:
        return self._key_prefix

    @property
    def clock(self) -> Clock:
        return self._clock

    def _format_key(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    @redis_retry
    @cache_operation_metrics("get", "redis")
    async def _lookup(self, key: str) -> Tuple[bool, Any]:
        redis_key = self._format_key(key)
        raw = await self._redis.get(redis_key)
        if raw is None:
            return False, None

        envelope = json.loads(raw)
        now = self._clock()
        remaining_absolute = envelope['inserted_at'] + envelope['absolute_ttl'] - now
        if remaining_absolute <= 0:
            await self._redis.delete(redis_key)
            return False, None

        window = min(envelope['sliding_ttl'], remaining_absolute)
        await self._redis.pexpire(redis_key, max(int(window * 1000), 1))
        return True, self._codec.decode(envelope['value'])

    @redis_retry
    @cache_operation_metrics("set", "redis")
    async def _store(self, key: str, value: Any, sliding_ttl: float, absolute_ttl: float) -> None:
        envelope = {
            'value': self._codec.encode(value),
            'inserted_at': self._clock(),
            'sliding_ttl': sliding_ttl,
            'absolute_ttl': absolute_ttl
        }
        window = min(sliding_ttl, absolute_ttl)
        await self._redis.set(
            self._format_key(key),
            json.dumps(envelope),
            px=max(int(window * 1000), 1)
        )

    @redis_retry
    @cache_operation_metrics("evict", "redis")
    async def evict(self, key: str) -> bool:
        deleted = await self._redis.delete(self._format_key(key))
        return deleted > 0

    @redis_retry
    @cache_operation_metrics("evict_prefix", "redis")
    async def evict_prefix(self, prefix: str) -> int:
        pattern = escape_glob(self._format_key(prefix)) + '*'
        deleted_count = 0
        batch = []

        async for redis_key in self._redis.scan_iter(match=pattern, count=self._scan_count):
            batch.append(redis_key)
            if len(batch) >= self._scan_count:
                deleted_count += await self._redis.delete(*batch)
                batch = []

        if batch:
            deleted_count += await self._redis.delete(*batch)

        logger.info(
            "Cache pattern invalidation completed",
            prefix=prefix,
            deleted_count=deleted_count
        )
        return deleted_count

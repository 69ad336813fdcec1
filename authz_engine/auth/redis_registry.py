"""
Redis-backed Invalidation Registry for Shared Caches

When several engine processes share one Redis cache, an invalidation handled
by one process must reach the entries written by every other process. This
registry keeps the invalidation index and generation in the same Redis
instance as the cache, under `{key_prefix}`:

- `generation`: integer advanced by INCR on every invalidation
- `principals`: sorted set of cached user ids
- `role:{role_id}`: sorted set of the users whose permission set depends on
  the role
- `user:{user_id}`: sorted set of the roles a cached user depends on, used to
  drop the user from those roles on unregistration
- `dependents:{type}:{id}`: sorted set of child cache keys computed through
  the resource

Every member is scored with its expiry timestamp. Reads only return members
whose score is still in the future, every write trims expired members, and
each set carries a key TTL, so the index shrinks with the cache.
"""

import math
import time
from typing import Any, Iterable, List, Optional, Set

import structlog

from authz_engine.auth.invalidation import (
    REGISTRATION_GRACE,
    BaseInvalidationRegistry,
    dependent_user_suffix,
)
from authz_engine.cache.keys import key_segment, normalize_resource_type
from authz_engine.cache.provider import Clock
from authz_engine.cache.redis_provider import escape_glob, redis_retry

logger = structlog.get_logger(__name__)


def _decode(member: Any) -> str:
    return member.decode() if isinstance(member, bytes) else member


class RedisInvalidationRegistry(BaseInvalidationRegistry):
    """
    Invalidation registry stored in Redis sorted sets.

    Args:
        redis_client: redis.asyncio.Redis instance shared with the cache
        key_prefix: Namespace of the index keys
        clock: Time source for member expiry scores
        scan_count: COUNT hint for SCAN when clearing
    """

    def __init__(
        self,
        redis_client: Any,
        key_prefix: str = "authz:idx:",
        clock: Optional[Clock] = None,
        scan_count: int = 100
    ):
        self._redis = redis_client
        self._key_prefix = key_prefix
        self._clock = clock or time.time
        self._scan_count = scan_count

        logger.info("Redis invalidation registry initialized", key_prefix=key_prefix)

    @property
    def _generation_key(self) -> str:
        return f"{self._key_prefix}generation"

    @property
    def _principals_key(self) -> str:
        return f"{self._key_prefix}principals"

    def _role_key(self, role_id: str) -> str:
        return f"{self._key_prefix}role:{key_segment(role_id)}"

    def _user_key(self, user_id: str) -> str:
        return f"{self._key_prefix}user:{key_segment(user_id)}"

    def _dependents_key(self, resource_type: str, resource_id: Any) -> str:
        return (
            f"{self._key_prefix}dependents:"
            f"{key_segment(normalize_resource_type(resource_type))}:{key_segment(resource_id)}"
        )

    def _deadline(self, ttl: Optional[float]) -> float:
        if ttl is None:
            return math.inf
        return self._clock() + ttl + REGISTRATION_GRACE

    async def _live_members(self, key: str) -> List[str]:
        members = await self._redis.zrangebyscore(key, self._clock(), '+inf')
        return [_decode(member) for member in members]

    async def _trim(self, key: str, ttl: Optional[float]) -> None:
        await self._redis.zremrangebyscore(key, '-inf', self._clock())
        if ttl is not None:
            await self._redis.expire(key, max(math.ceil(ttl + REGISTRATION_GRACE), 1))

    @redis_retry
    async def generation(self) -> int:
        value = await self._redis.get(self._generation_key)
        return int(value) if value is not None else 0

    @redis_retry
    async def advance_generation(self) -> int:
        return int(await self._redis.incr(self._generation_key))

    # Principal path

    @redis_retry
    async def register_principal(
        self,
        user_id: str,
        role_ids: Iterable[str] = (),
        ttl: Optional[float] = None
    ) -> None:
        deadline = self._deadline(ttl)
        role_ids = frozenset(role_ids)
        await self._forget_roles(user_id)

        if role_ids:
            user_key = self._user_key(user_id)
            await self._redis.zadd(user_key, {role_id: deadline for role_id in role_ids})
            await self._trim(user_key, ttl)

        for role_id in role_ids:
            role_key = self._role_key(role_id)
            await self._redis.zadd(role_key, {user_id: deadline})
            await self._trim(role_key, ttl)

        await self._redis.zadd(self._principals_key, {user_id: deadline})
        await self._trim(self._principals_key, ttl)

    @redis_retry
    async def unregister_principal(self, user_id: str) -> None:
        await self._forget_roles(user_id)
        await self._redis.zrem(self._principals_key, user_id)

    async def _forget_roles(self, user_id: str) -> None:
        user_key = self._user_key(user_id)
        for role_id in await self._redis.zrange(user_key, 0, -1):
            await self._redis.zrem(self._role_key(_decode(role_id)), user_id)
        await self._redis.delete(user_key)

    @redis_retry
    async def principals_for_role(self, role_id: str) -> List[str]:
        return await self._live_members(self._role_key(role_id))

    @redis_retry
    async def drain_principals(self) -> List[str]:
        drained = await self._live_members(self._principals_key)
        await self._redis.delete(self._principals_key)
        await self._delete_matching(f"{escape_glob(self._key_prefix)}role:*")
        await self._delete_matching(f"{escape_glob(self._key_prefix)}user:*")
        return drained

    # Resource path

    @redis_retry
    async def register_resource_dependent(
        self,
        parent_type: str,
        parent_id: Any,
        cache_key: str,
        ttl: Optional[float] = None
    ) -> None:
        key = self._dependents_key(parent_type, parent_id)
        await self._redis.zadd(key, {cache_key: self._deadline(ttl)})
        await self._trim(key, ttl)

    @redis_retry
    async def pop_resource_dependents(
        self,
        resource_type: str,
        resource_id: Any,
        user_id: Optional[str] = None
    ) -> Set[str]:
        key = self._dependents_key(resource_type, resource_id)
        members = set(await self._live_members(key))
        if user_id is None:
            await self._redis.delete(key)
            return members

        suffix = dependent_user_suffix(user_id)
        selected = {member for member in members if member.endswith(suffix)}
        if selected:
            await self._redis.zrem(key, *selected)
        return selected

    @redis_retry
    async def clear(self) -> None:
        prefix = escape_glob(self._key_prefix)
        deleted = await self._redis.delete(self._principals_key)
        for family in ('role:', 'user:', 'dependents:'):
            deleted += await self._delete_matching(f"{prefix}{family}*")
        logger.info("Redis invalidation registry cleared", deleted_count=deleted)

    async def _delete_matching(self, pattern: str) -> int:
        deleted_count = 0
        batch = []

        async for redis_key in self._redis.scan_iter(match=pattern, count=self._scan_count):
            batch.append(redis_key)
            if len(batch) >= self._scan_count:
                deleted_count += await self._redis.delete(*batch)
                batch = []

        if batch:
            deleted_count += await self._redis.delete(*batch)
        return deleted_count

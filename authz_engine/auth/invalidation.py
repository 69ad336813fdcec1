"""
Cache Invalidation Registry and Service

Mutation commands outside the engine (role claim edits, role hierarchy edits,
role assignments, share grants and revocations) call into the
CacheInvalidationService after a successful write. The service evicts exactly
the cache entries the mutation can affect, using an invalidation registry to
know which entries exist:

- the principal path registers every cached user together with the ids of the
  roles that contributed to that user's permission set (assigned roles and
  their ancestors), so a change to one role evicts only the users depending
  on it
- the resource path registers every cached child decision that was computed
  through a parent resource, so a share change on the parent evicts the
  children that inherited from it

Registrations are written by the cache provider right before the value they
describe is stored, and each one expires shortly after the absolute TTL of
that value, so the registry never outgrows the cache it indexes.

Every invalidation advances the registry generation before evicting. A cache
miss computed across a generation change is returned to its caller but never
stored, so a lookup already in flight cannot re-insert a revoked decision.

InvalidationRegistry lives in process memory and is empty at start-up; an
empty registry only means invalidation events are no-ops until normal cache
traffic repopulates it. Deployments sharing a Redis cache use the Redis
registry instead, so every process sees the same index and generation.
"""

import math
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

import structlog

from authz_engine.cache.keys import (
    CacheKeyPatterns,
    key_segment,
    normalize_resource_type,
    resource_authorization_key,
    resource_key_prefixes,
    resource_permission_key,
    user_permissions_key,
)
from authz_engine.cache.monitoring import record_invalidation
from authz_engine.cache.provider import CacheProvider

logger = structlog.get_logger(__name__)

# Registrations outlive the indexed entry by this margin
REGISTRATION_GRACE = 5.0


def dependent_user_suffix(user_id: str) -> str:
    """Key suffix shared by every resource-path entry of one user."""
    return f":{key_segment(user_id)}"


class BaseInvalidationRegistry(ABC):
    """
    Index of cached principals and resource dependencies, plus the
    invalidation generation.

    A ttl of None registers without expiry.
    """

    @abstractmethod
    async def generation(self) -> int:
        """Current invalidation generation."""

    @abstractmethod
    async def advance_generation(self) -> int:
        """Start a new generation; returns it."""

    @abstractmethod
    async def register_principal(
        self,
        user_id: str,
        role_ids: Iterable[str] = (),
        ttl: Optional[float] = None
    ) -> None:
        """Record a cached user and the roles its permission set was built from."""

    @abstractmethod
    async def unregister_principal(self, user_id: str) -> None:
        """Forget a cached user."""

    @abstractmethod
    async def principals_for_role(self, role_id: str) -> List[str]:
        """Cached users whose permission set depends on the role."""

    @abstractmethod
    async def drain_principals(self) -> List[str]:
        """Forget every cached user and return them."""

    @abstractmethod
    async def register_resource_dependent(
        self,
        parent_type: str,
        parent_id: Any,
        cache_key: str,
        ttl: Optional[float] = None
    ) -> None:
        """Record a cached child decision computed through a parent resource."""

    @abstractmethod
    async def pop_resource_dependents(
        self,
        resource_type: str,
        resource_id: Any,
        user_id: Optional[str] = None
    ) -> Set[str]:
        """
        Remove and return the dependent keys of a resource.

        With user_id, only that user's dependents are removed; the others stay
        registered.
        """

    @abstractmethod
    async def clear(self) -> None:
        """Forget every registration. The generation is kept."""

    def pending(self, ttl: Optional[float] = None) -> 'PendingRegistration':
        return PendingRegistration(self, ttl)


class PendingRegistration:
    """
    Registry writes collected while a cache value is computed.

    Passed to the provider as its store hook: the writes are applied only
    when the value is actually stored, and dropped with a discarded value.

    Args:
        registry: Registry receiving the writes
        ttl: Absolute TTL of the cache entry being computed
    """

    def __init__(self, registry: BaseInvalidationRegistry, ttl: Optional[float] = None):
        self.registry = registry
        self.ttl = ttl
        self._principal: Optional[Tuple[str, FrozenSet[str]]] = None
        self._dependents: List[Tuple[str, Any, str]] = []

    def add_principal(self, user_id: str, role_ids: Iterable[str]) -> None:
        self._principal = (user_id, frozenset(role_ids))

    def add_resource_dependent(self, parent_type: str, parent_id: Any, cache_key: str) -> None:
        self._dependents.append((parent_type, parent_id, cache_key))

    async def apply(self) -> None:
        if self._principal is not None:
            user_id, role_ids = self._principal
            await self.registry.register_principal(user_id, role_ids, ttl=self.ttl)
        for parent_type, parent_id, cache_key in self._dependents:
            await self.registry.register_resource_dependent(
                parent_type, parent_id, cache_key, ttl=self.ttl
            )


class InvalidationRegistry(BaseInvalidationRegistry):
    """
    Thread-safe in-process registry.

    Expired registrations are ignored by every lookup and removed by
    `prune_expired`, which also runs on a registration once `prune_interval`
    seconds have passed since the previous prune.

    Args:
        clock: Time source in seconds; should be the cache provider's clock
        prune_interval: Minimum seconds between prunes triggered by writes
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None, prune_interval: float = 60.0):
        self._lock = threading.Lock()
        self._clock = clock or time.time
        self._prune_interval = prune_interval
        self._last_prune = self._clock()
        self._generation = 0
        self._principals: Dict[str, Tuple[FrozenSet[str], float]] = {}
        self._resource_dependents: Dict[Tuple[str, str], Dict[str, float]] = {}

    def _deadline(self, ttl: Optional[float]) -> float:
        if ttl is None:
            return math.inf
        return self._clock() + ttl + REGISTRATION_GRACE

    async def generation(self) -> int:
        with self._lock:
            return self._generation

    async def advance_generation(self) -> int:
        with self._lock:
            self._generation += 1
            return self._generation

    # Principal path

    async def register_principal(
        self,
        user_id: str,
        role_ids: Iterable[str] = (),
        ttl: Optional[float] = None
    ) -> None:
        deadline = self._deadline(ttl)
        with self._lock:
            self._principals[user_id] = (frozenset(role_ids), deadline)
        self._maybe_prune()

    async def unregister_principal(self, user_id: str) -> None:
        with self._lock:
            self._principals.pop(user_id, None)

    def is_registered(self, user_id: str) -> bool:
        now = self._clock()
        with self._lock:
            registration = self._principals.get(user_id)
            return registration is not None and registration[1] > now

    async def principals_for_role(self, role_id: str) -> List[str]:
        now = self._clock()
        with self._lock:
            return [
                user_id for user_id, (role_ids, deadline) in self._principals.items()
                if deadline > now and role_id in role_ids
            ]

    async def drain_principals(self) -> List[str]:
        now = self._clock()
        with self._lock:
            drained = [
                user_id for user_id, (_, deadline) in self._principals.items()
                if deadline > now
            ]
            self._principals.clear()
        return drained

    # Resource path

    async def register_resource_dependent(
        self,
        parent_type: str,
        parent_id: Any,
        cache_key: str,
        ttl: Optional[float] = None
    ) -> None:
        parent = (normalize_resource_type(parent_type), str(parent_id))
        deadline = self._deadline(ttl)
        with self._lock:
            self._resource_dependents.setdefault(parent, {})[cache_key] = deadline
        self._maybe_prune()

    async def pop_resource_dependents(
        self,
        resource_type: str,
        resource_id: Any,
        user_id: Optional[str] = None
    ) -> Set[str]:
        parent = (normalize_resource_type(resource_type), str(resource_id))
        now = self._clock()
        with self._lock:
            dependents = self._resource_dependents.get(parent)
            if not dependents:
                return set()
            if user_id is None:
                del self._resource_dependents[parent]
                return {key for key, deadline in dependents.items() if deadline > now}

            suffix = dependent_user_suffix(user_id)
            selected = {
                key: deadline for key, deadline in dependents.items()
                if key.endswith(suffix)
            }
            for key in selected:
                del dependents[key]
            if not dependents:
                del self._resource_dependents[parent]
            return {key for key, deadline in selected.items() if deadline > now}

    # Maintenance

    def prune_expired(self) -> int:
        """Drop expired registrations; returns how many were removed."""
        now = self._clock()
        removed = 0
        with self._lock:
            self._last_prune = now
            for user_id in [
                user_id for user_id, (_, deadline) in self._principals.items()
                if deadline <= now
            ]:
                del self._principals[user_id]
                removed += 1

            for parent in list(self._resource_dependents):
                dependents = self._resource_dependents[parent]
                for key in [key for key, deadline in dependents.items() if deadline <= now]:
                    del dependents[key]
                    removed += 1
                if not dependents:
                    del self._resource_dependents[parent]

        if removed:
            logger.debug("Expired invalidation registrations pruned", removed=removed)
        return removed

    def _maybe_prune(self) -> None:
        if self._clock() - self._last_prune >= self._prune_interval:
            self.prune_expired()

    async def clear(self) -> None:
        with self._lock:
            self._principals.clear()
            self._resource_dependents.clear()

    def __len__(self) -> int:
        now = self._clock()
        with self._lock:
            principals = sum(1 for _, deadline in self._principals.values() if deadline > now)
            dependents = sum(
                1 for keys in self._resource_dependents.values()
                for deadline in keys.values() if deadline > now
            )
        return principals + dependents


class CacheInvalidationService:
    """
    Entry point for external mutation commands to evict affected cache keys.

    Every method is meant to be awaited after the mutation has been
    committed. Each one advances the registry generation before evicting and
    returns the number of cache entries evicted.

    Args:
        cache: Cache provider shared with both decision paths
        registry: Registry populated by the decision paths
    """

    def __init__(self, cache: CacheProvider, registry: BaseInvalidationRegistry):
        self.cache = cache
        self.registry = registry

    async def invalidate_user(self, user_id: str) -> int:
        await self.registry.advance_generation()
        return await self._evict_user(user_id)

    async def _evict_user(self, user_id: str) -> int:
        evicted = await self.cache.evict(user_permissions_key(user_id))
        await self.registry.unregister_principal(user_id)
        return int(evicted)

    async def on_user_roles_changed(self, user_id: str) -> int:
        """A role was assigned to or removed from a user."""
        evicted = await self.invalidate_user(user_id)
        record_invalidation('user_roles_changed', evicted)
        logger.info("User permissions invalidated", user_id=user_id, evicted=evicted)
        return evicted

    async def on_role_changed(self, role_id: str) -> int:
        """
        A role's claims, its parent link, or its deleted flag changed.

        Evicts every cached user whose permission set was built from the role,
        directly or through a child role.
        """
        await self.registry.advance_generation()
        affected = await self.registry.principals_for_role(role_id)
        evicted = 0
        for user_id in affected:
            evicted += await self._evict_user(user_id)

        record_invalidation('role_changed', evicted)
        logger.info(
            "Role change invalidated cached principals",
            role_id=role_id,
            affected_users=len(affected),
            evicted=evicted
        )
        return evicted

    async def on_permissions_changed(self) -> int:
        """Bulk signal: drain the registry and evict every cached principal."""
        await self.registry.advance_generation()
        evicted = 0
        for user_id in await self.registry.drain_principals():
            evicted += int(await self.cache.evict(user_permissions_key(user_id)))

        record_invalidation('permissions_changed', evicted)
        logger.info("Bulk permission invalidation completed", evicted=evicted)
        return evicted

    async def on_share_changed(
        self,
        resource_type: str,
        resource_id: Any,
        user_id: Optional[str] = None
    ) -> int:
        """
        A share on a resource was granted, changed or revoked.

        Evicts the resource's own entries (for one grantee when user_id is
        given, for everyone otherwise) and the cached decisions of child
        resources that inherited from it.
        """
        await self.registry.advance_generation()
        evicted = 0
        if user_id is not None:
            evicted += int(await self.cache.evict(
                resource_permission_key(resource_type, resource_id, user_id)
            ))
            evicted += int(await self.cache.evict(
                resource_authorization_key(resource_type, resource_id, user_id)
            ))
        else:
            for prefix in resource_key_prefixes(resource_type, resource_id):
                evicted += await self.cache.evict_prefix(prefix)

        dependents = await self.registry.pop_resource_dependents(resource_type, resource_id, user_id)
        for dependent_key in dependents:
            evicted += int(await self.cache.evict(dependent_key))

        record_invalidation('share_changed', evicted)
        logger.info(
            "Resource share invalidation completed",
            resource_type=normalize_resource_type(resource_type),
            resource_id=str(resource_id),
            user_id=user_id,
            evicted=evicted
        )
        return evicted

    async def evict_all(self) -> int:
        await self.registry.advance_generation()
        evicted = 0
        for prefix in CacheKeyPatterns.ALL_PREFIXES:
            evicted += await self.cache.evict_prefix(prefix)
        await self.registry.clear()

        record_invalidation('evict_all', evicted)
        logger.warning("All authorization cache entries evicted", evicted=evicted)
        return evicted

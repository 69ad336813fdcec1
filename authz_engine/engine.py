"""
Authorization Engine Facade

Wires the role hierarchy resolver, the principal permission cache, the
resource authorization service and the invalidation service over one shared
cache provider and one invalidation registry, and routes callers to the right
decision path:

- claim checks ("users:write") go to the PrincipalPermissionCache
- instance checks (user, resource, action) go to the ResourceAuthorizationService

Mutation commands reach the cache through `engine.invalidation`.
"""

from typing import Any, FrozenSet, Iterable, List, Optional, Tuple

import redis.asyncio as redis_asyncio
import structlog

from authz_engine.auth.hierarchy import RoleHierarchyResolver
from authz_engine.auth.invalidation import (
    BaseInvalidationRegistry,
    CacheInvalidationService,
    InvalidationRegistry,
)
from authz_engine.auth.models import PermissionClaim, Resource, SharePermission
from authz_engine.auth.permissions import PrincipalPermissionCache
from authz_engine.auth.redis_registry import RedisInvalidationRegistry
from authz_engine.auth.resources import ResourceAuthorizationService
from authz_engine.auth.stores import (
    ResourceLoader,
    ResourceShareStore,
    RoleStore,
    UserStore,
)
from authz_engine.cache.provider import CacheProvider, InMemoryCacheProvider
from authz_engine.cache.redis_provider import RedisCacheProvider, ValueCodec
from authz_engine.config.settings import EngineSettings

logger = structlog.get_logger(__name__)


class AuthorizationEngine:
    """
    Entry point of the authorization decision engine.

    Args:
        permissions: Principal permission cache (global claim path)
        resources: Resource authorization service (instance path)
        invalidation: Invalidation service for external mutation commands
        cache: Cache provider shared by both paths
    """

    def __init__(
        self,
        permissions: PrincipalPermissionCache,
        resources: ResourceAuthorizationService,
        invalidation: CacheInvalidationService,
        cache: CacheProvider
    ):
        self.permissions = permissions
        self.resources = resources
        self.invalidation = invalidation
        self.cache = cache

    async def authorize(self, user_id: Optional[str], permission: str) -> bool:
        return await self.permissions.authorize(user_id, permission)

    async def authorize_any(self, user_id: Optional[str], permissions: Iterable[str]) -> bool:
        return await self.permissions.authorize_any(user_id, permissions)

    async def authorize_all(self, user_id: Optional[str], permissions: Iterable[str]) -> bool:
        return await self.permissions.authorize_all(user_id, permissions)

    async def get_effective_permissions(self, user_id: Optional[str]) -> FrozenSet[PermissionClaim]:
        return await self.permissions.get_effective_permissions(user_id)

    async def authorize_resource(self, user_id: str, resource: Resource, action: str) -> bool:
        return await self.resources.authorize(user_id, resource, action)

    async def authorize_resource_by_id(
        self,
        user_id: str,
        resource_type: str,
        resource_id: Any,
        action: str
    ) -> bool:
        return await self.resources.authorize_by_id(user_id, resource_type, resource_id, action)

    async def get_effective_permission(
        self,
        user_id: str,
        resource: Resource
    ) -> Optional[SharePermission]:
        return await self.resources.get_effective_permission(user_id, resource)

    async def get_accessible_resources(
        self,
        user_id: str,
        resource_type: str
    ) -> List[Tuple[Any, SharePermission]]:
        return await self.resources.get_accessible_resources(user_id, resource_type)


def create_cache_provider(settings: EngineSettings) -> CacheProvider:
    """
    Build the cache provider selected by AUTHZ_CACHE_BACKEND.

    The Redis client is created lazily by redis-py; no connection is opened
    until the first cache operation.
    """
    if settings.cache_backend == 'redis':
        client = redis_asyncio.from_url(settings.redis_url)
        return RedisCacheProvider(
            client,
            key_prefix=settings.redis_key_prefix,
            codec=ValueCodec([SharePermission])
        )
    return InMemoryCacheProvider()


def create_invalidation_registry(cache: CacheProvider) -> BaseInvalidationRegistry:
    """
    Build the invalidation registry matching the cache provider.

    A Redis cache is shared between processes, so its index and generation
    live next to it in Redis. Any other provider gets an in-process registry
    on the provider's clock, pruned whenever the provider purges.
    """
    if isinstance(cache, RedisCacheProvider):
        return RedisInvalidationRegistry(
            cache.client,
            key_prefix=f"{cache.key_prefix}idx:",
            clock=cache.clock
        )

    registry = InvalidationRegistry(clock=getattr(cache, 'clock', None))
    if isinstance(cache, InMemoryCacheProvider):
        cache.add_purge_listener(registry.prune_expired)
    return registry


def create_authorization_engine(
    role_store: RoleStore,
    user_store: UserStore,
    share_store: ResourceShareStore,
    settings: Optional[EngineSettings] = None,
    cache: Optional[CacheProvider] = None,
    resource_loader: Optional[ResourceLoader] = None
) -> AuthorizationEngine:
    """
    Factory function wiring a complete engine.

    Args:
        role_store: Role lookups
        user_store: User and assignment lookups
        share_store: Share lookups
        settings: Engine settings; defaults are used when None
        cache: Cache provider; built from settings when None
        resource_loader: Enables multi-level resource inheritance when given

    Returns:
        Configured AuthorizationEngine
    """
    settings = settings or EngineSettings()
    if cache is None:
        cache = create_cache_provider(settings)
    registry = create_invalidation_registry(cache)

    permissions = PrincipalPermissionCache(
        user_store,
        role_store,
        cache,
        registry,
        resolver=RoleHierarchyResolver(role_store),
        sliding_ttl=settings.permission_sliding_ttl,
        absolute_ttl=settings.permission_absolute_ttl
    )
    resources = ResourceAuthorizationService(
        share_store,
        cache,
        registry,
        resource_loader=resource_loader,
        sliding_ttl=settings.resource_sliding_ttl,
        absolute_ttl=settings.resource_absolute_ttl,
        max_inheritance_depth=settings.max_inheritance_depth
    )

    logger.info(
        "Authorization engine created",
        cache_type=cache.cache_type,
        multi_level_inheritance=resource_loader is not None
    )
    return AuthorizationEngine(
        permissions=permissions,
        resources=resources,
        invalidation=CacheInvalidationService(cache, registry),
        cache=cache
    )

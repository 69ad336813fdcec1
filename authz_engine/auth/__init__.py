"""
Authorization decision paths.

- Principal path: claim-based global permissions resolved through the role
  hierarchy and cached per user (PrincipalPermissionCache)
- Resource path: ownership, explicit shares and parent inheritance on a
  specific resource (ResourceAuthorizationService)

Both paths share one cache provider and one invalidation registry, evicted by
CacheInvalidationService when external commands mutate roles or shares.
"""

from authz_engine.auth.exceptions import (
    AuthorizationEngineException,
    AuthzErrorCode,
    ConfigurationException,
    InvalidArgumentException,
    get_error_category,
)
from authz_engine.auth.hierarchy import RoleHierarchyResolver
from authz_engine.auth.invalidation import (
    BaseInvalidationRegistry,
    CacheInvalidationService,
    InvalidationRegistry,
    PendingRegistration,
)
from authz_engine.auth.models import (
    ACTION_REQUIREMENTS,
    PermissionClaim,
    Resource,
    ResourceShare,
    Role,
    SharePermission,
    User,
)
from authz_engine.auth.permissions import PrincipalPermissionCache
from authz_engine.auth.redis_registry import RedisInvalidationRegistry
from authz_engine.auth.resources import ResourceAuthorizationService
from authz_engine.auth.stores import (
    InMemoryResourceLoader,
    InMemoryResourceShareStore,
    InMemoryRoleStore,
    InMemoryUserStore,
    ResourceLoader,
    ResourceShareStore,
    RoleStore,
    UserStore,
)

__all__ = [
    'ACTION_REQUIREMENTS',
    'AuthorizationEngineException',
    'AuthzErrorCode',
    'BaseInvalidationRegistry',
    'CacheInvalidationService',
    'ConfigurationException',
    'InMemoryResourceLoader',
    'InMemoryResourceShareStore',
    'InMemoryRoleStore',
    'InMemoryUserStore',
    'InvalidArgumentException',
    'InvalidationRegistry',
    'PendingRegistration',
    'PermissionClaim',
    'PrincipalPermissionCache',
    'RedisInvalidationRegistry',
    'Resource',
    'ResourceAuthorizationService',
    'ResourceLoader',
    'ResourceShare',
    'ResourceShareStore',
    'Role',
    'RoleHierarchyResolver',
    'RoleStore',
    'SharePermission',
    'User',
    'UserStore',
    'get_error_category',
]

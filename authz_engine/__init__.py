"""
Authorization decision engine.

Decides whether a user may perform an action, either globally through
claim-based role permissions or on a specific resource through ownership,
explicit sharing and parent inheritance. Decisions are cached with sliding
and absolute expirations and evicted on role and share changes.

Example:
    engine = create_authorization_engine(role_store, user_store, share_store)
    await engine.authorize("user-1", "users:write")
    await engine.authorize_resource("user-1", document, "comment")
"""

from authz_engine.auth import (
    CacheInvalidationService,
    InvalidArgumentException,
    AuthorizationEngineException,
    ConfigurationException,
    Resource,
    ResourceShare,
    Role,
    SharePermission,
    User,
)
from authz_engine.config import EngineSettings
from authz_engine.engine import (
    AuthorizationEngine,
    create_authorization_engine,
    create_cache_provider,
)

__version__ = '1.0.0'

__all__ = [
    'AuthorizationEngine',
    'AuthorizationEngineException',
    'CacheInvalidationService',
    'ConfigurationException',
    'EngineSettings',
    'InvalidArgumentException',
    'Resource',
    'ResourceShare',
    'Role',
    'SharePermission',
    'User',
    'create_authorization_engine',
    'create_cache_provider',
]

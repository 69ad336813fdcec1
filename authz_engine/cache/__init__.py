"""
Cache layer for the authorization engine.

Exposes the injected cache-provider capability, its in-memory and Redis
implementations, and the key patterns both decision paths use.
"""

from authz_engine.cache.keys import (
    CacheKeyPatterns,
    resource_authorization_key,
    resource_key_prefixes,
    resource_permission_key,
    user_permissions_key,
)
from authz_engine.cache.provider import (
    CacheEntry,
    CacheProvider,
    InMemoryCacheProvider,
)
from authz_engine.cache.redis_provider import RedisCacheProvider, ValueCodec

__all__ = [
    'CacheKeyPatterns',
    'CacheEntry',
    'CacheProvider',
    'InMemoryCacheProvider',
    'RedisCacheProvider',
    'ValueCodec',
    'resource_authorization_key',
    'resource_key_prefixes',
    'resource_permission_key',
    'user_permissions_key',
]

"""
Global pytest Configuration and Fixtures

Shared fixtures for the authorization engine test suite: in-memory role, user
and share stores seeded with a small tenant, a controllable clock, and a
fresh in-memory cache provider and invalidation registry per test.

Tenant layout used across the suite:

    Viewer  (documents:read)
      └── Editor  (documents:write)
            └── Publisher  (documents:publish)

    Auditor (audit:read), with deleted parent Legacy (legacy:all)

    alice -> Editor, bob -> Viewer, carol -> (no roles), dave -> Auditor
"""

import pytest

from authz_engine.auth.hierarchy import RoleHierarchyResolver
from authz_engine.auth.invalidation import CacheInvalidationService, InvalidationRegistry
from authz_engine.auth.models import Role, User
from authz_engine.auth.permissions import PrincipalPermissionCache
from authz_engine.auth.resources import ResourceAuthorizationService
from authz_engine.auth.stores import (
    InMemoryResourceShareStore,
    InMemoryRoleStore,
    InMemoryUserStore,
)
from authz_engine.cache.provider import InMemoryCacheProvider
from tests.fixtures import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def role_store():
    return InMemoryRoleStore([
        Role(id='viewer', name='Viewer', permissions={'documents:read'}),
        Role(id='editor', name='Editor', parent_role_id='viewer', permissions={'documents:write'}),
        Role(id='publisher', name='Publisher', parent_role_id='editor', permissions={'documents:publish'}),
        Role(id='legacy', name='Legacy', permissions={'legacy:all'}, is_deleted=True),
        Role(id='auditor', name='Auditor', parent_role_id='legacy', permissions={'audit:read'}),
    ])


@pytest.fixture
def user_store():
    return InMemoryUserStore([
        User(id='alice', role_ids=('editor',)),
        User(id='bob', role_ids=('viewer',)),
        User(id='carol'),
        User(id='dave', role_ids=('auditor',)),
    ])


@pytest.fixture
def share_store():
    return InMemoryResourceShareStore()


@pytest.fixture
def cache(clock):
    return InMemoryCacheProvider(clock=clock)


@pytest.fixture
def registry(clock):
    return InvalidationRegistry(clock=clock)


@pytest.fixture
def resolver(role_store):
    return RoleHierarchyResolver(role_store)


@pytest.fixture
def permission_cache(user_store, role_store, cache, registry, resolver):
    return PrincipalPermissionCache(user_store, role_store, cache, registry, resolver=resolver)


@pytest.fixture
def resource_service(share_store, cache, registry):
    return ResourceAuthorizationService(share_store, cache, registry)


@pytest.fixture
def invalidation(cache, registry):
    return CacheInvalidationService(cache, registry)

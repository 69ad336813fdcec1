"""
Resource Authorization Service Unit Tests

Validates the ownership / direct share / inherited share decision chain,
by-id checks, effective level resolution with negative caching, the
multi-level inheritance walk, accessible resource listing, argument
validation and collaborator error propagation.
"""

import asyncio

import pytest

from authz_engine.auth.exceptions import AuthzErrorCode, InvalidArgumentException
from authz_engine.auth.invalidation import CacheInvalidationService
from authz_engine.auth.models import ResourceShare, SharePermission
from authz_engine.auth.resources import ResourceAuthorizationService
from authz_engine.auth.stores import InMemoryResourceLoader, InMemoryResourceShareStore
from tests.fixtures import Document, Folder


pytestmark = pytest.mark.unit


def share(resource_type, resource_id, user_id, permission):
    return ResourceShare(resource_type, resource_id, user_id, permission)


class TestOwnership:
    """The owner may do everything, before any share lookup."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("action", ['read', 'comment', 'write', 'delete', 'share'])
    async def test_owner_allowed_every_action(self, resource_service, action):
        document = Document(id=1, owner_id='alice')
        assert await resource_service.authorize('alice', document, action) is True

    @pytest.mark.asyncio
    async def test_owner_allowed_despite_none_share(self, resource_service, share_store):
        share_store.save(share('document', 1, 'alice', SharePermission.NONE))
        document = Document(id=1, owner_id='alice')
        assert await resource_service.authorize('alice', document, 'delete') is True

    @pytest.mark.asyncio
    async def test_owner_check_skips_share_store_and_cache(self, resource_service, share_store, cache, mocker):
        find_spy = mocker.spy(share_store, 'find_share')
        cache_spy = mocker.spy(cache, 'get_or_set')

        await resource_service.authorize('alice', Document(id=1, owner_id='alice'), 'write')

        assert find_spy.call_count == 0
        assert cache_spy.call_count == 0

    @pytest.mark.asyncio
    async def test_owner_effective_permission_is_admin(self, resource_service, cache):
        document = Document(id=1, owner_id='alice')
        assert await resource_service.get_effective_permission('alice', document) is SharePermission.ADMIN
        assert len(cache) == 0


class TestDirectShares:
    """An explicit share on the resource decides by its level."""

    @pytest.mark.asyncio
    async def test_write_share_allows_edit_not_delete(self, resource_service, share_store):
        share_store.save(share('document', 42, 'bob', SharePermission.WRITE))
        document = Document(id=42, owner_id='alice')

        assert await resource_service.authorize('bob', document, 'edit') is True
        assert await resource_service.authorize('bob', document, 'read') is True
        assert await resource_service.authorize('bob', document, 'delete') is False

    @pytest.mark.asyncio
    async def test_comment_share(self, resource_service, share_store):
        share_store.save(share('document', 42, 'bob', SharePermission.COMMENT))
        document = Document(id=42, owner_id='alice')

        assert await resource_service.authorize('bob', document, 'comment') is True
        assert await resource_service.authorize('bob', document, 'write') is False

    @pytest.mark.asyncio
    async def test_no_share_denies(self, resource_service):
        assert await resource_service.authorize('bob', Document(id=42, owner_id='alice'), 'read') is False

    @pytest.mark.asyncio
    async def test_none_share_denies(self, resource_service, share_store):
        share_store.save(share('document', 42, 'bob', SharePermission.NONE))
        assert await resource_service.authorize('bob', Document(id=42, owner_id='alice'), 'read') is False

    @pytest.mark.asyncio
    async def test_unknown_action_denied(self, resource_service, share_store):
        share_store.save(share('document', 42, 'bob', SharePermission.ADMIN))
        assert await resource_service.authorize('bob', Document(id=42, owner_id='alice'), 'teleport') is False

    @pytest.mark.asyncio
    async def test_action_is_case_insensitive(self, resource_service, share_store):
        share_store.save(share('document', 42, 'bob', SharePermission.READ))
        assert await resource_service.authorize('bob', Document(id=42, owner_id='alice'), 'READ') is True

    @pytest.mark.asyncio
    async def test_resource_type_is_case_insensitive(self, resource_service, share_store, cache):
        share_store.save(share('document', 42, 'bob', SharePermission.READ))
        document = Document(id=42, owner_id='alice', resource_type='DOCUMENT')

        assert await resource_service.authorize('bob', document, 'read') is True
        assert 'resource_perm:document:42:bob' in cache


class TestParentInheritance:
    """A resource without a direct share inherits its parent's share."""

    @pytest.mark.asyncio
    async def test_folder_share_grants_document_access(self, resource_service, share_store):
        share_store.save(share('folder', 7, 'bob', SharePermission.READ))
        document = Document(id=42, owner_id='alice', parent_resource_id=7, parent_resource_type='folder')

        assert await resource_service.authorize('bob', document, 'read') is True
        assert await resource_service.authorize('bob', document, 'write') is False

    @pytest.mark.asyncio
    async def test_explicit_none_child_share_beats_parent_share(self, resource_service, share_store):
        share_store.save(share('folder', 7, 'bob', SharePermission.WRITE))
        share_store.save(share('document', 42, 'bob', SharePermission.NONE))
        document = Document(id=42, owner_id='alice', parent_resource_id=7, parent_resource_type='folder')

        assert await resource_service.authorize('bob', document, 'read') is False
        assert await resource_service.get_effective_permission('bob', document) is SharePermission.NONE

    @pytest.mark.asyncio
    async def test_lower_child_share_beats_higher_parent_share(self, resource_service, share_store):
        share_store.save(share('folder', 7, 'bob', SharePermission.ADMIN))
        share_store.save(share('document', 42, 'bob', SharePermission.READ))
        document = Document(id=42, owner_id='alice', parent_resource_id=7, parent_resource_type='folder')

        assert await resource_service.authorize('bob', document, 'write') is False

    @pytest.mark.asyncio
    async def test_inheritance_is_single_level_without_loader(self, resource_service, share_store):
        share_store.save(share('folder', 1, 'bob', SharePermission.ADMIN))
        # Document 42 lives in folder 7, which lives in folder 1
        document = Document(id=42, owner_id='alice', parent_resource_id=7, parent_resource_type='folder')

        assert await resource_service.authorize('bob', document, 'read') is False

    @pytest.mark.asyncio
    async def test_parent_ownership_is_not_inherited(self, resource_service):
        document = Document(id=42, owner_id='alice', parent_resource_id=7, parent_resource_type='folder')
        assert await resource_service.authorize('bob', document, 'read') is False

    @pytest.mark.asyncio
    async def test_child_registered_as_parent_dependent(self, resource_service, share_store, registry):
        share_store.save(share('folder', 7, 'bob', SharePermission.READ))
        document = Document(id=42, owner_id='alice', parent_resource_id=7, parent_resource_type='Folder')

        await resource_service.authorize('bob', document, 'read')

        assert await registry.pop_resource_dependents('folder', 7) == {'resource_perm:document:42:bob'}


class TestMultiLevelInheritance:
    """Ancestor walk when a resource loader is injected."""

    @pytest.fixture
    def loader(self):
        return InMemoryResourceLoader([
            Folder(id=1, owner_id='alice'),
            Folder(id=2, owner_id='alice', parent_resource_id=1, parent_resource_type='folder'),
            Folder(id=3, owner_id='alice', parent_resource_id=2, parent_resource_type='folder'),
        ])

    @pytest.fixture
    def service(self, share_store, cache, registry, loader):
        return ResourceAuthorizationService(share_store, cache, registry, resource_loader=loader)

    @pytest.mark.asyncio
    async def test_grandparent_share_is_inherited(self, service, share_store):
        share_store.save(share('folder', 1, 'bob', SharePermission.WRITE))
        document = Document(id=42, owner_id='alice', parent_resource_id=3, parent_resource_type='folder')

        assert await service.authorize('bob', document, 'edit') is True
        assert await service.get_effective_permission('bob', document) is SharePermission.WRITE

    @pytest.mark.asyncio
    async def test_nearest_explicit_share_wins(self, service, share_store):
        share_store.save(share('folder', 1, 'bob', SharePermission.ADMIN))
        share_store.save(share('folder', 2, 'bob', SharePermission.NONE))
        document = Document(id=42, owner_id='alice', parent_resource_id=3, parent_resource_type='folder')

        assert await service.authorize('bob', document, 'read') is False

    @pytest.mark.asyncio
    async def test_every_walked_ancestor_registers_dependent(self, service, share_store, registry):
        share_store.save(share('folder', 1, 'bob', SharePermission.READ))
        document = Document(id=42, owner_id='alice', parent_resource_id=3, parent_resource_type='folder')

        await service.authorize('bob', document, 'read')

        for folder_id in (1, 2, 3):
            assert await registry.pop_resource_dependents('folder', folder_id) == {'resource_perm:document:42:bob'}

    @pytest.mark.asyncio
    async def test_depth_cap_denies(self, share_store, cache, registry, loader):
        service = ResourceAuthorizationService(
            share_store, cache, registry, resource_loader=loader, max_inheritance_depth=2
        )
        share_store.save(share('folder', 1, 'bob', SharePermission.READ))
        document = Document(id=42, owner_id='alice', parent_resource_id=3, parent_resource_type='folder')

        assert await service.authorize('bob', document, 'read') is False

    @pytest.mark.asyncio
    async def test_parent_cycle_terminates(self, share_store, cache, registry):
        loader = InMemoryResourceLoader([
            Folder(id=1, owner_id='alice', parent_resource_id=2, parent_resource_type='folder'),
            Folder(id=2, owner_id='alice', parent_resource_id=1, parent_resource_type='folder'),
        ])
        service = ResourceAuthorizationService(share_store, cache, registry, resource_loader=loader)
        document = Document(id=42, owner_id='alice', parent_resource_id=1, parent_resource_type='folder')

        assert await service.authorize('bob', document, 'read') is False

    @pytest.mark.asyncio
    async def test_missing_ancestor_ends_walk(self, service, share_store):
        document = Document(id=42, owner_id='alice', parent_resource_id=99, parent_resource_type='folder')
        assert await service.authorize('bob', document, 'read') is False


class TestAuthorizeById:
    """Direct-share-only checks without the resource object."""

    @pytest.mark.asyncio
    async def test_direct_share_allows(self, resource_service, share_store, cache):
        share_store.save(share('document', 42, 'bob', SharePermission.WRITE))

        assert await resource_service.authorize_by_id('bob', 'Document', 42, 'write') is True
        assert 'resource_auth:document:42:bob' in cache

    @pytest.mark.asyncio
    async def test_parent_share_is_not_consulted(self, resource_service, share_store):
        share_store.save(share('folder', 7, 'bob', SharePermission.ADMIN))
        assert await resource_service.authorize_by_id('bob', 'document', 42, 'read') is False

    @pytest.mark.asyncio
    async def test_unknown_action_returns_false_without_lookup(self, resource_service, share_store, cache, mocker):
        find_spy = mocker.spy(share_store, 'find_share')
        cache_spy = mocker.spy(cache, 'get_or_set')

        assert await resource_service.authorize_by_id('bob', 'document', 42, 'teleport') is False
        assert find_spy.call_count == 0
        assert cache_spy.call_count == 0

    @pytest.mark.asyncio
    async def test_cached_level_serves_other_actions(self, resource_service, share_store, mocker):
        share_store.save(share('document', 42, 'bob', SharePermission.COMMENT))
        find_spy = mocker.spy(share_store, 'find_share')

        assert await resource_service.authorize_by_id('bob', 'document', 42, 'read') is True
        assert await resource_service.authorize_by_id('bob', 'document', 42, 'comment') is True
        assert await resource_service.authorize_by_id('bob', 'document', 42, 'write') is False
        assert find_spy.call_count == 1


class TestEffectivePermissionCaching:
    """Share level resolution is cached, absence included."""

    @pytest.mark.asyncio
    async def test_repeated_checks_hit_cache(self, resource_service, share_store, mocker):
        share_store.save(share('document', 42, 'bob', SharePermission.READ))
        find_spy = mocker.spy(share_store, 'find_share')
        document = Document(id=42, owner_id='alice')

        for _ in range(3):
            await resource_service.authorize('bob', document, 'read')
        assert find_spy.call_count == 1

    @pytest.mark.asyncio
    async def test_negative_result_is_cached(self, resource_service, share_store, cache, mocker):
        find_spy = mocker.spy(share_store, 'find_share')
        document = Document(id=42, owner_id='alice', parent_resource_id=7, parent_resource_type='folder')

        assert await resource_service.get_effective_permission('bob', document) is None
        assert await resource_service.get_effective_permission('bob', document) is None

        assert find_spy.call_count == 2
        assert 'resource_perm:document:42:bob' in cache

    @pytest.mark.asyncio
    async def test_resource_entry_expires_after_sliding_window(self, resource_service, share_store, clock, mocker):
        share_store.save(share('document', 42, 'bob', SharePermission.READ))
        find_spy = mocker.spy(share_store, 'find_share')
        document = Document(id=42, owner_id='alice')

        await resource_service.authorize('bob', document, 'read')
        clock.advance(121)
        await resource_service.authorize('bob', document, 'read')

        assert find_spy.call_count == 2

    @pytest.mark.asyncio
    async def test_separator_in_ids_does_not_collide(self, resource_service, share_store):
        share_store.save(share('document', '1', 'a:b', SharePermission.WRITE))

        assert await resource_service.authorize('a:b', Document(id='1', owner_id='alice'), 'write') is True
        assert await resource_service.authorize('b', Document(id='1:a', owner_id='alice'), 'write') is False

    @pytest.mark.asyncio
    async def test_cached_integer_is_coerced(self, resource_service, cache):
        await cache.set('resource_perm:document:42:bob', 3, 120, 600)
        permission = await resource_service.get_effective_permission('bob', Document(id=42, owner_id='alice'))
        assert permission is SharePermission.WRITE


class TestAccessibleResources:
    """Listing of directly shared resources."""

    @pytest.mark.asyncio
    async def test_lists_shares_above_none(self, resource_service, share_store):
        share_store.save(share('document', 1, 'bob', SharePermission.READ))
        share_store.save(share('document', 2, 'bob', SharePermission.ADMIN))
        share_store.save(share('document', 3, 'bob', SharePermission.NONE))
        share_store.save(share('folder', 4, 'bob', SharePermission.READ))
        share_store.save(share('document', 5, 'carol', SharePermission.READ))

        result = await resource_service.get_accessible_resources('bob', 'Document')

        assert sorted(result) == [(1, SharePermission.READ), (2, SharePermission.ADMIN)]

    @pytest.mark.asyncio
    async def test_not_cached(self, resource_service, share_store, cache):
        share_store.save(share('document', 1, 'bob', SharePermission.READ))
        await resource_service.get_accessible_resources('bob', 'document')

        share_store.save(share('document', 2, 'bob', SharePermission.READ))
        result = await resource_service.get_accessible_resources('bob', 'document')

        assert len(result) == 2
        assert len(cache) == 0


class TestArgumentValidation:
    """Programmer errors raise immediately."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("user_id", [None, '', '  '])
    async def test_blank_user_raises(self, resource_service, user_id):
        with pytest.raises(InvalidArgumentException) as exc_info:
            await resource_service.authorize(user_id, Document(id=1, owner_id='alice'), 'read')
        assert exc_info.value.error_code is AuthzErrorCode.ARG_PRINCIPAL_MISSING

    @pytest.mark.asyncio
    async def test_none_resource_raises(self, resource_service):
        with pytest.raises(InvalidArgumentException) as exc_info:
            await resource_service.authorize('bob', None, 'read')
        assert exc_info.value.error_code is AuthzErrorCode.ARG_RESOURCE_MISSING

    @pytest.mark.asyncio
    @pytest.mark.parametrize("action", [None, '', '   '])
    async def test_blank_action_raises(self, resource_service, action):
        with pytest.raises(InvalidArgumentException) as exc_info:
            await resource_service.authorize('bob', Document(id=1, owner_id='alice'), action)
        assert exc_info.value.error_code is AuthzErrorCode.ARG_ACTION_MISSING

    @pytest.mark.asyncio
    async def test_blank_action_raises_even_for_owner(self, resource_service):
        with pytest.raises(InvalidArgumentException):
            await resource_service.authorize('alice', Document(id=1, owner_id='alice'), '')

    @pytest.mark.asyncio
    async def test_blank_resource_type_raises(self, resource_service):
        with pytest.raises(InvalidArgumentException) as exc_info:
            await resource_service.authorize('bob', Document(id=1, owner_id='alice', resource_type=''), 'read')
        assert exc_info.value.error_code is AuthzErrorCode.ARG_RESOURCE_TYPE_MISSING

    @pytest.mark.asyncio
    async def test_by_id_validation(self, resource_service):
        with pytest.raises(InvalidArgumentException):
            await resource_service.authorize_by_id('', 'document', 1, 'read')
        with pytest.raises(InvalidArgumentException):
            await resource_service.authorize_by_id('bob', '', 1, 'read')
        with pytest.raises(InvalidArgumentException):
            await resource_service.authorize_by_id('bob', 'document', None, 'read')
        with pytest.raises(InvalidArgumentException):
            await resource_service.authorize_by_id('bob', 'document', 1, ' ')

    @pytest.mark.asyncio
    async def test_accessible_resources_validation(self, resource_service):
        with pytest.raises(InvalidArgumentException):
            await resource_service.get_accessible_resources('', 'document')
        with pytest.raises(InvalidArgumentException):
            await resource_service.get_accessible_resources('bob', '')


class GatedShareStore(InMemoryResourceShareStore):
    """Share store whose folder lookups pause until the gate opens."""

    def __init__(self, shares):
        super().__init__(shares)
        self.entered = asyncio.Event()
        self.gate = asyncio.Event()

    async def find_share(self, resource_type, resource_id, user_id):
        found = await super().find_share(resource_type, resource_id, user_id)
        if resource_type == 'folder':
            self.entered.set()
            await self.gate.wait()
        return found


class TestShareChangeDuringLookup:
    """A share invalidation racing a child decision is never undone by it."""

    @pytest.mark.asyncio
    async def test_parent_revocation_during_lookup_is_not_cached(self, cache, registry):
        share_store = GatedShareStore([share('folder', 7, 'bob', SharePermission.READ)])
        service = ResourceAuthorizationService(share_store, cache, registry)
        invalidation = CacheInvalidationService(cache, registry)
        document = Document(id=42, owner_id='alice', parent_resource_id=7, parent_resource_type='folder')

        lookup = asyncio.create_task(service.authorize('bob', document, 'read'))
        await share_store.entered.wait()

        share_store.revoke('folder', 7, 'bob')
        await invalidation.on_share_changed('folder', 7, 'bob')
        share_store.gate.set()

        assert await lookup is True
        assert 'resource_perm:document:42:bob' not in cache
        assert await registry.pop_resource_dependents('folder', 7) == set()
        assert await service.authorize('bob', document, 'read') is False


class TestErrorPropagation:
    """Share store failures surface unchanged and cache nothing."""

    @pytest.mark.asyncio
    async def test_share_store_error_propagates(self, cache, registry, mocker):
        share_store = mocker.Mock()
        share_store.find_share = mocker.AsyncMock(side_effect=TimeoutError("share store timeout"))
        service = ResourceAuthorizationService(share_store, cache, registry)

        with pytest.raises(TimeoutError):
            await service.authorize('bob', Document(id=42, owner_id='alice'), 'read')
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_owner_decided_even_when_store_is_down(self, cache, registry, mocker):
        share_store = mocker.Mock()
        share_store.find_share = mocker.AsyncMock(side_effect=TimeoutError("share store timeout"))
        service = ResourceAuthorizationService(share_store, cache, registry)

        assert await service.authorize('alice', Document(id=42, owner_id='alice'), 'delete') is True

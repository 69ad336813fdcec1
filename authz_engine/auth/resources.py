"""
Resource Authorization Service

Answers "may this user perform this action on this specific resource?" for
instance-level authorization. The decision walks a short-circuiting chain:

1. Ownership: the owner may perform every action (implicit ADMIN). Checked
   first and never cached.
2. Direct share: an explicit share of the user on the resource decides, even
   when its level is NONE. An explicit share is never overridden by the
   parent's share.
3. Inherited share: the share of the user on the declared parent resource.
4. Otherwise deny.

Steps 2 and 3 are cached together as the effective share level under
`resource_perm:{type}:{id}:{user}`; a missing share (None) is cached as well.
Every child entry computed through a parent is registered with the
invalidation registry as a dependent of that parent once it is stored.

Inheritance is single-level unless a ResourceLoader is injected, in which case
the walk continues through loaded ancestors until the first explicit share,
bounded by a visited set and a maximum depth.
"""

from typing import Any, List, Optional, Tuple

import structlog

from authz_engine.auth.exceptions import (
    AuthzErrorCode,
    require_present,
    require_text,
)
from authz_engine.auth.invalidation import BaseInvalidationRegistry, PendingRegistration
from authz_engine.auth.models import Resource, SharePermission
from authz_engine.auth.stores import ResourceLoader, ResourceShareStore
from authz_engine.cache.keys import (
    normalize_resource_type,
    resource_authorization_key,
    resource_permission_key,
)
from authz_engine.cache.monitoring import authz_decision_reasons_total, record_decision
from authz_engine.cache.provider import CacheProvider

logger = structlog.get_logger(__name__)

DEFAULT_SLIDING_TTL = 2 * 60
DEFAULT_ABSOLUTE_TTL = 10 * 60
DEFAULT_MAX_INHERITANCE_DEPTH = 10


class ResourceAuthorizationService:
    """
    Instance-level authorization through ownership, sharing and inheritance.

    Args:
        share_store: Share lookups
        cache: Shared cache provider
        registry: Invalidation registry shared with CacheInvalidationService
        resource_loader: Optional ancestor loader enabling multi-level inheritance
        sliding_ttl: Sliding expiration in seconds
        absolute_ttl: Absolute expiration in seconds
        max_inheritance_depth: Maximum number of ancestors walked with a loader

    Example:
        service = ResourceAuthorizationService(share_store, cache, registry)
        if await service.authorize(user_id, document, "write"):
            ...
    """

    def __init__(
        self,
        share_store: ResourceShareStore,
        cache: CacheProvider,
        registry: BaseInvalidationRegistry,
        resource_loader: Optional[ResourceLoader] = None,
        sliding_ttl: float = DEFAULT_SLIDING_TTL,
        absolute_ttl: float = DEFAULT_ABSOLUTE_TTL,
        max_inheritance_depth: int = DEFAULT_MAX_INHERITANCE_DEPTH
    ):
        self.share_store = share_store
        self.cache = cache
        self.registry = registry
        self.resource_loader = resource_loader
        self.sliding_ttl = sliding_ttl
        self.absolute_ttl = absolute_ttl
        self.max_inheritance_depth = max_inheritance_depth

    async def authorize(self, user_id: str, resource: Resource, action: str) -> bool:
        """
        Decide whether the user may perform the action on the resource.

        Args:
            user_id: Principal identifier
            resource: Any object exposing the Resource attributes
            action: Action name, matched case-insensitively

        Returns:
            True if allowed, False otherwise (unknown actions are denied)

        Raises:
            InvalidArgumentException: Blank user_id or action, None resource,
                or a resource without type
        """
        self._validate_resource_call(user_id, resource)
        require_text(action, 'action', AuthzErrorCode.ARG_ACTION_MISSING)

        if self._is_owner(user_id, resource):
            logger.debug(
                "Resource owner granted implicit admin",
                user_id=user_id,
                resource_type=normalize_resource_type(resource.resource_type),
                resource_id=str(resource.id),
                action=action
            )
            return self._decide(True, 'owner')

        required = SharePermission.from_action(action)
        if required is None:
            logger.debug("Unknown action denied", user_id=user_id, action=action)
            return self._decide(False, 'unknown_action')

        permission = await self._get_shared_permission(user_id, resource)
        if permission is None:
            return self._decide(False, 'no_share')
        return self._decide(permission.allows_level(required), 'share')

    async def authorize_by_id(
        self,
        user_id: str,
        resource_type: str,
        resource_id: Any,
        action: str
    ) -> bool:
        """
        Decide from the direct share only, without loading the resource.

        Ownership and parent inheritance cannot be evaluated without the
        resource itself, so only the user's own share on the resource counts.
        """
        require_text(user_id, 'user_id', AuthzErrorCode.ARG_PRINCIPAL_MISSING)
        require_text(resource_type, 'resource_type', AuthzErrorCode.ARG_RESOURCE_TYPE_MISSING)
        require_present(resource_id, 'resource_id', AuthzErrorCode.ARG_RESOURCE_ID_MISSING)
        require_text(action, 'action', AuthzErrorCode.ARG_ACTION_MISSING)

        required = SharePermission.from_action(action)
        if required is None:
            logger.debug("Unknown action denied", user_id=user_id, action=action)
            return self._decide(False, 'unknown_action')

        cached = await self.cache.get_or_set(
            resource_authorization_key(resource_type, resource_id, user_id),
            lambda: self._find_share_permission(resource_type, resource_id, user_id),
            self.sliding_ttl,
            self.absolute_ttl,
            generation=self.registry.generation
        )
        permission = _coerce_permission(cached)
        if permission is None:
            return self._decide(False, 'no_share')
        return self._decide(permission.allows_level(required), 'share')

    async def get_effective_permission(
        self,
        user_id: str,
        resource: Resource
    ) -> Optional[SharePermission]:
        """
        Effective share level of the user on the resource.

        Returns:
            ADMIN for the owner, the direct or inherited share level
            otherwise, or None when no share applies
        """
        self._validate_resource_call(user_id, resource)

        if self._is_owner(user_id, resource):
            return SharePermission.ADMIN
        return await self._get_shared_permission(user_id, resource)

    async def get_accessible_resources(
        self,
        user_id: str,
        resource_type: str
    ) -> List[Tuple[Any, SharePermission]]:
        """
        Resources of a type directly shared with the user above NONE.

        Owned resources and resources reachable only through a parent are not
        included. The result is read from the share store on every call.
        """
        require_text(user_id, 'user_id', AuthzErrorCode.ARG_PRINCIPAL_MISSING)
        require_text(resource_type, 'resource_type', AuthzErrorCode.ARG_RESOURCE_TYPE_MISSING)

        shares = await self.share_store.list_shares(user_id, normalize_resource_type(resource_type))
        return [
            (share.resource_id, share.permission)
            for share in shares
            if share.permission > SharePermission.NONE
        ]

    @staticmethod
    def _validate_resource_call(user_id: str, resource: Resource) -> None:
        require_text(user_id, 'user_id', AuthzErrorCode.ARG_PRINCIPAL_MISSING)
        require_present(resource, 'resource', AuthzErrorCode.ARG_RESOURCE_MISSING)
        require_text(
            getattr(resource, 'resource_type', None),
            'resource.resource_type',
            AuthzErrorCode.ARG_RESOURCE_TYPE_MISSING
        )
        require_present(
            getattr(resource, 'id', None),
            'resource.id',
            AuthzErrorCode.ARG_RESOURCE_ID_MISSING
        )

    @staticmethod
    def _is_owner(user_id: str, resource: Resource) -> bool:
        owner_id = getattr(resource, 'owner_id', None)
        return owner_id is not None and owner_id == user_id

    @staticmethod
    def _decide(allowed: bool, reason: str) -> bool:
        authz_decision_reasons_total.labels(reason=reason).inc()
        record_decision('resource', allowed)
        return allowed

    async def _get_shared_permission(
        self,
        user_id: str,
        resource: Resource
    ) -> Optional[SharePermission]:
        cache_key = resource_permission_key(resource.resource_type, resource.id, user_id)
        pending = self.registry.pending(self.absolute_ttl)
        cached = await self.cache.get_or_set(
            cache_key,
            lambda: self._resolve_shared_permission(user_id, resource, cache_key, pending),
            self.sliding_ttl,
            self.absolute_ttl,
            generation=self.registry.generation,
            on_store=pending.apply
        )
        return _coerce_permission(cached)

    async def _find_share_permission(
        self,
        resource_type: str,
        resource_id: Any,
        user_id: str
    ) -> Optional[SharePermission]:
        share = await self.share_store.find_share(
            normalize_resource_type(resource_type), resource_id, user_id
        )
        return share.permission if share is not None else None

    async def _resolve_shared_permission(
        self,
        user_id: str,
        resource: Resource,
        cache_key: str,
        pending: PendingRegistration
    ) -> Optional[SharePermission]:
        direct = await self._find_share_permission(resource.resource_type, resource.id, user_id)
        if direct is not None:
            # Explicit share is final, NONE included
            return direct

        parent_type, parent_id = _parent_of(resource)
        if parent_id is None or not parent_type:
            return None

        if self.resource_loader is None:
            pending.add_resource_dependent(parent_type, parent_id, cache_key)
            return await self._find_share_permission(parent_type, parent_id, user_id)

        return await self._walk_ancestors(
            user_id, resource, parent_type, parent_id, cache_key, pending
        )

    async def _walk_ancestors(
        self,
        user_id: str,
        resource: Resource,
        parent_type: str,
        parent_id: Any,
        cache_key: str,
        pending: PendingRegistration
    ) -> Optional[SharePermission]:
        visited = {(normalize_resource_type(resource.resource_type), str(resource.id))}
        depth = 0

        while parent_id is not None and parent_type:
            node = (normalize_resource_type(parent_type), str(parent_id))
            if node in visited:
                logger.warning(
                    "Resource parent cycle detected, inheritance ends",
                    resource_type=node[0],
                    resource_id=node[1],
                    cache_key=cache_key
                )
                return None

            depth += 1
            if depth > self.max_inheritance_depth:
                logger.error(
                    "Resource inheritance depth exceeded, access denied",
                    max_depth=self.max_inheritance_depth,
                    cache_key=cache_key
                )
                return None

            visited.add(node)
            pending.add_resource_dependent(parent_type, parent_id, cache_key)

            permission = await self._find_share_permission(parent_type, parent_id, user_id)
            if permission is not None:
                return permission

            ancestor = await self.resource_loader.load_resource(node[0], parent_id)
            if ancestor is None:
                logger.debug(
                    "Ancestor resource not found, inheritance ends",
                    resource_type=node[0],
                    resource_id=node[1]
                )
                return None
            parent_type, parent_id = _parent_of(ancestor)

        return None


def _parent_of(resource: Resource) -> Tuple[Optional[str], Optional[Any]]:
    return (
        getattr(resource, 'parent_resource_type', None),
        getattr(resource, 'parent_resource_id', None),
    )


def _coerce_permission(value: Any) -> Optional[SharePermission]:
    if value is None:
        return None
    return SharePermission(value)

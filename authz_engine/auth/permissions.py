"""
Principal Permission Cache

Answers "does this user hold this permission claim?" for global, claim-based
authorization. A user's effective permission set is the union of the resolved
claim sets of all roles assigned to the user, computed once and cached under
`perm:{user_id}` with a sliding and an absolute expiration.

On a miss the user and each assigned role are looked up, every role is
resolved through the RoleHierarchyResolver, and the user is registered in the
invalidation registry together with every role id that contributed, so role
and assignment changes can evict exactly the affected users. The
registration is written only if the computed set is stored.

Absence is never an error on this path: an anonymous principal, a missing
user, a missing role or a missing claim all simply deny.
"""

from typing import FrozenSet, Iterable, Optional, Set

import structlog

from authz_engine.auth.exceptions import (
    AuthzErrorCode,
    InvalidArgumentException,
    require_text,
)
from authz_engine.auth.hierarchy import RoleHierarchyResolver
from authz_engine.auth.invalidation import BaseInvalidationRegistry, PendingRegistration
from authz_engine.auth.models import PermissionClaim
from authz_engine.auth.stores import RoleStore, UserStore
from authz_engine.cache.keys import user_permissions_key
from authz_engine.cache.monitoring import record_decision
from authz_engine.cache.provider import CacheProvider

logger = structlog.get_logger(__name__)

DEFAULT_SLIDING_TTL = 5 * 60
DEFAULT_ABSOLUTE_TTL = 30 * 60


class PrincipalPermissionCache:
    """
    Cached effective global permissions per user.

    Args:
        user_store: User and role-assignment lookups
        role_store: Role lookups
        cache: Shared cache provider
        registry: Invalidation registry shared with CacheInvalidationService
        resolver: Role hierarchy resolver (built over role_store if None)
        sliding_ttl: Sliding expiration in seconds
        absolute_ttl: Absolute expiration in seconds
    """

    def __init__(
        self,
        user_store: UserStore,
        role_store: RoleStore,
        cache: CacheProvider,
        registry: BaseInvalidationRegistry,
        resolver: Optional[RoleHierarchyResolver] = None,
        sliding_ttl: float = DEFAULT_SLIDING_TTL,
        absolute_ttl: float = DEFAULT_ABSOLUTE_TTL
    ):
        self.user_store = user_store
        self.role_store = role_store
        self.cache = cache
        self.registry = registry
        self.resolver = resolver or RoleHierarchyResolver(role_store)
        self.sliding_ttl = sliding_ttl
        self.absolute_ttl = absolute_ttl

    async def get_effective_permissions(self, user_id: Optional[str]) -> FrozenSet[PermissionClaim]:
        """
        Effective permission set of a user, served from cache when possible.

        Args:
            user_id: Principal identifier; None or blank means anonymous

        Returns:
            Frozen set of claims; empty for anonymous or unknown users
        """
        if not user_id or not user_id.strip():
            return frozenset()

        pending = self.registry.pending(self.absolute_ttl)
        return await self.cache.get_or_set(
            user_permissions_key(user_id),
            lambda: self._load_effective_permissions(user_id, pending),
            self.sliding_ttl,
            self.absolute_ttl,
            generation=self.registry.generation,
            on_store=pending.apply
        )

    async def authorize(self, user_id: Optional[str], permission: str) -> bool:
        """
        Check whether the user holds the permission claim.

        Matching is exact and case-sensitive.

        Raises:
            InvalidArgumentException: If permission is None or blank
        """
        require_text(permission, 'permission', AuthzErrorCode.ARG_PERMISSION_MISSING)

        permissions = await self.get_effective_permissions(user_id)
        allowed = permission in permissions
        record_decision('permission', allowed)
        return allowed

    async def authorize_any(self, user_id: Optional[str], permissions: Iterable[str]) -> bool:
        """True if the user holds at least one of the claims."""
        required = self._require_claims(permissions)
        allowed = bool(required & await self.get_effective_permissions(user_id))
        record_decision('permission_any', allowed)
        return allowed

    async def authorize_all(self, user_id: Optional[str], permissions: Iterable[str]) -> bool:
        """True if the user holds every one of the claims."""
        required = self._require_claims(permissions)
        allowed = required <= await self.get_effective_permissions(user_id)
        record_decision('permission_all', allowed)
        return allowed

    @staticmethod
    def _require_claims(permissions: Iterable[str]) -> FrozenSet[str]:
        claims = frozenset(permissions or ())
        if not claims:
            raise InvalidArgumentException(
                message="At least one permission claim is required",
                error_code=AuthzErrorCode.ARG_PERMISSION_MISSING,
                argument_name="permissions"
            )
        for claim in claims:
            require_text(claim, 'permissions', AuthzErrorCode.ARG_PERMISSION_MISSING)
        return claims

    async def _load_effective_permissions(
        self,
        user_id: str,
        pending: PendingRegistration
    ) -> FrozenSet[PermissionClaim]:
        user = await self.user_store.find_user_by_id(user_id)
        if user is None:
            # Unknown users stay unregistered; assignment changes evict by key
            logger.debug("Principal not found, empty permission set", user_id=user_id)
            return frozenset()

        claims: Set[PermissionClaim] = set()
        contributing_roles: Set[str] = set()

        for role_id in await self.user_store.get_roles_for_user(user):
            role = await self.role_store.find_role_by_id(role_id)
            if role is None or role.is_deleted:
                logger.debug(
                    "Assigned role unavailable, skipped",
                    user_id=user_id,
                    role_id=role_id
                )
                # Re-creating the role must still invalidate this user
                contributing_roles.add(role_id)
                continue

            for node in await self.resolver.get_role_hierarchy(role):
                contributing_roles.add(node.id)
                # A deleted or missing parent still matters if it comes back
                if node.parent_role_id:
                    contributing_roles.add(node.parent_role_id)
                claims.update(await self.role_store.get_role_claims(node))

        pending.add_principal(user_id, contributing_roles)

        logger.debug(
            "Effective permissions resolved",
            user_id=user_id,
            permission_count=len(claims),
            role_count=len(contributing_roles)
        )
        return frozenset(claims)

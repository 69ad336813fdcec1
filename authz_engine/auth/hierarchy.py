"""
Role Hierarchy Resolver

Computes the transitive closure of permission claims for a role by walking
its parent-role links. Roles form a single-parent forest edited by
administrators; stored data may still contain an accidental cycle, so the walk
keeps a visited set of role ids and stops when it reaches a role it has already
seen. The cycle-closing edge then simply contributes nothing.

The walk is bounded by the number of distinct roles in the tenant, so no
depth limit is applied. A missing or deleted parent ends inheritance without
raising. Role lookups are delegated to the injected RoleStore; the resolver
itself holds no state and has no side effects.
"""

from typing import FrozenSet, List, Optional, Set

import structlog

from authz_engine.auth.models import PermissionClaim, Role
from authz_engine.auth.stores import RoleStore

logger = structlog.get_logger(__name__)


class RoleHierarchyResolver:
    """
    Resolves effective permission claims through the role hierarchy.

    Example:
        resolver = RoleHierarchyResolver(role_store)
        claims = await resolver.resolve_effective_permissions(editor_role)
        # Editor's claims plus those of Viewer, its parent
    """

    def __init__(self, role_store: RoleStore):
        self.role_store = role_store

    async def resolve_effective_permissions(self, role: Role) -> FrozenSet[PermissionClaim]:
        """
        Union of the role's direct claims and those of every reachable ancestor.

        Args:
            role: Starting role node

        Returns:
            Frozen set of permission claims
        """
        claims: Set[PermissionClaim] = set()
        for node in await self.get_role_hierarchy(role):
            claims.update(await self.role_store.get_role_claims(node))
        return frozenset(claims)

    async def resolve_effective_permissions_by_id(self, role_id: str) -> FrozenSet[PermissionClaim]:
        role = await self.role_store.find_role_by_id(role_id)
        if role is None:
            return frozenset()
        return await self.resolve_effective_permissions(role)

    async def resolve_effective_permissions_by_name(self, name: str) -> FrozenSet[PermissionClaim]:
        role = await self.role_store.find_role_by_name(name)
        if role is None:
            return frozenset()
        return await self.resolve_effective_permissions(role)

    async def get_role_hierarchy(self, role: Role) -> List[Role]:
        """
        Chain of roles from `role` up to its effective root.

        The chain stops at a missing parent, a deleted parent, or a role
        already on the chain.
        """
        chain: List[Role] = []
        visited: Set[str] = set()
        node: Optional[Role] = role

        while node is not None:
            if node.id in visited:
                logger.debug(
                    "Role hierarchy cycle detected",
                    role_id=node.id,
                    chain=[member.id for member in chain]
                )
                break

            visited.add(node.id)
            chain.append(node)

            if not node.parent_role_id:
                break
            node = await self._find_parent(node)

        return chain

    async def _find_parent(self, role: Role) -> Optional[Role]:
        parent = await self.role_store.find_role_by_id(role.parent_role_id)
        if parent is None:
            logger.debug(
                "Parent role not found, inheritance ends",
                role_id=role.id,
                parent_role_id=role.parent_role_id
            )
            return None
        if parent.is_deleted:
            logger.debug(
                "Parent role deleted, inheritance ends",
                role_id=role.id,
                parent_role_id=parent.id
            )
            return None
        return parent

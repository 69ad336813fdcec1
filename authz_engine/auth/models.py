"""
Authorization Data Models

This module provides the data structures evaluated by the authorization engine:

- Role: node of the single-parent role forest carrying permission claims
- User: principal identity with its assigned role identities
- SharePermission: ordered share level with the action vocabulary it allows
- ResourceShare: explicit grant of a share level on one resource to one user
- Resource: structural protocol any shareable entity satisfies

The engine only reads these structures; they are created and mutated by
external administration and sharing commands.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, FrozenSet, Optional, Protocol, runtime_checkable

from authz_engine.auth.exceptions import (
    AuthzErrorCode,
    require_present,
    require_text,
)
from authz_engine.cache.keys import normalize_resource_type

# Opaque "resource:action" claim string, compared by exact equality
PermissionClaim = str


@dataclass(frozen=True)
class Role:
    """
    Role node in the tenant role forest.

    Attributes:
        id: Unique role identifier
        name: Display name, used by name lookups
        parent_role_id: Optional parent role whose claims this role inherits
        permissions: Direct permission claims of this role
        is_deleted: Soft-delete flag; a deleted parent ends inheritance
    """

    id: str
    name: str
    parent_role_id: Optional[str] = None
    permissions: FrozenSet[PermissionClaim] = field(default_factory=frozenset)
    is_deleted: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.permissions, frozenset):
            object.__setattr__(self, 'permissions', frozenset(self.permissions))


@dataclass(frozen=True)
class User:
    """Principal with the identities of its assigned roles."""

    id: str
    role_ids: tuple = ()

    def __post_init__(self) -> None:
        if not isinstance(self.role_ids, tuple):
            object.__setattr__(self, 'role_ids', tuple(self.role_ids))


class SharePermission(IntEnum):
    """
    Ordered share level.

    A higher level allows every action a lower level allows. NONE is an
    explicit "no access" grant and allows nothing.
    """

    NONE = 0
    READ = 1
    COMMENT = 2
    WRITE = 3
    ADMIN = 4

    @classmethod
    def from_action(cls, action: Optional[str]) -> Optional['SharePermission']:
        """
        Map an action name to the minimum level that allows it.

        Matching is case-insensitive. Unknown actions map to None, which no
        share level satisfies.
        """
        if not action:
            return None
        return ACTION_REQUIREMENTS.get(action.strip().lower())

    def allows(self, action: str) -> bool:
        """Check whether this level allows the named action."""
        required = SharePermission.from_action(action)
        if required is None:
            return False
        return self.allows_level(required)

    def allows_level(self, required: 'SharePermission') -> bool:
        if self is SharePermission.NONE:
            return False
        return self >= required


ACTION_REQUIREMENTS: Dict[str, SharePermission] = {
    'read': SharePermission.READ,
    'view': SharePermission.READ,
    'comment': SharePermission.COMMENT,
    'write': SharePermission.WRITE,
    'edit': SharePermission.WRITE,
    'update': SharePermission.WRITE,
    'delete': SharePermission.ADMIN,
    'admin': SharePermission.ADMIN,
    'share': SharePermission.ADMIN,
    'manage': SharePermission.ADMIN,
}


@dataclass(frozen=True)
class ResourceShare:
    """
    Explicit grant of a share level on one resource to one user.

    Unique per grantee/resource. A share never implies ownership.
    """

    resource_type: str
    resource_id: Any
    grantee_user_id: str
    permission: SharePermission
    shared_by_user_id: Optional[str] = None

    def __post_init__(self) -> None:
        require_text(self.resource_type, 'resource_type', AuthzErrorCode.ARG_RESOURCE_TYPE_MISSING)
        require_present(self.resource_id, 'resource_id', AuthzErrorCode.ARG_RESOURCE_ID_MISSING)
        if isinstance(self.resource_id, str):
            require_text(self.resource_id, 'resource_id', AuthzErrorCode.ARG_RESOURCE_ID_MISSING)
        require_text(self.grantee_user_id, 'grantee_user_id', AuthzErrorCode.ARG_PRINCIPAL_MISSING)
        object.__setattr__(self, 'resource_type', normalize_resource_type(self.resource_type))
        object.__setattr__(self, 'permission', SharePermission(self.permission))

    def allows(self, action: str) -> bool:
        return self.permission.allows(action)


@runtime_checkable
class Resource(Protocol):
    """
    Capability exposed by any shareable entity.

    Concrete resource kinds (documents, folders, shared collections, ...)
    satisfy this protocol structurally; they do not inherit from a shared
    base class. The parent fields describe one level of inheritance and are
    None for top-level resources.
    """

    id: Any
    resource_type: str
    owner_id: Optional[str]
    parent_resource_id: Optional[Any]
    parent_resource_type: Optional[str]

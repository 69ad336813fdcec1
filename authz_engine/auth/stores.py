"""
Storage Collaborator Contracts

The authorization engine does not own role, user or share persistence. This
module declares the asynchronous lookup contracts it requires from the
surrounding system, plus thread-safe in-memory implementations used for local
wiring and tests.

Lookups return None (or an empty collection) for missing records. Any
exception a store raises is propagated by the engine unchanged.
"""

from threading import RLock
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Protocol, Tuple

from authz_engine.auth.models import Resource, ResourceShare, Role, User
from authz_engine.cache.keys import normalize_resource_type


class RoleStore(Protocol):
    async def find_role_by_id(self, role_id: str) -> Optional[Role]:
        ...

    async def find_role_by_name(self, name: str) -> Optional[Role]:
        ...

    async def get_role_claims(self, role: Role) -> FrozenSet[str]:
        ...


class UserStore(Protocol):
    async def find_user_by_id(self, user_id: str) -> Optional[User]:
        ...

    async def get_roles_for_user(self, user: User) -> List[str]:
        ...


class ResourceShareStore(Protocol):
    async def find_share(
        self, resource_type: str, resource_id: Any, user_id: str
    ) -> Optional[ResourceShare]:
        ...

    async def list_shares(self, user_id: str, resource_type: str) -> List[ResourceShare]:
        ...


class ResourceLoader(Protocol):
    """Optional collaborator that loads ancestor resources for multi-level inheritance."""

    async def load_resource(self, resource_type: str, resource_id: Any) -> Optional[Resource]:
        ...


class InMemoryRoleStore:
    """Role store backed by a dictionary."""

    def __init__(self, roles: Optional[Iterable[Role]] = None):
        self._lock = RLock()
        self._roles: Dict[str, Role] = {}
        for role in roles or ():
            self.save(role)

    def save(self, role: Role) -> None:
        with self._lock:
            self._roles[role.id] = role

    def remove(self, role_id: str) -> None:
        with self._lock:
            self._roles.pop(role_id, None)

    async def find_role_by_id(self, role_id: str) -> Optional[Role]:
        with self._lock:
            return self._roles.get(role_id)

    async def find_role_by_name(self, name: str) -> Optional[Role]:
        with self._lock:
            for role in self._roles.values():
                if role.name == name:
                    return role
        return None

    async def get_role_claims(self, role: Role) -> FrozenSet[str]:
        return role.permissions


class InMemoryUserStore:
    """User store backed by a dictionary."""

    def __init__(self, users: Optional[Iterable[User]] = None):
        self._lock = RLock()
        self._users: Dict[str, User] = {}
        for user in users or ():
            self.save(user)

    def save(self, user: User) -> None:
        with self._lock:
            self._users[user.id] = user

    async def find_user_by_id(self, user_id: str) -> Optional[User]:
        with self._lock:
            return self._users.get(user_id)

    async def get_roles_for_user(self, user: User) -> List[str]:
        return list(user.role_ids)


class InMemoryResourceShareStore:
    """Share store keyed by (resource type, resource id, grantee)."""

    def __init__(self, shares: Optional[Iterable[ResourceShare]] = None):
        self._lock = RLock()
        self._shares: Dict[Tuple[str, str, str], ResourceShare] = {}
        for share in shares or ():
            self.save(share)

    @staticmethod
    def _key(resource_type: str, resource_id: Any, user_id: str) -> Tuple[str, str, str]:
        return (normalize_resource_type(resource_type), str(resource_id), user_id)

    def save(self, share: ResourceShare) -> None:
        # Unique per grantee/resource: a new grant replaces the previous one
        with self._lock:
            self._shares[self._key(share.resource_type, share.resource_id, share.grantee_user_id)] = share

    def revoke(self, resource_type: str, resource_id: Any, user_id: str) -> bool:
        with self._lock:
            return self._shares.pop(self._key(resource_type, resource_id, user_id), None) is not None

    async def find_share(
        self, resource_type: str, resource_id: Any, user_id: str
    ) -> Optional[ResourceShare]:
        with self._lock:
            return self._shares.get(self._key(resource_type, resource_id, user_id))

    async def list_shares(self, user_id: str, resource_type: str) -> List[ResourceShare]:
        resource_type = normalize_resource_type(resource_type)
        with self._lock:
            return [
                share for share in self._shares.values()
                if share.grantee_user_id == user_id and share.resource_type == resource_type
            ]


class InMemoryResourceLoader:
    """Resource loader backed by a dictionary of resources keyed by type and id."""

    def __init__(self, resources: Optional[Iterable[Resource]] = None):
        self._resources: Dict[Tuple[str, str], Resource] = {}
        for resource in resources or ():
            self.add(resource)

    def add(self, resource: Resource) -> None:
        self._resources[(normalize_resource_type(resource.resource_type), str(resource.id))] = resource

    async def load_resource(self, resource_type: str, resource_id: Any) -> Optional[Resource]:
        return self._resources.get((normalize_resource_type(resource_type), str(resource_id)))

"""
Structured cache key patterns for authorization decisions.

Both decision paths key their entries with composite strings so bulk
invalidation can work by prefix. The two paths never share entries.

Identifier segments are percent-encoded, so an id containing the `:`
separator can neither collide with another key nor fall under another
resource's prefix.
"""

from typing import Any
from urllib.parse import quote


def normalize_resource_type(resource_type: str) -> str:
    """Resource types are keyed and compared in lower case."""
    return resource_type.strip().lower()


def key_segment(value: Any) -> str:
    """Encode one identifier as a key segment free of `:`."""
    return quote(str(value), safe='')


class CacheKeyPatterns:
    """
    Cache key naming conventions.

    The principal path owns `perm:`; the resource path owns
    `resource_perm:` (effective level, ownership excluded) and
    `resource_auth:` (by-id share lookups).
    """

    USER_PERMISSIONS = "perm:{user_id}"
    RESOURCE_PERMISSION = "resource_perm:{resource_type}:{resource_id}:{user_id}"
    RESOURCE_AUTHORIZATION = "resource_auth:{resource_type}:{resource_id}:{user_id}"

    USER_PERMISSIONS_PREFIX = "perm:"
    RESOURCE_PERMISSION_PREFIX = "resource_perm:"
    RESOURCE_AUTHORIZATION_PREFIX = "resource_auth:"

    ALL_PREFIXES = (
        USER_PERMISSIONS_PREFIX,
        RESOURCE_PERMISSION_PREFIX,
        RESOURCE_AUTHORIZATION_PREFIX,
    )


def user_permissions_key(user_id: str) -> str:
    return CacheKeyPatterns.USER_PERMISSIONS.format(user_id=key_segment(user_id))


def resource_permission_key(resource_type: str, resource_id: Any, user_id: str) -> str:
    return CacheKeyPatterns.RESOURCE_PERMISSION.format(
        resource_type=key_segment(normalize_resource_type(resource_type)),
        resource_id=key_segment(resource_id),
        user_id=key_segment(user_id)
    )


def resource_authorization_key(resource_type: str, resource_id: Any, user_id: str) -> str:
    return CacheKeyPatterns.RESOURCE_AUTHORIZATION.format(
        resource_type=key_segment(normalize_resource_type(resource_type)),
        resource_id=key_segment(resource_id),
        user_id=key_segment(user_id)
    )


def resource_key_prefixes(resource_type: str, resource_id: Any) -> tuple:
    """
    Prefixes covering every user's entries for one resource on both
    resource-path key families.
    """
    resource = f"{key_segment(normalize_resource_type(resource_type))}:{key_segment(resource_id)}:"
    return (
        f"{CacheKeyPatterns.RESOURCE_PERMISSION_PREFIX}{resource}",
        f"{CacheKeyPatterns.RESOURCE_AUTHORIZATION_PREFIX}{resource}",
    )

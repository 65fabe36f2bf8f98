"""
Checked permission set.

Raw permission arrays loaded from storage (JSON columns, cache entries,
request bodies) are parsed into ``PermissionSet`` at the boundary. Code past
the boundary never handles unchecked strings.

Wildcard grants:
- ``*`` satisfies every permission
- ``ns:*`` or ``ns.*`` satisfies every permission in namespace ``ns``
  regardless of the separator the permission itself uses
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator

from authz.auth.permission_catalog import WILDCARD, is_known_permission


PERMISSION_PATTERN = re.compile(r"^[a-z0-9_]+(?:[.:][a-z0-9_]+)+$")
NAMESPACE_WILDCARD_PATTERN = re.compile(r"^[a-z0-9_]+[.:]\*$")


def permission_namespace(permission: str) -> str:
    """Namespace of a permission: everything before the first separator."""
    return re.split(r"[.:]", permission, maxsplit=1)[0]


def is_wildcard(permission: str) -> bool:
    return permission == WILDCARD or bool(NAMESPACE_WILDCARD_PATTERN.match(permission))


def validate_permission_format(permission: Any) -> str:
    """
    Validate a single permission identifier.

    Args:
        permission: Raw value

    Returns:
        The permission string

    Raises:
        ValueError: If the value is not a well-formed permission or wildcard
    """
    if not isinstance(permission, str):
        raise ValueError(f"Permission must be a string, got {type(permission).__name__}")
    if permission == WILDCARD or NAMESPACE_WILDCARD_PATTERN.match(permission):
        return permission
    if not PERMISSION_PATTERN.match(permission):
        raise ValueError(f"Malformed permission identifier: {permission!r}")
    return permission


def is_grantable(permission: str) -> bool:
    """True for catalog permissions and wildcard grants."""
    return is_wildcard(permission) or is_known_permission(permission)


@dataclass(frozen=True)
class PermissionSet:
    """Immutable set of validated permission identifiers."""

    permissions: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def of(cls, permissions: Iterable[str]) -> "PermissionSet":
        return cls(frozenset(validate_permission_format(p) for p in permissions))

    @classmethod
    def everything(cls) -> "PermissionSet":
        return cls(frozenset({WILDCARD}))

    def __contains__(self, permission: object) -> bool:
        return permission in self.permissions

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self.permissions))

    def __len__(self) -> int:
        return len(self.permissions)

    def __or__(self, other: "PermissionSet") -> "PermissionSet":
        return PermissionSet(self.permissions | other.permissions)

    @property
    def is_everything(self) -> bool:
        return WILDCARD in self.permissions

    def has(self, permission: str) -> bool:
        """Exact membership, or a global / namespace wildcard grant."""
        if permission in self.permissions or WILDCARD in self.permissions:
            return True
        namespace = permission_namespace(permission)
        return (
            f"{namespace}:*" in self.permissions
            or f"{namespace}.*" in self.permissions
        )

    def has_any(self, permissions: Iterable[str]) -> bool:
        return any(self.has(p) for p in permissions)

    def has_all(self, permissions: Iterable[str]) -> bool:
        return all(self.has(p) for p in permissions)

    def missing(self, permissions: Iterable[str]) -> list[str]:
        """Permissions from ``permissions`` not satisfied by this set."""
        return [p for p in permissions if not self.has(p)]

    def to_list(self) -> list[str]:
        return sorted(self.permissions)


def parse_permissions(raw: Any) -> PermissionSet:
    """
    Parse a stored permission array into a PermissionSet.

    Accepts a list/tuple/set of strings, a JSON-encoded array, or None
    (empty set).

    Raises:
        ValueError: If the payload is not an array of well-formed permissions
    """
    if raw is None:
        return PermissionSet()
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Permission array is malformed JSON: {exc}") from exc
    if not isinstance(raw, (list, tuple, set, frozenset)):
        raise ValueError(f"Permission array must be a list, got {type(raw).__name__}")
    return PermissionSet.of(raw)

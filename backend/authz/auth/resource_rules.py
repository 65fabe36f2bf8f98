"""
Resource access rules.

RESOURCE_PERMISSIONS maps (resource_type, action) to the permission needed
when the actor owns the resource and when they do not. Pairs missing from
the table are denied.

RELATIONSHIP_RULES grant access through a relationship (brand team
membership, IP co-ownership) independently of the permission table. They
apply only when the resource data provider reports a relationship.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Final

from authz.auth.permission_catalog import ALL_PERMISSIONS
from authz.auth.roles import UserRole


class ResourceAction(str, Enum):
    VIEW = "view"
    EDIT = "edit"
    DELETE = "delete"
    CREATE = "create"
    APPROVE = "approve"
    PUBLISH = "publish"


@dataclass(frozen=True)
class ResourcePermission:
    own: str
    other: str

    def for_owner(self, is_owner: bool) -> str:
        return self.own if is_owner else self.other


def _scoped(resource: str, verb: str) -> ResourcePermission:
    return ResourcePermission(own=f"{resource}.{verb}_own", other=f"{resource}.{verb}_all")


def _unscoped(permission: str) -> ResourcePermission:
    return ResourcePermission(own=permission, other=permission)


RESOURCE_PERMISSIONS: Final[dict[str, dict[ResourceAction, ResourcePermission]]] = {
    "ip_asset": {
        ResourceAction.VIEW: _scoped("ip_assets", "view"),
        ResourceAction.EDIT: _scoped("ip_assets", "edit"),
        ResourceAction.DELETE: _scoped("ip_assets", "delete"),
        ResourceAction.CREATE: _unscoped("ip_assets.create"),
        ResourceAction.APPROVE: _unscoped("ip_assets.approve"),
        ResourceAction.PUBLISH: _unscoped("ip_assets.publish"),
    },
    "project": {
        ResourceAction.VIEW: _scoped("projects", "view"),
        ResourceAction.EDIT: _scoped("projects", "edit"),
        ResourceAction.DELETE: _scoped("projects", "delete"),
        ResourceAction.CREATE: _unscoped("projects.create"),
    },
    "creator": {
        ResourceAction.VIEW: _scoped("creators", "view"),
        ResourceAction.EDIT: _scoped("creators", "edit"),
    },
    "brand": {
        ResourceAction.VIEW: _scoped("brands", "view"),
        ResourceAction.EDIT: _scoped("brands", "edit"),
    },
    "license": {
        ResourceAction.VIEW: _scoped("licenses", "view"),
        ResourceAction.EDIT: _scoped("licenses", "edit"),
        ResourceAction.CREATE: _unscoped("licenses.create"),
        ResourceAction.APPROVE: _unscoped("licenses.approve"),
    },
}

RESOURCE_TYPES: Final[frozenset[str]] = frozenset(RESOURCE_PERMISSIONS)


@dataclass(frozen=True)
class RelationshipRule:
    resource_types: frozenset[str]
    role: UserRole
    actions: frozenset[ResourceAction]


RELATIONSHIP_RULES: Final[tuple[RelationshipRule, ...]] = (
    # Brand team members on the brand's projects and licenses
    RelationshipRule(
        resource_types=frozenset({"project", "license"}),
        role=UserRole.BRAND,
        actions=frozenset({ResourceAction.VIEW, ResourceAction.EDIT}),
    ),
    # IP co-owners
    RelationshipRule(
        resource_types=frozenset({"ip_asset"}),
        role=UserRole.CREATOR,
        actions=frozenset({ResourceAction.VIEW}),
    ),
)


def get_resource_rule(
    resource_type: str, action: ResourceAction
) -> ResourcePermission | None:
    """Permission pair for the resource type and action, or None when unmapped."""
    return RESOURCE_PERMISSIONS.get(resource_type, {}).get(action)


def relationship_grants_access(
    resource_type: str, action: ResourceAction, role: UserRole
) -> bool:
    return any(
        resource_type in rule.resource_types and role == rule.role and action in rule.actions
        for rule in RELATIONSHIP_RULES
    )


def _validate_resource_rules() -> None:
    errors = []
    for resource_type, actions in RESOURCE_PERMISSIONS.items():
        for action, mapping in actions.items():
            for permission in (mapping.own, mapping.other):
                if permission not in ALL_PERMISSIONS:
                    errors.append(
                        f"{resource_type}/{action.value} maps to unknown permission '{permission}'"
                    )
    if errors:
        raise RuntimeError(
            "Resource rule validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        )


_validate_resource_rules()

"""
Tests for the permission catalog, hierarchy expansion and PermissionSet.
"""
import pytest

from authz.auth.hierarchy import expand_permission, expand_permissions, find_cycles, implied_by
from authz.auth.permission_catalog import (
    ALL_PERMISSIONS,
    DEPARTMENT_PERMISSIONS,
    PERMISSION_HIERARCHY,
    ROLE_PERMISSIONS,
    get_department_permissions,
    get_permission_description,
    get_permissions_by_namespace,
    get_role_permissions,
    is_known_permission,
)
from authz.auth.permission_set import (
    PermissionSet,
    is_grantable,
    parse_permissions,
    permission_namespace,
    validate_permission_format,
)
from authz.auth.roles import Department, UserRole


class TestCatalog:
    """The shipped catalog is internally consistent."""

    def test_every_role_has_a_base_set(self):
        assert set(ROLE_PERMISSIONS) == set(UserRole)
        assert get_role_permissions(UserRole.VIEWER) is ROLE_PERMISSIONS[UserRole.VIEWER]

    def test_every_department_has_a_baseline(self):
        assert set(DEPARTMENT_PERMISSIONS) == set(Department)

    def test_hierarchy_references_known_permissions(self):
        for parent, children in PERMISSION_HIERARCHY.items():
            assert parent in ALL_PERMISSIONS
            assert children <= ALL_PERMISSIONS

    def test_super_admin_department_covers_the_catalog(self):
        assert DEPARTMENT_PERMISSIONS[Department.SUPER_ADMIN] == ALL_PERMISSIONS

    def test_namespace_lookup_accepts_both_separators(self):
        users = get_permissions_by_namespace("users")
        assert "users.view_all" in users
        assert "users:delete" in users
        assert "usersx.view" not in users

    def test_descriptions(self):
        assert get_permission_description("content:approve") == "Approve content for publication"
        assert get_permission_description("content:teleport") is None
        assert "content:approve" in get_department_permissions(Department.CONTENT_MANAGER)

    def test_unknown_permission_is_not_known(self):
        assert is_known_permission("users.view_all")
        assert not is_known_permission("users.fly")


class TestHierarchy:
    """Closure computation over the implication graph."""

    def test_expansion_includes_transitive_implications(self):
        expanded = expand_permission("users.delete")
        assert {"users.delete", "users.edit", "users.view_all", "users.view_own"} <= expanded

    def test_expansion_is_idempotent(self):
        once = expand_permissions({"finance:initiate_payouts", "content:delete"})
        assert expand_permissions(once) == once

    def test_expansion_keeps_permissions_without_children(self):
        assert expand_permissions({"audit.export"}) == frozenset({"audit.export"})

    def test_expansion_terminates_on_cycles(self):
        graph = {"a.x": ["a.y"], "a.y": ["a.z"], "a.z": ["a.x"]}
        assert expand_permission("a.x", graph) == frozenset({"a.x", "a.y", "a.z"})

    def test_find_cycles_reports_cycle(self):
        graph = {"a.x": ["a.y"], "a.y": ["a.x"]}
        cycles = find_cycles(graph)
        assert cycles
        assert cycles[0][0] == cycles[0][-1]

    def test_shipped_hierarchy_is_acyclic(self):
        assert find_cycles() == []

    def test_implied_by_finds_ancestors(self):
        parents = implied_by("content:read")
        assert {"content:edit", "content:delete", "content:approve"} <= parents
        assert "content:read" not in parents


class TestPermissionSet:
    """Membership and wildcard semantics."""

    def test_exact_membership(self):
        permissions = PermissionSet.of(["users.view_own"])
        assert permissions.has("users.view_own")
        assert not permissions.has("users.view_all")

    def test_global_wildcard_satisfies_everything(self):
        permissions = PermissionSet.everything()
        assert permissions.is_everything
        assert permissions.has("finance:initiate_payouts")
        assert permissions.has_all(["users.delete", "admin:roles"])

    def test_namespace_wildcard_ignores_separator(self):
        permissions = PermissionSet.of(["users:*"])
        assert permissions.has("users.view_all")
        assert permissions.has("users:delete")
        assert not permissions.has("creators.view_all")

    def test_missing_lists_unsatisfied(self):
        permissions = PermissionSet.of(["content:read"])
        assert permissions.missing(["content:read", "content:edit"]) == ["content:edit"]

    def test_has_any_and_has_all(self):
        permissions = PermissionSet.of(["content:read", "content:edit"])
        assert permissions.has_any(["content:delete", "content:edit"])
        assert not permissions.has_all(["content:delete", "content:edit"])

    def test_union(self):
        merged = PermissionSet.of(["content:read"]) | PermissionSet.of(["audit.export"])
        assert merged.to_list() == ["audit.export", "content:read"]

    @pytest.mark.parametrize("value", ["Users.View", "users", "users..view", "users.view all", 5])
    def test_malformed_identifiers_rejected(self, value):
        with pytest.raises(ValueError):
            validate_permission_format(value)

    def test_namespace_of_permission(self):
        assert permission_namespace("finance:view_all") == "finance"
        assert permission_namespace("users.view_all") == "users"

    def test_grantable_covers_catalog_and_wildcards(self):
        assert is_grantable("content:read")
        assert is_grantable("content:*")
        assert not is_grantable("content:teleport")


class TestParsePermissions:
    """Boundary parsing of stored permission arrays."""

    def test_none_is_empty(self):
        assert len(parse_permissions(None)) == 0

    def test_json_string_is_decoded(self):
        assert parse_permissions('["content:read"]').has("content:read")

    def test_malformed_json_rejected(self):
        with pytest.raises(ValueError, match="malformed JSON"):
            parse_permissions('["content:read"')

    def test_non_array_rejected(self):
        with pytest.raises(ValueError, match="must be a list"):
            parse_permissions({"content:read": True})

    def test_bad_entry_rejected(self):
        with pytest.raises(ValueError):
            parse_permissions(["content:read", 42])

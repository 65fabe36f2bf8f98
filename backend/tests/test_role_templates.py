"""
Tests for role templates and department baselines.
"""
import pytest

from authz.auth.permission_catalog import ALL_PERMISSIONS, DEPARTMENT_PERMISSIONS
from authz.auth.role_templates import (
    apply_role_template,
    compare_role_templates,
    find_role_template,
    get_restricted_permissions,
    get_role_description,
    get_role_template,
    has_role_template,
    is_permission_allowed,
    is_permission_restricted,
    list_all_role_templates,
    template_permissions,
)
from authz.auth.roles import Department, Seniority


class TestRoleTemplateLookup:
    def test_super_admin_ignores_seniority(self):
        template = get_role_template(Department.SUPER_ADMIN, Seniority.JUNIOR)
        assert template.permissions == ALL_PERMISSIONS
        assert template.seniority is None

    def test_seniority_required_for_scoped_departments(self):
        with pytest.raises(ValueError, match="Seniority level is required"):
            get_role_template(Department.CONTENT_MANAGER)

    def test_department_without_template(self):
        assert not has_role_template(Department.OPERATIONS)
        assert find_role_template(Department.OPERATIONS) is None
        with pytest.raises(ValueError, match="No role templates"):
            get_role_template(Department.OPERATIONS)

    def test_five_templates_ship(self):
        assert len(list_all_role_templates()) == 5

    def test_templates_only_reference_catalog_permissions(self):
        for template in list_all_role_templates():
            assert template.permissions <= ALL_PERMISSIONS


class TestTemplatePermissions:
    def test_junior_content_manager_cannot_approve(self):
        permissions = template_permissions(Department.CONTENT_MANAGER, Seniority.JUNIOR)
        assert "content:edit" in permissions
        assert "content:approve" not in permissions

    def test_senior_finance_is_a_superset_of_junior(self):
        junior = template_permissions(Department.FINANCE_LICENSING, Seniority.JUNIOR)
        senior = template_permissions(Department.FINANCE_LICENSING, Seniority.SENIOR)
        assert junior < senior

    def test_untemplated_department_falls_back_to_baseline(self):
        assert (
            template_permissions(Department.CUSTOMER_SERVICE, None)
            == DEPARTMENT_PERMISSIONS[Department.CUSTOMER_SERVICE]
        )

    def test_restricted_permission_lookup(self):
        restricted = is_permission_restricted(
            Department.FINANCE_LICENSING, Seniority.JUNIOR, "licensing:terminate"
        )
        assert restricted is not None
        assert "Super Admin" in restricted.reason
        assert get_restricted_permissions(Department.CONTENT_MANAGER, Seniority.SENIOR) == []

    def test_compare_templates(self):
        comparison = compare_role_templates(
            Department.CONTENT_MANAGER, Seniority.JUNIOR,
            Department.CONTENT_MANAGER, Seniority.SENIOR,
        )
        assert "content:approve" in comparison.added
        assert comparison.removed == []
        assert "content:read" in comparison.unchanged

    def test_apply_template_is_sorted(self):
        applied = apply_role_template(Department.CONTENT_MANAGER, Seniority.JUNIOR)
        assert applied == ["content:create", "content:edit", "content:read"]

    def test_permission_allowed_by_template(self):
        assert is_permission_allowed(Department.CONTENT_MANAGER, Seniority.SENIOR, "content:approve")
        assert not is_permission_allowed(Department.CONTENT_MANAGER, Seniority.JUNIOR, "content:approve")

    def test_role_description(self):
        assert get_role_description(Department.CONTENT_MANAGER, Seniority.JUNIOR).startswith(
            "Entry-level content management role"
        )

"""
Role templates - pre-configured permission sets per (department, seniority).

Templates are the baseline grant for an admin role assignment. Departments
without a template fall back to their DEPARTMENT_PERMISSIONS baseline.
SUPER_ADMIN has a single template with no seniority; CONTENT_MANAGER and
FINANCE_LICENSING have JUNIOR and SENIOR variants.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Final

from authz.auth.permission_catalog import ALL_PERMISSIONS, get_department_permissions
from authz.auth.roles import Department, Seniority


@dataclass(frozen=True)
class RestrictedPermission:
    permission: str
    reason: str


@dataclass(frozen=True)
class RoleTemplateMetadata:
    approval_threshold: str | None = None
    special_conditions: tuple[str, ...] = ()
    recommended_for: str | None = None


@dataclass(frozen=True)
class RoleTemplate:
    name: str
    description: str
    department: Department
    seniority: Seniority | None
    permissions: frozenset[str]
    requires_approval: bool
    restricted_permissions: tuple[RestrictedPermission, ...] = ()
    metadata: RoleTemplateMetadata = field(default_factory=RoleTemplateMetadata)


@dataclass(frozen=True)
class TemplateComparison:
    added: list[str]
    removed: list[str]
    unchanged: list[str]


# Departments whose templates are keyed by seniority
SENIORITY_SCOPED_DEPARTMENTS: Final[frozenset[Department]] = frozenset({
    Department.CONTENT_MANAGER,
    Department.FINANCE_LICENSING,
})


# ============================================================================
# TEMPLATES
# ============================================================================

SUPER_ADMIN_TEMPLATE: Final[RoleTemplate] = RoleTemplate(
    name="Super Administrator",
    description=(
        "Full unrestricted access to all platform features, settings, and administrative "
        "functions. Can manage admin roles and permissions."
    ),
    department=Department.SUPER_ADMIN,
    seniority=None,
    permissions=ALL_PERMISSIONS,
    requires_approval=False,
    metadata=RoleTemplateMetadata(
        special_conditions=(
            "Can assign and revoke admin roles",
            "Can impersonate any user for troubleshooting",
            "Full access to all financial operations without approval",
            "Can modify system-critical settings",
        ),
        recommended_for="Platform owners, CTOs, and senior technical leadership only",
    ),
)

_SENIOR_CONTENT_REVIEW = "Requires Senior Content Manager approval"

CONTENT_MANAGER_JUNIOR_TEMPLATE: Final[RoleTemplate] = RoleTemplate(
    name="Junior Content Manager",
    description=(
        "Entry-level content management role. Can create and edit content but requires "
        "senior approval for publication and cannot delete content."
    ),
    department=Department.CONTENT_MANAGER,
    seniority=Seniority.JUNIOR,
    permissions=frozenset({"content:read", "content:create", "content:edit"}),
    requires_approval=True,
    restricted_permissions=(
        RestrictedPermission("content:approve", _SENIOR_CONTENT_REVIEW),
        RestrictedPermission("content:delete", _SENIOR_CONTENT_REVIEW),
        RestrictedPermission("content:moderate", _SENIOR_CONTENT_REVIEW),
    ),
    metadata=RoleTemplateMetadata(
        special_conditions=(
            "Must submit content for senior review before publication",
            "Cannot delete any content, even own drafts",
            "Cannot moderate user-generated content",
        ),
        recommended_for="New content team members, content assistants, junior writers",
    ),
)

CONTENT_MANAGER_SENIOR_TEMPLATE: Final[RoleTemplate] = RoleTemplate(
    name="Senior Content Manager",
    description=(
        "Full content management authority. Can approve, moderate, and delete content. "
        "Oversees junior content managers."
    ),
    department=Department.CONTENT_MANAGER,
    seniority=Seniority.SENIOR,
    permissions=frozenset({
        "content:read",
        "content:create",
        "content:edit",
        "content:approve",
        "content:moderate",
        "content:delete",
    }),
    requires_approval=False,
    metadata=RoleTemplateMetadata(
        special_conditions=(
            "Can approve content created by junior staff",
            "Full moderation authority over user submissions",
            "Can delete any content including published materials",
        ),
        recommended_for="Experienced content managers, editorial leads, content directors",
    ),
)

_FINANCE_LICENSING_JUNIOR_PERMISSIONS: Final[frozenset[str]] = frozenset({
    "finance:view_reports",
    "finance:view_payouts",
    "finance:process_royalties",
    "licensing:view",
    "licensing:create",
    "licensing:edit",
})

FINANCE_LICENSING_JUNIOR_TEMPLATE: Final[RoleTemplate] = RoleTemplate(
    name="Junior Finance & Licensing Manager",
    description=(
        "Entry-level financial and licensing operations. Can view reports, process "
        "royalties, and manage license proposals but requires senior approval for "
        "high-stakes actions."
    ),
    department=Department.FINANCE_LICENSING,
    seniority=Seniority.JUNIOR,
    permissions=_FINANCE_LICENSING_JUNIOR_PERMISSIONS,
    requires_approval=True,
    restricted_permissions=(
        RestrictedPermission(
            "finance:initiate_payouts",
            "Requires Senior Finance Manager or Super Admin approval - high financial risk",
        ),
        RestrictedPermission(
            "finance:approve_large_payouts",
            "Requires Senior Finance Manager approval - exceeds junior authority threshold",
        ),
        RestrictedPermission(
            "finance:export_data",
            "Requires Senior Finance Manager approval - sensitive data export",
        ),
        RestrictedPermission(
            "licensing:approve",
            "Requires Senior Licensing Manager approval - contractual commitment",
        ),
        RestrictedPermission(
            "licensing:modify_ownership",
            "Requires Super Admin approval - critical IP ownership change",
        ),
        RestrictedPermission(
            "licensing:terminate",
            "Requires Super Admin approval - terminates legal agreements",
        ),
        RestrictedPermission(
            "licensing:renew",
            "Requires Senior Licensing Manager approval - contractual extension",
        ),
    ),
    metadata=RoleTemplateMetadata(
        approval_threshold="Payouts over $10,000 require senior approval",
        special_conditions=(
            "Can process standard royalty calculations",
            "Can create license proposals for review",
            "Cannot approve or terminate agreements",
            "Cannot export financial data",
        ),
        recommended_for="Junior accountants, licensing coordinators, financial analysts",
    ),
)

FINANCE_LICENSING_SENIOR_TEMPLATE: Final[RoleTemplate] = RoleTemplate(
    name="Senior Finance & Licensing Manager",
    description=(
        "Advanced financial and licensing authority. Can approve large payouts, export "
        "data, and approve license agreements. Some high-risk operations still require "
        "Super Admin approval."
    ),
    department=Department.FINANCE_LICENSING,
    seniority=Seniority.SENIOR,
    permissions=_FINANCE_LICENSING_JUNIOR_PERMISSIONS | frozenset({
        "finance:approve_large_payouts",
        "finance:export_data",
        "licensing:approve",
        "licensing:renew",
    }),
    requires_approval=False,
    restricted_permissions=(
        RestrictedPermission(
            "finance:initiate_payouts",
            "Requires Super Admin approval - final authorization for fund transfers",
        ),
        RestrictedPermission(
            "licensing:modify_ownership",
            "Requires Super Admin approval - changes IP ownership splits",
        ),
        RestrictedPermission(
            "licensing:terminate",
            "Requires Super Admin approval - terminates legal agreements",
        ),
    ),
    metadata=RoleTemplateMetadata(
        approval_threshold=(
            "Can approve payouts up to $100,000; larger amounts require Super Admin"
        ),
        special_conditions=(
            "Can approve license agreements up to standard threshold",
            "Can export financial reports and data for compliance",
            "Can renew existing license agreements",
            "Cannot initiate actual payout transfers (Super Admin only)",
            "Cannot modify IP ownership structures (Super Admin only)",
            "Cannot terminate active agreements (Super Admin only)",
        ),
        recommended_for="Senior accountants, licensing managers, finance directors",
    ),
)

ROLE_TEMPLATES: Final[dict[tuple[Department, Seniority | None], RoleTemplate]] = {
    (Department.SUPER_ADMIN, None): SUPER_ADMIN_TEMPLATE,
    (Department.CONTENT_MANAGER, Seniority.JUNIOR): CONTENT_MANAGER_JUNIOR_TEMPLATE,
    (Department.CONTENT_MANAGER, Seniority.SENIOR): CONTENT_MANAGER_SENIOR_TEMPLATE,
    (Department.FINANCE_LICENSING, Seniority.JUNIOR): FINANCE_LICENSING_JUNIOR_TEMPLATE,
    (Department.FINANCE_LICENSING, Seniority.SENIOR): FINANCE_LICENSING_SENIOR_TEMPLATE,
}


# ============================================================================
# LOOKUPS
# ============================================================================

def has_role_template(department: Department) -> bool:
    return department == Department.SUPER_ADMIN or department in SENIORITY_SCOPED_DEPARTMENTS


def get_role_template(department: Department, seniority: Seniority | None = None) -> RoleTemplate:
    """
    Get the role template for a department and seniority.

    SUPER_ADMIN ignores seniority.

    Raises:
        ValueError: If seniority is missing for a seniority-scoped department,
            or the department has no templates
    """
    if department == Department.SUPER_ADMIN:
        return SUPER_ADMIN_TEMPLATE

    if department in SENIORITY_SCOPED_DEPARTMENTS:
        if seniority is None:
            raise ValueError(
                f"Seniority level is required for {department.value} role templates"
            )
        return ROLE_TEMPLATES[(department, seniority)]

    raise ValueError(f"No role templates defined for department: {department.value}")


def find_role_template(
    department: Department, seniority: Seniority | None = None
) -> RoleTemplate | None:
    """Like get_role_template but returns None instead of raising."""
    try:
        return get_role_template(department, seniority)
    except ValueError:
        return None


def template_permissions(department: Department, seniority: Seniority | None) -> frozenset[str]:
    """
    Baseline grant of an assignment: the template when one applies,
    otherwise the department baseline.
    """
    template = find_role_template(department, seniority)
    if template is not None:
        return template.permissions
    return get_department_permissions(department)


def apply_role_template(department: Department, seniority: Seniority | None = None) -> list[str]:
    return sorted(get_role_template(department, seniority).permissions)


def get_restricted_permissions(
    department: Department, seniority: Seniority | None = None
) -> list[RestrictedPermission]:
    return list(get_role_template(department, seniority).restricted_permissions)


def is_permission_allowed(
    department: Department, seniority: Seniority | None, permission: str
) -> bool:
    return permission in get_role_template(department, seniority).permissions


def is_permission_restricted(
    department: Department, seniority: Seniority | None, permission: str
) -> RestrictedPermission | None:
    for restricted in get_role_template(department, seniority).restricted_permissions:
        if restricted.permission == permission:
            return restricted
    return None


def get_role_description(department: Department, seniority: Seniority | None = None) -> str:
    return get_role_template(department, seniority).description


def list_all_role_templates() -> list[RoleTemplate]:
    return list(ROLE_TEMPLATES.values())


def compare_role_templates(
    from_department: Department,
    from_seniority: Seniority | None,
    to_department: Department,
    to_seniority: Seniority | None,
) -> TemplateComparison:
    """Permission differences when moving from one template to another."""
    source = get_role_template(from_department, from_seniority).permissions
    target = get_role_template(to_department, to_seniority).permissions
    return TemplateComparison(
        added=sorted(target - source),
        removed=sorted(source - target),
        unchanged=sorted(source & target),
    )


def _validate_templates() -> None:
    errors = []
    for (department, seniority), template in ROLE_TEMPLATES.items():
        label = f"{department.value}/{seniority.value if seniority else '-'}"
        unknown = template.permissions - ALL_PERMISSIONS
        if unknown:
            errors.append(f"Template {label} grants unknown permissions: {sorted(unknown)}")
        overlap = template.permissions & {r.permission for r in template.restricted_permissions}
        if overlap:
            errors.append(f"Template {label} both grants and restricts: {sorted(overlap)}")
    if errors:
        raise RuntimeError(
            "Role template validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        )


_validate_templates()

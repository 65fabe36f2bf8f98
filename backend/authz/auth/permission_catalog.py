"""
Permission catalog - static registry of every permission the platform knows.

Contents:
- PERMISSION_DESCRIPTIONS: every permission identifier with its UI description
- PERMISSION_HIERARCHY: permission -> directly implied permissions (a DAG)
- ROLE_PERMISSIONS: base permission set for each coarse UserRole
- DEPARTMENT_PERMISSIONS: baseline set for each admin department, used when
  a department has no seniority template (see role_templates)

Identifiers follow ``resource.action[_scope]``. Both ``.`` and ``:`` are used
as namespace separators; granular admin permissions use ``:``.

The catalog is validated at import time. A reference to an unknown
permission raises RuntimeError before the application can start.
"""
from __future__ import annotations

from typing import Final, Mapping

from authz.auth.roles import Department, UserRole


# Global wildcard sentinel: holder is granted every permission
WILDCARD: Final[str] = "*"


# ============================================================================
# PERMISSIONS
# ============================================================================

PERMISSION_DESCRIPTIONS: Final[dict[str, str]] = {
    # User management
    "users.view_all": "View all user accounts",
    "users.view_own": "View own user account",
    "users.create": "Create new user accounts",
    "users.edit": "Edit any user account information",
    "users.edit_own": "Edit own user account information",
    "users.delete": "Delete user accounts",
    "users.change_role": "Change user roles",
    "users.view_sensitive": "View sensitive user data (emails, addresses)",
    "users.manage_permissions": "Manage user permissions",

    # Creators
    "creators.view_all": "View all creator profiles",
    "creators.view_own": "View own creator profile",
    "creators.view_public": "View public creator profiles",
    "creators.approve": "Approve creator verification requests",
    "creators.reject": "Reject creator verification requests",
    "creators.view_sensitive": "View sensitive creator data (bank info, earnings)",
    "creators.edit_own": "Edit own creator profile",
    "creators.edit_all": "Edit any creator profile",
    "creators.view_financial": "View creator financial information",

    # Brands
    "brands.view_all": "View all brand profiles",
    "brands.view_own": "View own brand profile",
    "brands.view_public": "View public brand profiles",
    "brands.verify": "Verify brand accounts",
    "brands.reject": "Reject brand verification",
    "brands.view_sensitive": "View sensitive brand data (billing info)",
    "brands.edit_own": "Edit own brand profile",
    "brands.edit_all": "Edit any brand profile",
    "brands.view_financial": "View brand financial information",

    # IP assets
    "ip_assets.view_all": "View all IP assets",
    "ip_assets.view_own": "View own IP assets",
    "ip_assets.view_public": "View public IP assets",
    "ip_assets.create": "Upload new IP assets",
    "ip_assets.edit_own": "Edit own IP assets",
    "ip_assets.edit_all": "Edit any IP asset",
    "ip_assets.delete_own": "Delete own IP assets",
    "ip_assets.delete_all": "Delete any IP asset",
    "ip_assets.transfer_ownership": "Transfer IP asset ownership",
    "ip_assets.approve": "Approve IP assets for publication",
    "ip_assets.publish": "Publish IP assets",
    "ip_assets.view_metadata": "View detailed IP asset metadata",

    # Licenses
    "licenses.view_all": "View all license agreements",
    "licenses.view_own": "View own license agreements",
    "licenses.create": "Create new license proposals",
    "licenses.edit_own": "Edit own license agreements",
    "licenses.edit_all": "Edit any license agreement",
    "licenses.approve": "Approve license agreements",
    "licenses.terminate_own": "Terminate own licenses",
    "licenses.terminate_all": "Terminate any license",
    "licenses.view_terms": "View license terms and conditions",
    "licenses.view_financial": "View license financial terms",

    # Royalties
    "royalties.view_all": "View all royalty data",
    "royalties.view_own": "View own royalty statements",
    "royalties.run": "Execute royalty calculations",
    "royalties.edit": "Edit royalty calculations",
    "royalties.view_statements": "View royalty statements",
    "royalties.dispute": "Dispute royalty calculations",
    "royalties.approve_dispute": "Approve royalty disputes",

    # Payouts
    "payouts.view_all": "View all payout records",
    "payouts.view_own": "View own payout records",
    "payouts.process": "Process payouts",
    "payouts.approve": "Approve payout requests",
    "payouts.retry": "Retry failed payouts",

    # Projects
    "projects.view_all": "View all projects",
    "projects.view_own": "View own projects",
    "projects.view_public": "View public projects",
    "projects.create": "Create new projects",
    "projects.edit_own": "Edit own projects",
    "projects.edit_all": "Edit any project",
    "projects.delete_own": "Delete own projects",
    "projects.delete_all": "Delete any project",
    "projects.archive": "Archive projects",

    # Analytics
    "analytics.view_platform": "View platform-wide analytics",
    "analytics.view_own": "View own analytics",
    "analytics.view_financial": "View financial analytics",
    "analytics.export": "Export analytics data",

    # Audit logs
    "audit.view_all": "View all audit logs",
    "audit.view_own": "View own activity logs",
    "audit.export": "Export audit logs",

    # Content management
    "content:read": "View blog posts and assets",
    "content:create": "Create new content",
    "content:edit": "Edit existing content",
    "content:approve": "Approve content for publication",
    "content:delete": "Delete content",
    "content:moderate": "Moderate user submissions",

    # Finance
    "finance:view_all": "View all financial data",
    "finance:view_own": "View own financial records",
    "finance:manage_transactions": "Create and manage financial transactions",
    "finance:process_payouts": "Process payout requests",
    "finance:view_reports": "View financial reports",
    "finance:generate_reports": "Generate financial reports",
    "finance:approve_transactions": "Approve financial transactions",
    "finance:configure_settings": "Configure finance settings",
    "finance:view_payouts": "View payout information and schedules",
    "finance:process_royalties": "Process royalty calculations",
    "finance:initiate_payouts": "Initiate payout transfers",
    "finance:approve_large_payouts": "Approve payouts over threshold amount",
    "finance:export_data": "Export financial data to external formats",
    "finance:view_analytics": "View revenue analytics and trends",

    # Licensing
    "licensing:view_all": "View all licensing agreements",
    "licensing:view_own": "View own licensing agreements",
    "licensing:create_proposals": "Create licensing proposals",
    "licensing:review_proposals": "Review licensing proposals",
    "licensing:approve_agreements": "Approve licensing agreements",
    "licensing:manage_terms": "Manage licensing terms",
    "licensing:terminate_agreements": "Terminate licensing agreements",
    "licensing:view_financial_terms": "View financial terms of licensing agreements",
    "licensing:view": "View license agreements and terms",
    "licensing:create": "Create new license agreements",
    "licensing:edit": "Edit license terms and conditions",
    "licensing:approve": "Approve license agreements for activation",
    "licensing:modify_ownership": "Modify IP ownership splits in licenses",
    "licensing:terminate": "Terminate active license agreements",
    "licensing:renew": "Renew expiring or expired licenses",

    # Applications (creator and brand)
    "applications:view_all": "View all creator and brand applications",
    "applications:review": "Review applications",
    "applications:approve": "Approve applications",
    "applications:reject": "Reject applications",
    "applications:request_info": "Request additional information from applicants",
    "applications:manage_workflow": "Manage application workflow and status",
    "applications:view_sensitive": "View sensitive application data",

    "creator:review": "Review creator applications",
    "creator:approve": "Approve creator applications",
    "creator:reject": "Reject creator applications",
    "creator:verify": "Verify creator credentials",
    "creator:request_info": "Request additional information from creator applicants",

    "brand:review": "Review brand applications",
    "brand:approve": "Approve brand applications",
    "brand:reject": "Reject brand applications",
    "brand:verify": "Verify brand credentials",
    "brand:request_info": "Request additional information from brand applicants",

    # Users (admin management)
    "users:manage_roles": "Manage user roles and permissions",
    "users:suspend": "Suspend user accounts",
    "users:activate": "Activate suspended user accounts",
    "users:view_activity": "View user activity logs",
    "users:manage_2fa": "Manage user two-factor authentication",
    "users:view": "View user information and profiles",
    "users:edit": "Edit user profiles and account information",
    "users:delete": "Delete user accounts (soft delete)",
    "users:view_sensitive": "View sensitive user data (email, IP, PII)",
    "users:impersonate": "Impersonate users for troubleshooting (Super Admin only)",

    # System
    "system.settings": "Modify system settings",
    "system.feature_flags": "Manage feature flags",
    "system.maintenance": "Perform maintenance tasks",
    "system:view_logs": "View system logs",
    "system:manage_cache": "Manage system cache",
    "system:configure_integrations": "Configure external integrations",
    "system:manage_backups": "Manage system backups",
    "system:settings": "Modify platform-wide system settings and configurations",
    "system:deploy": "Deploy system changes and manage deployments",
    "system:logs": "Access and view system logs",
    "system:monitor": "Access monitoring tools and dashboards",
    "system:backup": "Manage backups and restoration",

    # Admin role management
    "admin:roles": "Manage admin roles and permissions (Super Admin only)",
}

ALL_PERMISSIONS: Final[frozenset[str]] = frozenset(PERMISSION_DESCRIPTIONS)


# ============================================================================
# HIERARCHY - higher-level permissions imply lower-level ones
# ============================================================================

PERMISSION_HIERARCHY: Final[dict[str, frozenset[str]]] = {
    # Users
    "users.edit": frozenset({"users.view_all", "users.view_own"}),
    "users.edit_own": frozenset({"users.view_own"}),
    "users.delete": frozenset({"users.view_all", "users.edit"}),

    # Creators
    "creators.edit_all": frozenset({"creators.view_all", "creators.view_own"}),
    "creators.edit_own": frozenset({"creators.view_own"}),
    "creators.view_sensitive": frozenset({"creators.view_own"}),

    # Brands
    "brands.edit_all": frozenset({"brands.view_all", "brands.view_own"}),
    "brands.edit_own": frozenset({"brands.view_own"}),
    "brands.view_sensitive": frozenset({"brands.view_own"}),

    # IP assets
    "ip_assets.edit_all": frozenset({"ip_assets.view_all"}),
    "ip_assets.edit_own": frozenset({"ip_assets.view_own"}),
    "ip_assets.delete_all": frozenset({"ip_assets.view_all", "ip_assets.edit_all"}),
    "ip_assets.delete_own": frozenset({"ip_assets.view_own", "ip_assets.edit_own"}),

    # Licenses
    "licenses.edit_all": frozenset({"licenses.view_all"}),
    "licenses.edit_own": frozenset({"licenses.view_own"}),
    "licenses.terminate_all": frozenset({"licenses.view_all"}),
    "licenses.terminate_own": frozenset({"licenses.view_own"}),

    # Projects
    "projects.edit_all": frozenset({"projects.view_all"}),
    "projects.edit_own": frozenset({"projects.view_own"}),
    "projects.delete_all": frozenset({"projects.view_all", "projects.edit_all"}),
    "projects.delete_own": frozenset({"projects.view_own", "projects.edit_own"}),

    # Royalties
    "royalties.edit": frozenset({"royalties.view_all"}),
    "royalties.run": frozenset({"royalties.view_all"}),

    # Content
    "content:delete": frozenset({"content:edit", "content:read"}),
    "content:edit": frozenset({"content:read"}),
    "content:approve": frozenset({"content:read"}),
    "content:moderate": frozenset({"content:read"}),

    # Finance
    "finance:approve_transactions": frozenset({"finance:view_all"}),
    "finance:manage_transactions": frozenset({"finance:view_all"}),
    "finance:process_payouts": frozenset({"finance:view_all"}),
    "finance:generate_reports": frozenset({"finance:view_reports"}),
    "finance:view_reports": frozenset({"finance:view_all"}),
    "finance:configure_settings": frozenset({"finance:view_all"}),
    "finance:view_payouts": frozenset({"finance:view_all"}),
    "finance:process_royalties": frozenset({"finance:view_all", "finance:view_reports"}),
    "finance:initiate_payouts": frozenset({"finance:view_payouts", "finance:process_royalties"}),
    "finance:approve_large_payouts": frozenset({"finance:view_payouts", "finance:view_reports"}),
    "finance:export_data": frozenset({"finance:view_reports"}),
    "finance:view_analytics": frozenset({"finance:view_reports"}),

    # Licensing
    "licensing:approve_agreements": frozenset({"licensing:view_all", "licensing:review_proposals"}),
    "licensing:review_proposals": frozenset({"licensing:view_all"}),
    "licensing:terminate_agreements": frozenset({"licensing:view_all"}),
    "licensing:manage_terms": frozenset({"licensing:view_all"}),
    "licensing:view_financial_terms": frozenset({"licensing:view_all"}),
    "licensing:create_proposals": frozenset({"licensing:view_own"}),
    "licensing:view": frozenset({"licensing:view_all"}),
    "licensing:create": frozenset({"licensing:view"}),
    "licensing:edit": frozenset({"licensing:view"}),
    "licensing:approve": frozenset({"licensing:view", "licensing:review_proposals"}),
    "licensing:modify_ownership": frozenset({"licensing:view", "licensing:edit"}),
    "licensing:terminate": frozenset({"licensing:view"}),
    "licensing:renew": frozenset({"licensing:view", "licensing:edit"}),

    # Applications
    "applications:approve": frozenset({"applications:review", "applications:view_all"}),
    "applications:reject": frozenset({"applications:review", "applications:view_all"}),
    "applications:review": frozenset({"applications:view_all"}),
    "applications:request_info": frozenset({"applications:review", "applications:view_all"}),
    "applications:manage_workflow": frozenset({"applications:view_all"}),
    "applications:view_sensitive": frozenset({"applications:view_all"}),

    "creator:approve": frozenset({"creator:review"}),
    "creator:reject": frozenset({"creator:review"}),
    "creator:verify": frozenset({"creator:review"}),
    "creator:request_info": frozenset({"creator:review"}),

    "brand:approve": frozenset({"brand:review"}),
    "brand:reject": frozenset({"brand:review"}),
    "brand:verify": frozenset({"brand:review"}),
    "brand:request_info": frozenset({"brand:review"}),

    # Users (admin management)
    "users:manage_roles": frozenset({"users.view_all"}),
    "users:suspend": frozenset({"users.view_all"}),
    "users:activate": frozenset({"users.view_all"}),
    "users:view_activity": frozenset({"users.view_all"}),
    "users:manage_2fa": frozenset({"users.view_all"}),
    "users:view": frozenset({"users.view_all"}),
    "users:edit": frozenset({"users:view", "users.view_all"}),
    "users:delete": frozenset({"users:view", "users:edit", "users.view_all"}),
    "users:view_sensitive": frozenset({"users:view", "users.view_all"}),
    "users:impersonate": frozenset({"users:view", "users.view_all"}),

    # System
    "system:configure_integrations": frozenset({"system.settings"}),
    "system:manage_backups": frozenset({"system.settings"}),
    "system:manage_cache": frozenset({"system:view_logs"}),
    "system:settings": frozenset({"system.settings"}),
    "system:deploy": frozenset({"system:settings"}),
    "system:logs": frozenset({"system:view_logs"}),
    "system:monitor": frozenset({"system:logs", "system:view_logs"}),
    "system:backup": frozenset({"system:manage_backups"}),

    # Admin roles
    "admin:roles": frozenset({"users:manage_roles", "users.view_all"}),
}


# ============================================================================
# BASE ROLE PERMISSIONS
# ============================================================================

# Admin console baseline. Department assignments carry the real authority.
ADMIN_BASE_PERMISSIONS: Final[frozenset[str]] = frozenset({
    "users.view_own",
    "users.edit_own",
    "audit.view_own",
    "creators.view_public",
    "brands.view_public",
    "ip_assets.view_public",
    "projects.view_public",
})

CREATOR_PERMISSIONS: Final[frozenset[str]] = frozenset({
    "creators.view_own",
    "creators.view_public",
    "creators.edit_own",
    "ip_assets.view_own",
    "ip_assets.view_public",
    "ip_assets.create",
    "ip_assets.edit_own",
    "ip_assets.delete_own",
    "ip_assets.transfer_ownership",
    "licenses.view_own",
    "licenses.approve",
    "licenses.view_terms",
    "licenses.view_financial",
    "royalties.view_own",
    "royalties.view_statements",
    "royalties.dispute",
    "payouts.view_own",
    "analytics.view_own",
    "audit.view_own",
    "brands.view_own",
    "brands.view_public",
    "projects.view_public",
    "users.view_own",
    "users.edit_own",
})

BRAND_PERMISSIONS: Final[frozenset[str]] = frozenset({
    "brands.view_own",
    "brands.view_public",
    "brands.edit_own",
    "projects.view_own",
    "projects.create",
    "projects.edit_own",
    "projects.delete_own",
    "licenses.view_own",
    "licenses.create",
    "licenses.edit_own",
    "licenses.terminate_own",
    "licenses.view_terms",
    "analytics.view_own",
    "audit.view_own",
    "ip_assets.view_public",
    "creators.view_own",
    "creators.view_public",
    "projects.view_public",
    "users.view_own",
    "users.edit_own",
})

VIEWER_PERMISSIONS: Final[frozenset[str]] = frozenset({
    "ip_assets.view_public",
    "projects.view_public",
    "creators.view_own",
    "creators.view_public",
    "brands.view_own",
    "brands.view_public",
    "users.view_own",
})

ROLE_PERMISSIONS: Final[dict[UserRole, frozenset[str]]] = {
    UserRole.ADMIN: ADMIN_BASE_PERMISSIONS,
    UserRole.CREATOR: CREATOR_PERMISSIONS,
    UserRole.BRAND: BRAND_PERMISSIONS,
    UserRole.VIEWER: VIEWER_PERMISSIONS,
}


# ============================================================================
# DEPARTMENT BASELINES
# ============================================================================

_OWN_ACCOUNT: Final[frozenset[str]] = frozenset({
    "users.view_own",
    "users.edit_own",
    "audit.view_own",
})

_CONTENT_ALL: Final[frozenset[str]] = frozenset(
    p for p in ALL_PERMISSIONS if p.startswith("content:")
)

_LICENSING_ALL: Final[frozenset[str]] = frozenset(
    p for p in ALL_PERMISSIONS if p.startswith("licensing:")
)

_APPLICATIONS_ALL: Final[frozenset[str]] = frozenset(
    p for p in ALL_PERMISSIONS if p.startswith("applications:")
)

DEPARTMENT_PERMISSIONS: Final[dict[Department, frozenset[str]]] = {
    Department.SUPER_ADMIN: ALL_PERMISSIONS,
    Department.CONTENT_MANAGER: _CONTENT_ALL | _OWN_ACCOUNT | frozenset({
        "ip_assets.view_all",
        "ip_assets.approve",
        "ip_assets.publish",
    }),
    Department.FINANCE_LICENSING: _LICENSING_ALL | _OWN_ACCOUNT | frozenset({
        "finance:view_all",
        "finance:manage_transactions",
        "finance:process_payouts",
        "finance:view_reports",
        "finance:generate_reports",
        "finance:approve_transactions",
        "finance:view_payouts",
        "finance:process_royalties",
        "finance:initiate_payouts",
        "finance:approve_large_payouts",
        "finance:export_data",
        "finance:view_analytics",
        "licenses.view_all",
        "licenses.view_financial",
        "royalties.view_all",
        "royalties.run",
        "payouts.view_all",
        "payouts.process",
        "payouts.approve",
        "analytics.view_financial",
        "analytics.export",
    }),
    Department.CREATOR_APPLICATIONS: _APPLICATIONS_ALL | _OWN_ACCOUNT | frozenset({
        "creator:review",
        "creator:approve",
        "creator:reject",
        "creator:verify",
        "creator:request_info",
        "creators.view_all",
        "creators.approve",
        "creators.reject",
        "creators.view_sensitive",
    }),
    Department.BRAND_APPLICATIONS: _APPLICATIONS_ALL | _OWN_ACCOUNT | frozenset({
        "brand:review",
        "brand:approve",
        "brand:reject",
        "brand:verify",
        "brand:request_info",
        "brands.view_all",
        "brands.verify",
        "brands.reject",
        "brands.view_sensitive",
    }),
    Department.CUSTOMER_SERVICE: frozenset({
        "users.view_all",
        "users.view_own",
        "users.edit_own",
        "users:view_activity",
        "creators.view_all",
        "creators.view_public",
        "brands.view_all",
        "brands.view_public",
        "content:read",
        "audit.view_own",
    }),
    Department.OPERATIONS: frozenset({
        "users.view_all",
        "users:view",
        "users:suspend",
        "users:activate",
        "users:view_activity",
        "users:edit",
        "users:view_sensitive",
        "content:read",
        "content:moderate",
        "system:view_logs",
        "system:logs",
        "system:manage_cache",
        "system:monitor",
        "analytics.view_platform",
        "analytics.view_own",
        "audit.view_all",
        "audit.export",
        "users.view_own",
        "users.edit_own",
    }),
    # Specific permissions are granted per contract as custom permissions
    Department.CONTRACTOR: _OWN_ACCOUNT,
}


# ============================================================================
# LOOKUPS
# ============================================================================

def is_known_permission(permission: str) -> bool:
    return permission in ALL_PERMISSIONS


def get_permission_description(permission: str) -> str | None:
    return PERMISSION_DESCRIPTIONS.get(permission)


def get_role_permissions(role: UserRole) -> frozenset[str]:
    """Base (unexpanded) permission set for a coarse role."""
    return ROLE_PERMISSIONS[role]


def get_department_permissions(department: Department) -> frozenset[str]:
    """Baseline (unexpanded) permission set for an admin department."""
    return DEPARTMENT_PERMISSIONS[department]


def get_permissions_by_namespace(namespace: str) -> frozenset[str]:
    """All catalog permissions under ``namespace`` with either separator."""
    return frozenset(
        p for p in ALL_PERMISSIONS
        if p.startswith(f"{namespace}.") or p.startswith(f"{namespace}:")
    )


# ============================================================================
# CATALOG VALIDATION
# ============================================================================

def _unknown_references(label: str, permissions: Mapping[object, frozenset[str]]) -> list[str]:
    errors = []
    for key, values in permissions.items():
        for permission in sorted(values - ALL_PERMISSIONS):
            errors.append(f"{label} '{key}' references unknown permission '{permission}'")
    return errors


def _validate_catalog() -> None:
    """Validate every cross-reference in the catalog at module import time."""
    errors = []

    for parent in PERMISSION_HIERARCHY:
        if parent not in ALL_PERMISSIONS:
            errors.append(f"Hierarchy key '{parent}' is not a known permission")
    errors.extend(_unknown_references("Hierarchy entry", PERMISSION_HIERARCHY))
    errors.extend(_unknown_references(
        "Role", {role.value: perms for role, perms in ROLE_PERMISSIONS.items()}
    ))
    errors.extend(_unknown_references(
        "Department", {dept.value: perms for dept, perms in DEPARTMENT_PERMISSIONS.items()}
    ))

    missing_roles = set(UserRole) - set(ROLE_PERMISSIONS)
    if missing_roles:
        errors.append(f"Roles without a base permission set: {sorted(r.value for r in missing_roles)}")

    missing_departments = set(Department) - set(DEPARTMENT_PERMISSIONS)
    if missing_departments:
        errors.append(
            f"Departments without a baseline: {sorted(d.value for d in missing_departments)}"
        )

    if errors:
        raise RuntimeError(
            "Permission catalog validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        )


_validate_catalog()

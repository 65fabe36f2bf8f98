"""
Validation rules for admin role assignments.

- Custom permissions must be well-formed, grantable and unique
- Departments with a role template only accept permissions from that template
- Contractors get a short allow-list, a prohibited list and a bounded lifetime
- Critical permissions of a department can never be removed by an update
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Final, Iterable

from authz.auth.permission_set import is_grantable, validate_permission_format
from authz.auth.role_templates import find_role_template
from authz.auth.roles import Department, Seniority
from authz.errors import ValidationError

logger = logging.getLogger(__name__)


CONTRACTOR_MAX_LIFETIME: Final[timedelta] = timedelta(days=365)
CONTRACTOR_MIN_LIFETIME: Final[timedelta] = timedelta(hours=24)

# Minimal, read-focused grants a contractor may receive
CONTRACTOR_ALLOWED_PERMISSIONS: Final[frozenset[str]] = frozenset({
    "content:read",
    "content:create",
    "projects.view_own",
    "projects.create",
    "projects.edit_own",
    "analytics.view_own",
    "creators.view_public",
    "brands.view_public",
    "ip_assets.view_public",
})

# Entries ending in "*" prohibit the whole namespace
CONTRACTOR_PROHIBITED_PERMISSIONS: Final[tuple[str, ...]] = (
    "users:manage_roles",
    "users:delete",
    "users:impersonate",
    "admin:*",
    "admin_roles:*",
    "system:*",
    "finance:*",
    "payouts:*",
    "royalties:*",
    "licenses:approve",
    "licenses:terminate_all",
    "content:approve",
    "content:delete",
    "creators:approve",
    "brands:verify",
    "applications:approve",
)

CRITICAL_PERMISSIONS: Final[dict[Department, tuple[str, ...]]] = {
    Department.SUPER_ADMIN: ("users:manage_roles", "admin:*", "system:settings"),
    Department.CONTENT_MANAGER: ("content:read", "content:edit"),
    Department.FINANCE_LICENSING: ("finance:view_all", "licensing:view_all"),
    Department.CREATOR_APPLICATIONS: ("applications:view_all", "creator:review"),
    Department.BRAND_APPLICATIONS: ("applications:view_all", "brand:review"),
}


def _normalize(permission: str) -> str:
    # "." and ":" both separate the namespace; compare on a single form
    return permission.replace(".", ":")


def _matches_rule(permission: str, rule: str) -> bool:
    candidate = _normalize(permission)
    target = _normalize(rule)
    if target.endswith("*"):
        return candidate.startswith(target[:-1])
    return candidate == target


def validate_custom_permissions(permissions: Iterable[str]) -> list[str]:
    """
    Check format, catalog membership and uniqueness of custom permissions.

    Returns:
        The permissions as a list, order preserved

    Raises:
        ValidationError: Listing every malformed, unknown or duplicate entry
    """
    values = list(permissions)
    malformed: list[str] = []
    unknown: list[str] = []
    for permission in values:
        try:
            validate_permission_format(permission)
        except ValueError:
            malformed.append(str(permission))
            continue
        if not is_grantable(permission):
            unknown.append(permission)

    duplicates = sorted({p for p in values if values.count(p) > 1})

    if malformed or unknown or duplicates:
        raise ValidationError(
            "Invalid custom permissions",
            details={"malformed": malformed, "unknown": unknown, "duplicates": duplicates},
        )
    return values


def validate_against_template(
    department: Department,
    seniority: Seniority | None,
    permissions: Iterable[str],
) -> None:
    """
    Reject permissions outside the department's role template.

    Departments without a template accept any grantable permission.

    Raises:
        ValidationError: If any permission is not part of the template
    """
    template = find_role_template(department, seniority)
    if template is None:
        return

    invalid = [p for p in permissions if p not in template.permissions]
    if invalid:
        level = f"{seniority.value} " if seniority else ""
        raise ValidationError(
            f"The following permissions are not allowed for {level}{department.value} role: "
            f"{', '.join(invalid)}",
            details={"invalid_permissions": invalid},
        )


def find_contractor_violations(permissions: Iterable[str]) -> tuple[list[str], list[str]]:
    """
    Split contractor permissions into (prohibited, not_allowed).

    A permission matching the prohibited list is reported only as
    prohibited.
    """
    prohibited: list[str] = []
    not_allowed: list[str] = []
    for permission in permissions:
        if any(_matches_rule(permission, rule) for rule in CONTRACTOR_PROHIBITED_PERMISSIONS):
            prohibited.append(permission)
        elif permission not in CONTRACTOR_ALLOWED_PERMISSIONS:
            not_allowed.append(permission)
    return prohibited, not_allowed


def validate_contractor_permissions(permissions: Iterable[str]) -> None:
    """
    Raises:
        ValidationError: Enumerating every disallowed permission
    """
    prohibited, not_allowed = find_contractor_violations(permissions)
    if prohibited or not_allowed:
        disallowed = prohibited + not_allowed
        raise ValidationError(
            f"Contractor roles cannot have the following permissions: {', '.join(disallowed)}",
            details={
                "disallowed_permissions": disallowed,
                "prohibited": prohibited,
                "not_allowed": not_allowed,
            },
        )


def _require_timezone(value: datetime) -> None:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValidationError("Expiration date must include a timezone offset")


def validate_expiration(
    department: Department,
    expires_at: datetime | None,
    *,
    now: datetime | None = None,
) -> None:
    """
    Expiry rules for new assignments.

    - Any expiry must be in the future
    - CONTRACTOR requires an expiry at least 24 hours and at most 1 year away

    Raises:
        ValidationError: If the expiry breaks a rule
    """
    current = now or datetime.now(timezone.utc)

    if expires_at is None:
        if department == Department.CONTRACTOR:
            raise ValidationError("Contractor roles must have an expiration date")
        return

    _require_timezone(expires_at)
    if expires_at <= current:
        raise ValidationError("Expiration date must be in the future")

    if department == Department.CONTRACTOR:
        if expires_at < current + CONTRACTOR_MIN_LIFETIME:
            raise ValidationError("Contractor roles must be valid for at least 24 hours")
        if expires_at > current + CONTRACTOR_MAX_LIFETIME:
            raise ValidationError("Contractor roles cannot exceed 1 year")


def validate_extension(
    current_expires_at: datetime | None,
    new_expires_at: datetime,
    *,
    now: datetime | None = None,
) -> None:
    """
    Raises:
        ValidationError: If the new expiry does not extend the current one
            or exceeds the contractor lifetime cap
    """
    current = now or datetime.now(timezone.utc)
    _require_timezone(new_expires_at)
    if current_expires_at is not None and new_expires_at <= current_expires_at:
        raise ValidationError("New expiration date must be later than the current one")
    if new_expires_at <= current:
        raise ValidationError("Expiration date must be in the future")
    if new_expires_at > current + CONTRACTOR_MAX_LIFETIME:
        raise ValidationError("Contractor roles cannot exceed 1 year")


def validate_critical_permissions(
    department: Department,
    current_permissions: Iterable[str],
    new_permissions: Iterable[str],
) -> None:
    """
    Block removal of permissions essential to the department's function.

    Raises:
        ValidationError: Listing the critical permissions that would be removed
    """
    rules = CRITICAL_PERMISSIONS.get(department, ())
    if not rules:
        return

    remaining = set(new_permissions)
    removed = [p for p in current_permissions if p not in remaining]
    removed_critical = [p for p in removed if any(_matches_rule(p, rule) for rule in rules)]

    if removed_critical:
        logger.warning(
            "critical_permission_removal_blocked department=%s permissions=%s",
            department.value,
            removed_critical,
        )
        raise ValidationError(
            f"Cannot remove critical permissions for {department.value} role: "
            f"{', '.join(removed_critical)}",
            details={"critical_permissions": removed_critical},
        )

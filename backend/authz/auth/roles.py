"""
Role, department and seniority enums shared by the catalog, the stores and
the services.

Values are persisted verbatim in the database (admin_roles.department,
admin_roles.seniority, users.role), so they must never be renamed.
"""
from __future__ import annotations

from enum import Enum
from typing import Final


class UserRole(str, Enum):
    """Coarse account classification. Exactly one per user."""
    ADMIN = "ADMIN"
    CREATOR = "CREATOR"
    BRAND = "BRAND"
    VIEWER = "VIEWER"


class Department(str, Enum):
    """Axis of an administrative role assignment."""
    SUPER_ADMIN = "SUPER_ADMIN"
    CONTENT_MANAGER = "CONTENT_MANAGER"
    FINANCE_LICENSING = "FINANCE_LICENSING"
    CREATOR_APPLICATIONS = "CREATOR_APPLICATIONS"
    BRAND_APPLICATIONS = "BRAND_APPLICATIONS"
    CUSTOMER_SERVICE = "CUSTOMER_SERVICE"
    OPERATIONS = "OPERATIONS"
    CONTRACTOR = "CONTRACTOR"


class Seniority(str, Enum):
    """Seniority gates escalation and approval authority."""
    JUNIOR = "JUNIOR"
    SENIOR = "SENIOR"


class ApprovalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


TERMINAL_APPROVAL_STATUSES: Final[frozenset[ApprovalStatus]] = frozenset({
    ApprovalStatus.APPROVED,
    ApprovalStatus.REJECTED,
})

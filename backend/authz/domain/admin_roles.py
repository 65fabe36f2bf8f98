"""
Checked view of a user's effective admin role assignments.

This is what the resolver, the approval engine and the admin-role cache
entry work with. ORM rows are converted with ``AdminRoleGrant.from_model``;
cache entries with ``from_dict``. Both paths parse custom permissions
through ``parse_permissions``.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from authz.auth.permission_set import PermissionSet, parse_permissions
from authz.auth.roles import Department, Seniority

if TYPE_CHECKING:
    from authz.models.admin_role import AdminRole


@dataclass(frozen=True)
class AdminRoleGrant:
    department: Department
    seniority: Seniority | None
    custom_permissions: PermissionSet
    expires_at: datetime | None = None

    @classmethod
    def from_model(cls, row: "AdminRole") -> "AdminRoleGrant":
        return cls(
            department=Department(row.department),
            seniority=Seniority(row.seniority) if row.seniority else None,
            custom_permissions=parse_permissions(row.permissions),
            expires_at=row.expires_at,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AdminRoleGrant":
        expires_at = data.get("expires_at")
        return cls(
            department=Department(data["department"]),
            seniority=Seniority(data["seniority"]) if data.get("seniority") else None,
            custom_permissions=parse_permissions(data.get("permissions")),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "department": self.department.value,
            "seniority": self.seniority.value if self.seniority else None,
            "permissions": self.custom_permissions.to_list(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }

    def is_effective_at(self, now: datetime) -> bool:
        return self.expires_at is None or self.expires_at > now

"""
Per-operation permission context.

Holds the memo for one logical operation: resolved permission sets and base
roles keyed by user id. A context is created by the caller at the start of
the operation, passed explicitly to every check and dropped at the end.
Nothing is shared between operations.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from authz.auth.permission_set import PermissionSet
from authz.auth.roles import UserRole


@dataclass
class PermissionContext:
    permissions: dict[str, PermissionSet] = field(default_factory=dict)
    roles: dict[str, UserRole] = field(default_factory=dict)

    @staticmethod
    def _key(user_id: Any) -> str:
        return str(user_id)

    def get_permissions(self, user_id: Any) -> PermissionSet | None:
        return self.permissions.get(self._key(user_id))

    def remember_permissions(self, user_id: Any, permissions: PermissionSet) -> None:
        self.permissions[self._key(user_id)] = permissions

    def get_role(self, user_id: Any) -> UserRole | None:
        return self.roles.get(self._key(user_id))

    def remember_role(self, user_id: Any, role: UserRole) -> None:
        self.roles[self._key(user_id)] = role

    def forget(self, user_id: Any) -> None:
        self.permissions.pop(self._key(user_id), None)
        self.roles.pop(self._key(user_id), None)

    def clear(self) -> None:
        self.permissions.clear()
        self.roles.clear()

"""
Admin role assignment management.

Every mutation follows the same shape:
1. load and lock the affected rows
2. validate against templates, contractor policy and critical permissions
3. run the last-super-admin guard inside the same transaction
4. write, commit
5. invalidate the cache for every affected user before returning
6. emit an audit event

Invalidation runs after commit: deleting earlier would let a concurrent
reader re-cache the pre-commit state. A failed invalidation raises
CacheInvalidationError even though the write is already committed, so the
caller never reports success on a stale cache.
"""
import logging
import uuid
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ...auth.assignment_policy import (
    validate_against_template,
    validate_contractor_permissions,
    validate_critical_permissions,
    validate_custom_permissions,
    validate_expiration,
    validate_extension,
)
from ...auth.permission_set import validate_permission_format
from ...auth.role_templates import get_role_template, has_role_template, template_permissions
from ...auth.roles import Department, Seniority, UserRole
from ...crud.admin_role import AdminRoleRepository
from ...crud.user import UserRepository
from ...domain.invariants import log_invariant_skip, validate_not_last_super_admin
from ...domain.ports.audit import AuditSink
from ...errors import ConflictError, NotFoundError, ValidationError
from ...models.admin_role import AdminRole
from ...schemas.admin_role import AdminRoleBulkUpdate, AdminRoleCreate, AdminRoleUpdate
from ..permission_cache import PermissionCache

logger = logging.getLogger(__name__)


def _snapshot(role: AdminRole) -> dict[str, Any]:
    return {
        "user_id": str(role.user_id),
        "department": role.department,
        "seniority": role.seniority,
        "permissions": list(role.permissions or []),
        "is_active": role.is_active,
        "expires_at": role.expires_at.isoformat() if role.expires_at else None,
        "deleted_at": role.deleted_at.isoformat() if role.deleted_at else None,
    }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _validate_template_fit(
    department: Department, seniority: Seniority | None, permissions: Iterable[str]
) -> None:
    if has_role_template(department):
        try:
            get_role_template(department, seniority)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
    validate_against_template(department, seniority, permissions)


class AdminRoleService:
    def __init__(
        self,
        session: AsyncSession,
        cache: PermissionCache | None = None,
        audit: AuditSink | None = None,
    ):
        self.session = session
        self.cache = cache
        self.audit = audit
        self.repo = AdminRoleRepository(session)
        self.user_repo = UserRepository(session)

    # ========================================================================
    # HELPERS
    # ========================================================================

    async def _invalidate(self, user_ids: Iterable[uuid.UUID]) -> None:
        if self.cache is not None:
            await self.cache.invalidate_many(user_ids)

    async def _audit(self, **event: Any) -> None:
        if self.audit is not None:
            await self.audit.log_event(**event)

    async def _guard_last_super_admin(
        self, role_ids: set[uuid.UUID], *, action: str, now: datetime
    ) -> None:
        """Reject the change if no other effective SUPER_ADMIN would remain.

        Locks the live SUPER_ADMIN set first, so the count holds until this
        transaction commits.
        """
        locked = await self.repo.lock_effective_super_admins(now)
        others = [role_id for role_id, _ in locked if role_id not in role_ids]
        validate_not_last_super_admin(
            len(others),
            role_id=",".join(sorted(str(role_id) for role_id in role_ids)),
            action=action,
        )

    async def _get_live_for_update(self, role_id: uuid.UUID) -> AdminRole:
        role = await self.repo.get_by_id(role_id, for_update=True)
        if role is None:
            raise NotFoundError("Admin role not found", details={"role_id": str(role_id)})
        if role.deleted_at is not None:
            raise ConflictError(
                "Admin role has been revoked", details={"role_id": str(role_id)}
            )
        return role

    @staticmethod
    def _deactivates(role: AdminRole, values: dict[str, Any], now: datetime) -> bool:
        """True if applying ``values`` turns an effective row into a non-effective one."""
        if not role.is_effective_at(now):
            return False
        if values.get("is_active") is False:
            return True
        return "expires_at" in values and values["expires_at"] is not None and values["expires_at"] <= now

    # ========================================================================
    # MUTATIONS
    # ========================================================================

    async def create_admin_role(self, data: AdminRoleCreate, created_by: uuid.UUID) -> AdminRole:
        """Assign a department role to an ADMIN user.

        Raises:
            NotFoundError: If the user does not exist
            ValidationError: If the user is not ADMIN or a policy rule fails
            ConflictError: If the (user, department) pair already exists
            CacheInvalidationError: If the cache could not be invalidated
        """
        now = _utcnow()
        department = data.department
        try:
            user = await self.user_repo.get_by_id(data.user_id)
            if user is None:
                raise NotFoundError("User not found", details={"user_id": str(data.user_id)})
            if user.role != UserRole.ADMIN.value:
                raise ValidationError(
                    "Admin roles can only be assigned to users with the ADMIN base role"
                )

            existing = await self.repo.find_by_user_and_department(data.user_id, department)
            if existing is not None:
                state = "revoked" if existing.deleted_at is not None else "existing"
                raise ConflictError(
                    f"User already has an {state} {department.value} role",
                    details={"role_id": str(existing.id)},
                )

            permissions = validate_custom_permissions(data.permissions)
            _validate_template_fit(department, data.seniority, permissions)
            if department == Department.CONTRACTOR:
                validate_contractor_permissions(permissions)
            validate_expiration(department, data.expires_at, now=now)

            try:
                role = await self.repo.create(
                    user_id=data.user_id,
                    department=department.value,
                    seniority=data.seniority.value if data.seniority else None,
                    permissions=permissions,
                    expires_at=data.expires_at,
                    created_by=created_by,
                )
            except IntegrityError as exc:
                raise ConflictError(
                    f"User already has a {department.value} role"
                ) from exc
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "admin_role_created role_id=%s user_id=%s department=%s created_by=%s",
            role.id,
            role.user_id,
            role.department,
            created_by,
        )
        await self._invalidate([role.user_id])
        await self._audit(
            action="admin_role.create",
            actor_id=created_by,
            resource_type="admin_role",
            resource_id=role.id,
            after=_snapshot(role),
        )
        return role

    async def update_admin_role(
        self, role_id: uuid.UUID, data: AdminRoleUpdate, updated_by: uuid.UUID
    ) -> AdminRole:
        """Change seniority, custom permissions, activity or expiry of an assignment.

        Raises:
            ValidationError: If nothing is supplied or a policy rule fails
            NotFoundError: If the assignment does not exist
            ConflictError: If the assignment was revoked
            InvariantViolation: If the last SUPER_ADMIN would be deactivated
            CacheInvalidationError: If the cache could not be invalidated
        """
        values = data.model_dump(exclude_unset=True)
        if not values:
            raise ValidationError("At least one field must be provided for update")

        now = _utcnow()
        try:
            role = await self._get_live_for_update(role_id)
            before = _snapshot(role)
            department = Department(role.department)

            if "seniority" in values:
                seniority = values["seniority"]
                values["seniority"] = seniority.value if seniority else None
            else:
                seniority = Seniority(role.seniority) if role.seniority else None

            permissions = list(role.permissions or [])
            if "permissions" in values:
                new_permissions = validate_custom_permissions(values["permissions"] or [])
                validate_critical_permissions(department, permissions, new_permissions)
                if department == Department.CONTRACTOR:
                    validate_contractor_permissions(new_permissions)
                permissions = new_permissions
                values["permissions"] = new_permissions

            if "permissions" in values or "seniority" in values:
                _validate_template_fit(department, seniority, permissions)

            if "is_active" in values and values["is_active"] is None:
                raise ValidationError("is_active cannot be null")

            if "expires_at" in values:
                expires_at = values["expires_at"]
                if expires_at is None or expires_at > now:
                    validate_expiration(department, expires_at, now=now)

            if department == Department.SUPER_ADMIN and self._deactivates(role, values, now):
                await self._guard_last_super_admin({role.id}, action="deactivate", now=now)

            role = await self.repo.update_fields(role, values)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "admin_role_updated role_id=%s user_id=%s fields=%s updated_by=%s",
            role.id,
            role.user_id,
            sorted(values),
            updated_by,
        )
        await self._invalidate([role.user_id])
        await self._audit(
            action="admin_role.update",
            actor_id=updated_by,
            resource_type="admin_role",
            resource_id=role.id,
            before=before,
            after=_snapshot(role),
        )
        return role

    async def revoke_admin_role(
        self, role_id: uuid.UUID, revoked_by: uuid.UUID, reason: str
    ) -> AdminRole:
        """Soft-delete an assignment.

        Raises:
            ValidationError: If ``reason`` is empty
            NotFoundError: If the assignment does not exist
            ConflictError: If the assignment was already revoked
            InvariantViolation: If it is the last effective SUPER_ADMIN
            CacheInvalidationError: If the cache could not be invalidated
        """
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to revoke an admin role")

        now = _utcnow()
        try:
            role = await self._get_live_for_update(role_id)
            before = _snapshot(role)

            if role.department == Department.SUPER_ADMIN.value:
                if role.is_effective_at(now):
                    await self._guard_last_super_admin({role.id}, action="revoke", now=now)
                else:
                    log_invariant_skip(
                        "last_super_admin",
                        "assignment already not effective",
                        role_id=str(role.id),
                    )

            revoked = await self.repo.soft_delete(
                role.id, deleted_by=revoked_by, reason=reason, now=now
            )
            if not revoked:
                raise ConflictError(
                    "Admin role has already been revoked", details={"role_id": str(role_id)}
                )
            await self.session.commit()
            await self.session.refresh(role)
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "admin_role_revoked role_id=%s user_id=%s revoked_by=%s",
            role.id,
            role.user_id,
            revoked_by,
        )
        await self._invalidate([role.user_id])
        await self._audit(
            action="admin_role.revoke",
            actor_id=revoked_by,
            resource_type="admin_role",
            resource_id=role.id,
            before=before,
            after=_snapshot(role),
            reason=reason,
        )
        return role

    async def bulk_update_admin_roles(
        self, data: AdminRoleBulkUpdate, updated_by: uuid.UUID
    ) -> list[uuid.UUID]:
        """Apply the same activity/expiry change to up to 50 assignments, all or nothing.

        Returns:
            Ids of the updated assignments

        Raises:
            NotFoundError: If any id does not exist
            ConflictError: If any assignment was revoked
            ValidationError: If a contractor expiry rule fails
            InvariantViolation: If no effective SUPER_ADMIN would remain
            CacheInvalidationError: If the cache could not be invalidated
        """
        values: dict[str, Any] = {}
        if data.is_active is not None:
            values["is_active"] = data.is_active
        if data.expires_at is not None:
            values["expires_at"] = data.expires_at

        now = _utcnow()
        try:
            roles = await self.repo.list_by_ids(data.role_ids, for_update=True)
            found = {role.id for role in roles}
            missing = [str(role_id) for role_id in data.role_ids if role_id not in found]
            if missing:
                raise NotFoundError("Admin roles not found", details={"role_ids": missing})
            revoked = [str(role.id) for role in roles if role.deleted_at is not None]
            if revoked:
                raise ConflictError("Admin roles have been revoked", details={"role_ids": revoked})

            if "expires_at" in values and values["expires_at"] > now:
                for role in roles:
                    validate_expiration(Department(role.department), values["expires_at"], now=now)

            deactivated_super_admins = {
                role.id
                for role in roles
                if role.department == Department.SUPER_ADMIN.value
                and self._deactivates(role, values, now)
            }
            if deactivated_super_admins:
                await self._guard_last_super_admin(
                    deactivated_super_admins, action="deactivate", now=now
                )

            updated = await self.repo.bulk_update(data.role_ids, values)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        role_ids = [role_id for role_id, _ in updated]
        user_ids = {user_id for _, user_id in updated}
        logger.info(
            "admin_roles_bulk_updated count=%d users=%d updated_by=%s",
            len(role_ids),
            len(user_ids),
            updated_by,
        )
        await self._invalidate(user_ids)
        await self._audit(
            action="admin_role.bulk_update",
            actor_id=updated_by,
            resource_type="admin_role",
            resource_id=None,
            after={
                "role_ids": [str(role_id) for role_id in role_ids],
                "values": {k: str(v) if isinstance(v, datetime) else v for k, v in values.items()},
            },
            reason=data.reason,
        )
        return role_ids

    async def extend_contractor_role(
        self,
        role_id: uuid.UUID,
        new_expires_at: datetime,
        reason: str,
        extended_by: uuid.UUID,
    ) -> AdminRole:
        """Push a contractor assignment's expiry later, within the 1-year cap.

        Raises:
            ValidationError: If the role is not a contractor role or the date is invalid
            NotFoundError: If the assignment does not exist
            ConflictError: If the assignment was revoked
            CacheInvalidationError: If the cache could not be invalidated
        """
        now = _utcnow()
        try:
            role = await self._get_live_for_update(role_id)
            if role.department != Department.CONTRACTOR.value:
                raise ValidationError("Only contractor roles can be extended")
            before = _snapshot(role)
            validate_extension(role.expires_at, new_expires_at, now=now)
            role = await self.repo.update_fields(role, {"expires_at": new_expires_at})
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "contractor_role_extended role_id=%s user_id=%s expires_at=%s extended_by=%s",
            role.id,
            role.user_id,
            new_expires_at.isoformat(),
            extended_by,
        )
        await self._invalidate([role.user_id])
        await self._audit(
            action="admin_role.extend",
            actor_id=extended_by,
            resource_type="admin_role",
            resource_id=role.id,
            before=before,
            after=_snapshot(role),
            reason=reason,
        )
        return role

    async def change_base_role(
        self, user_id: uuid.UUID, role: UserRole, changed_by: uuid.UUID
    ) -> UserRole:
        """Change a user's base role.

        Moving a user away from ADMIN drops every admin assignment they hold
        from resolution, so it passes the last-super-admin guard first.

        Raises:
            NotFoundError: If the user does not exist
            InvariantViolation: If the user holds the last effective SUPER_ADMIN
            CacheInvalidationError: If the cache could not be invalidated
        """
        now = _utcnow()
        try:
            user = await self.user_repo.get_by_id(user_id)
            if user is None:
                raise NotFoundError("User not found", details={"user_id": str(user_id)})
            previous = UserRole(user.role)

            if previous == UserRole.ADMIN and role != UserRole.ADMIN:
                locked = await self.repo.lock_effective_super_admins(now)
                held = {role_id for role_id, holder in locked if holder == user_id}
                if held:
                    others = [role_id for role_id, holder in locked if holder != user_id]
                    validate_not_last_super_admin(
                        len(others),
                        role_id=",".join(sorted(str(role_id) for role_id in held)),
                        action="reassign",
                    )

            await self.user_repo.update_role(user_id, role.value)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "base_role_changed user_id=%s from=%s to=%s changed_by=%s",
            user_id,
            previous.value,
            role.value,
            changed_by,
        )
        await self._invalidate([user_id])
        await self._audit(
            action="user.change_role",
            actor_id=changed_by,
            resource_type="user",
            resource_id=user_id,
            before={"role": previous.value},
            after={"role": role.value},
        )
        return role

    # ========================================================================
    # QUERIES
    # ========================================================================

    async def get_admin_role(self, role_id: uuid.UUID) -> AdminRole:
        role = await self.repo.get_by_id(role_id)
        if role is None:
            raise NotFoundError("Admin role not found", details={"role_id": str(role_id)})
        return role

    async def list_user_admin_roles(
        self,
        user_id: uuid.UUID,
        *,
        include_inactive: bool = False,
        include_expired: bool = False,
    ) -> list[AdminRole]:
        return await self.repo.list_for_user(
            user_id,
            include_inactive=include_inactive,
            include_expired=include_expired,
            now=_utcnow(),
        )

    async def count_active_by_department(self) -> dict[str, int]:
        """Effective assignments per department, zero included."""
        return {
            department.value: await self.repo.count_active_by_department(department, _utcnow())
            for department in Department
        }

    async def get_expiring_roles(self, days: int = 7) -> list[AdminRole]:
        """Effective assignments expiring within ``days``."""
        if days <= 0:
            raise ValidationError("days must be greater than 0")
        now = _utcnow()
        return await self.repo.list_expiring(now, now + timedelta(days=days))

    async def get_permission_usage(self, permission: str) -> dict[str, Any]:
        """Effective assignments granting ``permission`` by template or custom grant."""
        try:
            validate_permission_format(permission)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        now = _utcnow()
        template_departments = [
            department.value
            for department in Department
            if any(
                permission in template_permissions(department, seniority)
                for seniority in (None, *Seniority)
            )
        ]
        rows: dict[uuid.UUID, AdminRole] = {
            row.id: row for row in await self.repo.list_with_custom_permission(permission, now)
        }
        if template_departments:
            for row in await self.repo.list_effective_by_departments(template_departments, now):
                seniority = Seniority(row.seniority) if row.seniority else None
                if permission in template_permissions(Department(row.department), seniority):
                    rows[row.id] = row

        by_department = Counter(row.department for row in rows.values())
        return {
            "permission": permission,
            "total_roles": len(rows),
            "by_department": dict(sorted(by_department.items())),
            "user_ids": sorted({row.user_id for row in rows.values()}, key=str),
        }

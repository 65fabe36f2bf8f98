import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from ..auth.roles import Department, UserRole
from ..models.admin_role import AdminRole
from ..models.user import User


def _effective_at(now: Any) -> ColumnElement[bool]:
    return and_(
        AdminRole.is_active.is_(True),
        AdminRole.deleted_at.is_(None),
        or_(AdminRole.expires_at.is_(None), AdminRole.expires_at > now),
    )


class AdminRoleRepository:
    """
    Store access for admin role assignments.

    Methods flush but never commit; the calling service owns the
    transaction. ``now`` defaults to the database clock.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, role_id: uuid.UUID, *, for_update: bool = False) -> AdminRole | None:
        query = select(AdminRole).where(AdminRole.id == role_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def list_by_ids(
        self, role_ids: list[uuid.UUID], *, for_update: bool = False
    ) -> list[AdminRole]:
        query = select(AdminRole).where(AdminRole.id.in_(role_ids)).order_by(AdminRole.id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def find_active_by_user(self, user_id: uuid.UUID, now: Any = None) -> list[AdminRole]:
        result = await self.session.execute(
            select(AdminRole)
            .where(AdminRole.user_id == user_id, _effective_at(now if now is not None else func.now()))
            .order_by(AdminRole.created_at)
        )
        return list(result.scalars().all())

    async def find_by_user_and_department(
        self, user_id: uuid.UUID, department: Department | str
    ) -> AdminRole | None:
        """Any row for the pair, including revoked and expired ones."""
        result = await self.session.execute(
            select(AdminRole).where(
                AdminRole.user_id == user_id,
                AdminRole.department == Department(department).value,
            )
        )
        return result.scalar_one_or_none()

    async def count_active_by_department(self, department: Department | str, now: Any = None) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(AdminRole)
            .where(
                AdminRole.department == Department(department).value,
                _effective_at(now if now is not None else func.now()),
            )
        )
        return int(result.scalar_one())

    async def lock_effective_super_admins(self, now: Any = None) -> list[tuple[uuid.UUID, uuid.UUID]]:
        """
        Lock every effective SUPER_ADMIN row held by an ADMIN user.

        Both the assignment rows and their users rows are locked, so
        concurrent guard checks (revocations and base role changes alike)
        serialize and the count taken from the result stays valid until
        commit.

        Returns:
            (role_id, user_id) pairs of the locked rows
        """
        result = await self.session.execute(
            select(AdminRole.id, AdminRole.user_id)
            .join(User, User.id == AdminRole.user_id)
            .where(
                AdminRole.department == Department.SUPER_ADMIN.value,
                User.role == UserRole.ADMIN.value,
                _effective_at(now if now is not None else func.now()),
            )
            .order_by(AdminRole.id)
            .with_for_update()
        )
        return [(row[0], row[1]) for row in result.all()]

    async def create(self, **values: Any) -> AdminRole:
        admin_role = AdminRole(**values)
        self.session.add(admin_role)
        await self.session.flush()
        await self.session.refresh(admin_role)
        return admin_role

    async def update_fields(self, admin_role: AdminRole, values: dict[str, Any]) -> AdminRole:
        for key, value in values.items():
            setattr(admin_role, key, value)
        await self.session.flush()
        await self.session.refresh(admin_role)
        return admin_role

    async def soft_delete(
        self,
        role_id: uuid.UUID,
        *,
        deleted_by: uuid.UUID,
        reason: str,
        now: datetime,
    ) -> bool:
        """Conditional revoke. False when the row was already revoked."""
        result = await self.session.execute(
            update(AdminRole)
            .where(AdminRole.id == role_id, AdminRole.deleted_at.is_(None))
            .values(
                is_active=False,
                deleted_at=now,
                deleted_by=deleted_by,
                deletion_reason=reason,
            )
        )
        return result.rowcount > 0

    async def bulk_update(
        self, role_ids: list[uuid.UUID], values: dict[str, Any]
    ) -> list[tuple[uuid.UUID, uuid.UUID]]:
        """Update live rows by id. Returns (role_id, user_id) of updated rows."""
        result = await self.session.execute(
            update(AdminRole)
            .where(AdminRole.id.in_(role_ids), AdminRole.deleted_at.is_(None))
            .values(**values)
            .returning(AdminRole.id, AdminRole.user_id)
        )
        return [(row[0], row[1]) for row in result.all()]

    async def deactivate_expired(self, now: Any = None) -> list[tuple[uuid.UUID, uuid.UUID]]:
        """
        Flip is_active on live rows whose expiry has passed.

        A single conditional UPDATE; running it twice deactivates nothing
        the second time.
        """
        result = await self.session.execute(
            update(AdminRole)
            .where(
                AdminRole.is_active.is_(True),
                AdminRole.deleted_at.is_(None),
                AdminRole.expires_at.is_not(None),
                AdminRole.expires_at <= (now if now is not None else func.now()),
            )
            .values(is_active=False)
            .returning(AdminRole.id, AdminRole.user_id)
        )
        return [(row[0], row[1]) for row in result.all()]

    async def list_for_user(
        self,
        user_id: uuid.UUID,
        *,
        include_inactive: bool = False,
        include_expired: bool = False,
        now: Any = None,
    ) -> list[AdminRole]:
        now = now if now is not None else func.now()
        query = select(AdminRole).where(AdminRole.user_id == user_id)
        if not include_inactive:
            query = query.where(AdminRole.is_active.is_(True), AdminRole.deleted_at.is_(None))
        if not include_expired:
            query = query.where(or_(AdminRole.expires_at.is_(None), AdminRole.expires_at > now))
        result = await self.session.execute(query.order_by(AdminRole.created_at.desc()))
        return list(result.scalars().all())

    async def list_expiring(self, now: datetime, until: datetime) -> list[AdminRole]:
        result = await self.session.execute(
            select(AdminRole)
            .where(
                _effective_at(now),
                AdminRole.expires_at.is_not(None),
                AdminRole.expires_at <= until,
            )
            .order_by(AdminRole.expires_at)
        )
        return list(result.scalars().all())

    async def list_with_custom_permission(self, permission: str, now: Any = None) -> list[AdminRole]:
        result = await self.session.execute(
            select(AdminRole).where(
                _effective_at(now if now is not None else func.now()),
                AdminRole.permissions.contains([permission]),
            )
        )
        return list(result.scalars().all())

    async def list_effective_by_departments(
        self, departments: list[str], now: Any = None
    ) -> list[AdminRole]:
        result = await self.session.execute(
            select(AdminRole).where(
                AdminRole.department.in_(departments),
                _effective_at(now if now is not None else func.now()),
            )
        )
        return list(result.scalars().all())

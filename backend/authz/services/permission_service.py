import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth.hierarchy import expand_permissions
from ..auth.permission_catalog import ADMIN_BASE_PERMISSIONS, get_role_permissions
from ..auth.permission_set import PermissionSet
from ..auth.role_templates import template_permissions
from ..auth.roles import Department, UserRole
from ..crud.admin_role import AdminRoleRepository
from ..crud.user import UserRepository
from ..domain.admin_roles import AdminRoleGrant
from ..domain.context import PermissionContext
from ..domain.ports.audit import AuditSink
from ..domain.results import ALLOWED, Decision, Denied, NotFound, raise_for_result
from ..errors import MisconfiguredError, RoleNotFoundError, UpstreamUnavailableError
from .permission_cache import PermissionCache

logger = logging.getLogger(__name__)


class PermissionService:
    """Resolves a user's effective permissions and answers checks against them.

    Resolution order: per-operation context, shared cache, database. The
    database path merges the base role, every effective admin role
    assignment (template plus custom permissions, unioned across
    departments) and the hierarchy closure. A SUPER_ADMIN assignment
    short-circuits to the global wildcard.

    Store failures during resolution fail closed with
    ``UpstreamUnavailableError``. Cache failures only cost a reload.
    """

    def __init__(
        self,
        session: AsyncSession,
        cache: PermissionCache | None = None,
        audit: AuditSink | None = None,
    ):
        self.session = session
        self.cache = cache
        self.audit = audit
        self.user_repo = UserRepository(session)
        self.admin_role_repo = AdminRoleRepository(session)

    # ========================================================================
    # RESOLUTION
    # ========================================================================

    async def get_user_role(
        self, user_id: uuid.UUID, ctx: PermissionContext | None = None
    ) -> UserRole:
        """Base role of a user.

        Raises:
            RoleNotFoundError: If the user does not exist or has no role
            UpstreamUnavailableError: If the store could not be reached
        """
        if ctx is not None:
            cached = ctx.get_role(user_id)
            if cached is not None:
                return cached

        try:
            raw_role = await self.user_repo.get_role(user_id)
        except SQLAlchemyError as exc:
            logger.error("role_lookup_failed user_id=%s error=%s", user_id, exc)
            raise UpstreamUnavailableError("Role store unavailable") from exc

        if raw_role is None:
            raise RoleNotFoundError(details={"user_id": str(user_id)})
        try:
            role = UserRole(raw_role)
        except ValueError as exc:
            raise MisconfiguredError(
                "Stored base role is not recognised",
                details={"user_id": str(user_id), "role": raw_role},
            ) from exc

        if ctx is not None:
            ctx.remember_role(user_id, role)
        return role

    async def get_effective_admin_roles(self, user_id: uuid.UUID) -> list[AdminRoleGrant]:
        """Effective admin role assignments of a user, cache first.

        Raises:
            UpstreamUnavailableError: If the store could not be reached
            MisconfiguredError: If a stored permission array is malformed
        """
        now = datetime.now(timezone.utc)
        if self.cache is not None:
            cached = await self.cache.get_admin_roles(user_id)
            if cached is not None:
                return [grant for grant in cached if grant.is_effective_at(now)]

        try:
            rows = await self.admin_role_repo.find_active_by_user(user_id, now)
        except SQLAlchemyError as exc:
            logger.error("admin_role_lookup_failed user_id=%s error=%s", user_id, exc)
            raise UpstreamUnavailableError("Admin role store unavailable") from exc

        grants = []
        for row in rows:
            try:
                grants.append(AdminRoleGrant.from_model(row))
            except ValueError as exc:
                logger.error(
                    "admin_role_corrupt role_id=%s user_id=%s error=%s", row.id, user_id, exc
                )
                raise MisconfiguredError(
                    "Stored admin role is malformed",
                    details={"role_id": str(row.id)},
                ) from exc

        if self.cache is not None:
            await self.cache.set_admin_roles(user_id, grants)
        return grants

    async def get_effective_permissions(
        self, user_id: uuid.UUID, ctx: PermissionContext | None = None
    ) -> PermissionSet:
        """Resolve the full permission set of a user.

        Args:
            user_id: User to resolve
            ctx: Optional per-operation memo

        Returns:
            The resolved set (``PermissionSet.everything()`` for super admins)

        Raises:
            RoleNotFoundError: If the user has no base role
            UpstreamUnavailableError: If the store could not be reached
        """
        if ctx is not None:
            memo = ctx.get_permissions(user_id)
            if memo is not None:
                return memo

        permissions = None
        if self.cache is not None:
            permissions = await self.cache.get(user_id)

        if permissions is None:
            permissions, valid_until = await self._resolve(user_id, ctx)
            if self.cache is not None:
                await self.cache.set(user_id, permissions, valid_until=valid_until)

        if ctx is not None:
            ctx.remember_permissions(user_id, permissions)
        return permissions

    async def _resolve(
        self, user_id: uuid.UUID, ctx: PermissionContext | None
    ) -> tuple[PermissionSet, datetime | None]:
        """Permission set plus the instant it stops being valid (earliest grant expiry)."""
        role = await self.get_user_role(user_id, ctx)

        if role != UserRole.ADMIN:
            return PermissionSet(expand_permissions(get_role_permissions(role))), None

        grants = await self.get_effective_admin_roles(user_id)
        valid_until = min(
            (grant.expires_at for grant in grants if grant.expires_at is not None),
            default=None,
        )
        if any(grant.department == Department.SUPER_ADMIN for grant in grants):
            return PermissionSet.everything(), valid_until

        granted: set[str] = set(ADMIN_BASE_PERMISSIONS)
        for grant in grants:
            granted |= template_permissions(grant.department, grant.seniority)
            granted |= grant.custom_permissions.permissions
        return PermissionSet(expand_permissions(granted)), valid_until

    # ========================================================================
    # CHECKS
    # ========================================================================

    async def has_permission(
        self, user_id: uuid.UUID, permission: str, ctx: PermissionContext | None = None
    ) -> bool:
        permissions = await self.get_effective_permissions(user_id, ctx)
        return permissions.has(permission)

    async def has_any_permission(
        self,
        user_id: uuid.UUID,
        permissions: Iterable[str],
        ctx: PermissionContext | None = None,
    ) -> bool:
        resolved = await self.get_effective_permissions(user_id, ctx)
        return resolved.has_any(permissions)

    async def has_all_permissions(
        self,
        user_id: uuid.UUID,
        permissions: Iterable[str],
        ctx: PermissionContext | None = None,
    ) -> bool:
        resolved = await self.get_effective_permissions(user_id, ctx)
        return resolved.has_all(permissions)

    async def check_permission(
        self,
        user_id: uuid.UUID,
        permissions: Iterable[str],
        *,
        require_all: bool = True,
        ctx: PermissionContext | None = None,
    ) -> Decision:
        """Non-raising check.

        Returns ``Denied`` with the missing permissions, or ``NotFound``
        when the user has no base role. Store failures still raise.
        """
        required = list(permissions)
        try:
            resolved = await self.get_effective_permissions(user_id, ctx)
        except RoleNotFoundError as exc:
            return NotFound(reason=exc.message)

        missing = resolved.missing(required)
        if require_all and missing:
            return Denied(missing_permissions=tuple(missing))
        if not require_all and required and len(missing) == len(required):
            return Denied(missing_permissions=tuple(missing))
        return ALLOWED

    async def require_permission(
        self,
        user_id: uuid.UUID,
        *permissions: str,
        require_all: bool = True,
        ctx: PermissionContext | None = None,
        resource_type: str = "permission",
        resource_id: Any = None,
    ) -> None:
        """Enforcing check. Denials are audited before raising.

        Raises:
            PermissionDeniedError: If the permissions are not held
            RoleNotFoundError: If the user has no base role
        """
        result = await self.check_permission(
            user_id, permissions, require_all=require_all, ctx=ctx
        )
        if isinstance(result, NotFound):
            raise RoleNotFoundError(details={"user_id": str(user_id)})

        if isinstance(result, Denied):
            logger.info(
                "permission_denied user_id=%s missing=%s", user_id, list(result.missing_permissions)
            )
            if self.audit is not None:
                await self.audit.log_event(
                    action="security.permission_denied",
                    actor_id=user_id,
                    resource_type=resource_type,
                    resource_id=resource_id,
                    after={
                        "required": list(permissions),
                        "missing_permissions": list(result.missing_permissions),
                        "require_all": require_all,
                    },
                )
        raise_for_result(result)

    # ========================================================================
    # CACHE MANAGEMENT
    # ========================================================================

    async def invalidate_user(
        self, user_id: uuid.UUID, ctx: PermissionContext | None = None
    ) -> None:
        """Drop both cache entries of a user, and its memo entries in ``ctx``.

        Raises:
            CacheInvalidationError: If the cache did not confirm the delete
        """
        if ctx is not None:
            ctx.forget(user_id)
        if self.cache is not None:
            await self.cache.invalidate(user_id)

    async def invalidate_users(self, user_ids: Iterable[uuid.UUID]) -> None:
        if self.cache is not None:
            await self.cache.invalidate_many(user_ids)

    async def warm_permission_cache(self, user_ids: Iterable[Any] | None = None) -> int:
        """Resolve and cache users that have no cache entry yet.

        Args:
            user_ids: Users to warm (defaults to the most frequently
                accessed users tracked by the cache)

        Returns:
            Number of users whose permissions were loaded
        """
        if self.cache is None:
            return 0
        if user_ids is None:
            user_ids = await self.cache.get_frequent_users()

        warmed = 0
        for raw_id in user_ids:
            user_id = raw_id if isinstance(raw_id, uuid.UUID) else uuid.UUID(str(raw_id))
            if await self.cache.exists(user_id):
                continue
            try:
                await self.get_effective_permissions(user_id)
            except RoleNotFoundError:
                logger.info("cache_warm_skipped user_id=%s reason=no_role", user_id)
                continue
            warmed += 1

        logger.info("cache_warmed count=%d", warmed)
        return warmed

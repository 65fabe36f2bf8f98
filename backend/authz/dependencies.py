import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from .database import get_session, get_session_factory
from .domain.context import PermissionContext
from .errors import AuthError
from .infrastructure.redis import get_redis
from .services.admin.admin_role_service import AdminRoleService
from .services.approval.approval_service import ApprovalService
from .services.audit.audit_service import AuditService
from .services.permission_cache import PermissionCache
from .services.permission_service import PermissionService


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async for session in get_session():
        yield session


def get_permission_cache() -> PermissionCache:
    return PermissionCache(get_redis())


def get_audit_service() -> AuditService:
    return AuditService(get_session_factory())


def get_permission_context() -> PermissionContext:
    # One memo per request, dropped with it
    return PermissionContext()


def get_permission_service(
    db: AsyncSession = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
    audit: AuditService = Depends(get_audit_service),
) -> PermissionService:
    return PermissionService(db, cache, audit)


def get_admin_role_service(
    db: AsyncSession = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
    audit: AuditService = Depends(get_audit_service),
) -> AdminRoleService:
    return AdminRoleService(db, cache, audit)


def get_approval_service(
    db: AsyncSession = Depends(get_db),
    permission_service: PermissionService = Depends(get_permission_service),
    audit: AuditService = Depends(get_audit_service),
) -> ApprovalService:
    return ApprovalService(db, permission_service, audit)


def get_current_user_id(request: Request) -> uuid.UUID:
    """Authenticated user id placed on ``request.state`` by the auth layer."""
    user_id = getattr(request.state, "user_id", None)
    if user_id is None:
        raise AuthError("Not authenticated")
    if isinstance(user_id, uuid.UUID):
        return user_id
    try:
        return uuid.UUID(str(user_id))
    except ValueError:
        raise AuthError("Invalid authenticated user id") from None


def require_permission(
    *permissions: str, require_all: bool = True
) -> Callable[..., Awaitable[uuid.UUID]]:
    """Dependency factory enforcing permissions for a route.

    Usage::

        @router.delete("/users/{user_id}")
        async def delete_user(
            actor_id: uuid.UUID = Depends(require_permission("users.delete")),
        ): ...

    Returns the authenticated user id when the check passes.
    """
    if not permissions:
        raise ValueError("require_permission needs at least one permission")

    async def dependency(
        user_id: uuid.UUID = Depends(get_current_user_id),
        permission_service: PermissionService = Depends(get_permission_service),
        ctx: PermissionContext = Depends(get_permission_context),
    ) -> uuid.UUID:
        await permission_service.require_permission(
            user_id, *permissions, require_all=require_all, ctx=ctx
        )
        return user_id

    return dependency


def require_any_permission(*permissions: str) -> Callable[..., Awaitable[uuid.UUID]]:
    return require_permission(*permissions, require_all=False)

import logging
import uuid
from typing import Any, Mapping

from ..auth.resource_rules import (
    RESOURCE_TYPES,
    ResourceAction,
    get_resource_rule,
    relationship_grants_access,
)
from ..auth.roles import UserRole
from ..domain.context import PermissionContext
from ..domain.ports.audit import AuditSink
from ..domain.ports.resource_data import ResourceDataProvider
from ..domain.results import (
    ALLOWED,
    Decision,
    Denied,
    Misconfigured,
    NotFound,
    is_allowed,
    raise_for_result,
)
from ..errors import RoleNotFoundError
from .permission_service import PermissionService

logger = logging.getLogger(__name__)


class ResourceAccessEvaluator:
    """Decides whether a user may perform an action on one resource.

    ADMIN users pass. Everyone else needs the permission mapped from
    (resource type, action, ownership), or a relationship rule that covers
    their role and action. Unmapped pairs are denied.
    """

    def __init__(
        self,
        permission_service: PermissionService,
        providers: Mapping[str, ResourceDataProvider] | None = None,
        audit: AuditSink | None = None,
    ):
        self.permission_service = permission_service
        self.providers = dict(providers or {})
        self.audit = audit

    def register_provider(self, resource_type: str, provider: ResourceDataProvider) -> None:
        if resource_type not in RESOURCE_TYPES:
            raise ValueError(f"No access rules defined for resource type: {resource_type}")
        self.providers[resource_type] = provider

    async def check_resource_access(
        self,
        user_id: uuid.UUID,
        resource_type: str,
        resource_id: str,
        action: ResourceAction | str,
        ctx: PermissionContext | None = None,
    ) -> Decision:
        try:
            role = await self.permission_service.get_user_role(user_id, ctx)
        except RoleNotFoundError as exc:
            return NotFound(reason=exc.message)

        if role == UserRole.ADMIN:
            return ALLOWED

        try:
            action = ResourceAction(action)
        except ValueError:
            return Denied(reason=f"Unsupported action '{action}' on {resource_type}")

        rule = get_resource_rule(resource_type, action)
        if rule is None:
            return Denied(reason=f"No access rule for {action.value} on {resource_type}")

        provider = self.providers.get(resource_type)
        if provider is None:
            logger.error("resource_provider_missing resource_type=%s", resource_type)
            return Misconfigured(
                reason=f"No resource data provider registered for '{resource_type}'",
                details={"resource_type": resource_type},
            )

        is_owner = await provider.is_owner(user_id, resource_id)
        permission = rule.for_owner(is_owner)

        if await self.permission_service.has_permission(user_id, permission, ctx):
            return ALLOWED

        if relationship_grants_access(resource_type, action, role) and await provider.has_relationship(
            user_id, resource_id
        ):
            return ALLOWED

        return Denied(missing_permissions=(permission,))

    async def can_access(
        self,
        user_id: uuid.UUID,
        resource_type: str,
        resource_id: str,
        action: ResourceAction | str,
        ctx: PermissionContext | None = None,
    ) -> bool:
        """Boolean form. Misconfiguration still raises.

        Raises:
            MisconfiguredError: If the resource type has no provider
        """
        result = await self.check_resource_access(user_id, resource_type, resource_id, action, ctx)
        if isinstance(result, Misconfigured):
            raise_for_result(result)
        return is_allowed(result)

    async def require_resource_access(
        self,
        user_id: uuid.UUID,
        resource_type: str,
        resource_id: str,
        action: ResourceAction | str,
        ctx: PermissionContext | None = None,
    ) -> None:
        """Enforcing form. Denials are audited before raising.

        Raises:
            PermissionDeniedError: If access is denied
            NotFoundError: If the user has no base role
            MisconfiguredError: If the resource type has no provider
        """
        result = await self.check_resource_access(user_id, resource_type, resource_id, action, ctx)
        if isinstance(result, Denied):
            logger.info(
                "resource_access_denied user_id=%s resource_type=%s resource_id=%s action=%s",
                user_id,
                resource_type,
                resource_id,
                action,
            )
            if self.audit is not None:
                await self.audit.log_event(
                    action="security.resource_access_denied",
                    actor_id=user_id,
                    resource_type=resource_type,
                    resource_id=resource_id,
                    after=_denial_details(action, result),
                )
        raise_for_result(result)


def _denial_details(action: Any, result: Denied) -> dict[str, Any]:
    return {
        "action": getattr(action, "value", action),
        "missing_permissions": list(result.missing_permissions),
        "reason": result.reason,
    }

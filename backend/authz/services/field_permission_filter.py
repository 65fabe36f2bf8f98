"""
Field-level read filtering and write validation.

Reads: denied fields are masked or dropped, per policy. A field is never
partially visible. Writes: every violating field is collected first and the
whole write is rejected if any exist, so callers never apply part of a
payload.
"""
import copy
import logging
import uuid
from typing import Any, Iterable, Mapping

from ..auth.field_policies import FieldPolicy, get_field_policies
from ..auth.permission_set import PermissionSet
from ..domain.context import PermissionContext
from ..domain.ports.audit import AuditSink
from ..errors import MisconfiguredError, PermissionDeniedError
from .permission_service import PermissionService

logger = logging.getLogger(__name__)

_DROP = object()


def _policies_for(resource_type: str) -> dict[str, FieldPolicy]:
    policies = get_field_policies(resource_type)
    if policies is None:
        raise MisconfiguredError(
            f"No field policy configured for resource type '{resource_type}'",
            details={"resource_type": resource_type},
        )
    return policies


def _read_value(policy: FieldPolicy | None, value: Any, permissions: PermissionSet) -> Any:
    if policy is None:
        return value
    if not policy.readable:
        return _DROP
    if not policy.read or permissions.has_any(policy.read):
        return value
    if policy.mask:
        return copy.deepcopy(policy.mask_value)
    return _DROP


def _writable(policy: FieldPolicy | None, permissions: PermissionSet) -> bool:
    if policy is None:
        return True
    return bool(policy.write) and permissions.has_any(policy.write)


class FieldPermissionFilter:
    def __init__(
        self,
        permission_service: PermissionService | None = None,
        audit: AuditSink | None = None,
    ):
        self.permission_service = permission_service
        self.audit = audit

    def filter_readable(
        self, obj: Mapping[str, Any], resource_type: str, permissions: PermissionSet
    ) -> dict[str, Any]:
        """Copy of ``obj`` with unreadable fields masked or removed.

        Raises:
            MisconfiguredError: If the resource type has no policy table
        """
        policies = _policies_for(resource_type)
        filtered = {}
        for field, value in obj.items():
            result = _read_value(policies.get(field), value, permissions)
            if result is not _DROP:
                filtered[field] = result
        return filtered

    def filter_readable_many(
        self,
        objs: Iterable[Mapping[str, Any]],
        resource_type: str,
        permissions: PermissionSet,
    ) -> list[dict[str, Any]]:
        return [self.filter_readable(obj, resource_type, permissions) for obj in objs]

    def can_read_field(self, resource_type: str, field: str, permissions: PermissionSet) -> bool:
        """True when the real value would be returned (not masked, not dropped)."""
        policy = _policies_for(resource_type).get(field)
        if policy is None:
            return True
        return policy.readable and (not policy.read or permissions.has_any(policy.read))

    def can_write_field(self, resource_type: str, field: str, permissions: PermissionSet) -> bool:
        return _writable(_policies_for(resource_type).get(field), permissions)

    def validate_writes(
        self, resource_type: str, payload: Mapping[str, Any], permissions: PermissionSet
    ) -> list[str]:
        """Fields in ``payload`` the holder of ``permissions`` may not write.

        An empty list means the whole payload may be applied.
        """
        policies = _policies_for(resource_type)
        return [field for field in payload if not _writable(policies.get(field), permissions)]

    def get_field_metadata(
        self, resource_type: str, permissions: PermissionSet
    ) -> dict[str, dict[str, bool]]:
        """Per configured field: readable / writable / masked for this holder."""
        policies = _policies_for(resource_type)
        metadata = {}
        for field, policy in policies.items():
            readable = self.can_read_field(resource_type, field, permissions)
            metadata[field] = {
                "readable": readable,
                "writable": _writable(policy, permissions),
                "masked": not readable and policy.readable and policy.mask,
            }
        return metadata

    async def filter_for_user(
        self,
        user_id: uuid.UUID,
        obj: Mapping[str, Any],
        resource_type: str,
        ctx: PermissionContext | None = None,
    ) -> dict[str, Any]:
        permissions = await self._permissions(user_id, ctx)
        return self.filter_readable(obj, resource_type, permissions)

    async def require_field_writes(
        self,
        user_id: uuid.UUID,
        resource_type: str,
        payload: Mapping[str, Any],
        *,
        resource_id: Any = None,
        ctx: PermissionContext | None = None,
    ) -> None:
        """Reject the whole write if any field is not writable.

        Raises:
            PermissionDeniedError: Listing every violating field
            MisconfiguredError: If the resource type has no policy table
        """
        permissions = await self._permissions(user_id, ctx)
        violations = self.validate_writes(resource_type, payload, permissions)
        if not violations:
            return

        logger.info(
            "field_write_denied user_id=%s resource_type=%s fields=%s",
            user_id,
            resource_type,
            violations,
        )
        if self.audit is not None:
            await self.audit.log_event(
                action="security.field_write_denied",
                actor_id=user_id,
                resource_type=resource_type,
                resource_id=resource_id,
                after={"fields": violations},
            )
        raise PermissionDeniedError(
            f"Not allowed to modify fields: {', '.join(violations)}",
            details={"fields": violations},
        )

    async def _permissions(
        self, user_id: uuid.UUID, ctx: PermissionContext | None
    ) -> PermissionSet:
        if self.permission_service is None:
            raise MisconfiguredError("FieldPermissionFilter has no permission service")
        return await self.permission_service.get_effective_permissions(user_id, ctx)

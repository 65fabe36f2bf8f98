import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ...crud.audit_log import AuditLogRepository
from ...models.audit_log import ACTOR_TYPES

logger = logging.getLogger(__name__)


class AuditService:
    """Fire-and-forget audit sink.

    Every event is written to the log as ``AUDIT: <json>``. When a session
    factory is configured the event is also persisted to ``audit_logs`` in
    its own session, so an audit commit never touches the caller's
    transaction. No failure in here ever reaches the caller.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self.session_factory = session_factory

    async def log_event(
        self,
        *,
        action: str,
        actor_id: uuid.UUID | str | None,
        resource_type: str,
        resource_id: uuid.UUID | str | None,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
        reason: str | None = None,
        actor_type: str = "user",
    ) -> None:
        """Record an audit event.

        Args:
            action: What happened (e.g. 'admin_role.revoke')
            actor_id: Who did it (None for the system)
            resource_type: Kind of object affected
            resource_id: Id of the object affected
            before: State before the change
            after: State after the change
            reason: Optional free-text reason
            actor_type: 'user' or 'system'
        """
        try:
            if actor_type not in ACTOR_TYPES:
                raise ValueError(f"Invalid actor_type '{actor_type}'")

            event = {
                "action": action,
                "actor_id": str(actor_id) if actor_id is not None else None,
                "actor_type": actor_type,
                "resource_type": resource_type,
                "resource_id": str(resource_id) if resource_id is not None else None,
                "before": before,
                "after": after,
                "reason": reason,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
            logger.info("AUDIT: %s", json.dumps(event, default=str, sort_keys=True))

            if self.session_factory is None:
                return

            async with self.session_factory() as session:
                repo = AuditLogRepository(session)
                await repo.create(
                    actor_id=_as_uuid(actor_id),
                    actor_type=actor_type,
                    action=action,
                    resource_type=resource_type,
                    resource_id=event["resource_id"],
                    before=_jsonable(before),
                    after=_jsonable(after),
                    reason=reason,
                )
        except Exception:
            logger.error(
                "audit_write_failed action=%s resource_type=%s resource_id=%s",
                action,
                resource_type,
                resource_id,
                exc_info=True,
            )

    async def log_permission_denied(
        self,
        *,
        actor_id: uuid.UUID | str | None,
        missing_permissions: list[str],
        resource_type: str = "permission",
        resource_id: uuid.UUID | str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Record a denied authorization check."""
        await self.log_event(
            action="security.permission_denied",
            actor_id=actor_id,
            resource_type=resource_type,
            resource_id=resource_id if resource_id is not None else ",".join(missing_permissions),
            after={"missing_permissions": list(missing_permissions), **(context or {})},
        )


def _as_uuid(value: uuid.UUID | str | None) -> uuid.UUID | None:
    if value is None or isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def _jsonable(value: dict[str, Any] | None) -> dict[str, Any] | None:
    if value is None:
        return None
    return json.loads(json.dumps(value, default=str))

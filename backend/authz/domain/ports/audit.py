from __future__ import annotations

from typing import Any, Protocol


class AuditSink(Protocol):
    """Append-only sink for structured audit events. Must never raise."""

    async def log_event(
        self,
        *,
        action: str,
        actor_id: Any,
        resource_type: str,
        resource_id: Any,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
        reason: str | None = None,
        actor_type: str = "user",
    ) -> None:
        ...

from __future__ import annotations

import uuid
from typing import Protocol


class ResourceDataProvider(Protocol):
    """Ownership and relationship facts for one resource type."""

    async def is_owner(self, user_id: uuid.UUID, resource_id: str) -> bool:
        ...

    async def has_relationship(self, user_id: uuid.UUID, resource_id: str) -> bool:
        ...

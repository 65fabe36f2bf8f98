import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth.roles import ApprovalStatus
from ..models.approval_request import ApprovalRequest


class ApprovalRequestRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        *,
        action_type: str,
        requested_by: uuid.UUID,
        department: str,
        payload: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> ApprovalRequest:
        request = ApprovalRequest(
            action_type=action_type,
            requested_by=requested_by,
            department=department,
            payload=payload,
            status=ApprovalStatus.PENDING.value,
            request_metadata=metadata,
        )
        self.session.add(request)
        await self.session.flush()
        await self.session.refresh(request)
        return request

    async def get_by_id(
        self, request_id: uuid.UUID, *, for_update: bool = False
    ) -> ApprovalRequest | None:
        query = select(ApprovalRequest).where(ApprovalRequest.id == request_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def transition(
        self,
        request_id: uuid.UUID,
        *,
        status: ApprovalStatus,
        reviewed_by: uuid.UUID,
        reviewed_at: datetime,
        comments: str | None,
    ) -> ApprovalRequest | None:
        """
        Move a PENDING request to a terminal status.

        The WHERE clause makes the transition happen at most once; None
        means the row was no longer PENDING.
        """
        result = await self.session.execute(
            update(ApprovalRequest)
            .where(
                ApprovalRequest.id == request_id,
                ApprovalRequest.status == ApprovalStatus.PENDING.value,
            )
            .values(
                status=status.value,
                reviewed_by=reviewed_by,
                reviewed_at=reviewed_at,
                review_comments=comments,
            )
            .returning(ApprovalRequest)
            .execution_options(synchronize_session="fetch")
        )
        return result.scalar_one_or_none()

    async def list_pending(
        self,
        *,
        action_types: list[str] | None = None,
        exclude_requested_by: uuid.UUID | None = None,
        limit: int = 100,
    ) -> list[ApprovalRequest]:
        query = select(ApprovalRequest).where(
            ApprovalRequest.status == ApprovalStatus.PENDING.value
        )
        if action_types is not None:
            query = query.where(ApprovalRequest.action_type.in_(action_types))
        if exclude_requested_by is not None:
            query = query.where(ApprovalRequest.requested_by != exclude_requested_by)
        result = await self.session.execute(
            query.order_by(ApprovalRequest.created_at).limit(limit)
        )
        return list(result.scalars().all())

    async def count_by_status(self, department: str | None = None) -> dict[str, int]:
        query = select(ApprovalRequest.status, func.count()).group_by(ApprovalRequest.status)
        if department is not None:
            query = query.where(ApprovalRequest.department == department)
        result = await self.session.execute(query)
        return {row[0]: int(row[1]) for row in result.all()}

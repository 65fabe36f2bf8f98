import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ...auth.roles import ApprovalStatus, Department, UserRole
from ...crud.admin_role import AdminRoleRepository
from ...crud.approval_request import ApprovalRequestRepository
from ...domain.admin_roles import AdminRoleGrant
from ...domain.ports.audit import AuditSink
from ...errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    RoleNotFoundError,
    ValidationError,
)
from ...models.approval_request import ApprovalRequest
from ..permission_service import PermissionService
from .approval_policy import (
    approvable_actions,
    can_approve,
    describe_requirement,
    require_requirement,
    validate_transition,
)

logger = logging.getLogger(__name__)


def _request_snapshot(request: ApprovalRequest) -> dict[str, Any]:
    return {
        "action_type": request.action_type,
        "requested_by": str(request.requested_by),
        "department": request.department,
        "status": request.status,
        "reviewed_by": str(request.reviewed_by) if request.reviewed_by else None,
    }


class ApprovalService:
    """Persistence and state machine for dual-control approval requests.

    Transitions run under a row lock and a conditional UPDATE on
    ``status = 'PENDING'``, so a request is resolved exactly once even when
    two reviewers act at the same moment.
    """

    def __init__(
        self,
        session: AsyncSession,
        permission_service: PermissionService,
        audit: AuditSink | None = None,
    ):
        self.session = session
        self.permission_service = permission_service
        self.audit = audit
        self.request_repo = ApprovalRequestRepository(session)
        self.admin_role_repo = AdminRoleRepository(session)

    async def create_approval_request(
        self,
        action_type: str,
        requested_by: uuid.UUID,
        department: Department | str,
        payload: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> ApprovalRequest:
        """Open a PENDING request for a high-risk action.

        Raises:
            MisconfiguredError: If ``action_type`` has no approval requirement
            ValidationError: If ``department`` is unknown
        """
        requirement = require_requirement(action_type)
        try:
            department = Department(department)
        except ValueError as exc:
            raise ValidationError(f"Unknown department: {department}") from exc

        request_metadata = {
            **(metadata or {}),
            **describe_requirement(requirement),
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            request = await self.request_repo.create(
                action_type=action_type,
                requested_by=requested_by,
                department=department.value,
                payload=payload,
                metadata=request_metadata,
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "approval_request_created request_id=%s action=%s requested_by=%s",
            request.id,
            action_type,
            requested_by,
        )
        if self.audit is not None:
            await self.audit.log_event(
                action="approval_request.create",
                actor_id=requested_by,
                resource_type="approval_request",
                resource_id=request.id,
                after=_request_snapshot(request),
            )
        return request

    async def approve(
        self,
        request_id: uuid.UUID,
        approver_id: uuid.UUID,
        comments: str | None = None,
    ) -> ApprovalRequest:
        """Approve a PENDING request.

        Raises:
            NotFoundError: If the request does not exist
            ConflictError: If the request is already resolved
            PermissionDeniedError: If the approver lacks authority
        """
        return await self._review(request_id, approver_id, ApprovalStatus.APPROVED, comments)

    async def reject(
        self,
        request_id: uuid.UUID,
        approver_id: uuid.UUID,
        comments: str,
    ) -> ApprovalRequest:
        """Reject a PENDING request. A rejection always carries comments.

        Raises:
            ValidationError: If ``comments`` is empty
            NotFoundError: If the request does not exist
            ConflictError: If the request is already resolved
            PermissionDeniedError: If the approver lacks authority
        """
        if not comments or not comments.strip():
            raise ValidationError("Comments are required when rejecting an approval request")
        return await self._review(request_id, approver_id, ApprovalStatus.REJECTED, comments)

    async def _review(
        self,
        request_id: uuid.UUID,
        approver_id: uuid.UUID,
        target: ApprovalStatus,
        comments: str | None,
    ) -> ApprovalRequest:
        try:
            updated, before = await self._transition(request_id, approver_id, target, comments)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "approval_request_reviewed request_id=%s status=%s reviewer_id=%s",
            request_id,
            target.value,
            approver_id,
        )
        if self.audit is not None:
            await self.audit.log_event(
                action=f"approval_request.{target.value.lower()}",
                actor_id=approver_id,
                resource_type="approval_request",
                resource_id=request_id,
                before=before,
                after=_request_snapshot(updated),
                reason=comments,
            )
        return updated

    async def _transition(
        self,
        request_id: uuid.UUID,
        approver_id: uuid.UUID,
        target: ApprovalStatus,
        comments: str | None,
    ) -> tuple[ApprovalRequest, dict[str, Any]]:
        request = await self.request_repo.get_by_id(request_id, for_update=True)
        if request is None:
            raise NotFoundError("Approval request not found", details={"request_id": str(request_id)})

        validate_transition(request.status, target)

        if str(request.requested_by) == str(approver_id):
            raise PermissionDeniedError("Approval requests cannot be reviewed by their requester")

        grants = await self._approver_grants(approver_id)
        if not can_approve(approver_id, grants, request):
            requirement = require_requirement(request.action_type)
            raise PermissionDeniedError(
                "Insufficient authority to review this approval request",
                details={
                    "required_departments": sorted(
                        d.value for d in requirement.required_departments
                    ),
                    "requires_senior_level": requirement.requires_senior_level,
                },
            )

        before = _request_snapshot(request)
        updated = await self.request_repo.transition(
            request_id,
            status=target,
            reviewed_by=approver_id,
            reviewed_at=datetime.now(timezone.utc),
            comments=comments,
        )
        if updated is None:
            raise ConflictError(
                "Approval request was resolved concurrently",
                details={"request_id": str(request_id)},
            )
        return updated, before

    async def _is_admin(self, user_id: uuid.UUID) -> bool:
        try:
            role = await self.permission_service.get_user_role(user_id)
        except RoleNotFoundError:
            return False
        return role == UserRole.ADMIN

    async def _approver_grants(self, approver_id: uuid.UUID) -> list[AdminRoleGrant]:
        """Effective assignments of a reviewer, read from the store.

        Assignment rows left behind on a user whose base role is no longer
        ADMIN carry no authority.
        """
        if not await self._is_admin(approver_id):
            logger.info("approval_authority_denied user_id=%s reason=not_admin", approver_id)
            return []
        rows = await self.admin_role_repo.find_active_by_user(approver_id)
        return [AdminRoleGrant.from_model(row) for row in rows]

    async def get_approval_request(self, request_id: uuid.UUID) -> ApprovalRequest:
        request = await self.request_repo.get_by_id(request_id)
        if request is None:
            raise NotFoundError("Approval request not found", details={"request_id": str(request_id)})
        return request

    async def get_pending_approvals_for_user(
        self, user_id: uuid.UUID, limit: int = 100
    ) -> list[ApprovalRequest]:
        """PENDING requests ``user_id`` could approve, never their own."""
        if not await self._is_admin(user_id):
            return []
        grants = await self.permission_service.get_effective_admin_roles(user_id)
        action_types = approvable_actions(grants)
        if not action_types:
            return []
        return await self.request_repo.list_pending(
            action_types=action_types,
            exclude_requested_by=user_id,
            limit=limit,
        )

    async def get_approval_statistics(self, department: Department | str | None = None) -> dict[str, int]:
        counts = await self.request_repo.count_by_status(
            Department(department).value if department is not None else None
        )
        stats = {
            "pending": counts.get(ApprovalStatus.PENDING.value, 0),
            "approved": counts.get(ApprovalStatus.APPROVED.value, 0),
            "rejected": counts.get(ApprovalStatus.REJECTED.value, 0),
        }
        stats["total"] = sum(stats.values())
        return stats

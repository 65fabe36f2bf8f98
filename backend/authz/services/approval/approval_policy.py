"""
Approval policy engine.

Pure decisions over the static requirements in ``auth.approval_rules``:
whether an action needs a second reviewer, and whether a given reviewer
may resolve a given request. Persistence lives in ApprovalService.

Dual control is unconditional: a requester who would themselves qualify as
an approver still needs someone else to approve.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from ...auth.approval_rules import (
    APPROVAL_REQUIREMENTS,
    ApprovalRequirement,
    get_approval_requirement,
)
from ...auth.roles import ApprovalStatus, Department, Seniority, TERMINAL_APPROVAL_STATUSES
from ...domain.admin_roles import AdminRoleGrant
from ...domain.results import ALLOWED, Conflict, Decision, raise_for_result
from ...errors import MisconfiguredError

logger = logging.getLogger(__name__)


def require_requirement(action: str) -> ApprovalRequirement:
    """Requirement for ``action``.

    Raises:
        MisconfiguredError: If the action has no registered requirement
    """
    requirement = get_approval_requirement(action)
    if requirement is None:
        raise MisconfiguredError(
            f"No approval requirement configured for action '{action}'",
            details={"action": action},
        )
    return requirement


def requires_approval(
    action: str,
    payload: Mapping[str, Any],
    requester_id: Any = None,
    *,
    now: datetime | None = None,
) -> bool:
    """
    Decide whether ``action`` with ``payload`` needs a second reviewer.

    Missing data never skips approval: an absent threshold field or a
    condition that raises both count as "approval required".

    Args:
        action: Action identifier (e.g. 'finance:initiate_payouts')
        payload: Facts about the specific request
        requester_id: Who is asking
        now: Evaluation time (defaults to now, UTC)

    Returns:
        True if an approval request must be created first
    """
    requirement = get_approval_requirement(action)
    if requirement is None:
        return False

    if requirement.threshold is not None:
        threshold = requirement.threshold
        if threshold.field not in payload or payload[threshold.field] is None:
            logger.warning(
                "approval_threshold_field_missing action=%s field=%s", action, threshold.field
            )
            return True
        try:
            if not threshold.is_met(payload[threshold.field]):
                return False
        except TypeError:
            logger.warning(
                "approval_threshold_uncomparable action=%s field=%s", action, threshold.field
            )
            return True

    if requirement.condition is not None:
        try:
            return bool(
                requirement.condition(payload, requester_id, now or datetime.now(timezone.utc))
            )
        except Exception:
            logger.warning(
                "approval_condition_failed action=%s requester_id=%s",
                action,
                requester_id,
                exc_info=True,
            )
            return True

    return True


def grant_satisfies(requirement: ApprovalRequirement, grant: AdminRoleGrant) -> bool:
    """True if ``grant`` carries enough authority to approve under ``requirement``."""
    if grant.department not in requirement.required_departments:
        return False
    if grant.department == Department.SUPER_ADMIN:
        return True
    if requirement.department_scope is not None and grant.department != requirement.department_scope:
        return False
    if requirement.requires_senior_level and grant.seniority != Seniority.SENIOR:
        return False
    return True


def can_approve(approver_id: Any, grants: Iterable[AdminRoleGrant], request: Any) -> bool:
    """
    Whether ``approver_id`` holding ``grants`` may resolve ``request``.

    Args:
        approver_id: Reviewer
        grants: Reviewer's effective admin role assignments
        request: Anything with ``action_type``, ``requested_by`` and ``status``
    """
    if str(approver_id) == str(request.requested_by):
        return False
    if ApprovalStatus(request.status) != ApprovalStatus.PENDING:
        return False
    requirement = get_approval_requirement(request.action_type)
    if requirement is None:
        return False
    return any(grant_satisfies(requirement, grant) for grant in grants)


def approvable_actions(grants: Iterable[AdminRoleGrant]) -> list[str]:
    """Actions the holder of ``grants`` could approve for someone else."""
    grants = list(grants)
    return sorted(
        action
        for action, requirement in APPROVAL_REQUIREMENTS.items()
        if any(grant_satisfies(requirement, grant) for grant in grants)
    )


def check_transition(current: ApprovalStatus | str, target: ApprovalStatus) -> Decision:
    """
    PENDING -> APPROVED / REJECTED only; terminal states never change.

    Returns ``Conflict`` when the request is already resolved.

    Raises:
        ValueError: If ``target`` is not a terminal status
    """
    current = ApprovalStatus(current)
    if target not in TERMINAL_APPROVAL_STATUSES:
        raise ValueError(f"Cannot transition an approval request to {target.value}")
    if current in TERMINAL_APPROVAL_STATUSES:
        return Conflict(
            reason=f"Approval request has already been {current.value.lower()}",
            details={"status": current.value},
        )
    return ALLOWED


def validate_transition(current: ApprovalStatus | str, target: ApprovalStatus) -> None:
    """
    Raises:
        ConflictError: If the request is already resolved
        ValueError: If ``target`` is not a terminal status
    """
    raise_for_result(check_transition(current, target))


def describe_requirement(requirement: ApprovalRequirement) -> dict[str, Any]:
    """Summary stored on a new request's metadata."""
    return {
        "reason": requirement.reason,
        "approver_departments": sorted(d.value for d in requirement.required_departments),
        "requires_senior_level": requirement.requires_senior_level,
        "department_scope": (
            requirement.department_scope.value if requirement.department_scope else None
        ),
    }

"""
Approval requirements - static dual-control policy per high-risk action.

Each entry says which departments may approve, whether the approver must be
SENIOR, an optional department scope, and optional threshold / condition
gates that decide whether a given request needs approval at all.

Conditions read facts from the request payload supplied by the caller
(e.g. ``license_status``, ``verification_status``). A missing or malformed
fact makes the condition raise, which the policy engine treats as
"approval required".
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Final, Mapping

from authz.auth.roles import Department


# Payouts at or above $10,000 (in cents) require approval
PAYOUT_APPROVAL_THRESHOLD_CENTS: Final[int] = 1_000_000

# Royalty runs locked longer than this require approval for retroactive changes
ROYALTY_RETROACTIVE_THRESHOLD_DAYS: Final[int] = 30


class Comparator(str, Enum):
    GTE = "gte"
    GT = "gt"
    LTE = "lte"
    LT = "lt"
    EQ = "eq"


_COMPARATORS: Final[dict[Comparator, Callable[[Any, Any], bool]]] = {
    Comparator.GTE: lambda a, b: a >= b,
    Comparator.GT: lambda a, b: a > b,
    Comparator.LTE: lambda a, b: a <= b,
    Comparator.LT: lambda a, b: a < b,
    Comparator.EQ: lambda a, b: a == b,
}


@dataclass(frozen=True)
class Threshold:
    field: str
    value: int | float
    comparator: Comparator

    def is_met(self, actual: Any) -> bool:
        return _COMPARATORS[self.comparator](actual, self.value)


# condition(payload, requester_id, now) -> bool
ApprovalCondition = Callable[[Mapping[str, Any], Any, datetime], bool]


@dataclass(frozen=True)
class ApprovalRequirement:
    reason: str
    required_departments: frozenset[Department]
    requires_senior_level: bool
    department_scope: Department | None = None
    threshold: Threshold | None = None
    condition: ApprovalCondition | None = None


# ============================================================================
# CONDITIONS
# ============================================================================

def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        parsed = datetime.fromisoformat(value)
    else:
        raise TypeError(f"Expected ISO timestamp, got {type(value).__name__}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _target_is_verified(payload: Mapping[str, Any], requester_id: Any, now: datetime) -> bool:
    return payload["verification_status"] == "VERIFIED"


def _royalty_run_locked_past_threshold(
    payload: Mapping[str, Any], requester_id: Any, now: datetime
) -> bool:
    if payload["run_status"] != "LOCKED":
        return False
    locked_at = _parse_timestamp(payload["locked_at"])
    return now - locked_at > timedelta(days=ROYALTY_RETROACTIVE_THRESHOLD_DAYS)


def _license_is_active(payload: Mapping[str, Any], requester_id: Any, now: datetime) -> bool:
    return payload["license_status"] == "ACTIVE"


# ============================================================================
# REQUIREMENTS
# ============================================================================

_SUPER_ADMIN_OR_OPERATIONS: Final[frozenset[Department]] = frozenset({
    Department.SUPER_ADMIN,
    Department.OPERATIONS,
})

_SUPER_ADMIN_OR_FINANCE: Final[frozenset[Department]] = frozenset({
    Department.SUPER_ADMIN,
    Department.FINANCE_LICENSING,
})

APPROVAL_REQUIREMENTS: Final[dict[str, ApprovalRequirement]] = {
    "users:delete": ApprovalRequirement(
        reason="Permanent user account deletion is irreversible and requires senior oversight",
        required_departments=_SUPER_ADMIN_OR_OPERATIONS,
        requires_senior_level=True,
    ),
    "finance:initiate_payouts": ApprovalRequirement(
        reason=(
            "Large payouts require senior finance approval to prevent fraud and ensure "
            "dual authorization"
        ),
        required_departments=_SUPER_ADMIN_OR_FINANCE,
        requires_senior_level=True,
        department_scope=Department.FINANCE_LICENSING,
        threshold=Threshold(
            field="amount_cents",
            value=PAYOUT_APPROVAL_THRESHOLD_CENTS,
            comparator=Comparator.GTE,
        ),
    ),
    "licensing:modify_ownership": ApprovalRequirement(
        reason=(
            "IP ownership modifications have legal and financial implications requiring "
            "senior approval"
        ),
        required_departments=_SUPER_ADMIN_OR_FINANCE,
        requires_senior_level=True,
        department_scope=Department.FINANCE_LICENSING,
    ),
    "users:suspend_verified_creator": ApprovalRequirement(
        reason=(
            "Suspending verified creators impacts platform relationships and requires "
            "senior review"
        ),
        required_departments=_SUPER_ADMIN_OR_OPERATIONS,
        requires_senior_level=True,
        condition=_target_is_verified,
    ),
    "users:suspend_verified_brand": ApprovalRequirement(
        reason=(
            "Suspending verified brands impacts business partnerships and requires "
            "senior review"
        ),
        required_departments=_SUPER_ADMIN_OR_OPERATIONS,
        requires_senior_level=True,
        condition=_target_is_verified,
    ),
    "royalties:modify_completed_run": ApprovalRequirement(
        reason=(
            "Retroactive changes to finalized royalty runs require senior approval for "
            "audit compliance"
        ),
        required_departments=_SUPER_ADMIN_OR_FINANCE,
        requires_senior_level=True,
        department_scope=Department.FINANCE_LICENSING,
        condition=_royalty_run_locked_past_threshold,
    ),
    "admin:roles": ApprovalRequirement(
        reason="Admin role changes affect platform security and require highest-level approval",
        required_departments=frozenset({Department.SUPER_ADMIN}),
        requires_senior_level=False,
    ),
    "licensing:terminate": ApprovalRequirement(
        reason=(
            "License termination has legal and financial implications requiring senior "
            "approval"
        ),
        required_departments=_SUPER_ADMIN_OR_FINANCE,
        requires_senior_level=True,
        department_scope=Department.FINANCE_LICENSING,
        condition=_license_is_active,
    ),
}


def get_approval_requirement(action: str) -> ApprovalRequirement | None:
    return APPROVAL_REQUIREMENTS.get(action)

"""
Tests for the dual-control approval policy engine.
"""
import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from authz.auth.approval_rules import PAYOUT_APPROVAL_THRESHOLD_CENTS, APPROVAL_REQUIREMENTS
from authz.auth.permission_set import PermissionSet
from authz.auth.roles import ApprovalStatus, Department, Seniority
from authz.domain.admin_roles import AdminRoleGrant
from authz.domain.results import ALLOWED, Conflict, to_error
from authz.errors import ConflictError, MisconfiguredError
from authz.services.approval.approval_policy import (
    approvable_actions,
    can_approve,
    check_transition,
    describe_requirement,
    require_requirement,
    requires_approval,
    validate_transition,
)

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


def grant(department, seniority=None):
    return AdminRoleGrant(
        department=Department(department),
        seniority=Seniority(seniority) if seniority else None,
        custom_permissions=PermissionSet(),
    )


def pending_request(action_type, requested_by=None, status="PENDING"):
    return SimpleNamespace(
        action_type=action_type,
        requested_by=requested_by or uuid.uuid4(),
        status=status,
    )


class TestRequiresApproval:
    def test_unregistered_action_needs_no_approval(self):
        assert not requires_approval("content:edit", {})

    def test_unconditional_action(self):
        assert requires_approval("users:delete", {"user_id": "u1"})

    def test_payout_threshold_is_inclusive(self):
        action = "finance:initiate_payouts"
        assert requires_approval(action, {"amount_cents": PAYOUT_APPROVAL_THRESHOLD_CENTS})
        assert not requires_approval(action, {"amount_cents": PAYOUT_APPROVAL_THRESHOLD_CENTS - 1})

    def test_missing_threshold_field_requires_approval(self):
        assert requires_approval("finance:initiate_payouts", {})
        assert requires_approval("finance:initiate_payouts", {"amount_cents": None})

    def test_uncomparable_threshold_requires_approval(self):
        assert requires_approval("finance:initiate_payouts", {"amount_cents": "lots"})

    def test_condition_false_skips_approval(self):
        assert not requires_approval("licensing:terminate", {"license_status": "EXPIRED"})
        assert requires_approval("licensing:terminate", {"license_status": "ACTIVE"})

    def test_condition_with_missing_fact_requires_approval(self):
        assert requires_approval("users:suspend_verified_creator", {})

    def test_royalty_lock_age(self):
        action = "royalties:modify_completed_run"
        old = {"run_status": "LOCKED", "locked_at": (NOW - timedelta(days=31)).isoformat()}
        recent = {"run_status": "LOCKED", "locked_at": (NOW - timedelta(days=5)).isoformat()}
        assert requires_approval(action, old, now=NOW)
        assert not requires_approval(action, recent, now=NOW)
        assert not requires_approval(action, {"run_status": "OPEN"}, now=NOW)


class TestCanApprove:
    def test_requester_never_approves_own_request(self):
        requester = uuid.uuid4()
        request = pending_request("users:delete", requested_by=requester)
        assert not can_approve(requester, [grant("SUPER_ADMIN")], request)

    def test_super_admin_approves_anything_registered(self):
        for action in APPROVAL_REQUIREMENTS:
            assert can_approve(uuid.uuid4(), [grant("SUPER_ADMIN")], pending_request(action))

    def test_senior_level_required(self):
        request = pending_request("finance:initiate_payouts")
        assert not can_approve(uuid.uuid4(), [grant("FINANCE_LICENSING", "JUNIOR")], request)
        assert can_approve(uuid.uuid4(), [grant("FINANCE_LICENSING", "SENIOR")], request)

    def test_department_must_be_listed(self):
        request = pending_request("users:delete")
        assert not can_approve(uuid.uuid4(), [grant("FINANCE_LICENSING", "SENIOR")], request)

    def test_any_grant_may_satisfy(self):
        request = pending_request("licensing:modify_ownership")
        grants = [grant("CONTENT_MANAGER", "SENIOR"), grant("FINANCE_LICENSING", "SENIOR")]
        assert can_approve(uuid.uuid4(), grants, request)

    def test_resolved_request_cannot_be_approved(self):
        request = pending_request("users:delete", status="APPROVED")
        assert not can_approve(uuid.uuid4(), [grant("SUPER_ADMIN")], request)

    def test_unknown_action(self):
        assert not can_approve(uuid.uuid4(), [grant("SUPER_ADMIN")], pending_request("content:edit"))

    def test_admin_roles_needs_super_admin(self):
        request = pending_request("admin:roles")
        assert not can_approve(uuid.uuid4(), [grant("OPERATIONS", "SENIOR")], request)


class TestHelpers:
    def test_approvable_actions_for_senior_finance(self):
        actions = approvable_actions([grant("FINANCE_LICENSING", "SENIOR")])
        assert actions == [
            "finance:initiate_payouts",
            "licensing:modify_ownership",
            "licensing:terminate",
            "royalties:modify_completed_run",
        ]

    def test_approvable_actions_empty_without_authority(self):
        assert approvable_actions([grant("CUSTOMER_SERVICE")]) == []

    def test_require_requirement_unknown(self):
        with pytest.raises(MisconfiguredError):
            require_requirement("content:edit")

    def test_terminal_states_are_final(self):
        with pytest.raises(ConflictError):
            validate_transition(ApprovalStatus.REJECTED, ApprovalStatus.APPROVED)
        validate_transition("PENDING", ApprovalStatus.APPROVED)

    def test_check_transition_returns_conflict(self):
        assert check_transition(ApprovalStatus.PENDING, ApprovalStatus.REJECTED) is ALLOWED

        result = check_transition("APPROVED", ApprovalStatus.REJECTED)
        assert isinstance(result, Conflict)
        assert result.details == {"status": "APPROVED"}
        assert to_error(result).details == {"status": "APPROVED"}

    def test_pending_is_not_a_target(self):
        with pytest.raises(ValueError):
            validate_transition(ApprovalStatus.PENDING, ApprovalStatus.PENDING)

    def test_describe_requirement(self):
        summary = describe_requirement(require_requirement("finance:initiate_payouts"))
        assert summary["approver_departments"] == ["FINANCE_LICENSING", "SUPER_ADMIN"]
        assert summary["department_scope"] == "FINANCE_LICENSING"
        assert summary["requires_senior_level"] is True

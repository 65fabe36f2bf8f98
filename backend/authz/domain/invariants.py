"""
Domain invariants module.

Structural safety rules enforced at mutation time. Every check here runs
inside the same transaction as the mutation it guards, against counts read
under row locks, so two concurrent mutations cannot both pass.

INVARIANTS:
1. Last super admin - at least one effective SUPER_ADMIN assignment exists

Revocation finality and the no-self-review rule are enforced by conditional
UPDATEs and a check constraint instead (see crud/admin_role.py and
models/approval_request.py).
"""

import logging
from typing import Any

logger = logging.getLogger(__name__)


class InvariantViolation(Exception):
    """
    Raised when a domain invariant is violated.

    This is a domain-level error that should be handled explicitly,
    never silently ignored.
    """

    def __init__(self, message: str, *, invariant: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.invariant = invariant
        self.details = details or {}

        logger.error(
            "invariant_violation invariant=%s message=%s details=%s",
            invariant,
            message,
            details,
        )


def validate_not_last_super_admin(
    other_effective_count: int,
    *,
    role_id: Any,
    action: str,
) -> None:
    """
    INVARIANT-1: At least one effective SUPER_ADMIN assignment must remain.

    Args:
        other_effective_count: Effective SUPER_ADMIN assignments other than
            the one being changed, counted under lock
        role_id: Assignment being deactivated, revoked or reassigned
        action: Operation name for the error message

    Raises:
        InvariantViolation: If no other effective SUPER_ADMIN would remain
    """
    if other_effective_count < 1:
        raise InvariantViolation(
            f"Cannot {action} the last Super Admin role. At least one Super Admin "
            "must remain active.",
            invariant="INVARIANT-1.last_super_admin",
            details={"role_id": str(role_id), "action": action},
        )


def log_invariant_skip(invariant: str, reason: str, **context: Any) -> None:
    """Log when an invariant check is intentionally skipped."""
    logger.info(
        "invariant_check_skipped invariant=%s reason=%s context=%s",
        invariant,
        reason,
        context,
    )

"""Tests for the structural invariants guarding admin role mutations."""
import logging
import uuid

import pytest

from authz.domain.invariants import (
    InvariantViolation,
    log_invariant_skip,
    validate_not_last_super_admin,
)


class TestLastSuperAdmin:
    def test_passes_when_another_remains(self):
        validate_not_last_super_admin(1, role_id=uuid.uuid4(), action="revoke")

    @pytest.mark.parametrize("action", ["revoke", "deactivate", "reassign"])
    def test_raises_when_none_remain(self, action):
        role_id = uuid.uuid4()
        with pytest.raises(InvariantViolation) as exc_info:
            validate_not_last_super_admin(0, role_id=role_id, action=action)

        error = exc_info.value
        assert error.invariant == "INVARIANT-1.last_super_admin"
        assert error.details == {"role_id": str(role_id), "action": action}
        assert f"Cannot {action} the last Super Admin role" in str(error)

    def test_violation_is_logged(self, caplog):
        with caplog.at_level(logging.ERROR, logger="authz.domain.invariants"):
            with pytest.raises(InvariantViolation):
                validate_not_last_super_admin(0, role_id="r1", action="revoke")
        assert "invariant=INVARIANT-1.last_super_admin" in caplog.text


def test_skip_is_logged_at_info(caplog):
    with caplog.at_level(logging.INFO, logger="authz.domain.invariants"):
        log_invariant_skip("last_super_admin", "assignment already not effective", role_id="r1")
    assert "invariant_check_skipped invariant=last_super_admin" in caplog.text

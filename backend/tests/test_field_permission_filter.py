"""
Tests for field-level read filtering and write validation.
"""
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from authz.auth.permission_set import PermissionSet
from authz.errors import MisconfiguredError, PermissionDeniedError
from authz.services.field_permission_filter import FieldPermissionFilter

OWN_CREATOR = PermissionSet.of(["creators.view_own", "creators.edit_own"])
PUBLIC_ONLY = PermissionSet.of(["creators.view_public", "brands.view_public"])


@pytest.fixture
def field_filter():
    return FieldPermissionFilter()


class TestReadFiltering:
    def test_permitted_fields_are_returned(self, field_filter):
        creator = {"stageName": "Nova", "stripeAccountId": "acct_1", "totalEarnings": 1200}
        assert field_filter.filter_readable(creator, "creator", OWN_CREATOR) == creator

    def test_denied_fields_are_masked(self, field_filter):
        creator = {"stageName": "Nova", "stripeAccountId": "acct_1", "totalEarnings": 1200}
        filtered = field_filter.filter_readable(creator, "creator", PUBLIC_ONLY)
        assert filtered == {"stageName": "Nova", "stripeAccountId": "***", "totalEarnings": None}

    def test_mask_value_is_copied(self, field_filter):
        first = field_filter.filter_readable({"teamMembers": ["a"]}, "brand", PUBLIC_ONLY)
        first["teamMembers"].append("leak")
        second = field_filter.filter_readable({"teamMembers": ["b"]}, "brand", PUBLIC_ONLY)
        assert second["teamMembers"] == []

    def test_unmasked_denied_field_is_dropped(self, field_filter):
        filtered = field_filter.filter_readable(
            {"email": "a@example.com", "role": "VIEWER"}, "user", PermissionSet()
        )
        assert filtered == {}

    def test_unreadable_field_is_always_dropped(self, field_filter):
        filtered = field_filter.filter_readable(
            {"email": "a@example.com", "password_hash": "x"}, "user", PermissionSet.everything()
        )
        assert filtered == {"email": "a@example.com"}

    def test_fields_without_policy_pass_through(self, field_filter):
        assert field_filter.filter_readable({"nickname": "n"}, "user", PermissionSet()) == {"nickname": "n"}

    def test_unknown_resource_type_is_misconfigured(self, field_filter):
        with pytest.raises(MisconfiguredError):
            field_filter.filter_readable({"x": 1}, "spaceship", PermissionSet.everything())

    def test_filter_many(self, field_filter):
        rows = [{"stripeAccountId": "a"}, {"stripeAccountId": "b"}]
        assert field_filter.filter_readable_many(rows, "creator", PUBLIC_ONLY) == [
            {"stripeAccountId": "***"},
            {"stripeAccountId": "***"},
        ]


class TestWriteValidation:
    def test_all_violations_are_listed(self, field_filter):
        payload = {"stageName": "New", "stripeAccountId": "acct_2", "totalEarnings": 0}
        assert field_filter.validate_writes("creator", payload, PUBLIC_ONLY) == [
            "stageName",
            "stripeAccountId",
            "totalEarnings",
        ]

    def test_field_without_write_list_is_never_writable(self, field_filter):
        assert not field_filter.can_write_field("creator", "totalEarnings", PermissionSet.everything())

    def test_permitted_write(self, field_filter):
        assert field_filter.validate_writes("creator", {"stageName": "New"}, OWN_CREATOR) == []


class TestFieldMetadata:
    def test_metadata_flags(self, field_filter):
        metadata = field_filter.get_field_metadata("creator", PUBLIC_ONLY)
        assert metadata["stageName"] == {"readable": True, "writable": False, "masked": False}
        assert metadata["stripeAccountId"] == {"readable": False, "writable": False, "masked": True}

    def test_unreadable_field_is_not_reported_as_masked(self, field_filter):
        metadata = field_filter.get_field_metadata("user", PermissionSet.everything())
        assert metadata["password_hash"]["readable"] is False
        assert metadata["password_hash"]["masked"] is False


class TestUserScopedHelpers:
    @pytest.fixture
    def permission_service(self):
        service = MagicMock()
        service.get_effective_permissions = AsyncMock(return_value=PUBLIC_ONLY)
        return service

    @pytest.mark.anyio
    async def test_filter_for_user(self, permission_service):
        field_filter = FieldPermissionFilter(permission_service)
        filtered = await field_filter.filter_for_user(uuid.uuid4(), {"totalEarnings": 5}, "creator")
        assert filtered == {"totalEarnings": None}

    @pytest.mark.anyio
    async def test_write_rejected_as_a_whole(self, permission_service):
        audit = MagicMock()
        audit.log_event = AsyncMock()
        field_filter = FieldPermissionFilter(permission_service, audit=audit)
        with pytest.raises(PermissionDeniedError) as exc_info:
            await field_filter.require_field_writes(
                uuid.uuid4(), "creator", {"stageName": "x", "stripeAccountId": "y"}
            )
        assert exc_info.value.details == {"fields": ["stageName", "stripeAccountId"]}
        assert audit.log_event.await_args.kwargs["action"] == "security.field_write_denied"

    @pytest.mark.anyio
    async def test_missing_permission_service(self):
        with pytest.raises(MisconfiguredError):
            await FieldPermissionFilter().filter_for_user(uuid.uuid4(), {}, "creator")

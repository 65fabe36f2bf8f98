"""
Tests for PermissionService resolution, checks and caching.
"""
import asyncio
import json
import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from authz.domain.context import PermissionContext
from authz.domain.results import ALLOWED, Denied, NotFound
from authz.errors import (
    MisconfiguredError,
    PermissionDeniedError,
    RoleNotFoundError,
    UpstreamUnavailableError,
)
from authz.infrastructure import cache_keys
from authz.services.permission_service import PermissionService


def admin_role_row(department, seniority=None, permissions=None, expires_at=None):
    return SimpleNamespace(
        id=uuid.uuid4(),
        department=department,
        seniority=seniority,
        permissions=permissions or [],
        expires_at=expires_at,
    )


@pytest.fixture
def user_id():
    return uuid.uuid4()


@pytest.fixture
def audit():
    sink = MagicMock()
    sink.log_event = AsyncMock()
    return sink


def make_service(role, rows=(), cache=None, audit=None):
    service = PermissionService(MagicMock(), cache=cache, audit=audit)
    service.user_repo = MagicMock()
    service.user_repo.get_role = AsyncMock(return_value=role)
    service.admin_role_repo = MagicMock()
    service.admin_role_repo.find_active_by_user = AsyncMock(return_value=list(rows))
    return service


class TestBaseRoleResolution:
    """Non-admin users resolve from their base role only."""

    @pytest.mark.anyio
    async def test_any_and_all(self, user_id):
        service = make_service("VIEWER")
        assert await service.has_any_permission(user_id, ["users.view_all", "users.view_own"])
        assert not await service.has_all_permissions(user_id, ["users.view_all", "users.view_own"])
        assert await service.has_all_permissions(user_id, ["users.view_own", "brands.view_public"])

    @pytest.mark.anyio
    async def test_viewer_has_own_but_not_all(self, user_id):
        service = make_service("VIEWER")
        assert await service.has_permission(user_id, "users.view_own")
        assert not await service.has_permission(user_id, "users.view_all")
        service.admin_role_repo.find_active_by_user.assert_not_called()

    @pytest.mark.anyio
    async def test_creator_gets_hierarchy_closure(self, user_id):
        service = make_service("CREATOR")
        permissions = await service.get_effective_permissions(user_id)
        assert permissions.has("ip_assets.create")
        # ip_assets.delete_own implies edit_own and view_own
        assert permissions.has_all(["ip_assets.edit_own", "ip_assets.view_own"])
        assert not permissions.has("ip_assets.delete_all")

    @pytest.mark.anyio
    async def test_admin_without_assignments_gets_baseline_only(self, user_id):
        service = make_service("ADMIN")
        permissions = await service.get_effective_permissions(user_id)
        assert permissions.has("users.view_own")
        assert not permissions.has("users.view_all")
        assert not permissions.is_everything


class TestAdminResolution:
    """ADMIN users merge every effective department assignment."""

    @pytest.mark.anyio
    async def test_departments_are_unioned(self, user_id):
        service = make_service("ADMIN", rows=[
            admin_role_row("CONTENT_MANAGER", "JUNIOR"),
            admin_role_row("FINANCE_LICENSING", "SENIOR"),
        ])
        permissions = await service.get_effective_permissions(user_id)
        assert permissions.has_all(["content:edit", "licensing:approve", "finance:export_data"])
        assert not permissions.has("content:approve")

    @pytest.mark.anyio
    async def test_custom_permissions_are_added_and_expanded(self, user_id):
        service = make_service("ADMIN", rows=[
            admin_role_row("OPERATIONS", permissions=["content:delete"]),
        ])
        permissions = await service.get_effective_permissions(user_id)
        assert permissions.has_all(["content:delete", "content:edit", "users:suspend"])

    @pytest.mark.anyio
    async def test_super_admin_short_circuits_to_wildcard(self, user_id):
        service = make_service("ADMIN", rows=[
            admin_role_row("CUSTOMER_SERVICE"),
            admin_role_row("SUPER_ADMIN"),
        ])
        permissions = await service.get_effective_permissions(user_id)
        assert permissions.is_everything
        assert permissions.has("users:impersonate")

    @pytest.mark.anyio
    async def test_malformed_stored_permissions_fail_closed(self, user_id):
        service = make_service("ADMIN", rows=[
            admin_role_row("OPERATIONS", permissions=["NOT A PERMISSION"]),
        ])
        with pytest.raises(MisconfiguredError):
            await service.get_effective_permissions(user_id)


class TestFailureModes:
    @pytest.mark.anyio
    async def test_missing_user_raises_role_not_found(self, user_id):
        service = make_service(None)
        with pytest.raises(RoleNotFoundError):
            await service.get_effective_permissions(user_id)

    @pytest.mark.anyio
    async def test_unknown_stored_role_is_misconfigured(self, user_id):
        service = make_service("JANITOR")
        with pytest.raises(MisconfiguredError):
            await service.get_user_role(user_id)

    @pytest.mark.anyio
    async def test_store_failure_fails_closed(self, user_id):
        service = make_service("VIEWER")
        service.user_repo.get_role = AsyncMock(
            side_effect=OperationalError("SELECT", {}, Exception("connection refused"))
        )
        with pytest.raises(UpstreamUnavailableError):
            await service.has_permission(user_id, "users.view_own")

    @pytest.mark.anyio
    async def test_admin_role_store_failure_fails_closed(self, user_id):
        service = make_service("ADMIN")
        service.admin_role_repo.find_active_by_user = AsyncMock(
            side_effect=OperationalError("SELECT", {}, Exception("timeout"))
        )
        with pytest.raises(UpstreamUnavailableError):
            await service.get_effective_permissions(user_id)

    @pytest.mark.anyio
    async def test_cache_outage_degrades_to_database(self, user_id, fake_redis, permission_cache):
        fake_redis.fail = True
        service = make_service("VIEWER", cache=permission_cache)
        assert await service.has_permission(user_id, "users.view_own")
        service.user_repo.get_role.assert_awaited_once()


class TestChecks:
    @pytest.mark.anyio
    async def test_check_returns_allowed(self, user_id):
        service = make_service("VIEWER")
        assert await service.check_permission(user_id, ["users.view_own"]) is ALLOWED

    @pytest.mark.anyio
    async def test_check_returns_denied_with_missing(self, user_id):
        service = make_service("VIEWER")
        result = await service.check_permission(user_id, ["users.view_own", "users.delete"])
        assert isinstance(result, Denied)
        assert result.missing_permissions == ("users.delete",)

    @pytest.mark.anyio
    async def test_check_any_allows_on_single_match(self, user_id):
        service = make_service("VIEWER")
        result = await service.check_permission(
            user_id, ["users.delete", "users.view_own"], require_all=False
        )
        assert result is ALLOWED

    @pytest.mark.anyio
    async def test_check_distinguishes_missing_role(self, user_id):
        service = make_service(None)
        result = await service.check_permission(user_id, ["users.view_own"])
        assert isinstance(result, NotFound)

    @pytest.mark.anyio
    async def test_require_permission_raises_and_audits(self, user_id, audit):
        service = make_service("VIEWER", audit=audit)
        with pytest.raises(PermissionDeniedError) as exc_info:
            await service.require_permission(user_id, "users.delete")
        assert exc_info.value.missing_permissions == ["users.delete"]
        audit.log_event.assert_awaited_once()
        assert audit.log_event.await_args.kwargs["action"] == "security.permission_denied"

    @pytest.mark.anyio
    async def test_require_permission_missing_role(self, user_id, audit):
        service = make_service(None, audit=audit)
        with pytest.raises(RoleNotFoundError):
            await service.require_permission(user_id, "users.view_own")
        audit.log_event.assert_not_called()

    @pytest.mark.anyio
    async def test_require_permission_passes_silently(self, user_id, audit):
        service = make_service("CREATOR", audit=audit)
        await service.require_permission(user_id, "ip_assets.create", "royalties.view_own")
        audit.log_event.assert_not_called()


class TestMemoAndCache:
    @pytest.mark.anyio
    async def test_context_memo_avoids_second_load(self, user_id):
        service = make_service("BRAND")
        ctx = PermissionContext()
        await service.has_permission(user_id, "projects.create", ctx)
        await service.has_permission(user_id, "licenses.create", ctx)
        service.user_repo.get_role.assert_awaited_once()

    @pytest.mark.anyio
    async def test_contexts_are_not_shared(self, user_id):
        service = make_service("BRAND")
        await service.has_permission(user_id, "projects.create", PermissionContext())
        await service.has_permission(user_id, "projects.create", PermissionContext())
        assert service.user_repo.get_role.await_count == 2

    @pytest.mark.anyio
    async def test_cache_hit_skips_database(self, user_id, permission_cache):
        first = make_service("BRAND", cache=permission_cache)
        await first.get_effective_permissions(user_id)

        second = make_service("VIEWER", cache=permission_cache)
        permissions = await second.get_effective_permissions(user_id)
        assert permissions.has("projects.create")
        second.user_repo.get_role.assert_not_called()

    @pytest.mark.anyio
    async def test_invalidation_forces_reload(self, user_id, permission_cache):
        service = make_service("BRAND", cache=permission_cache)
        await service.get_effective_permissions(user_id)
        await service.invalidate_user(user_id)
        service.user_repo.get_role = AsyncMock(return_value="VIEWER")
        permissions = await service.get_effective_permissions(user_id)
        assert not permissions.has("projects.create")

    @pytest.mark.anyio
    async def test_read_racing_invalidation_serves_one_stale_decision(
        self, user_id, permission_cache, fake_redis
    ):
        service = make_service("BRAND", cache=permission_cache)
        await service.get_effective_permissions(user_id)

        read_entry = fake_redis.get_value
        raced = False

        async def get_value_then_demote(key):
            nonlocal raced
            raw = await read_entry(key)
            if not raced:
                raced = True
                # the demotion commits and invalidates after the entry was read
                service.user_repo.get_role = AsyncMock(return_value="VIEWER")
                await service.invalidate_user(user_id)
            return raw

        fake_redis.get_value = get_value_then_demote

        # bounded staleness: the in-flight read still answers from the old entry
        assert await service.has_permission(user_id, "projects.create")
        assert not await permission_cache.exists(user_id)
        # the next read reloads and sees the demotion
        assert not await service.has_permission(user_id, "projects.create")
        service.user_repo.get_role.assert_awaited_once()

    @pytest.mark.anyio
    async def test_cached_entry_ends_with_earliest_grant_expiry(
        self, user_id, permission_cache, fake_redis
    ):
        expires_at = datetime.now(timezone.utc) + timedelta(minutes=5)
        service = make_service("ADMIN", rows=[
            admin_role_row("FINANCE_LICENSING", "SENIOR", expires_at=expires_at),
            admin_role_row("OPERATIONS"),
        ], cache=permission_cache)

        await service.get_effective_permissions(user_id)

        entry = json.loads(fake_redis.values[cache_keys.user_permissions_key(user_id)])
        assert datetime.fromisoformat(entry["expires_at"]) == expires_at

    @pytest.mark.anyio
    async def test_grant_expiring_mid_ttl_stops_granting(self, user_id, permission_cache):
        expires_at = datetime.now(timezone.utc) + timedelta(milliseconds=200)
        service = make_service("ADMIN", rows=[
            admin_role_row("FINANCE_LICENSING", "SENIOR", expires_at=expires_at),
        ], cache=permission_cache)

        assert await service.has_permission(user_id, "finance:view_reports")
        await asyncio.sleep(0.3)
        assert not await service.has_permission(user_id, "finance:view_reports")

    @pytest.mark.anyio
    async def test_bulk_invalidation(self, permission_cache, fake_redis):
        first, second = uuid.uuid4(), uuid.uuid4()
        service = make_service("VIEWER", cache=permission_cache)
        await service.get_effective_permissions(first)
        await service.get_effective_permissions(second)

        await service.invalidate_users([first, second])

        assert not await permission_cache.exists(first)
        assert not await permission_cache.exists(second)

    @pytest.mark.anyio
    async def test_invalidation_drops_the_operation_memo(self, user_id):
        service = make_service("BRAND")
        ctx = PermissionContext()
        await service.get_effective_permissions(user_id, ctx)

        await service.invalidate_user(user_id, ctx)

        assert ctx.get_permissions(user_id) is None
        assert ctx.get_role(user_id) is None

    @pytest.mark.anyio
    async def test_admin_role_view_is_cached(self, user_id, permission_cache):
        service = make_service("ADMIN", rows=[admin_role_row("OPERATIONS")], cache=permission_cache)
        await service.get_effective_admin_roles(user_id)
        grants = await service.get_effective_admin_roles(user_id)
        assert [grant.department.value for grant in grants] == ["OPERATIONS"]
        service.admin_role_repo.find_active_by_user.assert_awaited_once()

    @pytest.mark.anyio
    async def test_warm_cache_skips_cached_and_missing_users(self, permission_cache):
        cached, fresh, missing = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
        service = make_service("VIEWER", cache=permission_cache)
        await service.get_effective_permissions(cached)

        roles = {str(fresh): "CREATOR", str(missing): None}
        service.user_repo.get_role = AsyncMock(side_effect=lambda uid: roles[str(uid)])

        warmed = await service.warm_permission_cache([cached, str(fresh), missing])
        assert warmed == 1
        assert await permission_cache.exists(fresh)

    @pytest.mark.anyio
    async def test_warm_cache_without_cache(self, user_id):
        service = make_service("VIEWER")
        assert await service.warm_permission_cache([user_id]) == 0

"""
Tests for the shared Redis permission cache.
"""
import json
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from authz.auth.permission_set import PermissionSet
from authz.auth.roles import Department, Seniority
from authz.domain.admin_roles import AdminRoleGrant
from authz.errors import CacheInvalidationError
from authz.infrastructure import cache_keys


@pytest.fixture
def user_id():
    return uuid.uuid4()


class TestCacheKeys:
    def test_user_keys_pair(self, user_id):
        permissions_key, roles_key = cache_keys.user_keys(user_id)
        assert permissions_key == f"permissions:user:{user_id}"
        assert roles_key == f"permissions:admin-roles:{user_id}"

    def test_user_id_round_trip(self, user_id):
        for key in cache_keys.user_keys(user_id):
            assert cache_keys.user_id_from_key(key) == str(user_id)
        assert cache_keys.user_id_from_key("metrics:permission-cache:hits") is None

    def test_unknown_metric_rejected(self):
        with pytest.raises(ValueError):
            cache_keys.metric_key("latency")


class TestPermissionEntries:
    @pytest.mark.anyio
    async def test_set_then_get(self, permission_cache, fake_redis, user_id):
        await permission_cache.set(user_id, PermissionSet.of(["content:read"]))
        cached = await permission_cache.get(user_id)
        assert cached == PermissionSet.of(["content:read"])

        entry = json.loads(fake_redis.values[cache_keys.user_permissions_key(user_id)])
        assert entry["user_id"] == str(user_id)
        assert entry["permissions"] == ["content:read"]

    @pytest.mark.anyio
    async def test_entry_carries_ttl(self, permission_cache, user_id):
        await permission_cache.set(user_id, PermissionSet.of(["content:read"]))
        ttl = await permission_cache.get_ttl(user_id)
        assert ttl is not None and 0 < ttl <= 900

    @pytest.mark.anyio
    async def test_missing_entry_ttl_is_none(self, permission_cache, user_id):
        assert await permission_cache.get_ttl(user_id) is None

    @pytest.mark.anyio
    async def test_expired_entry_is_a_miss(self, permission_cache, fake_redis, user_id):
        past = datetime.now(timezone.utc) - timedelta(seconds=1)
        fake_redis.values[cache_keys.user_permissions_key(user_id)] = json.dumps({
            "user_id": str(user_id),
            "permissions": ["content:read"],
            "cached_at": (past - timedelta(minutes=15)).isoformat(),
            "expires_at": past.isoformat(),
        })
        assert await permission_cache.get(user_id) is None

    @pytest.mark.anyio
    async def test_entry_lifetime_capped_by_grant_expiry(self, permission_cache, fake_redis, user_id):
        valid_until = datetime.now(timezone.utc) + timedelta(seconds=30)
        await permission_cache.set(user_id, PermissionSet.of(["finance:view_all"]), valid_until=valid_until)

        entry = json.loads(fake_redis.values[cache_keys.user_permissions_key(user_id)])
        assert datetime.fromisoformat(entry["expires_at"]) == valid_until
        ttl = await permission_cache.get_ttl(user_id)
        assert ttl is not None and 0 < ttl <= 30

    @pytest.mark.anyio
    async def test_later_grant_expiry_keeps_the_default_ttl(self, permission_cache, user_id):
        valid_until = datetime.now(timezone.utc) + timedelta(days=2)
        await permission_cache.set(user_id, PermissionSet(), valid_until=valid_until)
        ttl = await permission_cache.get_ttl(user_id)
        assert ttl is not None and 30 < ttl <= 900

    @pytest.mark.anyio
    async def test_already_expired_grant_is_not_cached(self, permission_cache, fake_redis, user_id):
        valid_until = datetime.now(timezone.utc) - timedelta(seconds=1)
        await permission_cache.set(user_id, PermissionSet.of(["finance:view_all"]), valid_until=valid_until)
        assert cache_keys.user_permissions_key(user_id) not in fake_redis.values

    @pytest.mark.anyio
    async def test_corrupt_entry_is_a_miss(self, permission_cache, fake_redis, user_id):
        fake_redis.values[cache_keys.user_permissions_key(user_id)] = "{not json"
        assert await permission_cache.get(user_id) is None

    @pytest.mark.anyio
    async def test_read_failure_is_a_miss(self, permission_cache, fake_redis, user_id):
        fake_redis.fail = True
        assert await permission_cache.get(user_id) is None

    @pytest.mark.anyio
    async def test_write_failure_is_swallowed(self, permission_cache, fake_redis, user_id):
        fake_redis.fail = True
        await permission_cache.set(user_id, PermissionSet.of(["content:read"]))


class TestAdminRoleEntries:
    @pytest.mark.anyio
    async def test_round_trip(self, permission_cache, user_id):
        expires_at = datetime.now(timezone.utc) + timedelta(days=3)
        grant = AdminRoleGrant(
            department=Department.CONTENT_MANAGER,
            seniority=Seniority.SENIOR,
            custom_permissions=PermissionSet.of(["audit.export"]),
            expires_at=expires_at,
        )
        await permission_cache.set_admin_roles(user_id, [grant])
        assert await permission_cache.get_admin_roles(user_id) == [grant]

    @pytest.mark.anyio
    async def test_corrupt_entry_is_a_miss(self, permission_cache, fake_redis, user_id):
        fake_redis.values[cache_keys.admin_roles_key(user_id)] = json.dumps([{"department": "NOPE"}])
        assert await permission_cache.get_admin_roles(user_id) is None


class TestInvalidation:
    @pytest.mark.anyio
    async def test_invalidate_removes_both_entries(self, permission_cache, fake_redis, user_id):
        await permission_cache.set(user_id, PermissionSet.of(["content:read"]))
        await permission_cache.set_admin_roles(user_id, [])
        await permission_cache.invalidate(user_id)
        assert not fake_redis.values.get(cache_keys.user_permissions_key(user_id))
        assert not fake_redis.values.get(cache_keys.admin_roles_key(user_id))

    @pytest.mark.anyio
    async def test_invalidate_many_uses_one_round_trip(self, permission_cache, fake_redis):
        ids = [uuid.uuid4(), uuid.uuid4()]
        await permission_cache.invalidate_many(ids + ids)
        deletes = [call for call in fake_redis.calls if call[0] == "delete_keys"]
        assert len(deletes) == 1
        assert len(deletes[0]) == 1 + 4

    @pytest.mark.anyio
    async def test_invalidate_nothing_is_a_no_op(self, permission_cache, fake_redis):
        await permission_cache.invalidate_many([])
        assert fake_redis.calls == []

    @pytest.mark.anyio
    async def test_invalidation_failure_raises(self, permission_cache, fake_redis, user_id):
        fake_redis.fail_on = {"delete_keys"}
        with pytest.raises(CacheInvalidationError) as exc_info:
            await permission_cache.invalidate(user_id)
        assert exc_info.value.details == {"user_ids": [str(user_id)]}

    @pytest.mark.anyio
    async def test_clear_all_only_touches_permission_keys(self, permission_cache, fake_redis):
        await permission_cache.set(uuid.uuid4(), PermissionSet.of(["content:read"]))
        await permission_cache.set_admin_roles(uuid.uuid4(), [])
        fake_redis.values["unrelated"] = "keep"
        assert await permission_cache.clear_all() == 2
        assert fake_redis.values.get("unrelated") == "keep"


class TestMetricsAndWarming:
    @pytest.mark.anyio
    async def test_hits_and_misses_are_counted(self, permission_cache, user_id):
        await permission_cache.get(user_id)
        await permission_cache.set(user_id, PermissionSet.of(["content:read"]))
        await permission_cache.get(user_id)
        await permission_cache.get(user_id)

        metrics = await permission_cache.get_metrics()
        assert metrics["hits"] == 2
        assert metrics["misses"] == 1
        assert metrics["hit_rate"] == pytest.approx(2 / 3)

    @pytest.mark.anyio
    async def test_store_errors_are_counted(self, permission_cache, fake_redis, user_id):
        fake_redis.fail_on = {"get_value"}
        await permission_cache.get(user_id)
        fake_redis.fail_on = set()
        metrics = await permission_cache.get_metrics()
        assert metrics["errors"] == 1
        assert metrics["hit_rate"] == 0.0

    @pytest.mark.anyio
    async def test_reset_metrics(self, permission_cache, user_id):
        await permission_cache.get(user_id)
        await permission_cache.reset_metrics()
        assert (await permission_cache.get_metrics())["misses"] == 0

    @pytest.mark.anyio
    async def test_frequent_users_ordered_by_access(self, permission_cache):
        busy, quiet = uuid.uuid4(), uuid.uuid4()
        await permission_cache.set(busy, PermissionSet())
        await permission_cache.set(quiet, PermissionSet())
        await permission_cache.get(busy)
        await permission_cache.get(busy)
        assert await permission_cache.get_frequent_users() == [str(busy), str(quiet)]

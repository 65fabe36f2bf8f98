"""
Shared permission cache (Redis).

Two entries per user, both built through ``cache_keys``:
- ``permissions:user:{id}``: the resolved permission set
- ``permissions:admin-roles:{id}``: the merged effective admin role view

Reads, metric updates and warming bookkeeping never raise; a broken store
turns into a cache miss and the caller reloads from the database.
Invalidation is the exception: if the delete did not happen the caller must
know, so it raises ``CacheInvalidationError``.

A read that races a concurrent invalidation can return the pre-mutation
entry. That window is bounded by the TTL and accepted.
"""
import json
import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Final, Iterable

from redis.exceptions import RedisError

from ..auth.permission_set import PermissionSet, parse_permissions
from ..config import settings
from ..domain.admin_roles import AdminRoleGrant
from ..errors import CacheInvalidationError
from ..infrastructure import cache_keys
from ..infrastructure.redis import RedisClient

logger = logging.getLogger("authz.cache")

METRICS_TTL_SECONDS: Final[int] = 24 * 60 * 60
WARMING_SET_MAX_SIZE: Final[int] = 1000

_STORE_ERRORS = (RedisError, OSError)


class PermissionCache:
    def __init__(
        self,
        redis: RedisClient,
        *,
        ttl_seconds: int | None = None,
        admin_role_ttl_seconds: int | None = None,
    ):
        self.redis = redis
        self.ttl_seconds = (
            ttl_seconds if ttl_seconds is not None else settings.permission_cache_ttl_seconds
        )
        self.admin_role_ttl_seconds = (
            admin_role_ttl_seconds
            if admin_role_ttl_seconds is not None
            else settings.admin_role_cache_ttl_seconds
        )

    # ------------------------------------------------------------------
    # Resolved permissions
    # ------------------------------------------------------------------

    async def get(self, user_id: Any) -> PermissionSet | None:
        """Cached permission set, or None on miss, expiry, corruption or store failure."""
        key = cache_keys.user_permissions_key(user_id)
        try:
            raw = await self.redis.get_value(key)
        except _STORE_ERRORS as exc:
            logger.warning("cache_read_failed key=%s error=%s", key, exc)
            await self._record(cache_keys.METRIC_ERRORS)
            return None

        if raw is None:
            await self._record(cache_keys.METRIC_MISSES)
            return None

        permissions = self._decode_entry(key, raw)
        if permissions is None:
            await self._record(cache_keys.METRIC_MISSES)
            return None

        await self._record(cache_keys.METRIC_HITS)
        await self._track_access(user_id)
        return permissions

    async def set(
        self, user_id: Any, permissions: PermissionSet, *, valid_until: datetime | None = None
    ) -> None:
        """Cache a resolved set.

        ``valid_until`` caps the entry lifetime, so a set built from a grant
        that expires mid-TTL is not served past that grant's expiry.
        """
        key = cache_keys.user_permissions_key(user_id)
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(seconds=self.ttl_seconds)
        if valid_until is not None and valid_until < expires_at:
            expires_at = valid_until
        if expires_at <= now:
            return

        entry = {
            "user_id": str(user_id),
            "permissions": permissions.to_list(),
            "cached_at": now.isoformat(),
            "expires_at": expires_at.isoformat(),
        }
        ttl_seconds = max(1, math.ceil((expires_at - now).total_seconds()))
        try:
            await self.redis.set_value(key, json.dumps(entry), ttl_seconds)
        except _STORE_ERRORS as exc:
            logger.warning("cache_write_failed key=%s error=%s", key, exc)
            await self._record(cache_keys.METRIC_ERRORS)
            return
        await self._track_access(user_id)

    def _decode_entry(self, key: str, raw: str) -> PermissionSet | None:
        try:
            entry = json.loads(raw)
            expires_at = datetime.fromisoformat(entry["expires_at"])
            if expires_at <= datetime.now(timezone.utc):
                return None
            return parse_permissions(entry["permissions"])
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("cache_entry_corrupt key=%s error=%s", key, exc)
            return None

    # ------------------------------------------------------------------
    # Admin role view
    # ------------------------------------------------------------------

    async def get_admin_roles(self, user_id: Any) -> list[AdminRoleGrant] | None:
        key = cache_keys.admin_roles_key(user_id)
        try:
            raw = await self.redis.get_value(key)
        except _STORE_ERRORS as exc:
            logger.warning("cache_read_failed key=%s error=%s", key, exc)
            return None
        if raw is None:
            return None
        try:
            return [AdminRoleGrant.from_dict(item) for item in json.loads(raw)]
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("cache_entry_corrupt key=%s error=%s", key, exc)
            return None

    async def set_admin_roles(self, user_id: Any, grants: Iterable[AdminRoleGrant]) -> None:
        key = cache_keys.admin_roles_key(user_id)
        payload = json.dumps([grant.to_dict() for grant in grants])
        try:
            await self.redis.set_value(key, payload, self.admin_role_ttl_seconds)
        except _STORE_ERRORS as exc:
            logger.warning("cache_write_failed key=%s error=%s", key, exc)

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    async def invalidate(self, user_id: Any) -> None:
        """Delete both entries for a user.

        Raises:
            CacheInvalidationError: If the store did not confirm the delete
        """
        await self.invalidate_many([user_id])

    async def invalidate_many(self, user_ids: Iterable[Any]) -> None:
        """Delete both entries for every user in one round trip.

        Raises:
            CacheInvalidationError: If the store did not confirm the delete
        """
        ids = sorted({str(user_id) for user_id in user_ids})
        if not ids:
            return
        keys = [key for user_id in ids for key in cache_keys.user_keys(user_id)]
        try:
            await self.redis.delete_keys(*keys)
        except _STORE_ERRORS as exc:
            logger.error("cache_invalidation_failed user_ids=%s error=%s", ids, exc)
            raise CacheInvalidationError(
                "Permission cache invalidation failed",
                details={"user_ids": ids},
            ) from exc
        logger.debug("cache_invalidated user_ids=%s", ids)

    async def clear_all(self) -> int:
        """Drop every cached permission entry (SCAN based).

        Raises:
            CacheInvalidationError: If the store failed mid-way
        """
        try:
            deleted = await self.redis.delete_matching(f"{cache_keys.USER_PERMISSIONS_PREFIX}*")
            deleted += await self.redis.delete_matching(f"{cache_keys.ADMIN_ROLES_PREFIX}*")
        except _STORE_ERRORS as exc:
            logger.error("cache_clear_failed error=%s", exc)
            raise CacheInvalidationError("Permission cache clear failed") from exc
        logger.info("cache_cleared deleted=%d", deleted)
        return deleted

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    async def exists(self, user_id: Any) -> bool:
        try:
            return await self.redis.exists(cache_keys.user_permissions_key(user_id))
        except _STORE_ERRORS as exc:
            logger.warning("cache_read_failed user_id=%s error=%s", user_id, exc)
            return False

    async def get_ttl(self, user_id: Any) -> int | None:
        """Seconds until the permission entry expires, None if absent or unknown."""
        try:
            ttl = await self.redis.get_ttl(cache_keys.user_permissions_key(user_id))
        except _STORE_ERRORS as exc:
            logger.warning("cache_read_failed user_id=%s error=%s", user_id, exc)
            return None
        return ttl if ttl >= 0 else None

    # ------------------------------------------------------------------
    # Warming and metrics
    # ------------------------------------------------------------------

    async def _track_access(self, user_id: Any) -> None:
        try:
            await self.redis.bump_score(
                cache_keys.CACHE_WARMING_KEY, str(user_id), WARMING_SET_MAX_SIZE
            )
        except _STORE_ERRORS as exc:
            logger.debug("cache_warming_track_failed user_id=%s error=%s", user_id, exc)

    async def get_frequent_users(self, limit: int = 100) -> list[str]:
        """Most frequently accessed user ids, most frequent first."""
        try:
            return await self.redis.top_members(cache_keys.CACHE_WARMING_KEY, limit)
        except _STORE_ERRORS as exc:
            logger.warning("cache_warming_read_failed error=%s", exc)
            return []

    async def _record(self, metric: str) -> None:
        try:
            await self.redis.increment_counter(
                cache_keys.metric_key(metric), ttl_seconds=METRICS_TTL_SECONDS
            )
        except _STORE_ERRORS as exc:
            logger.debug("cache_metric_failed metric=%s error=%s", metric, exc)

    async def get_metrics(self) -> dict[str, float]:
        counts = {}
        for metric in cache_keys.METRIC_NAMES:
            try:
                counts[metric] = await self.redis.get_counter(cache_keys.metric_key(metric))
            except _STORE_ERRORS as exc:
                logger.warning("cache_metric_read_failed metric=%s error=%s", metric, exc)
                counts[metric] = 0
        lookups = counts[cache_keys.METRIC_HITS] + counts[cache_keys.METRIC_MISSES]
        return {
            **counts,
            "hit_rate": counts[cache_keys.METRIC_HITS] / lookups if lookups else 0.0,
        }

    async def reset_metrics(self) -> None:
        keys = [cache_keys.metric_key(metric) for metric in cache_keys.METRIC_NAMES]
        try:
            await self.redis.delete_keys(*keys)
        except _STORE_ERRORS as exc:
            logger.warning("cache_metric_reset_failed error=%s", exc)

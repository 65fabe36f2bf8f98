"""
Redis key construction.

Every reader, writer and invalidator builds keys through these helpers so
the write path and the invalidate path can never drift apart.
"""
from typing import Any, Final

USER_PERMISSIONS_PREFIX: Final[str] = "permissions:user:"
ADMIN_ROLES_PREFIX: Final[str] = "permissions:admin-roles:"
METRICS_PREFIX: Final[str] = "metrics:permission-cache:"

CACHE_WARMING_KEY: Final[str] = "cache-warming:permissions"
INVALIDATION_RETRY_KEY: Final[str] = "sweep:invalidation-retry"
EXPIRY_SWEEP_LOCK_KEY: Final[str] = "lock:expiry-sweep"

METRIC_HITS: Final[str] = "hits"
METRIC_MISSES: Final[str] = "misses"
METRIC_ERRORS: Final[str] = "errors"
METRIC_NAMES: Final[tuple[str, ...]] = (METRIC_HITS, METRIC_MISSES, METRIC_ERRORS)


def user_permissions_key(user_id: Any) -> str:
    return f"{USER_PERMISSIONS_PREFIX}{user_id}"


def admin_roles_key(user_id: Any) -> str:
    return f"{ADMIN_ROLES_PREFIX}{user_id}"


def user_keys(user_id: Any) -> tuple[str, str]:
    """Both per-user entries; invalidation always deletes the pair."""
    return user_permissions_key(user_id), admin_roles_key(user_id)


def metric_key(name: str) -> str:
    if name not in METRIC_NAMES:
        raise ValueError(f"Unknown cache metric: {name}")
    return f"{METRICS_PREFIX}{name}"


def user_id_from_key(key: str) -> str | None:
    for prefix in (USER_PERMISSIONS_PREFIX, ADMIN_ROLES_PREFIX):
        if key.startswith(prefix):
            return key[len(prefix):]
    return None

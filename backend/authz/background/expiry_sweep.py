from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import suppress
from dataclasses import dataclass, field
from typing import AsyncContextManager, Callable

from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..crud.admin_role import AdminRoleRepository
from ..domain.ports.audit import AuditSink
from ..errors import CacheInvalidationError
from ..infrastructure.cache_keys import EXPIRY_SWEEP_LOCK_KEY, INVALIDATION_RETRY_KEY
from ..infrastructure.redis import RedisClient
from ..services.permission_cache import PermissionCache

SWEEP_LOCK_TTL = 90  # seconds

logger = logging.getLogger("authz.sweep")


@dataclass
class SweepResult:
    status: str
    reason: str | None = None
    deactivated: int = 0
    invalidated_users: int = 0
    retried_users: int = 0
    failed_invalidations: list[str] = field(default_factory=list)


class ExpirySweepScheduler:
    """
    Periodically deactivates admin role assignments whose expiry has passed.

    Runs on exactly one worker: the one holding the Redis sweep lock. Each
    pass is a single conditional UPDATE, so overlapping passes or a pass
    racing a permission check cannot flip a row that has not expired.

    Deactivation and cache invalidation are separate steps. When the
    invalidation fails the deactivation stays committed and the affected
    user ids go to a Redis retry set that the next pass drains first.
    """

    def __init__(
        self,
        *,
        redis: RedisClient,
        session_factory: Callable[[], AsyncContextManager[AsyncSession]],
        cache: PermissionCache,
        audit: AuditSink | None = None,
        interval_seconds: int = 3600,
    ) -> None:
        self._redis = redis
        self._session_factory = session_factory
        self._cache = cache
        self._audit = audit
        self._interval_seconds = interval_seconds
        self._task: asyncio.Task[None] | None = None
        self._lock_extend_task: asyncio.Task[None] | None = None
        self._lock_held = False
        self._should_stop = False
        self._worker_id = str(uuid.uuid4())[:8]

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the sweep loop if this worker wins the lock."""
        if self.is_running:
            return

        self._should_stop = False
        try:
            acquired = await self._redis.try_acquire_lock(
                EXPIRY_SWEEP_LOCK_KEY, self._worker_id, ttl_seconds=SWEEP_LOCK_TTL
            )
        except RedisError as exc:
            logger.error(
                "[SWEEP] start_failed reason=redis_unavailable worker_id=%s error=%s",
                self._worker_id,
                exc,
            )
            return

        if not acquired:
            logger.info(
                "[SWEEP] lock_denied reason=held_by_another_worker worker_id=%s",
                self._worker_id,
            )
            return

        self._lock_held = True
        logger.info(
            "[SWEEP] lock_acquired worker_id=%s ttl=%ds interval=%ds",
            self._worker_id,
            SWEEP_LOCK_TTL,
            self._interval_seconds,
        )
        self._task = asyncio.create_task(self._loop())
        self._lock_extend_task = asyncio.create_task(self._extend_lock_loop())

    async def stop(self) -> None:
        """Stop the loop and release the lock."""
        self._should_stop = True

        for task in (self._lock_extend_task, self._task):
            if task is not None:
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task
        self._lock_extend_task = None
        self._task = None

        if self._lock_held:
            try:
                await self._redis.release_lock(EXPIRY_SWEEP_LOCK_KEY, self._worker_id)
                logger.info("[SWEEP] stopped reason=graceful worker_id=%s", self._worker_id)
            except RedisError as exc:
                logger.warning(
                    "[SWEEP] stopped reason=redis_error worker_id=%s error=%s",
                    self._worker_id,
                    exc,
                )
            self._lock_held = False

    async def run_once(self) -> SweepResult:
        """One sweep pass: deactivate, then invalidate and audit."""
        retry_ids = await self._pending_retries()

        try:
            async with self._session_factory() as session:
                repo = AdminRoleRepository(session)
                try:
                    expired = await repo.deactivate_expired()
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise
        except SQLAlchemyError as exc:
            logger.error(
                "[SWEEP] failed reason=database_error worker_id=%s",
                self._worker_id,
                exc_info=exc,
            )
            return SweepResult(status="failed", reason="database_error")
        except Exception as exc:  # noqa: BLE001
            # Connection failures surface as OSError before SQLAlchemy wraps them
            logger.error(
                "[SWEEP] failed reason=execution_error worker_id=%s",
                self._worker_id,
                exc_info=exc,
            )
            return SweepResult(status="failed", reason="execution_error")

        logger.info(
            "[SWEEP] deactivated count=%d worker_id=%s", len(expired), self._worker_id
        )

        user_ids = {str(user_id) for _, user_id in expired} | retry_ids
        result = SweepResult(
            status="completed",
            deactivated=len(expired),
            retried_users=len(retry_ids),
        )

        if user_ids:
            try:
                await self._cache.invalidate_many(user_ids)
            except CacheInvalidationError:
                logger.error(
                    "[SWEEP] invalidation_failed users=%d worker_id=%s",
                    len(user_ids),
                    self._worker_id,
                )
                result.failed_invalidations = sorted(user_ids)
                await self._schedule_retry(user_ids)
            else:
                result.invalidated_users = len(user_ids)
                if retry_ids:
                    await self._clear_retries(retry_ids)

        if self._audit is not None:
            for role_id, user_id in expired:
                await self._audit.log_event(
                    action="admin_role.expire",
                    actor_id=None,
                    actor_type="system",
                    resource_type="admin_role",
                    resource_id=role_id,
                    before={"is_active": True},
                    after={"is_active": False, "user_id": str(user_id)},
                )
        return result

    async def _pending_retries(self) -> set[str]:
        try:
            return await self._redis.get_members(INVALIDATION_RETRY_KEY)
        except RedisError as exc:
            logger.warning(
                "[SWEEP] retry_set_read_failed worker_id=%s error=%s", self._worker_id, exc
            )
            return set()

    async def _schedule_retry(self, user_ids: set[str]) -> None:
        try:
            await self._redis.add_members(INVALIDATION_RETRY_KEY, *sorted(user_ids))
        except RedisError as exc:
            logger.error(
                "[SWEEP] retry_schedule_failed users=%d worker_id=%s error=%s",
                len(user_ids),
                self._worker_id,
                exc,
            )

    async def _clear_retries(self, user_ids: set[str]) -> None:
        try:
            await self._redis.remove_members(INVALIDATION_RETRY_KEY, *sorted(user_ids))
        except RedisError as exc:
            logger.warning(
                "[SWEEP] retry_set_clear_failed worker_id=%s error=%s", self._worker_id, exc
            )

    async def _extend_lock_loop(self) -> None:
        """Refresh the lock every half TTL; stop sweeping if it was lost."""
        try:
            while not self._should_stop:
                await asyncio.sleep(SWEEP_LOCK_TTL / 2)
                if self._should_stop:
                    break
                try:
                    extended = await self._redis.extend_lock(
                        EXPIRY_SWEEP_LOCK_KEY, self._worker_id, ttl_seconds=SWEEP_LOCK_TTL
                    )
                except RedisError as exc:
                    logger.warning(
                        "[SWEEP] ttl_extend_error worker_id=%s error=%s", self._worker_id, exc
                    )
                    continue
                if not extended:
                    logger.error(
                        "[SWEEP] ttl_extend_failed reason=lock_lost worker_id=%s",
                        self._worker_id,
                    )
                    self._lock_held = False
                    self._should_stop = True
                    break
        except asyncio.CancelledError:
            return

    async def _loop(self) -> None:
        while not self._should_stop:
            await self.run_once()
            # Sleep in small chunks to allow graceful shutdown
            for _ in range(self._interval_seconds):
                if self._should_stop:
                    break
                await asyncio.sleep(1)

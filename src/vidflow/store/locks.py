# src/vidflow/store/locks.py
"""Time-limited exclusive scene locks.

A lock is two columns on the scene row (``locked_by``/``locked_until``)
written with a single compare-and-set UPDATE, so two contenders can never
both win. An expired lock is simply free to take. Acquiring or releasing a
lock is coordination only: it neither bumps the scene version nor appends to
the event ledger.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vidflow.core.clock import Clock, utcnow
from vidflow.core.errors import ConcurrentModification, NotLockHolder, SceneNotFound
from vidflow.core.logs import EventType, LogLevel, Priority, get_event_logger
from vidflow.models.sqlalchemy_models import SceneSQL

event_logger = get_event_logger()


@dataclass(frozen=True)
class LockLease:
    scene_id: UUID
    holder: str
    locked_until: datetime


class SceneLock:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utcnow,
        default_ttl: float = 300.0,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self.default_ttl = default_ttl

    def _ttl(self, ttl: float | None) -> timedelta:
        return timedelta(seconds=self.default_ttl if ttl is None else ttl)

    async def _current(
        self, session: AsyncSession, scene_id: UUID
    ) -> tuple[str | None, datetime | None] | None:
        row = (
            await session.execute(
                select(SceneSQL.locked_by, SceneSQL.locked_until).where(
                    SceneSQL.id == scene_id
                )
            )
        ).one_or_none()
        if row is None:
            return None
        return row.locked_by, row.locked_until

    async def acquire_conn(
        self,
        session: AsyncSession,
        scene_id: UUID,
        holder: str,
        ttl: float | None = None,
    ) -> LockLease:
        """Take the lock inside the caller's transaction."""
        now = self._clock()
        until = now + self._ttl(ttl)
        result = await session.execute(
            update(SceneSQL)
            .where(
                SceneSQL.id == scene_id,
                or_(SceneSQL.locked_until.is_(None), SceneSQL.locked_until <= now),
            )
            .values(locked_by=holder, locked_until=until)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            event_logger.log(
                LogLevel.DEBUG,
                f"Lock acquired by {holder}",
                event_type=EventType.LOCK_OPERATION,
                priority=Priority.LOW,
                scene_id=scene_id,
                operation="acquire",
                locked_until=until.isoformat(),
            )
            return LockLease(scene_id=scene_id, holder=holder, locked_until=until)
        current = await self._current(session, scene_id)
        if current is None:
            raise SceneNotFound(scene_id)
        locked_by, locked_until = current
        event_logger.log(
            LogLevel.INFO,
            f"Lock denied to {holder}; held by {locked_by}",
            event_type=EventType.LOCK_OPERATION,
            scene_id=scene_id,
            operation="acquire_denied",
        )
        raise ConcurrentModification(scene_id, locked_by, locked_until)

    async def acquire(
        self, scene_id: UUID, holder: str, ttl: float | None = None
    ) -> LockLease:
        async with self._session_factory() as session:
            lease = await self.acquire_conn(session, scene_id, holder, ttl)
            await session.commit()
        return lease

    async def release_conn(
        self, session: AsyncSession, scene_id: UUID, holder: str
    ) -> None:
        """Release the lock if ``holder`` owns it.

        Releasing an expired or already released lock is a no-op; releasing a
        live lock owned by someone else raises :class:`NotLockHolder`.
        """
        result = await session.execute(
            update(SceneSQL)
            .where(SceneSQL.id == scene_id, SceneSQL.locked_by == holder)
            .values(locked_by=None, locked_until=None)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            event_logger.log(
                LogLevel.DEBUG,
                f"Lock released by {holder}",
                event_type=EventType.LOCK_OPERATION,
                priority=Priority.LOW,
                scene_id=scene_id,
                operation="release",
            )
            return
        current = await self._current(session, scene_id)
        if current is None:
            return
        locked_by, locked_until = current
        if locked_until is not None and locked_until > self._clock():
            raise NotLockHolder(scene_id, holder, locked_by)

    async def release(self, scene_id: UUID, holder: str) -> None:
        async with self._session_factory() as session:
            await self.release_conn(session, scene_id, holder)
            await session.commit()

    async def refresh(
        self, scene_id: UUID, holder: str, ttl: float | None = None
    ) -> LockLease:
        """Extend a lock the caller still holds."""
        until = self._clock() + self._ttl(ttl)
        async with self._session_factory() as session:
            result = await session.execute(
                update(SceneSQL)
                .where(SceneSQL.id == scene_id, SceneSQL.locked_by == holder)
                .values(locked_until=until)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                current = await self._current(session, scene_id)
                if current is None:
                    raise SceneNotFound(scene_id)
                raise ConcurrentModification(scene_id, current[0], current[1])
            await session.commit()
        return LockLease(scene_id=scene_id, holder=holder, locked_until=until)

    async def is_locked(self, scene_id: UUID) -> bool:
        async with self._session_factory() as session:
            current = await self._current(session, scene_id)
        if current is None:
            raise SceneNotFound(scene_id)
        locked_until = current[1]
        return locked_until is not None and locked_until > self._clock()

    @asynccontextmanager
    async def hold(
        self, scene_id: UUID, holder: str, ttl: float | None = None
    ) -> AsyncIterator[LockLease]:
        """Hold the lock for the duration of the block."""
        lease = await self.acquire(scene_id, holder, ttl)
        try:
            yield lease
        finally:
            try:
                await self.release(scene_id, holder)
            except NotLockHolder as exc:
                event_logger.warning(
                    f"Lock expired and was taken over before release: {exc}",
                    event_type=EventType.LOCK_OPERATION,
                    scene_id=scene_id,
                    operation="release_lost",
                )


__all__ = ["LockLease", "SceneLock"]

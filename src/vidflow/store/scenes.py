# src/vidflow/store/scenes.py
"""Project and scene persistence.

Every scene mutation runs under the scene lock and goes through
:class:`~vidflow.models.scene.SceneAggregate`, so callers can never write
scene fields directly.
"""

from __future__ import annotations

from collections.abc import Callable
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vidflow.core.clock import Clock, utcnow
from vidflow.core.errors import (
    BudgetCapOutOfRange,
    ConcurrentModification,
    DuplicateCharacterName,
    ProjectNotFound,
    SceneNotFound,
)
from vidflow.core.logs import EventType, LogLevel, get_event_logger
from vidflow.core.notifications import Notifier, notify_scene, project_topic
from vidflow.models.events import DomainEvent, ProjectCreated, ProjectDeleted, SceneCreated
from vidflow.models.project import Project
from vidflow.models.scene import Scene, SceneAggregate, SceneChanges
from vidflow.models.sqlalchemy_models import ProjectSQL, SceneSQL

from .ledger import EventLedger
from .locks import SceneLock

event_logger = get_event_logger()

# Event payload fields already carried by the notification envelope.
_ENVELOPE_FIELDS = {"event_id", "timestamp", "scene_id"}


def _check_unique_names(names: list[str]) -> None:
    seen: set[str] = set()
    for name in names:
        key = name.strip().lower()
        if key in seen:
            raise DuplicateCharacterName(name)
        seen.add(key)


class SceneStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ledger: EventLedger,
        lock: SceneLock,
        notifier: Notifier | None = None,
        clock: Clock = utcnow,
        edit_lock_ttl: float = 30.0,
    ) -> None:
        self._session_factory = session_factory
        self._ledger = ledger
        self._lock = lock
        self._notifier = notifier
        self._clock = clock
        self.edit_lock_ttl = edit_lock_ttl

    async def create_project(
        self,
        title: str,
        logline: str | None = None,
        budget_cap_usd: Decimal = Decimal("0"),
        emitted_by: str = "human",
    ) -> Project:
        if budget_cap_usd < 0:
            raise BudgetCapOutOfRange()
        now = self._clock()
        async with self._session_factory() as session:
            row = ProjectSQL(
                title=title,
                logline=logline,
                budget_cap_usd=budget_cap_usd,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            await session.flush()
            await self._ledger.append(
                session,
                ProjectCreated(
                    project_id=row.id,
                    title=title,
                    budget_cap_usd=budget_cap_usd,
                    emitted_by=emitted_by,
                    timestamp=now,
                ),
                project_id=row.id,
                entity_id=row.id,
            )
            await session.commit()
            return Project.model_validate(row)

    async def get_project(self, project_id: UUID) -> Project:
        async with self._session_factory() as session:
            row = await session.get(ProjectSQL, project_id)
            if row is None:
                raise ProjectNotFound(project_id)
            return Project.model_validate(row)

    async def delete_project(self, project_id: UUID, emitted_by: str = "human") -> None:
        """Delete a project with its scenes and proposals; ledger entries stay."""
        now = self._clock()
        async with self._session_factory() as session:
            row = await session.get(ProjectSQL, project_id)
            if row is None:
                raise ProjectNotFound(project_id)
            scenes = (
                await session.execute(
                    select(SceneSQL.id, SceneSQL.locked_by, SceneSQL.locked_until).where(
                        SceneSQL.project_id == project_id
                    )
                )
            ).all()
            for scene_id, locked_by, locked_until in scenes:
                if locked_until is not None and locked_until > now:
                    raise ConcurrentModification(scene_id, locked_by, locked_until)
            await self._ledger.append(
                session,
                ProjectDeleted(
                    project_id=project_id,
                    scene_count=len(scenes),
                    emitted_by=emitted_by,
                    timestamp=now,
                ),
                project_id=project_id,
                entity_id=project_id,
            )
            await session.delete(row)
            await session.commit()
        event_logger.log(
            LogLevel.INFO,
            f"Project {project_id} deleted with {len(scenes)} scenes",
            event_type=EventType.DATABASE_OPERATION,
        )
        if self._notifier is not None:
            try:
                await self._notifier.publish(
                    project_topic(project_id), "ProjectDeleted", {"project_id": project_id}
                )
            except Exception as exc:
                event_logger.warning(f"ProjectDeleted notification failed: {exc}")

    async def add_scene(
        self,
        project_id: UUID,
        title: str,
        *,
        emitted_by: str = "human",
        **fields: Any,
    ) -> Scene:
        """Append a new draft scene numbered after the project's last one."""
        names = list(fields.get("character_names") or [])
        _check_unique_names(names)
        now = self._clock()
        async with self._session_factory() as session:
            if await session.get(ProjectSQL, project_id) is None:
                raise ProjectNotFound(project_id)
            last = (
                await session.execute(
                    select(func.coalesce(func.max(SceneSQL.number), 0)).where(
                        SceneSQL.project_id == project_id
                    )
                )
            ).scalar_one()
            row = SceneSQL(
                project_id=project_id,
                number=last + 1,
                title=title,
                script=fields.get("script", ""),
                narrative_goal=fields.get("narrative_goal", ""),
                emotional_beat=fields.get("emotional_beat", ""),
                location=fields.get("location", ""),
                time_of_day=fields.get("time_of_day", ""),
                character_names=names,
                runtime_target_seconds=fields.get("runtime_target_seconds", 60),
                version=1,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            await session.flush()
            await self._ledger.append(
                session,
                SceneCreated(
                    scene_id=row.id,
                    project_id=project_id,
                    number=row.number,
                    title=title,
                    emitted_by=emitted_by,
                    timestamp=now,
                ),
                project_id=project_id,
                entity_id=row.id,
            )
            await session.commit()
            return Scene.model_validate(row)

    async def get_scene(self, scene_id: UUID) -> Scene:
        async with self._session_factory() as session:
            row = await session.get(SceneSQL, scene_id)
            if row is None:
                raise SceneNotFound(scene_id)
            return Scene.model_validate(row)

    async def list_scenes(self, project_id: UUID) -> list[Scene]:
        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(SceneSQL)
                    .where(SceneSQL.project_id == project_id)
                    .order_by(SceneSQL.number)
                )
            ).scalars().all()
        return [Scene.model_validate(row) for row in rows]

    async def update_scene(
        self,
        scene_id: UUID,
        changes: SceneChanges | dict[str, Any],
        actor: str = "human",
    ) -> Scene:
        if not isinstance(changes, SceneChanges):
            changes = SceneChanges.model_validate(changes)
        return await self._mutate(scene_id, actor, lambda agg: agg.update(changes))

    async def submit_for_review(self, scene_id: UUID, actor: str = "human") -> Scene:
        return await self._mutate(scene_id, actor, lambda agg: agg.submit_for_review())

    async def approve(self, scene_id: UUID, approved_by: str = "human") -> Scene:
        return await self._mutate(
            scene_id, approved_by, lambda agg: agg.approve(approved_by)
        )

    async def request_revision(
        self, scene_id: UUID, feedback: str, requested_by: str = "human"
    ) -> Scene:
        return await self._mutate(
            scene_id,
            requested_by,
            lambda agg: agg.request_revision(feedback, requested_by),
        )

    async def _mutate(
        self,
        scene_id: UUID,
        actor: str,
        mutation: Callable[[SceneAggregate], Any],
    ) -> Scene:
        holder = f"editor:{actor}:{uuid4().hex}"
        events: list[DomainEvent] = []
        async with self._lock.hold(scene_id, holder, self.edit_lock_ttl):
            async with self._session_factory() as session:
                row = await session.get(SceneSQL, scene_id)
                if row is None:
                    raise SceneNotFound(scene_id)
                project_id = row.project_id
                aggregate = SceneAggregate(
                    row, holder=holder, now=self._clock(), emitted_by=actor
                )
                mutation(aggregate)
                events = list(aggregate.pending_events)
                for scene_event in events:
                    await self._ledger.append(
                        session, scene_event, project_id=project_id, entity_id=scene_id
                    )
                await session.commit()
        for scene_event in events:
            await notify_scene(
                self._notifier,
                project_id,
                scene_id,
                scene_event.type_name(),
                scene_event.model_dump(mode="json", exclude=_ENVELOPE_FIELDS),
            )
        return await self.get_scene(scene_id)


__all__ = ["SceneStore"]

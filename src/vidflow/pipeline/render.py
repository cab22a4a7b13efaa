# src/vidflow/pipeline/render.py
"""Render job handler.

Producing the video artifact belongs to an external renderer; this module
only checks the scene is approved and hands it over, so render jobs share
the pipeline jobs' retry and backoff.
"""

from __future__ import annotations

from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vidflow.core.errors import SceneNotApproved, SceneNotFound
from vidflow.core.logs import EventType, LogLevel, get_event_logger
from vidflow.core.queue import CancelCheck
from vidflow.models.enums import SceneStatus
from vidflow.models.job import PipelineJob
from vidflow.models.scene import Scene
from vidflow.models.sqlalchemy_models import SceneSQL

event_logger = get_event_logger()


class Renderer(Protocol):
    async def render(self, scene: Scene) -> None: ...


class LoggingRenderer:
    """Renderer that records the request and produces nothing."""

    async def render(self, scene: Scene) -> None:
        event_logger.info(
            f"Render requested for scene {scene.number} ({scene.title})",
            event_type=EventType.JOB_PROCESSING,
            scene_id=scene.id,
        )


class RenderJobHandler:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        renderer: Renderer | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.renderer = renderer or LoggingRenderer()

    async def __call__(self, job: PipelineJob, should_cancel: CancelCheck) -> None:
        async with self._session_factory() as session:
            row = await session.get(SceneSQL, job.scene_id)
            if row is None:
                raise SceneNotFound(job.scene_id)
            if row.status != SceneStatus.APPROVED:
                raise SceneNotApproved(job.scene_id)
            scene = Scene.model_validate(row)
        event_logger.log(
            LogLevel.DEBUG,
            "Handing scene to renderer",
            event_type=EventType.JOB_PROCESSING,
            scene_id=scene.id,
            job_id=job.id,
        )
        await self.renderer.render(scene)


__all__ = ["Renderer", "LoggingRenderer", "RenderJobHandler"]

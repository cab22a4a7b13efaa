# src/vidflow/store/interactions.py
"""Audit trail of model calls, written whether the call succeeded or not."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vidflow.core.clock import Clock, utcnow
from vidflow.core.llm import LLMRequest, LLMResponse
from vidflow.core.logs import EventType, LogLevel, Priority, get_event_logger
from vidflow.models.enums import AgentRole
from vidflow.models.interaction import LlmInteraction
from vidflow.models.sqlalchemy_models import LlmInteractionSQL

event_logger = get_event_logger()


class InteractionLog:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def record(
        self,
        *,
        project_id: UUID,
        scene_id: UUID | None,
        role: AgentRole | None,
        job_id: UUID | None,
        provider: str,
        request: LLMRequest,
        duration_ms: int,
        response: LLMResponse | None = None,
        error: str | None = None,
    ) -> LlmInteraction:
        """Persist one call; ``response`` for a completed call, ``error`` otherwise."""
        model = response.model if response is not None else ""
        row = LlmInteractionSQL(
            project_id=project_id,
            scene_id=scene_id,
            role=role,
            job_id=job_id,
            provider=provider,
            model=model or request.model or "",
            system_prompt=request.system_prompt,
            prompt=request.prompt,
            temperature=request.temperature,
            max_tokens=request.max_tokens,
            duration_ms=duration_ms,
            created_at=self._clock(),
        )
        if response is not None:
            row.response_content = response.content
            row.input_tokens = response.input_tokens
            row.output_tokens = response.output_tokens
            row.total_tokens = response.tokens_used or (
                response.input_tokens + response.output_tokens
            )
            row.cost_usd = response.cost_usd
            row.success = True
        else:
            row.error_message = error
            row.success = False
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
            interaction = LlmInteraction.model_validate(row)
        event_logger.log(
            LogLevel.DEBUG,
            f"Recorded {'successful' if interaction.success else 'failed'} model call",
            event_type=EventType.LLM_REQUEST,
            priority=Priority.LOW,
            scene_id=scene_id,
            job_id=job_id,
            role=role,
            provider=provider,
            cost_usd=str(interaction.cost_usd),
            duration_ms=duration_ms,
        )
        return interaction

    async def _list(self, *criteria) -> list[LlmInteraction]:
        stmt = (
            select(LlmInteractionSQL)
            .where(*criteria)
            .order_by(LlmInteractionSQL.created_at, LlmInteractionSQL.id)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [LlmInteraction.model_validate(row) for row in rows]

    async def list_for_scene(self, scene_id: UUID) -> list[LlmInteraction]:
        return await self._list(LlmInteractionSQL.scene_id == scene_id)

    async def list_for_job(self, job_id: UUID) -> list[LlmInteraction]:
        return await self._list(LlmInteractionSQL.job_id == job_id)


__all__ = ["InteractionLog"]

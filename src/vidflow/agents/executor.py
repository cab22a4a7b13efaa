# src/vidflow/agents/executor.py
"""Runs a single role agent against a scene."""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping, Sequence
from decimal import Decimal
from typing import Any
from uuid import UUID

from vidflow.config import ProviderPricing, RoleOverride, config
from vidflow.core.errors import AgentRunFailed
from vidflow.core.llm import LLMProvider, LLMRequest, LLMResponse, get_provider
from vidflow.core.logs import EventType, LogLevel, Priority, get_event_logger, log_calls
from vidflow.models.enums import AgentRole
from vidflow.models.proposal import ProposalDraft
from vidflow.models.scene import Scene
from vidflow.store.interactions import InteractionLog

from .base import AgentContext, RoleAgent
from .roles import default_agents

event_logger = get_event_logger()

ProviderFactory = Callable[[str, str | None], LLMProvider]


class AgentExecutor:
    """Call one role's model and turn the reply into a proposal draft.

    The executor never retries. Whatever goes wrong while building the prompt,
    calling the provider or parsing the reply surfaces as
    :class:`~vidflow.core.errors.AgentRunFailed`; retrying is the job
    runner's business. With an ``interactions`` log every model call is
    recorded, including calls that raised or produced nothing usable.
    """

    def __init__(
        self,
        provider: LLMProvider | None = None,
        agents: Mapping[AgentRole, RoleAgent] | None = None,
        pricing: ProviderPricing | None = None,
        prompt_overhead_tokens: int | None = None,
        overrides: Mapping[str, RoleOverride] | None = None,
        provider_factory: ProviderFactory | None = None,
        interactions: InteractionLog | None = None,
    ) -> None:
        self.provider = provider or get_provider()
        self.agents = dict(agents) if agents is not None else default_agents()
        self.pricing = pricing or config.llm.pricing_for(self.provider.name)
        self.prompt_overhead_tokens = (
            config.llm.prompt_overhead_tokens
            if prompt_overhead_tokens is None
            else prompt_overhead_tokens
        )
        self.overrides = dict(config.agents.overrides if overrides is None else overrides)
        self._provider_factory = provider_factory or get_provider
        self._role_providers: dict[AgentRole, LLMProvider] = {}
        self.interactions = interactions

    def agent_for(self, role: AgentRole) -> RoleAgent:
        try:
            return self.agents[role]
        except KeyError:
            raise ValueError(f"No agent registered for role {role.value}") from None

    def override_for(self, role: AgentRole) -> RoleOverride:
        return self.overrides.get(role.value) or RoleOverride()

    def max_tokens_for(self, role: AgentRole) -> int:
        return self.override_for(role).max_tokens or self.agent_for(role).max_tokens

    def provider_for(self, role: AgentRole) -> LLMProvider:
        override = self.override_for(role)
        if not override.provider or override.provider == self.provider.name:
            return self.provider
        if role not in self._role_providers:
            self._role_providers[role] = self._provider_factory(
                override.provider, override.model
            )
        return self._role_providers[role]

    def estimate_cost(self, role: AgentRole) -> Decimal:
        """Upper-bound cost of one call: output budget plus prompt overhead."""
        tokens = self.max_tokens_for(role) + self.prompt_overhead_tokens
        return Decimal(tokens) * self.pricing.cost_per_output_token

    @log_calls
    async def execute(
        self,
        scene: Scene,
        role: AgentRole,
        *,
        prior: Sequence[Any] = (),
        job_id: UUID | None = None,
    ) -> ProposalDraft | None:
        """Run ``role`` on ``scene``; ``None`` means nothing to propose."""
        agent = self.agent_for(role)
        override = self.override_for(role)
        ctx = AgentContext(scene=scene, prior=tuple(prior))
        try:
            request = LLMRequest(
                prompt=agent.build_prompt(ctx),
                system_prompt=agent.system_prompt,
                temperature=(
                    override.temperature
                    if override.temperature is not None
                    else agent.temperature
                ),
                max_tokens=self.max_tokens_for(role),
                model=override.model,
                role=role.value,
            )
            response = await self._complete(scene, role, request, job_id)
            draft = agent.draft(ctx, response)
        except AgentRunFailed:
            raise
        except Exception as exc:
            event_logger.log(
                LogLevel.ERROR,
                f"{role.value} agent failed: {exc}",
                event_type=EventType.AGENT_OPERATION,
                priority=Priority.HIGH,
                scene_id=scene.id,
                role=role,
                error_type=type(exc).__name__,
            )
            raise AgentRunFailed(scene.id, role, str(exc) or type(exc).__name__) from exc
        event_logger.log(
            LogLevel.INFO,
            f"{role.value} agent finished"
            + ("" if draft is not None else " with nothing to propose"),
            event_type=EventType.AGENT_OPERATION,
            scene_id=scene.id,
            role=role,
            tokens_used=draft.tokens_used if draft else 0,
            cost_usd=str(draft.cost_usd) if draft else "0",
        )
        return draft

    async def _complete(
        self, scene: Scene, role: AgentRole, request: LLMRequest, job_id: UUID | None
    ) -> LLMResponse:
        provider = self.provider_for(role)
        started = time.perf_counter()
        try:
            response = await provider.complete(request)
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            await self._record(
                scene, role, job_id, provider, request, started, error=error
            )
            raise
        await self._record(
            scene, role, job_id, provider, request, started, response=response
        )
        return response

    async def _record(
        self,
        scene: Scene,
        role: AgentRole,
        job_id: UUID | None,
        provider: LLMProvider,
        request: LLMRequest,
        started: float,
        response: LLMResponse | None = None,
        error: str | None = None,
    ) -> None:
        if self.interactions is None:
            return
        await self.interactions.record(
            project_id=scene.project_id,
            scene_id=scene.id,
            role=role,
            job_id=job_id,
            provider=provider.name,
            request=request,
            duration_ms=int((time.perf_counter() - started) * 1000),
            response=response,
            error=error,
        )


__all__ = ["AgentExecutor", "ProviderFactory"]

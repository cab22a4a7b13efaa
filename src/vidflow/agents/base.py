# src/vidflow/agents/base.py
"""Base class for the role agents."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, ClassVar

from vidflow.core.llm import LLMResponse
from vidflow.models.enums import AgentRole
from vidflow.models.proposal import ProposalDraft
from vidflow.models.scene import Scene


@dataclass
class AgentContext:
    """What a role sees: the scene and the proposals made earlier in the run."""

    scene: Scene
    prior: Sequence[Any] = field(default_factory=tuple)

    def prior_for(self, role: AgentRole) -> list[Any]:
        return [p for p in self.prior if p.role == role]

    def prior_summary(self, empty: str = "No prior proposals") -> str:
        if not self.prior:
            return empty
        return "\n".join(f"- {p.role.value}: {p.summary}" for p in self.prior)

    @property
    def characters(self) -> str:
        return ", ".join(self.scene.character_names) or "None listed"


class RoleAgent:
    """One specialty in the pipeline.

    Subclasses set the class attributes and build their prompt and diff; the
    provider call itself is made by :class:`vidflow.agents.executor.AgentExecutor`.
    """

    role: ClassVar[AgentRole]
    max_tokens: ClassVar[int] = 1500
    temperature: ClassVar[float] = 0.7
    summary: ClassVar[str] = ""
    system_prompt: ClassVar[str] = ""
    default_rationale: ClassVar[str] = ""
    rationale_limit: ClassVar[int | None] = None

    def build_prompt(self, ctx: AgentContext) -> str:
        raise NotImplementedError

    def build_diff(self, ctx: AgentContext, content: str) -> dict[str, Any]:
        raise NotImplementedError

    def summarize(self, ctx: AgentContext, content: str) -> str:
        return self.summary

    def runtime_impact(self, ctx: AgentContext, content: str) -> int:
        return 0

    def rationale(self, content: str) -> str:
        """First three non-empty lines of the reply, or the full reply when limited."""
        if self.rationale_limit is not None:
            if len(content) > self.rationale_limit:
                return content[: self.rationale_limit] + "..."
            return content
        lines = [line.strip() for line in content.splitlines() if line.strip()]
        return " ".join(lines[:3]) or self.default_rationale

    def draft(self, ctx: AgentContext, response: LLMResponse) -> ProposalDraft | None:
        """Turn a provider reply into a proposal draft.

        An empty reply means the role had nothing to suggest and yields ``None``.
        """
        content = response.content.strip()
        if not content:
            return None
        return ProposalDraft(
            role=self.role,
            summary=self.summarize(ctx, content),
            rationale=self.rationale(content),
            diff=self.build_diff(ctx, content),
            runtime_impact_seconds=self.runtime_impact(ctx, content),
            tokens_used=response.tokens_used,
            cost_usd=response.cost_usd,
            model=response.model or None,
        )


__all__ = ["AgentContext", "RoleAgent"]

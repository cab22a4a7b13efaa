# src/vidflow/models/project.py
"""Project snapshot and budget read models."""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from pydantic import Field, computed_field

from .base_model import VidflowBaseModel
from .enums import AgentRole
from .mixins import IDMixin, TimestampsMixin


class Project(IDMixin, TimestampsMixin):
    """Read-side snapshot of a project."""

    title: str
    logline: str | None = None
    budget_cap_usd: Decimal = Decimal("0")


class BudgetState(VidflowBaseModel):
    """Live budget figures for a project.

    A cap of zero means the project has no limit; ``remaining_usd`` is then
    ``None``.
    """

    project_id: UUID
    budget_cap_usd: Decimal
    current_spend_usd: Decimal

    @property
    def unlimited(self) -> bool:
        return self.budget_cap_usd <= 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def remaining_usd(self) -> Decimal | None:
        if self.unlimited:
            return None
        return max(Decimal("0"), self.budget_cap_usd - self.current_spend_usd)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def utilization_percent(self) -> float:
        if self.unlimited:
            return 0.0
        return float(self.current_spend_usd / self.budget_cap_usd * 100)

    def would_exceed(self, estimated_cost: Decimal) -> bool:
        if self.unlimited:
            return False
        return self.current_spend_usd + estimated_cost > self.budget_cap_usd


class RoleCost(VidflowBaseModel):
    role: AgentRole
    proposal_count: int = 0
    tokens_used: int = 0
    cost_usd: Decimal = Decimal("0")


class SceneCost(VidflowBaseModel):
    scene_id: UUID
    scene_number: int
    title: str
    proposal_count: int = 0
    cost_usd: Decimal = Decimal("0")


class CostReport(VidflowBaseModel):
    """Budget state plus spend broken down by role and by scene.

    ``llm_*`` totals come from the model call audit and include calls that
    failed or produced no proposal.
    """

    budget: BudgetState
    total_tokens: int = 0
    llm_calls: int = 0
    failed_llm_calls: int = 0
    llm_cost_usd: Decimal = Decimal("0")
    by_role: list[RoleCost] = Field(default_factory=list)
    by_scene: list[SceneCost] = Field(default_factory=list)


__all__ = ["Project", "BudgetState", "RoleCost", "SceneCost", "CostReport"]

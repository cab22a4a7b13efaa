# src/vidflow/models/proposal.py
"""Agent proposal models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import Field

from .base_model import VidflowBaseModel
from .enums import AgentRole, ProposalStatus
from .mixins import IDMixin


class ProposalDraft(VidflowBaseModel):
    """What a role agent produced, before it is persisted."""

    role: AgentRole
    summary: str
    rationale: str = ""
    diff: dict[str, Any] = Field(default_factory=dict)
    runtime_impact_seconds: int = 0
    tokens_used: int = 0
    cost_usd: Decimal = Decimal("0")
    model: str | None = None


class Proposal(IDMixin):
    """Read-side snapshot of a persisted proposal."""

    scene_id: UUID
    job_id: UUID | None = None
    role: AgentRole
    status: ProposalStatus = ProposalStatus.PENDING
    summary: str = ""
    rationale: str = ""
    diff: str = "{}"
    runtime_impact_seconds: int = 0
    tokens_used: int = 0
    cost_usd: Decimal = Decimal("0")
    model: str | None = None
    created_at: datetime
    resolved_at: datetime | None = None
    resolved_by: str | None = None


__all__ = ["ProposalDraft", "Proposal"]

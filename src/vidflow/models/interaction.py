# src/vidflow/models/interaction.py
"""Read-side snapshot of one audited model call."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from .enums import AgentRole
from .mixins import IDMixin


class LlmInteraction(IDMixin):
    project_id: UUID
    scene_id: UUID | None = None
    role: AgentRole | None = None
    job_id: UUID | None = None
    provider: str
    model: str = ""
    system_prompt: str = ""
    prompt: str = ""
    temperature: float = 0.0
    max_tokens: int = 0
    response_content: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cost_usd: Decimal = Decimal("0")
    success: bool = False
    error_message: str | None = None
    duration_ms: int = 0
    created_at: datetime


__all__ = ["LlmInteraction"]

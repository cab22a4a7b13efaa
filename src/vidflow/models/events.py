# src/vidflow/models/events.py
"""Domain events recorded in the event ledger.

The ledger stores each event under its type name with the JSON dump of the
model as payload, so any entry can be turned back into its event with
:func:`from_payload`.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from vidflow.core.clock import utcnow


class DomainEvent(BaseModel):
    """Base class for every ledger event."""

    model_config = ConfigDict(frozen=True)

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(default_factory=utcnow)
    emitted_by: str = "human"

    @classmethod
    def type_name(cls) -> str:
        return cls.__dict__.get("__event_name__", cls.__name__)


class ProjectCreated(DomainEvent):
    project_id: UUID
    title: str
    budget_cap_usd: Decimal = Decimal("0")


class ProjectBudgetCapChanged(DomainEvent):
    project_id: UUID
    previous_cap_usd: Decimal
    new_cap_usd: Decimal


class ProjectDeleted(DomainEvent):
    project_id: UUID
    scene_count: int = 0


class SceneCreated(DomainEvent):
    scene_id: UUID
    project_id: UUID
    number: int
    title: str


class SceneUpdated(DomainEvent):
    scene_id: UUID
    new_version: int
    changed_fields: list[str]


class SceneSubmittedForReview(DomainEvent):
    scene_id: UUID
    new_version: int


class SceneApproved(DomainEvent):
    scene_id: UUID
    new_version: int
    approved_by: str


class SceneRevisionRequested(DomainEvent):
    scene_id: UUID
    new_version: int
    feedback: str
    requested_by: str


class AgentProposalCreated(DomainEvent):
    proposal_id: UUID
    scene_id: UUID
    role: str
    summary: str
    cost_usd: Decimal


class ProposalApplied(DomainEvent):
    proposal_id: UUID
    scene_id: UUID
    changed_fields: list[str] = Field(default_factory=list)


class ProposalDismissed(DomainEvent):
    proposal_id: UUID
    scene_id: UUID


class AgentRunFailedEvent(DomainEvent):
    __event_name__ = "AgentRunFailed"

    scene_id: UUID
    role: str
    error: str


EVENT_TYPES: dict[str, type[DomainEvent]] = {
    cls.type_name(): cls
    for cls in (
        ProjectCreated,
        ProjectBudgetCapChanged,
        ProjectDeleted,
        SceneCreated,
        SceneUpdated,
        SceneSubmittedForReview,
        SceneApproved,
        SceneRevisionRequested,
        AgentProposalCreated,
        ProposalApplied,
        ProposalDismissed,
        AgentRunFailedEvent,
    )
}


def from_payload(event_type: str, payload: str | dict[str, Any]) -> DomainEvent:
    """Rebuild a typed event from its ledger representation."""
    try:
        cls = EVENT_TYPES[event_type]
    except KeyError:
        raise ValueError(f"Unknown event type: {event_type}") from None
    if isinstance(payload, str):
        return cls.model_validate_json(payload)
    return cls.model_validate(payload)


__all__ = [
    "DomainEvent",
    "ProjectCreated",
    "ProjectBudgetCapChanged",
    "ProjectDeleted",
    "SceneCreated",
    "SceneUpdated",
    "SceneSubmittedForReview",
    "SceneApproved",
    "SceneRevisionRequested",
    "AgentProposalCreated",
    "ProposalApplied",
    "ProposalDismissed",
    "AgentRunFailedEvent",
    "EVENT_TYPES",
    "from_payload",
]

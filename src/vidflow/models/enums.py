# src/vidflow/models/enums.py
"""Status and role enumerations shared by the ORM and snapshot models."""

from __future__ import annotations

from enum import Enum


class SceneStatus(Enum):
    DRAFT = "draft"
    REVIEW = "review"
    APPROVED = "approved"


class ProposalStatus(Enum):
    PENDING = "pending"
    APPLIED = "applied"
    DISMISSED = "dismissed"


class AgentRole(Enum):
    WRITER = "writer"
    DIRECTOR = "director"
    CINEMATOGRAPHER = "cinematographer"
    EDITOR = "editor"
    PRODUCER = "producer"
    SHOWRUNNER = "showrunner"


# Fixed order in which a pipeline run visits the roles.
ROLE_SEQUENCE: tuple[AgentRole, ...] = (
    AgentRole.WRITER,
    AgentRole.DIRECTOR,
    AgentRole.CINEMATOGRAPHER,
    AgentRole.EDITOR,
    AgentRole.PRODUCER,
    AgentRole.SHOWRUNNER,
)


class JobState(Enum):
    SCHEDULED = "scheduled"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELLED)


class JobType(Enum):
    AGENT_PIPELINE = "agent_pipeline"
    RENDER = "render"


__all__ = [
    "SceneStatus",
    "ProposalStatus",
    "AgentRole",
    "ROLE_SEQUENCE",
    "JobState",
    "JobType",
]

# src/vidflow/models/__init__.py
"""Persistence models and read-side snapshots for the pipeline engine."""

from .base import Base  # Import SQLAlchemy Base
from .base_model import VidflowBaseModel
from .enums import (
    ROLE_SEQUENCE,
    AgentRole,
    JobState,
    JobType,
    ProposalStatus,
    SceneStatus,
)
from .interaction import LlmInteraction
from .job import JobStatus, PipelineJob
from .ledger import EventFilter, EventPage, LedgerEntry
from .mixins import IDMixin, TimestampsMixin, VersionedMixin
from .project import BudgetState, CostReport, Project, RoleCost, SceneCost
from .proposal import Proposal, ProposalDraft
from .scene import EDITABLE_FIELDS, Scene, SceneAggregate, SceneChanges, parse_diff
from .sqlalchemy_models import (
    AgentProposalSQL,
    EventEntrySQL,
    LlmInteractionSQL,
    PipelineJobSQL,
    ProjectSQL,
    SceneSQL,
)

__all__ = [
    "Base",
    "VidflowBaseModel",
    "IDMixin",
    "TimestampsMixin",
    "VersionedMixin",
    "AgentRole",
    "ROLE_SEQUENCE",
    "SceneStatus",
    "ProposalStatus",
    "JobState",
    "JobType",
    "Project",
    "BudgetState",
    "CostReport",
    "RoleCost",
    "SceneCost",
    "Scene",
    "SceneChanges",
    "SceneAggregate",
    "EDITABLE_FIELDS",
    "parse_diff",
    "Proposal",
    "ProposalDraft",
    "PipelineJob",
    "JobStatus",
    "LlmInteraction",
    "LedgerEntry",
    "EventFilter",
    "EventPage",
    "ProjectSQL",
    "SceneSQL",
    "AgentProposalSQL",
    "EventEntrySQL",
    "PipelineJobSQL",
    "LlmInteractionSQL",
]

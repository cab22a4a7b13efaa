# src/vidflow/models/sqlalchemy_models.py
"""SQLAlchemy ORM models for projects, scenes, proposals, jobs, the ledger
and the model call audit."""

from __future__ import annotations

import uuid
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    event,
)
from sqlalchemy.orm import Mapped, Session, relationship

from vidflow.core.clock import utcnow
from vidflow.core.errors import LedgerImmutableError

from .base import Base
from .enums import AgentRole, JobState, JobType, ProposalStatus, SceneStatus


def _enum_column(enum_cls: type[PyEnum]) -> Enum:
    """Store enum values (not member names) as short strings."""
    return Enum(
        enum_cls,
        native_enum=False,
        length=20,
        values_callable=lambda members: [m.value for m in members],
    )


class ProjectSQL(Base):
    """A video project.

    The project owns its scenes and carries the optional monetary cap for
    agent spend. ``budget_cap_usd`` of zero means unlimited.
    """

    __tablename__ = "project"
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(Text, nullable=False)
    logline = Column(Text)
    budget_cap_usd = Column(Numeric(12, 4), nullable=False, default=Decimal("0"))
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    scenes: Mapped[list[SceneSQL]] = relationship(
        "SceneSQL",
        back_populates="project",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="SceneSQL.number",
    )  # type: ignore[assignment]


class SceneSQL(Base):
    """A scene within a project.

    ``locked_until``/``locked_by`` are coordination metadata written by
    :class:`vidflow.store.locks.SceneLock`; they never bump ``version``.
    """

    __tablename__ = "scene"
    __table_args__ = (UniqueConstraint("project_id", "number"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = Column(
        Uuid, ForeignKey("project.id", ondelete="CASCADE"), nullable=False, index=True
    )
    number = Column(Integer, nullable=False)
    title = Column(Text, nullable=False)
    script = Column(Text, nullable=False, default="")
    narrative_goal = Column(Text, nullable=False, default="")
    emotional_beat = Column(Text, nullable=False, default="")
    location = Column(Text, nullable=False, default="")
    time_of_day = Column(String(50), nullable=False, default="")
    character_names = Column(JSON, nullable=False, default=list)
    runtime_target_seconds = Column(Integer, nullable=False, default=60)
    status = Column(_enum_column(SceneStatus), nullable=False, default=SceneStatus.DRAFT)
    version = Column(Integer, nullable=False, default=1)
    locked_until = Column(DateTime)
    locked_by = Column(String(200))
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
    project: Mapped[ProjectSQL] = relationship(
        "ProjectSQL", back_populates="scenes"
    )  # type: ignore[assignment]
    proposals: Mapped[list[AgentProposalSQL]] = relationship(
        "AgentProposalSQL",
        back_populates="scene",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )  # type: ignore[assignment]


class AgentProposalSQL(Base):
    """A suggestion produced by one agent role for one scene.

    ``cost_usd`` of every proposal ever created counts towards the project
    budget, whatever its later status.
    """

    __tablename__ = "agent_proposal"
    __table_args__ = (Index("ix_agent_proposal_job_role", "job_id", "role"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    scene_id = Column(
        Uuid, ForeignKey("scene.id", ondelete="CASCADE"), nullable=False, index=True
    )
    job_id = Column(Uuid)
    role = Column(_enum_column(AgentRole), nullable=False)
    status = Column(
        _enum_column(ProposalStatus), nullable=False, default=ProposalStatus.PENDING
    )
    summary = Column(Text, nullable=False, default="")
    rationale = Column(Text, nullable=False, default="")
    diff = Column(Text, nullable=False, default="{}")
    runtime_impact_seconds = Column(Integer, nullable=False, default=0)
    tokens_used = Column(Integer, nullable=False, default=0)
    cost_usd = Column(Numeric(12, 6), nullable=False, default=Decimal("0"))
    model = Column(String(200))
    created_at = Column(DateTime, nullable=False, default=utcnow)
    resolved_at = Column(DateTime)
    resolved_by = Column(String(200))
    scene: Mapped[SceneSQL] = relationship(
        "SceneSQL", back_populates="proposals"
    )  # type: ignore[assignment]


class EventEntrySQL(Base):
    """Append-only ledger row.

    Rows are inserted once and never updated or deleted; see the session
    guards registered below.
    """

    __tablename__ = "event_store"
    __table_args__ = (
        Index("ix_event_store_project_time", "project_id", "timestamp"),
        Index("ix_event_store_entity_time", "entity_id", "timestamp"),
    )

    sequence = Column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    event_id = Column(Uuid, nullable=False, unique=True)
    event_type = Column(String(100), nullable=False, index=True)
    project_id = Column(Uuid, index=True)
    entity_id = Column(Uuid, nullable=False)
    payload = Column(Text, nullable=False)
    emitted_by = Column(String(200), nullable=False, default="human")
    timestamp = Column(DateTime, nullable=False, default=utcnow)


class PipelineJobSQL(Base):
    """Durable background job (agent pipeline run or render)."""

    __tablename__ = "pipeline_job"
    __table_args__ = (Index("ix_pipeline_job_state_run_at", "state", "run_at"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    job_type = Column(_enum_column(JobType), nullable=False)
    scene_id = Column(Uuid, nullable=False, index=True)
    state = Column(_enum_column(JobState), nullable=False, default=JobState.SCHEDULED)
    attempt = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)
    error_code = Column(String(50))
    run_at = Column(DateTime, nullable=False, default=utcnow)
    lease_until = Column(DateTime)
    worker_id = Column(String(200))
    cancel_requested = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    last_changed_at = Column(DateTime, nullable=False, default=utcnow)


class LlmInteractionSQL(Base):
    """Audit row for one model call, whether it succeeded or not.

    Rows outlive their project, like the ledger, so spend stays traceable.
    """

    __tablename__ = "llm_interaction"
    __table_args__ = (
        Index("ix_llm_interaction_project_time", "project_id", "created_at"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid, nullable=False)
    scene_id = Column(Uuid, index=True)
    role = Column(_enum_column(AgentRole))
    job_id = Column(Uuid, index=True)
    provider = Column(String(100), nullable=False)
    model = Column(String(200), nullable=False, default="")
    system_prompt = Column(Text, nullable=False, default="")
    prompt = Column(Text, nullable=False, default="")
    temperature = Column(Float, nullable=False, default=0.0)
    max_tokens = Column(Integer, nullable=False, default=0)
    response_content = Column(Text)
    input_tokens = Column(Integer, nullable=False, default=0)
    output_tokens = Column(Integer, nullable=False, default=0)
    total_tokens = Column(Integer, nullable=False, default=0)
    cost_usd = Column(Numeric(12, 6), nullable=False, default=Decimal("0"))
    success = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text)
    duration_ms = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)


@event.listens_for(Session, "before_flush")
def _reject_ledger_mutation(session: Session, flush_context, instances) -> None:
    """Refuse to flush changes to or deletion of existing ledger rows."""
    for obj in session.dirty:
        if isinstance(obj, EventEntrySQL) and session.is_modified(obj):
            raise LedgerImmutableError()
    for obj in session.deleted:
        if isinstance(obj, EventEntrySQL):
            raise LedgerImmutableError()


@event.listens_for(Session, "do_orm_execute")
def _reject_ledger_bulk_mutation(orm_execute_state) -> None:
    """Refuse ORM-enabled UPDATE/DELETE statements against the ledger."""
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return
    mapper = orm_execute_state.bind_mapper
    if mapper is not None and mapper.class_ is EventEntrySQL:
        raise LedgerImmutableError()


__all__ = [
    "ProjectSQL",
    "SceneSQL",
    "AgentProposalSQL",
    "EventEntrySQL",
    "PipelineJobSQL",
    "LlmInteractionSQL",
]

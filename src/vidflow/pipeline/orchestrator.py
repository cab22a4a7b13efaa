# src/vidflow/pipeline/orchestrator.py
"""Runs the fixed role sequence against one scene under its lock.

State machine::

    NOT_STARTED -> LOCKING -> RUNNING(role_index) -> COMPLETED
                          \\-> ABORTED(reason)   <-/

Each role is budget-checked before it runs and its proposal is committed
together with its ledger event, so an abort halfway keeps the earlier
roles' proposals. The scene lock is released on every exit path.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vidflow.agents.executor import AgentExecutor
from vidflow.core.clock import Clock, utcnow
from vidflow.core.errors import (
    AgentRunFailed,
    BudgetExceeded,
    ConcurrentModification,
    NotLockHolder,
    PipelineCancelled,
    PreviousRunActive,
    SceneNotEditable,
    SceneNotFound,
    VidflowError,
)
from vidflow.core.logs import EventType, LogLevel, Priority, get_event_logger
from vidflow.core.notifications import Notifier, notify_scene
from vidflow.core.queue import CancelCheck, JobHandler
from vidflow.models.enums import ROLE_SEQUENCE, AgentRole, SceneStatus
from vidflow.models.events import AgentRunFailedEvent
from vidflow.models.job import PipelineJob
from vidflow.models.proposal import Proposal
from vidflow.models.scene import Scene
from vidflow.models.sqlalchemy_models import SceneSQL
from vidflow.store.budget import BudgetGuard
from vidflow.store.ledger import EventLedger
from vidflow.store.locks import SceneLock
from vidflow.store.proposals import ProposalStore

event_logger = get_event_logger()


# Errors that end a run as ABORTED instead of propagating.
_ABORTING_ERRORS = (
    BudgetExceeded,
    AgentRunFailed,
    ConcurrentModification,
    PipelineCancelled,
)


class PipelineState(Enum):
    NOT_STARTED = "not_started"
    LOCKING = "locking"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass
class PipelineResult:
    scene_id: UUID
    job_id: UUID | None = None
    state: PipelineState = PipelineState.NOT_STARTED
    role_index: int | None = None
    proposals: list[Proposal] = field(default_factory=list)
    skipped_roles: list[AgentRole] = field(default_factory=list)
    empty_roles: list[AgentRole] = field(default_factory=list)
    failed_role: AgentRole | None = None
    error: VidflowError | None = None

    @property
    def success(self) -> bool:
        return self.state is PipelineState.COMPLETED

    @property
    def reason(self) -> str | None:
        return self.error.message if self.error is not None else None

    @property
    def error_code(self) -> str | None:
        return self.error.error_code if self.error is not None else None


class PipelineOrchestrator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lock: SceneLock,
        budget: BudgetGuard,
        executor: AgentExecutor,
        proposals: ProposalStore,
        ledger: EventLedger,
        notifier: Notifier | None = None,
        clock: Clock = utcnow,
        lock_ttl: float = 300.0,
        resume_completed_roles: bool = True,
        roles: Sequence[AgentRole] = ROLE_SEQUENCE,
    ) -> None:
        self._session_factory = session_factory
        self._lock = lock
        self._budget = budget
        self._executor = executor
        self._proposals = proposals
        self._ledger = ledger
        self._notifier = notifier
        self._clock = clock
        self.lock_ttl = lock_ttl
        self.resume_completed_roles = resume_completed_roles
        self.roles = tuple(roles)

    async def run(
        self,
        scene_id: UUID,
        job_id: UUID | None = None,
        should_cancel: CancelCheck | None = None,
    ) -> PipelineResult:
        """Run every role once against the scene.

        Business failures (budget, lock contention, agent failure,
        cancellation, a missing or non-draft scene) are reported in the
        result; anything else propagates after the lock is released.
        """
        result = PipelineResult(scene_id=scene_id, job_id=job_id)
        async with self._session_factory() as session:
            row = await session.get(SceneSQL, scene_id)
            if row is None:
                return self._abort(result, SceneNotFound(scene_id))
            if row.status != SceneStatus.DRAFT:
                return self._abort(result, SceneNotEditable(scene_id, row.status))
            scene = Scene.model_validate(row)

        run_prefix = f"pipeline:{job_id}:" if job_id is not None else "pipeline:"
        holder = f"{run_prefix}{uuid4().hex}"
        result.state = PipelineState.LOCKING
        try:
            await self._lock.acquire(scene_id, holder, self.lock_ttl)
        except ConcurrentModification as exc:
            if job_id is not None and (exc.locked_by or "").startswith(run_prefix):
                return self._abort(
                    result, PreviousRunActive(scene_id, job_id, exc.locked_by)
                )
            return self._abort(result, exc)
        await self._notify(scene, "SceneLocked", {"locked_by": holder})
        event_logger.log(
            LogLevel.INFO,
            "Pipeline started",
            event_type=EventType.PIPELINE_START,
            priority=Priority.HIGH,
            scene_id=scene_id,
            job_id=job_id,
            roles=[role.value for role in self.roles],
        )

        try:
            await self._run_roles(result, scene, holder, should_cancel)
            result.state = PipelineState.COMPLETED
        except _ABORTING_ERRORS as exc:
            self._abort(result, exc)
        finally:
            try:
                await self._lock.release(scene_id, holder)
            except NotLockHolder as exc:
                event_logger.warning(
                    f"Pipeline lock was taken over before release: {exc}",
                    event_type=EventType.LOCK_OPERATION,
                    scene_id=scene_id,
                    job_id=job_id,
                )
            await self._notify(scene, "SceneUnlocked", {})

        if result.success:
            event_logger.log(
                LogLevel.INFO,
                f"Pipeline completed with {len(result.proposals)} proposals",
                event_type=EventType.PIPELINE_COMPLETE,
                priority=Priority.HIGH,
                scene_id=scene_id,
                job_id=job_id,
                skipped=[role.value for role in result.skipped_roles],
            )
        return result

    async def _run_roles(
        self,
        result: PipelineResult,
        scene: Scene,
        holder: str,
        should_cancel: CancelCheck | None,
    ) -> None:
        completed: set[AgentRole] = set()
        prior: list[Any] = []
        if result.job_id is not None and self.resume_completed_roles:
            earlier = await self._proposals.list_for_job(result.job_id)
            completed = {proposal.role for proposal in earlier}
            prior.extend(earlier)

        for index, role in enumerate(self.roles):
            result.state = PipelineState.RUNNING
            result.role_index = index
            if should_cancel is not None and await should_cancel():
                raise PipelineCancelled(scene.id, result.job_id)
            if role in completed:
                result.skipped_roles.append(role)
                continue

            await self._lock.refresh(scene.id, holder, self.lock_ttl)
            await self._budget.authorize(
                scene.project_id, self._executor.estimate_cost(role)
            )
            await self._notify(scene, "AgentStarted", {"role": role.value})
            try:
                draft = await self._executor.execute(
                    scene, role, prior=prior, job_id=result.job_id
                )
            except AgentRunFailed as exc:
                await self._record_failure(scene, role, exc)
                await self._notify(
                    scene, "AgentFailed", {"role": role.value, "error": exc.message}
                )
                raise

            if draft is None:
                result.empty_roles.append(role)
            else:
                async with self._session_factory() as session:
                    proposal = await self._proposals.create_conn(
                        session, scene, draft, job_id=result.job_id
                    )
                    await session.commit()
                result.proposals.append(proposal)
                prior.append(proposal)
                await self._notify(
                    scene,
                    "ProposalCreated",
                    {
                        "proposal_id": proposal.id,
                        "role": role.value,
                        "summary": proposal.summary,
                        "cost_usd": proposal.cost_usd,
                    },
                )
            await self._notify(scene, "AgentCompleted", {"role": role.value})

    async def _record_failure(
        self, scene: Scene, role: AgentRole, exc: AgentRunFailed
    ) -> None:
        async with self._session_factory() as session:
            await self._ledger.append(
                session,
                AgentRunFailedEvent(
                    scene_id=scene.id,
                    role=role.value,
                    error=exc.reason,
                    emitted_by=f"agent:{role.value}",
                    timestamp=self._clock(),
                ),
                project_id=scene.project_id,
                entity_id=scene.id,
            )
            await session.commit()

    def _abort(self, result: PipelineResult, exc: VidflowError) -> PipelineResult:
        if result.state is PipelineState.RUNNING and result.role_index is not None:
            result.failed_role = self.roles[result.role_index]
        result.state = PipelineState.ABORTED
        result.error = exc
        event_logger.log(
            LogLevel.WARNING,
            f"Pipeline aborted: {exc.message}",
            event_type=EventType.PIPELINE_ABORTED,
            priority=Priority.HIGH,
            scene_id=result.scene_id,
            job_id=result.job_id,
            role=result.failed_role,
            error_code=exc.error_code,
        )
        return result

    async def _notify(self, scene: Scene, event: str, payload: dict[str, Any]) -> None:
        await notify_scene(self._notifier, scene.project_id, scene.id, event, payload)

    def job_handler(self) -> JobHandler:
        """Adapt :meth:`run` to the job runner; a failed run raises its error."""

        async def handle(job: PipelineJob, should_cancel: CancelCheck) -> None:
            result = await self.run(job.scene_id, job_id=job.id, should_cancel=should_cancel)
            if not result.success:
                assert result.error is not None
                raise result.error

        return handle


__all__ = [
    "CancelCheck",
    "JobHandler",
    "PipelineOrchestrator",
    "PipelineResult",
    "PipelineState",
]

# src/vidflow/store/proposals.py
"""Agent proposal persistence and the apply/dismiss lifecycle."""

from __future__ import annotations

import json
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vidflow.core.clock import Clock, utcnow
from vidflow.core.errors import ProposalNotFound, ProposalNotPending, SceneNotFound
from vidflow.core.logs import EventType, LogLevel, Priority, get_event_logger
from vidflow.core.notifications import Notifier, notify_scene
from vidflow.models.enums import ProposalStatus
from vidflow.models.events import (
    AgentProposalCreated,
    ProposalApplied,
    ProposalDismissed,
)
from vidflow.models.proposal import Proposal, ProposalDraft
from vidflow.models.scene import Scene, SceneAggregate, parse_diff
from vidflow.models.sqlalchemy_models import AgentProposalSQL, SceneSQL

from .ledger import EventLedger
from .locks import SceneLock

event_logger = get_event_logger()


class ProposalStore:
    """Creates proposals and resolves them against their scene.

    Resolving a proposal (apply or dismiss) holds the scene lock for the
    whole read-check-write, so it is serialized with pipeline runs and other
    edits of the same scene.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ledger: EventLedger,
        lock: SceneLock,
        notifier: Notifier | None = None,
        clock: Clock = utcnow,
        edit_lock_ttl: float = 30.0,
    ) -> None:
        self._session_factory = session_factory
        self._ledger = ledger
        self._lock = lock
        self._notifier = notifier
        self._clock = clock
        self.edit_lock_ttl = edit_lock_ttl

    async def create_conn(
        self,
        session: AsyncSession,
        scene: Any,
        draft: ProposalDraft,
        job_id: UUID | None = None,
    ) -> Proposal:
        """Persist a pending proposal and its creation event in ``session``.

        ``scene`` is anything with ``id`` and ``project_id``. Commit is left to
        the caller.
        """
        now = self._clock()
        row = AgentProposalSQL(
            scene_id=scene.id,
            job_id=job_id,
            role=draft.role,
            status=ProposalStatus.PENDING,
            summary=draft.summary,
            rationale=draft.rationale,
            diff=json.dumps(draft.diff, default=str),
            runtime_impact_seconds=draft.runtime_impact_seconds,
            tokens_used=draft.tokens_used,
            cost_usd=draft.cost_usd,
            model=draft.model,
            created_at=now,
        )
        session.add(row)
        await session.flush()
        await self._ledger.append(
            session,
            AgentProposalCreated(
                proposal_id=row.id,
                scene_id=scene.id,
                role=draft.role.value,
                summary=draft.summary,
                cost_usd=draft.cost_usd,
                emitted_by=f"agent:{draft.role.value}",
                timestamp=now,
            ),
            project_id=scene.project_id,
            entity_id=row.id,
        )
        event_logger.log(
            LogLevel.INFO,
            f"Proposal {row.id} created",
            event_type=EventType.PROPOSAL_OPERATION,
            scene_id=scene.id,
            job_id=job_id,
            role=draft.role,
            cost_usd=str(draft.cost_usd),
            tokens_used=draft.tokens_used,
        )
        return Proposal.model_validate(row)

    async def get(self, proposal_id: UUID) -> Proposal:
        async with self._session_factory() as session:
            row = await session.get(AgentProposalSQL, proposal_id)
            if row is None:
                raise ProposalNotFound(proposal_id)
            return Proposal.model_validate(row)

    async def list_for_scene(
        self, scene_id: UUID, status: ProposalStatus | None = None
    ) -> list[Proposal]:
        stmt = select(AgentProposalSQL).where(AgentProposalSQL.scene_id == scene_id)
        if status is not None:
            stmt = stmt.where(AgentProposalSQL.status == status)
        stmt = stmt.order_by(AgentProposalSQL.created_at, AgentProposalSQL.id)
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [Proposal.model_validate(row) for row in rows]

    async def list_for_job(self, job_id: UUID) -> list[Proposal]:
        stmt = (
            select(AgentProposalSQL)
            .where(AgentProposalSQL.job_id == job_id)
            .order_by(AgentProposalSQL.created_at, AgentProposalSQL.id)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [Proposal.model_validate(row) for row in rows]

    async def apply(self, proposal_id: UUID, emitted_by: str = "human") -> Proposal:
        """Apply the proposal's diff to its scene as a single update."""
        return await self._resolve(proposal_id, ProposalStatus.APPLIED, emitted_by)

    async def dismiss(self, proposal_id: UUID, emitted_by: str = "human") -> Proposal:
        """Reject the proposal without touching the scene."""
        return await self._resolve(proposal_id, ProposalStatus.DISMISSED, emitted_by)

    async def _resolve(
        self, proposal_id: UUID, target: ProposalStatus, emitted_by: str
    ) -> Proposal:
        current = await self.get(proposal_id)
        if current.status is not ProposalStatus.PENDING:
            raise ProposalNotPending(proposal_id, current.status)
        holder = f"proposal:{proposal_id}:{uuid4().hex}"
        async with self._lock.hold(current.scene_id, holder, self.edit_lock_ttl):
            proposal, scene, changed = await self._resolve_locked(
                proposal_id, target, emitted_by, holder
            )
        event_logger.log(
            LogLevel.INFO,
            f"Proposal {proposal_id} {target.value}",
            event_type=EventType.PROPOSAL_OPERATION,
            priority=Priority.NORMAL,
            scene_id=scene.id,
            role=proposal.role,
            changed_fields=changed,
        )
        if changed:
            await notify_scene(
                self._notifier,
                scene.project_id,
                scene.id,
                "SceneUpdated",
                {"version": scene.version, "changed_fields": changed},
            )
        await notify_scene(
            self._notifier,
            scene.project_id,
            scene.id,
            "ProposalApplied" if target is ProposalStatus.APPLIED else "ProposalDismissed",
            {"proposal_id": proposal.id, "role": proposal.role.value},
        )
        return proposal

    async def _resolve_locked(
        self,
        proposal_id: UUID,
        target: ProposalStatus,
        emitted_by: str,
        holder: str,
    ) -> tuple[Proposal, Scene, list[str]]:
        async with self._session_factory() as session:
            row = await session.get(AgentProposalSQL, proposal_id)
            if row is None:
                raise ProposalNotFound(proposal_id)
            if row.status != ProposalStatus.PENDING:
                raise ProposalNotPending(proposal_id, row.status)
            scene_row = await session.get(SceneSQL, row.scene_id)
            if scene_row is None:
                raise SceneNotFound(row.scene_id)
            now = self._clock()
            aggregate = SceneAggregate(
                scene_row, holder=holder, now=now, emitted_by=emitted_by
            )
            aggregate.ensure_editable()
            changed: list[str] = []
            if target is ProposalStatus.APPLIED:
                changed = aggregate.update(parse_diff(row.diff))
                resolution = ProposalApplied(
                    proposal_id=row.id,
                    scene_id=scene_row.id,
                    changed_fields=changed,
                    emitted_by=emitted_by,
                    timestamp=now,
                )
            else:
                resolution = ProposalDismissed(
                    proposal_id=row.id,
                    scene_id=scene_row.id,
                    emitted_by=emitted_by,
                    timestamp=now,
                )
            row.status = target
            row.resolved_at = now
            row.resolved_by = emitted_by
            for scene_event in aggregate.pending_events:
                await self._ledger.append(
                    session,
                    scene_event,
                    project_id=scene_row.project_id,
                    entity_id=scene_row.id,
                )
            await self._ledger.append(
                session, resolution, project_id=scene_row.project_id, entity_id=row.id
            )
            await session.commit()
            return (
                Proposal.model_validate(row),
                Scene.model_validate(scene_row),
                changed,
            )


__all__ = ["ProposalStore"]

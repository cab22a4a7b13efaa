# src/vidflow/store/budget.py
"""Per-project budget enforcement.

Spend is always a live fold over every proposal ever created for the
project's scenes (applied, dismissed or pending alike); there is no stored
counter to drift.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vidflow.core.clock import Clock, utcnow
from vidflow.core.errors import BudgetCapOutOfRange, BudgetExceeded, ProjectNotFound
from vidflow.core.logs import EventType, LogLevel, Priority, get_event_logger
from vidflow.models.events import ProjectBudgetCapChanged
from vidflow.models.project import BudgetState, CostReport, RoleCost, SceneCost
from vidflow.models.sqlalchemy_models import (
    AgentProposalSQL,
    LlmInteractionSQL,
    ProjectSQL,
    SceneSQL,
)

from .ledger import EventLedger

event_logger = get_event_logger()


def _decimal(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value or 0))


class BudgetGuard:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ledger: EventLedger,
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._ledger = ledger
        self._clock = clock

    async def current_spend_conn(self, session: AsyncSession, project_id: UUID) -> Decimal:
        stmt = (
            select(func.coalesce(func.sum(AgentProposalSQL.cost_usd), 0))
            .join(SceneSQL, AgentProposalSQL.scene_id == SceneSQL.id)
            .where(SceneSQL.project_id == project_id)
        )
        return _decimal((await session.execute(stmt)).scalar_one())

    async def state_conn(self, session: AsyncSession, project_id: UUID) -> BudgetState:
        cap = (
            await session.execute(
                select(ProjectSQL.budget_cap_usd).where(ProjectSQL.id == project_id)
            )
        ).scalar_one_or_none()
        if cap is None:
            raise ProjectNotFound(project_id)
        return BudgetState(
            project_id=project_id,
            budget_cap_usd=_decimal(cap),
            current_spend_usd=await self.current_spend_conn(session, project_id),
        )

    async def state(self, project_id: UUID) -> BudgetState:
        async with self._session_factory() as session:
            return await self.state_conn(session, project_id)

    async def authorize_conn(
        self, session: AsyncSession, project_id: UUID, estimated_cost: Decimal
    ) -> BudgetState:
        state = await self.state_conn(session, project_id)
        if state.would_exceed(estimated_cost):
            event_logger.log(
                LogLevel.WARNING,
                "Budget check refused",
                event_type=EventType.BUDGET_CHECK,
                priority=Priority.HIGH,
                project_id=str(project_id),
                spend=str(state.current_spend_usd),
                cap=str(state.budget_cap_usd),
                estimate=str(estimated_cost),
            )
            raise BudgetExceeded(
                project_id,
                state.current_spend_usd,
                state.budget_cap_usd,
                estimated_cost,
            )
        return state

    async def authorize(self, project_id: UUID, estimated_cost: Decimal) -> BudgetState:
        """Allow a spend of ``estimated_cost`` or raise :class:`BudgetExceeded`.

        A cap of zero never refuses. The check is advisory across scenes: two
        runs on different scenes of one project may both pass before either
        records its cost.
        """
        async with self._session_factory() as session:
            return await self.authorize_conn(session, project_id, estimated_cost)

    async def set_cap(
        self, project_id: UUID, cap: Decimal, emitted_by: str = "human"
    ) -> BudgetState:
        cap = _decimal(cap)
        if cap < 0:
            raise BudgetCapOutOfRange()
        async with self._session_factory() as session:
            project = await session.get(ProjectSQL, project_id)
            if project is None:
                raise ProjectNotFound(project_id)
            previous = _decimal(project.budget_cap_usd)
            now = self._clock()
            project.budget_cap_usd = cap
            project.updated_at = now
            await self._ledger.append(
                session,
                ProjectBudgetCapChanged(
                    project_id=project_id,
                    previous_cap_usd=previous,
                    new_cap_usd=cap,
                    emitted_by=emitted_by,
                    timestamp=now,
                ),
                project_id=project_id,
                entity_id=project_id,
            )
            state = await self.state_conn(session, project_id)
            await session.commit()
        return state

    async def cost_report(self, project_id: UUID) -> CostReport:
        async with self._session_factory() as session:
            state = await self.state_conn(session, project_id)
            role_rows = (
                await session.execute(
                    select(
                        AgentProposalSQL.role,
                        func.count(AgentProposalSQL.id),
                        func.coalesce(func.sum(AgentProposalSQL.tokens_used), 0),
                        func.coalesce(func.sum(AgentProposalSQL.cost_usd), 0),
                    )
                    .join(SceneSQL, AgentProposalSQL.scene_id == SceneSQL.id)
                    .where(SceneSQL.project_id == project_id)
                    .group_by(AgentProposalSQL.role)
                )
            ).all()
            scene_rows = (
                await session.execute(
                    select(
                        SceneSQL.id,
                        SceneSQL.number,
                        SceneSQL.title,
                        func.count(AgentProposalSQL.id),
                        func.coalesce(func.sum(AgentProposalSQL.cost_usd), 0),
                    )
                    .outerjoin(AgentProposalSQL, AgentProposalSQL.scene_id == SceneSQL.id)
                    .where(SceneSQL.project_id == project_id)
                    .group_by(SceneSQL.id, SceneSQL.number, SceneSQL.title)
                    .order_by(SceneSQL.number)
                )
            ).all()
            failed = case((LlmInteractionSQL.success.is_(False), 1), else_=0)
            llm_calls, failed_calls, llm_cost = (
                await session.execute(
                    select(
                        func.count(LlmInteractionSQL.id),
                        func.coalesce(func.sum(failed), 0),
                        func.coalesce(func.sum(LlmInteractionSQL.cost_usd), 0),
                    ).where(LlmInteractionSQL.project_id == project_id)
                )
            ).one()
        by_role = [
            RoleCost(
                role=role,
                proposal_count=count,
                tokens_used=int(tokens),
                cost_usd=_decimal(cost),
            )
            for role, count, tokens, cost in role_rows
        ]
        return CostReport(
            budget=state,
            total_tokens=sum(item.tokens_used for item in by_role),
            llm_calls=llm_calls,
            failed_llm_calls=int(failed_calls),
            llm_cost_usd=_decimal(llm_cost),
            by_role=sorted(by_role, key=lambda item: item.cost_usd, reverse=True),
            by_scene=[
                SceneCost(
                    scene_id=scene_id,
                    scene_number=number,
                    title=title,
                    proposal_count=count,
                    cost_usd=_decimal(cost),
                )
                for scene_id, number, title, count, cost in scene_rows
            ],
        )


__all__ = ["BudgetGuard"]

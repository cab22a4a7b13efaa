# src/vidflow/store/ledger.py
"""Append-only event ledger."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vidflow.core.logs import EventType, LogLevel, Priority, get_event_logger
from vidflow.models.events import DomainEvent
from vidflow.models.ledger import EventFilter, EventPage, LedgerEntry
from vidflow.models.sqlalchemy_models import EventEntrySQL

MAX_PAGE_SIZE = 200
MAX_PROJECT_EVENTS = 500

event_logger = get_event_logger()


class EventLedger:
    """Records domain events alongside the mutations that caused them.

    :meth:`append` only adds the row to the caller's session; the event becomes
    durable when (and only when) the caller's transaction commits.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def append(
        self,
        session: AsyncSession,
        event: DomainEvent,
        *,
        project_id: UUID | None,
        entity_id: UUID,
    ) -> LedgerEntry:
        row = EventEntrySQL(
            event_id=event.event_id,
            event_type=event.type_name(),
            project_id=project_id,
            entity_id=entity_id,
            payload=event.model_dump_json(),
            emitted_by=event.emitted_by,
            timestamp=event.timestamp,
        )
        session.add(row)
        await session.flush()
        event_logger.log(
            LogLevel.DEBUG,
            f"Ledger append {row.event_type}",
            event_type=EventType.DATABASE_OPERATION,
            priority=Priority.LOW,
            operation="ledger_append",
            entity_id=str(entity_id),
            sequence=row.sequence,
        )
        return LedgerEntry.model_validate(row)

    @staticmethod
    def _apply_filter(stmt, flt: EventFilter, *, exact_type: bool):
        if flt.project_id is not None:
            stmt = stmt.where(EventEntrySQL.project_id == flt.project_id)
        if flt.entity_id is not None:
            stmt = stmt.where(EventEntrySQL.entity_id == flt.entity_id)
        if flt.event_type:
            if exact_type:
                stmt = stmt.where(EventEntrySQL.event_type == flt.event_type)
            else:
                stmt = stmt.where(EventEntrySQL.event_type.contains(flt.event_type))
        if flt.from_time is not None:
            stmt = stmt.where(EventEntrySQL.timestamp >= flt.from_time)
        if flt.to_time is not None:
            stmt = stmt.where(EventEntrySQL.timestamp <= flt.to_time)
        return stmt

    async def query(self, flt: EventFilter | None = None) -> list[LedgerEntry]:
        """Return matching entries oldest first (timestamp, then insertion order)."""
        flt = flt or EventFilter()
        stmt = self._apply_filter(select(EventEntrySQL), flt, exact_type=True).order_by(
            EventEntrySQL.timestamp, EventEntrySQL.sequence
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [LedgerEntry.model_validate(row) for row in rows]

    async def query_events(
        self,
        flt: EventFilter | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> EventPage:
        """Page through matching entries newest first.

        ``event_type`` matches as a substring here, for interactive search.
        """
        if page < 1:
            raise ValueError("page must be >= 1")
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValueError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")
        flt = flt or EventFilter()
        base = self._apply_filter(select(EventEntrySQL), flt, exact_type=False)
        count_stmt = self._apply_filter(
            select(func.count()).select_from(EventEntrySQL), flt, exact_type=False
        )
        stmt = (
            base.order_by(EventEntrySQL.timestamp.desc(), EventEntrySQL.sequence.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        async with self._session_factory() as session:
            total = (await session.execute(count_stmt)).scalar_one()
            rows = (await session.execute(stmt)).scalars().all()
        return EventPage(
            items=[LedgerEntry.model_validate(row) for row in rows],
            total_count=total,
            page=page,
            page_size=page_size,
        )

    async def get_project_events(self, project_id: UUID, limit: int = 100) -> EventPage:
        """Return the ``limit`` most recent entries for a project, newest first."""
        if not 1 <= limit <= MAX_PROJECT_EVENTS:
            raise ValueError(f"limit must be between 1 and {MAX_PROJECT_EVENTS}")
        flt = EventFilter(project_id=project_id)
        count_stmt = self._apply_filter(
            select(func.count()).select_from(EventEntrySQL), flt, exact_type=True
        )
        stmt = (
            self._apply_filter(select(EventEntrySQL), flt, exact_type=True)
            .order_by(EventEntrySQL.timestamp.desc(), EventEntrySQL.sequence.desc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            total = (await session.execute(count_stmt)).scalar_one()
            rows = (await session.execute(stmt)).scalars().all()
        return EventPage(
            items=[LedgerEntry.model_validate(row) for row in rows],
            total_count=total,
            page=1,
            page_size=limit,
        )


__all__ = ["EventLedger", "MAX_PAGE_SIZE", "MAX_PROJECT_EVENTS"]

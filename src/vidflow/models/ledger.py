# src/vidflow/models/ledger.py
"""Event ledger read models."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import Field

from .base_model import VidflowBaseModel
from .events import DomainEvent, from_payload


class LedgerEntry(VidflowBaseModel):
    """One immutable row of the event ledger."""

    sequence: int
    event_id: UUID
    event_type: str
    project_id: UUID | None = None
    entity_id: UUID
    payload: str
    emitted_by: str = "human"
    timestamp: datetime

    def to_event(self) -> DomainEvent:
        return from_payload(self.event_type, self.payload)


class EventFilter(VidflowBaseModel):
    """Ledger query filter; unset fields match everything."""

    project_id: UUID | None = None
    entity_id: UUID | None = None
    event_type: str | None = None
    from_time: datetime | None = None
    to_time: datetime | None = None


class EventPage(VidflowBaseModel):
    items: list[LedgerEntry] = Field(default_factory=list)
    total_count: int = 0
    page: int = 1
    page_size: int = 0


__all__ = ["LedgerEntry", "EventFilter", "EventPage"]

# src/vidflow/models/mixins.py
"""Common reusable mixin models."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from pydantic import Field

from vidflow.core.clock import utcnow

from .base_model import VidflowBaseModel


class IDMixin(VidflowBaseModel):
    """Mixin that provides a unique identifier."""

    id: UUID = Field(default_factory=uuid4)


class VersionedMixin(VidflowBaseModel):
    """Mixin for aggregates with an optimistic version counter."""

    version: int = 1


class TimestampsMixin(VidflowBaseModel):
    """Mixin that adds creation and update timestamps."""

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime | None = Field(default_factory=utcnow)


__all__ = ["IDMixin", "VersionedMixin", "TimestampsMixin"]

# src/vidflow/models/scene.py
"""Scene snapshot, diff parsing and the Scene aggregate rules."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from vidflow.core.errors import (
    ConcurrentModification,
    DuplicateCharacterName,
    InvalidStatusTransition,
    MalformedDiff,
    SceneNotEditable,
)

from .base_model import VidflowBaseModel
from .enums import SceneStatus
from .events import (
    DomainEvent,
    SceneApproved,
    SceneRevisionRequested,
    SceneSubmittedForReview,
    SceneUpdated,
)
from .mixins import IDMixin, TimestampsMixin, VersionedMixin

# Scene fields a proposal diff or a manual edit may change.
EDITABLE_FIELDS: tuple[str, ...] = (
    "title",
    "script",
    "narrative_goal",
    "emotional_beat",
    "location",
    "time_of_day",
    "character_names",
)


class Scene(IDMixin, VersionedMixin, TimestampsMixin):
    """Read-side snapshot of a scene."""

    project_id: UUID
    number: int
    title: str
    script: str = ""
    narrative_goal: str = ""
    emotional_beat: str = ""
    location: str = ""
    time_of_day: str = ""
    character_names: list[str] = Field(default_factory=list)
    runtime_target_seconds: int = 60
    status: SceneStatus = SceneStatus.DRAFT
    locked_until: datetime | None = None
    locked_by: str | None = None

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and self.locked_until > now


class SceneChanges(VidflowBaseModel):
    """A partial scene update.

    Keys may be snake_case or camelCase. Unknown keys are ignored; fields
    left unset are not touched.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    title: str | None = None
    script: str | None = None
    narrative_goal: str | None = None
    emotional_beat: str | None = None
    location: str | None = None
    time_of_day: str | None = None
    character_names: list[str] | None = None

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            raise ValueError("title must not be blank")
        return value

    def provided(self) -> dict[str, Any]:
        """Return only the fields that carry a value."""
        return {
            name: getattr(self, name)
            for name in EDITABLE_FIELDS
            if getattr(self, name) is not None
        }

    @property
    def is_empty(self) -> bool:
        return not self.provided()


def parse_diff(raw: str | None) -> SceneChanges:
    """Parse a proposal diff into scene changes.

    Empty or whitespace-only text means "no changes". Anything that is not a
    JSON object with correctly typed scene fields raises :class:`MalformedDiff`.
    """
    if raw is None or not raw.strip():
        return SceneChanges()
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MalformedDiff(exc.msg) from exc
    if not isinstance(data, dict):
        raise MalformedDiff(f"expected a JSON object, got {type(data).__name__}")
    try:
        return SceneChanges.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise MalformedDiff(f"{location}: {first['msg']}") from exc


class SceneAggregate:
    """Business rules for mutating a scene row.

    Wraps a :class:`~vidflow.models.sqlalchemy_models.SceneSQL` row loaded in
    the caller's session. Each successful mutation bumps ``version`` once and
    queues exactly one event in :attr:`pending_events`; persisting the row and
    appending the events is left to the caller's transaction.
    """

    def __init__(
        self,
        row: Any,
        *,
        holder: str | None,
        now: datetime,
        emitted_by: str = "human",
    ) -> None:
        self.row = row
        self.holder = holder
        self.now = now
        self.emitted_by = emitted_by
        self.pending_events: list[DomainEvent] = []

    @property
    def scene_id(self) -> UUID:
        return self.row.id

    def ensure_unlocked(self) -> None:
        """Raise unless the scene is unlocked, expired, or held by ``holder``."""
        locked_until = self.row.locked_until
        if locked_until is None or locked_until <= self.now:
            return
        if self.holder is not None and self.row.locked_by == self.holder:
            return
        raise ConcurrentModification(self.row.id, self.row.locked_by, locked_until)

    def ensure_editable(self) -> None:
        self.ensure_unlocked()
        if self.row.status != SceneStatus.DRAFT:
            raise SceneNotEditable(self.row.id, self.row.status)

    def _bump(self) -> int:
        self.row.version = (self.row.version or 1) + 1
        self.row.updated_at = self.now
        return self.row.version

    def update(self, changes: SceneChanges) -> list[str]:
        """Apply ``changes`` as one content update; return the changed field names."""
        self.ensure_editable()
        values = changes.provided()
        if not values:
            return []
        names = values.get("character_names")
        if names is not None:
            seen: set[str] = set()
            for name in names:
                key = name.strip().lower()
                if key in seen:
                    raise DuplicateCharacterName(name)
                seen.add(key)
        for name, value in values.items():
            setattr(self.row, name, list(value) if name == "character_names" else value)
        changed = list(values)
        self.pending_events.append(
            SceneUpdated(
                scene_id=self.row.id,
                new_version=self._bump(),
                changed_fields=changed,
                emitted_by=self.emitted_by,
                timestamp=self.now,
            )
        )
        return changed

    def _transition(self, current: SceneStatus, target: SceneStatus) -> int:
        self.ensure_unlocked()
        if self.row.status != current:
            raise InvalidStatusTransition(self.row.id, self.row.status, target)
        self.row.status = target
        return self._bump()

    def submit_for_review(self) -> None:
        version = self._transition(SceneStatus.DRAFT, SceneStatus.REVIEW)
        self.pending_events.append(
            SceneSubmittedForReview(
                scene_id=self.row.id,
                new_version=version,
                emitted_by=self.emitted_by,
                timestamp=self.now,
            )
        )

    def approve(self, approved_by: str) -> None:
        version = self._transition(SceneStatus.REVIEW, SceneStatus.APPROVED)
        self.pending_events.append(
            SceneApproved(
                scene_id=self.row.id,
                new_version=version,
                approved_by=approved_by,
                emitted_by=self.emitted_by,
                timestamp=self.now,
            )
        )

    def request_revision(self, feedback: str, requested_by: str) -> None:
        version = self._transition(SceneStatus.REVIEW, SceneStatus.DRAFT)
        self.pending_events.append(
            SceneRevisionRequested(
                scene_id=self.row.id,
                new_version=version,
                feedback=feedback,
                requested_by=requested_by,
                emitted_by=self.emitted_by,
                timestamp=self.now,
            )
        )


__all__ = [
    "EDITABLE_FIELDS",
    "Scene",
    "SceneChanges",
    "SceneAggregate",
    "parse_diff",
]

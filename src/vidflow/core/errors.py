# src/vidflow/core/errors.py
"""Exception hierarchy and failure classification for the pipeline engine.

Business-rule failures derive from :class:`DomainError` and carry a stable
``error_code``. Agent failures and anything that is not a
:class:`VidflowError` are retried by the job runner, as is
:class:`PreviousRunActive`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


class VidflowError(Exception):
    """Root of all errors raised by the engine."""

    error_code = "INTERNAL_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class DomainError(VidflowError):
    """A business rule rejected the operation."""

    error_code = "DOMAIN_ERROR"


class SceneNotEditable(DomainError):
    error_code = "SCENE_NOT_EDITABLE"

    def __init__(self, scene_id: UUID, status: Any) -> None:
        status_name = getattr(status, "value", status)
        super().__init__(
            f"Scene {scene_id} cannot be edited in status '{status_name}'; "
            "only draft scenes are editable"
        )
        self.scene_id = scene_id
        self.status = status


class InvalidStatusTransition(DomainError):
    error_code = "INVALID_STATUS_TRANSITION"

    def __init__(self, scene_id: UUID, current: Any, target: Any) -> None:
        current_name = getattr(current, "value", current)
        target_name = getattr(target, "value", target)
        super().__init__(
            f"Scene {scene_id} cannot move from '{current_name}' to '{target_name}'"
        )
        self.scene_id = scene_id
        self.current = current
        self.target = target


class SceneNotApproved(DomainError):
    error_code = "SCENE_NOT_APPROVED"

    def __init__(self, scene_id: UUID) -> None:
        super().__init__(f"Scene {scene_id} must be approved before rendering")
        self.scene_id = scene_id


class BudgetExceeded(DomainError):
    error_code = "BUDGET_EXCEEDED"

    def __init__(
        self,
        project_id: UUID,
        current_spend: Decimal,
        budget_cap: Decimal,
        estimated_cost: Decimal,
    ) -> None:
        super().__init__(
            f"Budget exceeded: current spend ${current_spend:.4f}, "
            f"cap ${budget_cap:.4f}, estimated cost ${estimated_cost:.4f}"
        )
        self.project_id = project_id
        self.current_spend = current_spend
        self.budget_cap = budget_cap
        self.estimated_cost = estimated_cost


class DuplicateCharacterName(DomainError):
    error_code = "DUPLICATE_CHARACTER_NAME"

    def __init__(self, name: str) -> None:
        super().__init__(f"Character '{name}' appears more than once in the scene")
        self.name = name


class ConcurrentModification(DomainError):
    """The scene lock is held by someone else (or was lost)."""

    error_code = "CONCURRENT_MODIFICATION"

    def __init__(
        self,
        scene_id: UUID,
        locked_by: str | None = None,
        locked_until: datetime | None = None,
    ) -> None:
        super().__init__(
            f"Scene {scene_id} is currently being processed by {locked_by or 'agents'}"
        )
        self.scene_id = scene_id
        self.locked_by = locked_by
        self.locked_until = locked_until


class ProposalNotPending(DomainError):
    error_code = "PROPOSAL_NOT_PENDING"

    def __init__(self, proposal_id: UUID, status: Any) -> None:
        status_name = getattr(status, "value", status)
        super().__init__(
            f"Proposal {proposal_id} is already {status_name} and cannot be changed"
        )
        self.proposal_id = proposal_id
        self.status = status


class NotLockHolder(DomainError):
    error_code = "NOT_LOCK_HOLDER"

    def __init__(self, scene_id: UUID, holder: str, locked_by: str | None) -> None:
        super().__init__(
            f"Lock on scene {scene_id} is held by {locked_by}, not {holder}"
        )
        self.scene_id = scene_id
        self.holder = holder
        self.locked_by = locked_by


class MalformedDiff(DomainError, ValueError):
    error_code = "INVALID_DIFF_FORMAT"

    def __init__(self, detail: str) -> None:
        super().__init__(f"Invalid proposal diff format: {detail}")
        self.detail = detail


class PipelineCancelled(DomainError):
    error_code = "PIPELINE_CANCELLED"

    def __init__(self, scene_id: UUID, job_id: UUID | None = None) -> None:
        super().__init__(f"Pipeline run for scene {scene_id} was cancelled")
        self.scene_id = scene_id
        self.job_id = job_id


class NotFoundError(VidflowError, LookupError):
    error_code = "NOT_FOUND"
    entity = "Entity"

    def __init__(self, entity_id: Any) -> None:
        super().__init__(f"{self.entity} {entity_id} not found")
        self.entity_id = entity_id


class ProjectNotFound(NotFoundError):
    entity = "Project"


class SceneNotFound(NotFoundError):
    entity = "Scene"


class ProposalNotFound(NotFoundError):
    entity = "Proposal"


class JobNotFound(NotFoundError):
    entity = "Job"


class BudgetCapOutOfRange(VidflowError, ValueError):
    error_code = "INVALID_ARGUMENT"

    def __init__(self, message: str = "Budget cap must be greater than or equal to 0") -> None:
        super().__init__(message)


class AgentRunFailed(VidflowError):
    """A role agent failed to produce output (provider error, timeout, ...)."""

    error_code = "AGENT_RUN_FAILED"

    def __init__(self, scene_id: UUID, role: Any, message: str) -> None:
        role_name = getattr(role, "value", role)
        super().__init__(f"Agent {role_name} failed on scene {scene_id}: {message}")
        self.scene_id = scene_id
        self.role = role
        self.reason = message


class PreviousRunActive(VidflowError):
    """An earlier execution of the same job still holds the scene lock."""

    error_code = "PREVIOUS_RUN_ACTIVE"

    def __init__(self, scene_id: UUID, job_id: UUID, locked_by: str | None) -> None:
        super().__init__(
            f"Scene {scene_id} is still locked by an earlier run of job {job_id} "
            f"({locked_by})"
        )
        self.scene_id = scene_id
        self.job_id = job_id
        self.locked_by = locked_by


class LedgerImmutableError(VidflowError):
    error_code = "LEDGER_IMMUTABLE"

    def __init__(self) -> None:
        super().__init__("Event ledger entries cannot be modified or deleted")


class ErrorType(Enum):
    """How the job runner should treat a failure."""

    # Temporary issues that can be retried
    RETRIABLE = "retriable"

    # Business-rule failures; retrying cannot help
    TERMINAL = "terminal"

    # Cooperative cancellation
    CANCELLED = "cancelled"


@dataclass
class ErrorClassification:
    """Classification of a failure with the text kept for the job record."""

    error_type: ErrorType
    error_code: str
    message: str

    @property
    def retryable(self) -> bool:
        return self.error_type is ErrorType.RETRIABLE

    @classmethod
    def for_cancellation(cls, exc: VidflowError) -> ErrorClassification:
        return cls(ErrorType.CANCELLED, exc.error_code, exc.message)

    @classmethod
    def for_business_rule(cls, exc: VidflowError) -> ErrorClassification:
        return cls(ErrorType.TERMINAL, exc.error_code, exc.message)

    @classmethod
    def for_infrastructure(cls, exc: BaseException) -> ErrorClassification:
        code = getattr(exc, "error_code", VidflowError.error_code)
        return cls(ErrorType.RETRIABLE, code, str(exc) or type(exc).__name__)


def classify_failure(exc: BaseException) -> ErrorClassification:
    """Decide whether a failed job may be retried."""
    if isinstance(exc, PipelineCancelled):
        return ErrorClassification.for_cancellation(exc)
    if isinstance(exc, (AgentRunFailed, PreviousRunActive)):
        return ErrorClassification.for_infrastructure(exc)
    if isinstance(exc, VidflowError):
        return ErrorClassification.for_business_rule(exc)
    return ErrorClassification.for_infrastructure(exc)


__all__ = [
    "VidflowError",
    "DomainError",
    "SceneNotEditable",
    "InvalidStatusTransition",
    "SceneNotApproved",
    "BudgetExceeded",
    "DuplicateCharacterName",
    "ConcurrentModification",
    "ProposalNotPending",
    "NotLockHolder",
    "MalformedDiff",
    "PipelineCancelled",
    "NotFoundError",
    "ProjectNotFound",
    "SceneNotFound",
    "ProposalNotFound",
    "JobNotFound",
    "BudgetCapOutOfRange",
    "AgentRunFailed",
    "PreviousRunActive",
    "LedgerImmutableError",
    "ErrorType",
    "ErrorClassification",
    "classify_failure",
]

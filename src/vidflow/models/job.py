# src/vidflow/models/job.py
"""Background job snapshots."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from .base_model import VidflowBaseModel
from .enums import JobState, JobType
from .mixins import IDMixin


class PipelineJob(IDMixin):
    """Read-side snapshot of a durable job row."""

    job_type: JobType
    scene_id: UUID
    state: JobState
    attempt: int = 0
    last_error: str | None = None
    error_code: str | None = None
    run_at: datetime
    lease_until: datetime | None = None
    worker_id: str | None = None
    cancel_requested: bool = False
    created_at: datetime
    last_changed_at: datetime


class JobStatus(VidflowBaseModel):
    """Status view returned to callers polling a job."""

    job_id: UUID
    job_type: JobType
    state: JobState
    created_at: datetime
    last_changed_at: datetime
    reason: str | None = None
    error_code: str | None = None
    attempt: int = 0
    next_run_at: datetime | None = None

    @classmethod
    def from_job(cls, job: PipelineJob) -> JobStatus:
        return cls(
            job_id=job.id,
            job_type=job.job_type,
            state=job.state,
            created_at=job.created_at,
            last_changed_at=job.last_changed_at,
            reason=job.last_error,
            error_code=job.error_code,
            attempt=job.attempt,
            next_run_at=job.run_at if job.state is JobState.SCHEDULED else None,
        )


__all__ = ["PipelineJob", "JobStatus"]

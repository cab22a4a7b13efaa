# src/vidflow/core/queue.py
"""Durable, retried background jobs backed by the ``pipeline_job`` table.

Producers enqueue agent pipeline and render jobs; a pool of asyncio workers
claims due jobs with a compare-and-set update, so several worker processes
can share the table. A job that fails with a retryable error is scheduled
again after ``retry_delays[attempt - 1]`` seconds until ``max_attempts``
executions have been spent.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vidflow.config import config
from vidflow.core.clock import Clock, utcnow
from vidflow.core.errors import (
    ErrorType,
    JobNotFound,
    SceneNotApproved,
    SceneNotEditable,
    SceneNotFound,
    classify_failure,
)
from vidflow.core.logs import EventType, LogLevel, Priority, get_event_logger, log_calls
from vidflow.models.enums import JobState, JobType, SceneStatus
from vidflow.models.job import JobStatus, PipelineJob
from vidflow.models.sqlalchemy_models import PipelineJobSQL, SceneSQL

event_logger = get_event_logger()

CancelCheck = Callable[[], Awaitable[bool]]
JobHandler = Callable[[PipelineJob, CancelCheck], Awaitable[None]]

# How many due rows one claim looks at before giving up on this round.
_CLAIM_CANDIDATES = 5


class RetryableJobRunner:
    """Enqueue, claim and execute pipeline jobs with retry and backoff.

    Parameters
    ----------
    session_factory:
        Factory for the sessions every job transition runs in.
    handlers:
        Coroutine per job type, called as ``handler(job, should_cancel)``.
        Only job types with a handler are claimed.
    max_attempts:
        Total executions allowed for a retryable failure.
    retry_delays:
        Backoff in seconds; the n-th failure waits ``retry_delays[n - 1]``.
    retry_business_failures:
        Retry business-rule failures too instead of failing them at once.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        handlers: Mapping[JobType, JobHandler] | None = None,
        *,
        max_attempts: int | None = None,
        retry_delays: tuple[float, ...] | None = None,
        retry_business_failures: bool | None = None,
        lease_seconds: float | None = None,
        clock: Clock = utcnow,
        worker_id: str | None = None,
        concurrency: int | None = None,
        idle: float | None = None,
    ) -> None:
        worker = config.worker
        self._session_factory = session_factory
        self.handlers: dict[JobType, JobHandler] = dict(handlers or {})
        self.max_attempts = max_attempts or worker.max_attempts
        self.retry_delays = tuple(retry_delays or worker.retry_delays)
        self.retry_business_failures = (
            worker.retry_business_failures
            if retry_business_failures is None
            else retry_business_failures
        )
        self.lease_seconds = lease_seconds or worker.lease_seconds
        self._clock = clock
        self.worker_id = worker_id or worker.worker_id or f"worker-{uuid4().hex[:8]}"
        self.concurrency = concurrency or config.concurrency.queue_workers
        self.idle = worker.worker_idle if idle is None else idle
        self._slots = asyncio.Semaphore(self.concurrency)
        self.active_workers = 0
        self.processed_count = 0

    def register(self, job_type: JobType, handler: JobHandler) -> None:
        self.handlers[job_type] = handler

    def backoff_delay(self, attempt: int) -> float:
        """Delay before the run that follows failed attempt number ``attempt``."""
        index = min(max(attempt, 1), len(self.retry_delays)) - 1
        return float(self.retry_delays[index])

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    @log_calls
    async def enqueue_pipeline(self, scene_id: UUID) -> UUID:
        """Schedule an agent pipeline run for a draft scene."""
        async with self._session_factory() as session:
            scene = await session.get(SceneSQL, scene_id)
            if scene is None:
                raise SceneNotFound(scene_id)
            if scene.status != SceneStatus.DRAFT:
                raise SceneNotEditable(scene_id, scene.status)
            return await self._enqueue(session, JobType.AGENT_PIPELINE, scene_id)

    @log_calls
    async def enqueue_render(self, scene_id: UUID) -> UUID:
        """Schedule a render of an approved scene."""
        async with self._session_factory() as session:
            scene = await session.get(SceneSQL, scene_id)
            if scene is None:
                raise SceneNotFound(scene_id)
            if scene.status != SceneStatus.APPROVED:
                raise SceneNotApproved(scene_id)
            return await self._enqueue(session, JobType.RENDER, scene_id)

    async def _enqueue(
        self, session: AsyncSession, job_type: JobType, scene_id: UUID
    ) -> UUID:
        now = self._clock()
        row = PipelineJobSQL(
            id=uuid4(),
            job_type=job_type,
            scene_id=scene_id,
            state=JobState.SCHEDULED,
            attempt=0,
            run_at=now,
            created_at=now,
            last_changed_at=now,
        )
        session.add(row)
        await session.commit()
        event_logger.log(
            LogLevel.INFO,
            f"Enqueued {job_type.value} job {row.id}",
            event_type=EventType.JOB_PROCESSING,
            scene_id=scene_id,
            job_id=row.id,
            operation="enqueue",
        )
        return row.id

    async def get_job(self, job_id: UUID) -> PipelineJob:
        async with self._session_factory() as session:
            row = await session.get(PipelineJobSQL, job_id)
            if row is None:
                raise JobNotFound(job_id)
            return PipelineJob.model_validate(row)

    async def get_job_status(self, job_id: UUID) -> JobStatus:
        return JobStatus.from_job(await self.get_job(job_id))

    @log_calls
    async def cancel(self, job_id: UUID) -> JobStatus:
        """Cancel a scheduled job now, or flag a running one.

        A running pipeline notices the flag at its next role boundary.
        Terminal jobs are left alone.
        """
        now = self._clock()
        async with self._session_factory() as session:
            if await session.get(PipelineJobSQL, job_id) is None:
                raise JobNotFound(job_id)
            result = await session.execute(
                update(PipelineJobSQL)
                .where(
                    PipelineJobSQL.id == job_id,
                    PipelineJobSQL.state == JobState.SCHEDULED,
                )
                .values(
                    state=JobState.CANCELLED,
                    cancel_requested=True,
                    last_error="Cancelled before it started",
                    error_code="PIPELINE_CANCELLED",
                    last_changed_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await session.execute(
                    update(PipelineJobSQL)
                    .where(
                        PipelineJobSQL.id == job_id,
                        PipelineJobSQL.state == JobState.PROCESSING,
                    )
                    .values(cancel_requested=True)
                    .execution_options(synchronize_session=False)
                )
            await session.commit()
        event_logger.log(
            LogLevel.INFO,
            f"Cancellation requested for job {job_id}",
            event_type=EventType.JOB_PROCESSING,
            job_id=job_id,
            operation="cancel",
        )
        return await self.get_job_status(job_id)

    # ------------------------------------------------------------------
    # Worker side
    # ------------------------------------------------------------------

    async def claim_next(self) -> PipelineJob | None:
        """Move one due job to Processing and return it.

        Due means Scheduled with ``run_at`` reached, or Processing with an
        expired lease (its worker died). A reclaim spends one attempt; when
        none are left the job is failed with ``LEASE_EXPIRED`` instead. The
        state change is a compare-and-set, so a job is handed to exactly one
        claimer.
        """
        if not self.handlers:
            return None
        now = self._clock()
        async with self._session_factory() as session:
            candidates = (
                await session.execute(
                    select(PipelineJobSQL)
                    .where(
                        PipelineJobSQL.job_type.in_(list(self.handlers)),
                        or_(
                            and_(
                                PipelineJobSQL.state == JobState.SCHEDULED,
                                PipelineJobSQL.run_at <= now,
                            ),
                            and_(
                                PipelineJobSQL.state == JobState.PROCESSING,
                                PipelineJobSQL.lease_until < now,
                            ),
                        ),
                    )
                    .order_by(PipelineJobSQL.run_at, PipelineJobSQL.created_at)
                    .limit(_CLAIM_CANDIDATES)
                )
            ).scalars().all()
            seen = [
                (c.id, c.state, c.attempt, c.lease_until, c.worker_id) for c in candidates
            ]

            for job_id, state, attempt, lease_until, stale_worker in seen:
                reclaimed = state == JobState.PROCESSING
                guard = [
                    PipelineJobSQL.id == job_id,
                    PipelineJobSQL.state == state,
                    PipelineJobSQL.attempt == attempt,
                ]
                values: dict[str, Any] = {
                    "state": JobState.PROCESSING,
                    "worker_id": self.worker_id,
                    "lease_until": now + timedelta(seconds=self.lease_seconds),
                    "last_changed_at": now,
                }
                if reclaimed:
                    # The crashed execution counts as a failed attempt.
                    guard.append(PipelineJobSQL.lease_until == lease_until)
                    values["attempt"] = attempt + 1
                    if attempt + 1 >= self.max_attempts:
                        await self._expire(
                            session, job_id, guard, attempt + 1, stale_worker, now
                        )
                        continue
                result = await session.execute(
                    update(PipelineJobSQL)
                    .where(*guard)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    continue
                await session.commit()
                row = await session.get(PipelineJobSQL, job_id)
                if row is None:
                    raise JobNotFound(job_id)
                await session.refresh(row)
                job = PipelineJob.model_validate(row)
                event_logger.log(
                    LogLevel.INFO,
                    f"{'Reclaimed' if reclaimed else 'Claimed'} job {job.id}",
                    event_type=EventType.JOB_PROCESSING,
                    scene_id=job.scene_id,
                    job_id=job.id,
                    worker_id=self.worker_id,
                    attempt=job.attempt,
                    operation="claim",
                )
                return job
        return None

    async def _expire(
        self,
        session: AsyncSession,
        job_id: UUID,
        guard: list[Any],
        attempt: int,
        stale_worker: str | None,
        now: datetime,
    ) -> None:
        """Fail a job whose last allowed execution lost its lease."""
        message = (
            f"Lease expired on worker {stale_worker} after {attempt} "
            f"of {self.max_attempts} attempts"
        )
        result = await session.execute(
            update(PipelineJobSQL)
            .where(*guard)
            .values(
                state=JobState.FAILED,
                attempt=attempt,
                last_error=message,
                error_code="LEASE_EXPIRED",
                lease_until=None,
                last_changed_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        if result.rowcount == 1:
            event_logger.log_retry_exhausted(
                attempt,
                job_id=job_id,
                worker_id=stale_worker,
                error_code="LEASE_EXPIRED",
                error=message,
            )

    def _cancel_check(self, job_id: UUID) -> CancelCheck:
        async def should_cancel() -> bool:
            async with self._session_factory() as session:
                flag = await session.scalar(
                    select(PipelineJobSQL.cancel_requested).where(
                        PipelineJobSQL.id == job_id
                    )
                )
            return bool(flag)

        return should_cancel

    async def process(self, job: PipelineJob) -> PipelineJob:
        """Run the job's handler once and record the outcome."""
        handler = self.handlers[job.job_type]
        try:
            await handler(job, self._cancel_check(job.id))
        except Exception as exc:
            return await self._record_failure(job, exc)
        self.processed_count += 1
        return await self._transition(
            job,
            state=JobState.SUCCEEDED,
            last_error=None,
            error_code=None,
            lease_until=None,
        )

    async def _record_failure(self, job: PipelineJob, exc: Exception) -> PipelineJob:
        classification = classify_failure(exc)
        attempt = job.attempt + 1
        retryable = classification.retryable or (
            self.retry_business_failures
            and classification.error_type is ErrorType.TERMINAL
        )
        log_context: dict[str, Any] = {
            "scene_id": job.scene_id,
            "job_id": job.id,
            "error_code": classification.error_code,
            "error": classification.message,
        }
        values: dict[str, Any] = {
            "attempt": attempt,
            "last_error": classification.message,
            "error_code": classification.error_code,
            "lease_until": None,
        }

        if classification.error_type is ErrorType.CANCELLED:
            values["state"] = JobState.CANCELLED
            event_logger.info(
                f"Job {job.id} cancelled",
                event_type=EventType.JOB_PROCESSING,
                **log_context,
            )
        elif retryable and attempt < self.max_attempts:
            delay = self.backoff_delay(attempt)
            values["state"] = JobState.SCHEDULED
            values["run_at"] = self._clock() + timedelta(seconds=delay)
            event_logger.log_retry_attempt(
                attempt, self.max_attempts, delay, **log_context
            )
        else:
            values["state"] = JobState.FAILED
            if retryable:
                event_logger.log_retry_exhausted(attempt, **log_context)
            else:
                event_logger.error(
                    f"Job {job.id} failed: {classification.message}",
                    event_type=EventType.JOB_PROCESSING,
                    **log_context,
                )
        return await self._transition(job, **values)

    async def _transition(self, job: PipelineJob, **values: Any) -> PipelineJob:
        """Write the outcome, provided this worker still owns the job."""
        async with self._session_factory() as session:
            result = await session.execute(
                update(PipelineJobSQL)
                .where(
                    PipelineJobSQL.id == job.id,
                    PipelineJobSQL.state == JobState.PROCESSING,
                    PipelineJobSQL.worker_id == self.worker_id,
                )
                .values(last_changed_at=self._clock(), **values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            if result.rowcount != 1:
                event_logger.warning(
                    f"Job {job.id} was reclaimed by another worker; outcome dropped",
                    event_type=EventType.JOB_PROCESSING,
                    scene_id=job.scene_id,
                    job_id=job.id,
                    worker_id=self.worker_id,
                )
            row = await session.get(PipelineJobSQL, job.id)
            if row is None:
                raise JobNotFound(job.id)
            await session.refresh(row)
            return PipelineJob.model_validate(row)

    async def _process_in_slot(self, job: PipelineJob) -> None:
        self.active_workers += 1
        try:
            await self.process(job)
        except SQLAlchemyError as exc:
            event_logger.log(
                LogLevel.ERROR,
                f"Database error while processing job {job.id}: {exc}",
                event_type=EventType.DATABASE_OPERATION,
                priority=Priority.HIGH,
                job_id=job.id,
                error_type=type(exc).__name__,
            )
        finally:
            self.active_workers -= 1
            self._slots.release()

    async def run_once(self) -> int:
        """Claim up to ``concurrency`` due jobs and process them together."""
        jobs: list[PipelineJob] = []
        for _ in range(self.concurrency):
            await self._slots.acquire()
            job = await self._claim_or_release()
            if job is None:
                break
            jobs.append(job)
        if jobs:
            await asyncio.gather(*(self._process_in_slot(job) for job in jobs))
            event_logger.log(
                LogLevel.DEBUG,
                f"Processed {len(jobs)} jobs",
                event_type=EventType.JOB_PROCESSING,
                worker_id=self.worker_id,
            )
        return len(jobs)

    async def run_forever(self, stop_event: asyncio.Event | None = None) -> None:
        """Keep up to ``concurrency`` jobs in flight until ``stop_event`` is set."""
        stop_event = stop_event or asyncio.Event()
        in_flight: set[asyncio.Task[None]] = set()
        event_logger.info(
            f"Worker {self.worker_id} started with {self.concurrency} slots",
            event_type=EventType.SYSTEM,
        )
        try:
            while not stop_event.is_set():
                await self._slots.acquire()
                job = await self._claim_or_release()
                if job is None:
                    with contextlib.suppress(asyncio.TimeoutError):
                        await asyncio.wait_for(stop_event.wait(), timeout=self.idle)
                    continue
                task = asyncio.create_task(self._process_in_slot(job))
                in_flight.add(task)
                task.add_done_callback(in_flight.discard)
        finally:
            if in_flight:
                await asyncio.gather(*in_flight)
            event_logger.info(
                f"Worker {self.worker_id} stopped after {self.processed_count} jobs",
                event_type=EventType.SYSTEM,
            )

    async def _claim_or_release(self) -> PipelineJob | None:
        """Claim a job for an acquired slot; give the slot back if none."""
        try:
            job = await self.claim_next()
        except SQLAlchemyError as exc:
            event_logger.log(
                LogLevel.ERROR,
                f"Database error during job claim: {exc}",
                event_type=EventType.DATABASE_OPERATION,
                priority=Priority.HIGH,
                error_type=type(exc).__name__,
            )
            job = None
        if job is None:
            self._slots.release()
        return job


__all__ = ["CancelCheck", "JobHandler", "RetryableJobRunner"]

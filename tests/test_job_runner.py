from __future__ import annotations

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest

from vidflow.core.errors import (
    JobNotFound,
    PipelineCancelled,
    SceneNotApproved,
    SceneNotEditable,
    SceneNotFound,
)
from vidflow.core.logs import EventType, get_event_logger
from vidflow.core.queue import RetryableJobRunner
from vidflow.models import JobState, JobType


class _FakeHandler:
    """Job handler that fails a scripted number of times."""

    def __init__(self, failures: int = 0, error: Exception | None = None) -> None:
        self.failures = failures
        self.error = error or ConnectionError("provider unreachable")
        self.calls: list = []

    async def __call__(self, job, should_cancel) -> None:
        self.calls.append(job.id)
        if await should_cancel():
            raise PipelineCancelled(job.scene_id, job.id)
        if self.failures > 0:
            self.failures -= 1
            raise self.error


def _runner(session_factory, clock, handler, **kwargs) -> RetryableJobRunner:
    kwargs.setdefault("max_attempts", 3)
    kwargs.setdefault("retry_delays", (30, 60, 120))
    kwargs.setdefault("retry_business_failures", False)
    kwargs.setdefault("concurrency", 2)
    kwargs.setdefault("worker_id", "worker-a")
    kwargs.setdefault("idle", 0.01)
    return RetryableJobRunner(
        session_factory, {JobType.AGENT_PIPELINE: handler}, clock=clock, **kwargs
    )


def test_backoff_schedule():
    runner = RetryableJobRunner(None, retry_delays=(30, 60, 120), concurrency=1)
    assert [runner.backoff_delay(n) for n in range(0, 6)] == [30, 30, 60, 120, 120, 120]


async def test_successful_job(session_factory, clock, scene):
    handler = _FakeHandler()
    runner = _runner(session_factory, clock, handler)
    job_id = await runner.enqueue_pipeline(scene.id)

    assert (await runner.get_job_status(job_id)).state is JobState.SCHEDULED
    assert await runner.run_once() == 1

    status = await runner.get_job_status(job_id)
    assert status.state is JobState.SUCCEEDED
    assert status.attempt == 0
    assert status.next_run_at is None
    assert handler.calls == [job_id]
    assert runner.processed_count == 1


async def test_retryable_failure_backs_off_then_exhausts(session_factory, clock, scene):
    handler = _FakeHandler(failures=5)
    runner = _runner(session_factory, clock, handler)
    job_id = await runner.enqueue_pipeline(scene.id)

    await runner.run_once()
    job = await runner.get_job(job_id)
    assert (job.state, job.attempt) == (JobState.SCHEDULED, 1)
    assert job.run_at == clock() + timedelta(seconds=30)
    assert job.last_error == "provider unreachable"

    clock.advance(29)
    assert await runner.run_once() == 0
    clock.advance(1)
    await runner.run_once()
    job = await runner.get_job(job_id)
    assert (job.state, job.attempt) == (JobState.SCHEDULED, 2)
    assert job.run_at == clock() + timedelta(seconds=60)

    clock.advance(60)
    await runner.run_once()
    job = await runner.get_job(job_id)
    assert (job.state, job.attempt) == (JobState.FAILED, 3)
    assert job.error_code == "INTERNAL_ERROR"
    assert len(handler.calls) == 3

    clock.advance(3600)
    assert await runner.run_once() == 0
    logs = get_event_logger()
    assert len(logs.get_events(event_type=EventType.RETRY_ATTEMPT)) == 2
    assert len(logs.get_events(event_type=EventType.RETRY_EXHAUSTED)) == 1


async def test_business_failure_is_terminal_by_default(session_factory, clock, scene):
    handler = _FakeHandler(failures=1, error=SceneNotEditable(scene.id, "review"))
    runner = _runner(session_factory, clock, handler)
    job_id = await runner.enqueue_pipeline(scene.id)

    await runner.run_once()

    status = await runner.get_job_status(job_id)
    assert (status.state, status.attempt) == (JobState.FAILED, 1)
    assert status.error_code == "SCENE_NOT_EDITABLE"
    assert get_event_logger().get_events(event_type=EventType.RETRY_EXHAUSTED) == []


async def test_business_failure_can_be_retried_when_configured(session_factory, clock, scene):
    handler = _FakeHandler(failures=1, error=SceneNotEditable(scene.id, "review"))
    runner = _runner(session_factory, clock, handler, retry_business_failures=True)
    job_id = await runner.enqueue_pipeline(scene.id)

    await runner.run_once()
    assert (await runner.get_job(job_id)).state is JobState.SCHEDULED
    clock.advance(30)
    await runner.run_once()

    assert (await runner.get_job(job_id)).state is JobState.SUCCEEDED


async def test_cancel_scheduled_job_never_runs(session_factory, clock, scene):
    handler = _FakeHandler()
    runner = _runner(session_factory, clock, handler)
    job_id = await runner.enqueue_pipeline(scene.id)

    status = await runner.cancel(job_id)

    assert status.state is JobState.CANCELLED
    assert status.error_code == "PIPELINE_CANCELLED"
    assert await runner.run_once() == 0
    assert handler.calls == []


async def test_cancel_running_job_is_seen_by_the_handler(session_factory, clock, scene):
    handler = _FakeHandler()
    runner = _runner(session_factory, clock, handler)
    job_id = await runner.enqueue_pipeline(scene.id)
    job = await runner.claim_next()

    status = await runner.cancel(job_id)
    assert status.state is JobState.PROCESSING

    outcome = await runner.process(job)

    assert outcome.state is JobState.CANCELLED
    assert outcome.attempt == 1
    assert outcome.cancel_requested


async def test_cancel_leaves_finished_jobs_alone(session_factory, clock, scene):
    runner = _runner(session_factory, clock, _FakeHandler())
    job_id = await runner.enqueue_pipeline(scene.id)
    await runner.run_once()

    assert (await runner.cancel(job_id)).state is JobState.SUCCEEDED
    with pytest.raises(JobNotFound):
        await runner.cancel(uuid4())


async def test_expired_lease_is_reclaimed_and_stale_outcome_dropped(
    session_factory, clock, scene
):
    handler = _FakeHandler()
    first = _runner(session_factory, clock, handler, lease_seconds=60)
    second = _runner(session_factory, clock, handler, worker_id="worker-b")
    job_id = await first.enqueue_pipeline(scene.id)

    claimed = await first.claim_next()
    assert claimed.worker_id == "worker-a"
    assert await second.claim_next() is None

    clock.advance(61)
    reclaimed = await second.claim_next()
    assert reclaimed.id == job_id
    assert reclaimed.worker_id == "worker-b"
    assert reclaimed.attempt == 1

    stale = await first.process(claimed)
    assert (stale.state, stale.worker_id) == (JobState.PROCESSING, "worker-b")

    done = await second.process(reclaimed)
    assert done.state is JobState.SUCCEEDED


async def test_crashed_executions_spend_the_retry_budget(session_factory, clock, scene):
    handler = _FakeHandler()
    runner = _runner(session_factory, clock, handler, lease_seconds=60)
    job_id = await runner.enqueue_pipeline(scene.id)

    attempts = []
    for _ in range(10):
        job = await runner.claim_next()
        if job is not None:
            attempts.append(job.attempt)
        clock.advance(61)

    assert attempts == [0, 1, 2]
    status = await runner.get_job_status(job_id)
    assert (status.state, status.attempt) == (JobState.FAILED, 3)
    assert status.error_code == "LEASE_EXPIRED"
    assert status.reason.startswith("Lease expired on worker worker-a")
    assert handler.calls == []
    exhausted = get_event_logger().get_events(event_type=EventType.RETRY_EXHAUSTED)
    assert len(exhausted) == 1


async def test_jobs_are_only_claimed_for_registered_types(session_factory, clock, scene, services):
    await services.scenes.submit_for_review(scene.id)
    await services.scenes.approve(scene.id, approved_by="kim")
    runner = _runner(session_factory, clock, _FakeHandler())
    render_id = await services.runner.enqueue_render(scene.id)

    assert await runner.run_once() == 0
    assert (await runner.get_job(render_id)).state is JobState.SCHEDULED


async def test_render_job_runs_for_approved_scene(services, scene):
    await services.scenes.submit_for_review(scene.id)
    await services.scenes.approve(scene.id, approved_by="kim")

    job_id = await services.runner.enqueue_render(scene.id)
    await services.runner.run_once()

    status = await services.runner.get_job_status(job_id)
    assert status.job_type is JobType.RENDER
    assert status.state is JobState.SUCCEEDED


async def test_enqueue_checks_the_scene(services, scene):
    with pytest.raises(SceneNotApproved):
        await services.runner.enqueue_render(scene.id)
    with pytest.raises(SceneNotFound):
        await services.runner.enqueue_pipeline(uuid4())

    await services.scenes.submit_for_review(scene.id)
    with pytest.raises(SceneNotEditable):
        await services.runner.enqueue_pipeline(scene.id)


async def test_run_once_processes_jobs_concurrently(session_factory, clock, scene):
    started = 0
    both_running = asyncio.Event()

    async def handler(job, should_cancel) -> None:
        nonlocal started
        started += 1
        if started == 2:
            both_running.set()
        await asyncio.wait_for(both_running.wait(), timeout=5)

    runner = _runner(session_factory, clock, handler, concurrency=2)
    first = await runner.enqueue_pipeline(scene.id)
    second = await runner.enqueue_pipeline(scene.id)

    assert await runner.run_once() == 2

    for job_id in (first, second):
        assert (await runner.get_job(job_id)).state is JobState.SUCCEEDED


async def test_run_forever_drains_until_stopped(session_factory, clock, scene):
    stop = asyncio.Event()
    handled: list = []

    async def handler(job, should_cancel) -> None:
        handled.append(job.id)
        if len(handled) == 2:
            stop.set()

    runner = _runner(session_factory, clock, handler)
    jobs = [await runner.enqueue_pipeline(scene.id) for _ in range(2)]

    await asyncio.wait_for(runner.run_forever(stop), timeout=10)

    assert sorted(handled) == sorted(jobs)
    assert runner.active_workers == 0
    for job_id in jobs:
        assert (await runner.get_job(job_id)).state is JobState.SUCCEEDED

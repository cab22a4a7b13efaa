# src/vidflow/bootstrap.py
"""System bootstrap and service wiring.

This module provides:
- ``build_services``: the container every entry point (web app, worker,
  scripts, tests) uses to get one consistently wired set of components
- ``bootstrap_all``: loads the environment, waits for the database, applies
  migrations and exposes readiness/status inspection
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any

from sqlalchemy import text as sa_text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
)

from vidflow.agents.executor import AgentExecutor
from vidflow.config import VidflowConfig, config
from vidflow.core.clock import Clock, utcnow
from vidflow.core.env import load_env
from vidflow.core.llm import LLMProvider
from vidflow.core.logging import get_logger
from vidflow.core.notifications import NotificationHub, Notifier
from vidflow.core.queue import RetryableJobRunner
from vidflow.models.enums import JobType
from vidflow.pipeline.orchestrator import PipelineOrchestrator
from vidflow.pipeline.render import Renderer, RenderJobHandler
from vidflow.store.budget import BudgetGuard
from vidflow.store.db import ensure_schema, get_session_factory
from vidflow.store.interactions import InteractionLog
from vidflow.store.ledger import EventLedger
from vidflow.store.locks import SceneLock
from vidflow.store.proposals import ProposalStore
from vidflow.store.scenes import SceneStore

logger = get_logger(__name__)


@dataclass
class Services:
    """One wired set of engine components sharing a session factory."""

    session_factory: async_sessionmaker[AsyncSession]
    notifier: Notifier
    ledger: EventLedger
    lock: SceneLock
    budget: BudgetGuard
    proposals: ProposalStore
    scenes: SceneStore
    executor: AgentExecutor
    interactions: InteractionLog
    orchestrator: PipelineOrchestrator
    runner: RetryableJobRunner


def build_services(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    *,
    notifier: Notifier | None = None,
    provider: LLMProvider | None = None,
    executor: AgentExecutor | None = None,
    renderer: Renderer | None = None,
    clock: Clock = utcnow,
    settings: VidflowConfig | None = None,
) -> Services:
    """Wire the components from ``settings`` (default: the global config)."""
    settings = settings or config
    session_factory = session_factory or get_session_factory()
    notifier = notifier if notifier is not None else NotificationHub()
    pipeline = settings.pipeline

    ledger = EventLedger(session_factory)
    lock = SceneLock(session_factory, clock=clock, default_ttl=pipeline.lock_ttl_seconds)
    budget = BudgetGuard(session_factory, ledger, clock=clock)
    proposals = ProposalStore(
        session_factory,
        ledger,
        lock,
        notifier=notifier,
        clock=clock,
        edit_lock_ttl=pipeline.edit_lock_ttl_seconds,
    )
    scenes = SceneStore(
        session_factory,
        ledger,
        lock,
        notifier=notifier,
        clock=clock,
        edit_lock_ttl=pipeline.edit_lock_ttl_seconds,
    )
    interactions = InteractionLog(session_factory, clock=clock)
    if executor is None:
        executor = AgentExecutor(
            provider=provider,
            prompt_overhead_tokens=settings.llm.prompt_overhead_tokens,
            overrides=settings.agents.overrides,
            interactions=interactions,
        )
    elif executor.interactions is None:
        executor.interactions = interactions
    orchestrator = PipelineOrchestrator(
        session_factory,
        lock,
        budget,
        executor,
        proposals,
        ledger,
        notifier=notifier,
        clock=clock,
        lock_ttl=pipeline.lock_ttl_seconds,
        resume_completed_roles=pipeline.resume_completed_roles,
    )
    worker = settings.worker
    runner = RetryableJobRunner(
        session_factory,
        {
            JobType.AGENT_PIPELINE: orchestrator.job_handler(),
            JobType.RENDER: RenderJobHandler(session_factory, renderer),
        },
        max_attempts=worker.max_attempts,
        retry_delays=worker.retry_delays,
        retry_business_failures=worker.retry_business_failures,
        lease_seconds=worker.lease_seconds,
        clock=clock,
        worker_id=worker.worker_id or None,
        concurrency=settings.concurrency.queue_workers,
        idle=worker.worker_idle,
    )
    return Services(
        session_factory=session_factory,
        notifier=notifier,
        ledger=ledger,
        lock=lock,
        budget=budget,
        proposals=proposals,
        scenes=scenes,
        executor=executor,
        interactions=interactions,
        orchestrator=orchestrator,
        runner=runner,
    )


# --------- Bootstrap state ---------

_IS_READY: bool = False


@dataclass
class _BootstrapStatus:
    started_at: float = 0.0
    finished_at: float | None = None
    db_ready: bool = False
    db_migrated: bool = False
    steps: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None


_STATUS = _BootstrapStatus()


class BootstrapError(RuntimeError):
    """Bootstrap failed unexpectedly."""


class BootstrapTimeout(TimeoutError):
    """Bootstrap step exceeded timeout."""


def _set_readiness(flag: bool) -> None:
    global _IS_READY
    _IS_READY = flag


def is_ready() -> bool:
    """Return True if bootstrap completed successfully."""
    return _IS_READY


def bootstrap_status() -> dict[str, object]:
    """Return a copy of current bootstrap status."""
    return asdict(_STATUS)


async def _ping(session_factory: async_sessionmaker[AsyncSession]) -> None:
    async with session_factory() as session:
        await session.execute(sa_text("SELECT 1"))


async def _wait_for_database(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    timeout: float,
    backoff_initial: float,
    backoff_max: float,
    max_attempts: int,
) -> None:
    """Run ``SELECT 1`` with exponential backoff until the database answers."""
    start = time.monotonic()
    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max_attempts) | stop_after_delay(timeout),
            wait=wait_exponential(multiplier=backoff_initial, max=backoff_max),
            retry=retry_if_exception_type((SQLAlchemyError, OSError)),
        ):
            with attempt:
                number = attempt.retry_state.attempt_number
                try:
                    await _ping(session_factory)
                except (SQLAlchemyError, OSError) as exc:
                    _STATUS.steps.append(
                        {"step": "db_wait", "attempt": number, "error": str(exc)}
                    )
                    logger.warning("bootstrap.db.retry", extra={"attempt": number})
                    raise
                _STATUS.db_ready = True
                logger.info("bootstrap.db.ready", extra={"attempt": number})
    except RetryError as exc:
        elapsed = time.monotonic() - start
        last = exc.last_attempt.exception()
        raise BootstrapTimeout(
            f"Database wait timed out after {elapsed:.1f}s; last error: {last}"
        ) from last


async def bootstrap_all(
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    timeout_db: float = 60.0,
    backoff_initial: float = 0.5,
    backoff_max: float = 10.0,
    max_attempts: int = 20,
    migrate: bool = True,
) -> None:
    """Run the bootstrap sequence, failing fast on irrecoverable errors.

    Steps:
      1) Load environment
      2) Wait for the database, then run migrations
      3) Mark ready
    """
    if is_ready():
        logger.info("bootstrap.already_ready")
        return

    _STATUS.started_at = time.time()
    _STATUS.finished_at = None
    _STATUS.steps.clear()
    _STATUS.error = None
    _set_readiness(False)

    logger.info("bootstrap.env.load.start")
    load_env()
    logger.info("bootstrap.env.load.end")

    if not config.database.url:
        _STATUS.error = "Missing database URL (DATABASE_URL or POSTGRES_* settings)"
        logger.error("bootstrap.db.url_missing")
        raise BootstrapError(_STATUS.error)

    logger.info("bootstrap.db.wait.start")
    try:
        await _wait_for_database(
            session_factory or get_session_factory(),
            timeout=timeout_db,
            backoff_initial=backoff_initial,
            backoff_max=backoff_max,
            max_attempts=max_attempts,
        )
    except BootstrapTimeout as exc:
        _STATUS.error = str(exc)
        raise
    logger.info("bootstrap.db.wait.end")

    if migrate:
        logger.info("bootstrap.db.migrate.start")
        await ensure_schema()
        _STATUS.db_migrated = True
        logger.info("bootstrap.db.migrate.end")

    _set_readiness(True)
    _STATUS.finished_at = time.time()
    logger.info("bootstrap.ready", extra={"status": bootstrap_status()})


__all__ = [
    "Services",
    "build_services",
    "BootstrapError",
    "BootstrapTimeout",
    "bootstrap_all",
    "bootstrap_status",
    "is_ready",
]

# src/vidflow/store/db.py
"""Database engine and session creation, migrations, and helpers."""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from alembic import command as alembic_command  # type: ignore[attr-defined]
from alembic.config import Config
from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from vidflow.config import config
from vidflow.core.logs import EventType, LogLevel, Priority, get_event_logger
from vidflow.models.base import Base

# Initialize EventLogger for database session management
event_logger = get_event_logger()

_ENGINE: AsyncEngine | None = None
SessionLocal: async_sessionmaker[AsyncSession] | None = None


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine; SQLite engines get foreign keys switched on."""
    if url.startswith("sqlite"):
        engine = create_async_engine(
            url, echo=echo, connect_args={"timeout": 30}
        )
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        return engine
    return create_async_engine(url, echo=echo, pool_pre_ping=True)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


def configure_engine(
    url: str | None = None, echo: bool | None = None
) -> async_sessionmaker[AsyncSession]:
    """(Re)create the process-wide engine and session factory."""
    global _ENGINE, SessionLocal
    resolved = url or config.database.url
    _ENGINE = build_engine(
        resolved, echo=config.database.echo if echo is None else echo
    )
    SessionLocal = build_session_factory(_ENGINE)
    event_logger.log(
        LogLevel.INFO,
        "Database engine configured",
        event_type=EventType.DATABASE_OPERATION,
        priority=Priority.HIGH,
        operation="engine_configure",
        dialect=_ENGINE.dialect.name,
    )
    return SessionLocal


def get_engine() -> AsyncEngine:
    if _ENGINE is None:
        configure_engine()
    assert _ENGINE is not None
    return _ENGINE


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if SessionLocal is None:
        configure_engine()
    assert SessionLocal is not None
    return SessionLocal


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    """Return a SQLAlchemy asynchronous session."""
    start_time = time.time()
    try:
        async with get_session_factory()() as session:
            yield session
    except SQLAlchemyError as exc:
        event_logger.error(
            f"Database session error: {exc}",
            event_type=EventType.DATABASE_OPERATION,
            operation="session",
            error_type=type(exc).__name__,
            duration=time.time() - start_time,
        )
        raise


async def create_all(engine: AsyncEngine | None = None) -> None:
    """Create every table directly from the ORM metadata."""
    async with (engine or get_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def _alembic_config(url: str) -> Config:
    root = Path(__file__).resolve().parents[3]
    cfg = Config(str(root / "alembic.ini"))
    cfg.set_main_option("script_location", str(root / "migrations"))
    cfg.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
    return cfg


async def ensure_schema(url: str | None = None) -> None:
    """Apply Alembic migrations up to head.

    Alembic's async env runs its own event loop, so the upgrade is executed in
    a worker thread.
    """
    start_time = time.time()
    resolved = url or config.database.url
    event_logger.log(
        LogLevel.INFO,
        "Upgrading database schema to head",
        event_type=EventType.DATABASE_OPERATION,
        priority=Priority.HIGH,
        operation="schema_ensure",
        phase="start",
    )
    try:
        await asyncio.to_thread(alembic_command.upgrade, _alembic_config(resolved), "head")
    except Exception as exc:
        event_logger.error(
            f"Schema upgrade failed: {exc}",
            event_type=EventType.DATABASE_OPERATION,
            operation="schema_ensure",
            error_type=type(exc).__name__,
            duration=time.time() - start_time,
        )
        raise
    event_logger.log(
        LogLevel.INFO,
        f"Schema initialization completed successfully in {time.time() - start_time:.2f}s",
        event_type=EventType.DATABASE_OPERATION,
        priority=Priority.HIGH,
        operation="schema_ensure",
        phase="complete",
    )


async def dispose_engine() -> None:
    global _ENGINE, SessionLocal
    if _ENGINE is not None:
        await _ENGINE.dispose()
    _ENGINE = None
    SessionLocal = None


__all__ = [
    "SessionLocal",
    "build_engine",
    "build_session_factory",
    "configure_engine",
    "get_engine",
    "get_session_factory",
    "get_session",
    "create_all",
    "ensure_schema",
    "dispose_engine",
]

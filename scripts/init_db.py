# scripts/init_db.py
"""Run Alembic migrations to initialize the database."""

from __future__ import annotations

from vidflow.core.logging import get_logger, init_logging
from vidflow.store.db import dispose_engine, ensure_schema

logger = get_logger(__name__)


async def init_db(url: str | None = None) -> None:
    """Apply Alembic migrations."""
    logger.info("Applying Alembic migrations to initialize the database")
    try:
        await ensure_schema(url)
        logger.info("Alembic migrations applied successfully")
    except Exception as e:
        logger.exception("Failed to apply Alembic migrations: %s", e)
        raise
    finally:
        await dispose_engine()


if __name__ == "__main__":  # pragma: no cover - CLI execution
    import asyncio

    init_logging()
    asyncio.run(init_db())

# src/vidflow/core/clock.py
"""Time source shared by locks, jobs and the event ledger."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime.

    Timestamps are stored naive-in-UTC so comparisons behave the same on
    every database backend.
    """
    return datetime.now(UTC).replace(tzinfo=None)


__all__ = ["Clock", "utcnow"]

# src/vidflow/core/logs.py
"""Structured event logging for the pipeline engine.

Every structured event is kept in a bounded in-memory ring (for status pages
and tests) and mirrored to the standard ``vidflow`` logger so it reaches the
handlers installed by :func:`vidflow.core.logging.init_logging`.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, cast
from uuid import uuid4


class LogLevel(Enum):
    """Log levels with numeric values for filtering."""

    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50


class EventType(Enum):
    """Event types for structured logging."""

    SYSTEM = "system"

    # Pipeline lifecycle
    PIPELINE_START = "pipeline_start"
    PIPELINE_COMPLETE = "pipeline_complete"
    PIPELINE_ABORTED = "pipeline_aborted"

    # Per-role work
    AGENT_OPERATION = "agent_operation"
    LLM_REQUEST = "llm_request"

    # Coordination
    LOCK_OPERATION = "lock_operation"
    BUDGET_CHECK = "budget_check"
    PROPOSAL_OPERATION = "proposal_operation"

    # Durable jobs
    JOB_PROCESSING = "job_processing"
    DATABASE_OPERATION = "database_operation"
    RETRY_ATTEMPT = "retry_attempt"
    RETRY_EXHAUSTED = "retry_exhausted"

    ERROR = "error"
    WARNING = "warning"


class Priority(Enum):
    """Event priority levels."""

    CRITICAL = 1  # Errors, system failures
    HIGH = 2  # Job and pipeline transitions
    NORMAL = 3  # Role execution, proposals
    LOW = 4  # Debug tracing


@dataclass
class StructuredLogEvent:
    """Structured log event with pipeline metadata."""

    event_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: float = field(default_factory=time.time)
    event_type: EventType = EventType.SYSTEM
    level: LogLevel = LogLevel.INFO
    priority: Priority = Priority.NORMAL
    message: str = ""
    component: str | None = None
    scene_id: str | None = None
    job_id: str | None = None
    role: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "event_id": self.event_id,
            "timestamp": self.timestamp,
            "event_type": self.event_type.value,
            "level": self.level.name,
            "priority": self.priority.name,
            "message": self.message,
            "component": self.component,
            "scene_id": self.scene_id,
            "job_id": self.job_id,
            "role": self.role,
            "metadata": self.metadata,
        }

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), default=str)


class EventLogger:
    """Structured logger that keeps recent events and forwards them to ``logging``."""

    def __init__(self, max_events: int = 10000, logger_name: str = "vidflow") -> None:
        self.max_events = max_events
        self._events: deque[StructuredLogEvent] = deque(maxlen=max_events)
        self._events_lock = threading.Lock()
        self._traditional_logger = logging.getLogger(logger_name)

    def _log_to_traditional(self, event: StructuredLogEvent) -> None:
        context = [
            f"{key}={value}"
            for key, value in (
                ("scene", event.scene_id),
                ("job", event.job_id),
                ("role", event.role),
            )
            if value
        ]
        header = f"[{event.event_type.value}]"
        if context:
            header = f"{header} <{' '.join(context)}>"
        self._traditional_logger.log(
            event.level.value,
            "%s %s",
            header,
            event.message,
            extra={
                "event_type": event.event_type.value,
                "component": event.component,
                "metadata": event.metadata,
            },
        )

    def log(
        self,
        level: LogLevel,
        message: str,
        event_type: EventType = EventType.SYSTEM,
        priority: Priority = Priority.NORMAL,
        component: str | None = None,
        scene_id: Any = None,
        job_id: Any = None,
        role: Any = None,
        **metadata: Any,
    ) -> StructuredLogEvent:
        """Record a structured event.

        Args:
            level: Log level
            message: Log message
            event_type: Type of event
            priority: Event priority
            component: Optional component name
            scene_id: Optional scene the event concerns
            job_id: Optional pipeline job the event concerns
            role: Optional agent role the event concerns
            **metadata: Additional metadata
        """
        if "metadata" in metadata and isinstance(metadata["metadata"], dict):
            metadata = {**metadata.pop("metadata"), **metadata}
        event = StructuredLogEvent(
            level=level,
            event_type=event_type,
            priority=priority,
            message=message,
            component=component,
            scene_id=str(scene_id) if scene_id is not None else None,
            job_id=str(job_id) if job_id is not None else None,
            role=getattr(role, "value", role),
            metadata=metadata,
        )
        with self._events_lock:
            self._events.append(event)
        self._log_to_traditional(event)
        return event

    def debug(self, message: str, **kwargs: Any) -> None:
        """Log debug message."""
        self.log(LogLevel.DEBUG, message, priority=Priority.LOW, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        """Log info message."""
        self.log(LogLevel.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        """Log warning message."""
        kwargs.setdefault("event_type", EventType.WARNING)
        self.log(LogLevel.WARNING, message, priority=Priority.HIGH, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        """Log error message."""
        kwargs.setdefault("event_type", EventType.ERROR)
        self.log(LogLevel.ERROR, message, priority=Priority.CRITICAL, **kwargs)

    def log_retry_attempt(
        self, attempt: int, max_attempts: int, delay_seconds: float, **kwargs: Any
    ) -> None:
        """Log a rescheduled job attempt."""
        self.log(
            LogLevel.WARNING,
            f"Retry attempt {attempt}/{max_attempts} scheduled in {delay_seconds:.0f}s",
            event_type=EventType.RETRY_ATTEMPT,
            priority=Priority.HIGH,
            attempt=attempt,
            max_attempts=max_attempts,
            delay_seconds=delay_seconds,
            **kwargs,
        )

    def log_retry_exhausted(self, total_attempts: int, **kwargs: Any) -> None:
        """Log retry exhaustion."""
        self.log(
            LogLevel.ERROR,
            f"Retry attempts exhausted after {total_attempts} tries",
            event_type=EventType.RETRY_EXHAUSTED,
            priority=Priority.CRITICAL,
            total_attempts=total_attempts,
            **kwargs,
        )

    def get_events(
        self,
        *,
        event_type: EventType | None = None,
        scene_id: Any = None,
        limit: int = 100,
    ) -> list[StructuredLogEvent]:
        """Return the most recent events, oldest first."""
        with self._events_lock:
            events = list(self._events)
        if event_type is not None:
            events = [e for e in events if e.event_type is event_type]
        if scene_id is not None:
            events = [e for e in events if e.scene_id == str(scene_id)]
        return events[-limit:]

    def clear_logs(self) -> None:
        """Drop all stored events."""
        with self._events_lock:
            self._events.clear()


# Global event logger instance
_event_logger: EventLogger | None = None


def get_event_logger() -> EventLogger:
    """Get global event logger instance."""
    global _event_logger
    if _event_logger is None:
        _event_logger = EventLogger()
    return _event_logger


def log_calls(func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorate func to log calls at the DEBUG level."""

    if asyncio.iscoroutinefunction(func):

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            event_logger = get_event_logger()
            start_time = time.time()
            event_logger.debug(
                f"Entering {func.__qualname__}",
                component=func.__module__,
                function=func.__qualname__,
            )
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                event_logger.debug(
                    f"Error in {func.__qualname__}: {e}",
                    component=func.__module__,
                    function=func.__qualname__,
                    error_type=type(e).__name__,
                    duration_ms=(time.time() - start_time) * 1000,
                )
                raise
            event_logger.debug(
                f"Exiting {func.__qualname__} successfully",
                component=func.__module__,
                function=func.__qualname__,
                duration_ms=(time.time() - start_time) * 1000,
            )
            return result

        return cast(Callable[..., Any], async_wrapper)

    @functools.wraps(func)
    def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
        event_logger = get_event_logger()
        start_time = time.time()
        event_logger.debug(
            f"Entering {func.__qualname__}",
            component=func.__module__,
            function=func.__qualname__,
        )
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            event_logger.debug(
                f"Error in {func.__qualname__}: {e}",
                component=func.__module__,
                function=func.__qualname__,
                error_type=type(e).__name__,
                duration_ms=(time.time() - start_time) * 1000,
            )
            raise
        event_logger.debug(
            f"Exiting {func.__qualname__} successfully",
            component=func.__module__,
            function=func.__qualname__,
            duration_ms=(time.time() - start_time) * 1000,
        )
        return result

    return cast(Callable[..., Any], sync_wrapper)


__all__ = [
    "EventLogger",
    "StructuredLogEvent",
    "LogLevel",
    "EventType",
    "Priority",
    "get_event_logger",
    "log_calls",
]

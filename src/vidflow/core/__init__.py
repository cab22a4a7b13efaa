# src/vidflow/core/__init__.py
"""Core utilities for VidFlow."""

from .env import load_env
from .logs import get_event_logger, log_calls

__all__ = [
    "load_env",
    "get_event_logger",
    "log_calls",
]

# src/vidflow/core/env.py
"""Environment configuration utilities."""

from __future__ import annotations

from dotenv import load_dotenv

from ..config import VidflowConfig, config


def load_env() -> None:
    """Load environment variables from a local ``.env`` file."""
    load_dotenv()


def get_config() -> VidflowConfig:
    """Get the global configuration instance."""
    return config


__all__ = ["load_env", "get_config"]

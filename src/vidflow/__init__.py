"""VidFlow agent pipeline orchestration engine."""

__version__ = "0.1.0"

"""Agent pipeline orchestration and render hand-off."""

from .orchestrator import (
    CancelCheck,
    JobHandler,
    PipelineOrchestrator,
    PipelineResult,
    PipelineState,
)
from .render import LoggingRenderer, Renderer, RenderJobHandler

__all__ = [
    "CancelCheck",
    "JobHandler",
    "PipelineOrchestrator",
    "PipelineResult",
    "PipelineState",
    "Renderer",
    "LoggingRenderer",
    "RenderJobHandler",
]

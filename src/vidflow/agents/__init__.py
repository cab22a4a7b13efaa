# src/vidflow/agents/__init__.py
"""Role agents and the executor that runs them."""

from importlib import import_module
from typing import Any

_EXPORTS = {
    # Base agent and context
    "AgentContext": "vidflow.agents.base.AgentContext",
    "RoleAgent": "vidflow.agents.base.RoleAgent",
    # Pipeline roles
    "WriterAgent": "vidflow.agents.roles.WriterAgent",
    "DirectorAgent": "vidflow.agents.roles.DirectorAgent",
    "CinematographerAgent": "vidflow.agents.roles.CinematographerAgent",
    "EditorAgent": "vidflow.agents.roles.EditorAgent",
    "ProducerAgent": "vidflow.agents.roles.ProducerAgent",
    "ShowrunnerAgent": "vidflow.agents.roles.ShowrunnerAgent",
    "ROLE_AGENTS": "vidflow.agents.roles.ROLE_AGENTS",
    "default_agents": "vidflow.agents.roles.default_agents",
    # Execution
    "AgentExecutor": "vidflow.agents.executor.AgentExecutor",
}

__all__ = list(_EXPORTS.keys())


def __getattr__(name: str) -> Any:
    """Load attributes lazily to avoid circular imports."""

    target = _EXPORTS.get(name)
    if target is None:
        raise AttributeError(name)
    module_name, attr = target.rsplit(".", 1)
    module = import_module(module_name)
    value = getattr(module, attr)
    globals()[name] = value
    return value

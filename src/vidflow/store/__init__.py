# src/vidflow/store/__init__.py
"""Persistence layer: ledger, locks, budget, proposals, scenes and the model
call audit."""

from .budget import BudgetGuard
from .interactions import InteractionLog
from .ledger import EventLedger
from .locks import LockLease, SceneLock
from .proposals import ProposalStore
from .scenes import SceneStore

__all__ = [
    "BudgetGuard",
    "EventLedger",
    "InteractionLog",
    "LockLease",
    "SceneLock",
    "ProposalStore",
    "SceneStore",
]

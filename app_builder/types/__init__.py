"""
Shared Types for the App Builder

Common enums used across models, services, and views.
These types are placed here to avoid circular imports.
"""

from .events import DeliveredType, EventKind, HealingStatus
from .session import AttemptOutcome, LoopPhase, SessionKind, SessionStatus

__all__ = [
    "AttemptOutcome",
    "DeliveredType",
    "EventKind",
    "HealingStatus",
    "LoopPhase",
    "SessionKind",
    "SessionStatus",
]

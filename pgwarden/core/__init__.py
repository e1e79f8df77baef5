"""Core module exports."""

from __future__ import annotations

from .clock import Clock, SystemClock
from .enums import (
    AlignmentState,
    CleanupOutcome,
    HealthLevel,
    NodeRole,
    NodeStatus,
    PrimaryPolicy,
    RefusalReason,
    TieBreak,
)

__all__ = [
    "AlignmentState",
    "CleanupOutcome",
    "Clock",
    "HealthLevel",
    "NodeRole",
    "NodeStatus",
    "PrimaryPolicy",
    "RefusalReason",
    "SystemClock",
    "TieBreak",
]

"""Promotion fencing: manual override, lease, quorum, split-brain, readiness and lag arbitration."""

from __future__ import annotations

from .domain import Candidate, PromotionOutcome
from .gate import PromotionGate
from .override import ManualOverride

__all__ = [
    "Candidate",
    "ManualOverride",
    "PromotionGate",
    "PromotionOutcome",
]

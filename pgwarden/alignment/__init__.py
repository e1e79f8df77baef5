from __future__ import annotations

from .domain import AlignmentResult
from .engine import RoleAlignmentEngine

__all__ = ["AlignmentResult", "RoleAlignmentEngine"]

from __future__ import annotations

from .factory import Components, build_components
from .loop import NodeControlLoop

__all__ = ["Components", "NodeControlLoop", "build_components"]

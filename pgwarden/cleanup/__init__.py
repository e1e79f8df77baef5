from __future__ import annotations

from .controller import MetadataCleanupController

__all__ = ["MetadataCleanupController"]

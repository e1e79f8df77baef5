from __future__ import annotations

from pathlib import Path

from ..logger import get_logger

logger = get_logger(__name__)


class ManualOverride:
    """Operator-placed marker that forces the next promotion through.

    The marker is single-use: consuming it deletes it, and only the caller
    that actually removed the file sees ``True``.
    """

    def __init__(self, marker: Path) -> None:
        self._marker = marker

    @property
    def marker(self) -> Path:
        return self._marker

    def is_present(self) -> bool:
        return self._marker.exists()

    def consume(self) -> bool:
        try:
            self._marker.unlink()
        except FileNotFoundError:
            return False
        logger.warning("Manual override marker consumed; bypassing promotion fencing", marker=str(self._marker))
        return True

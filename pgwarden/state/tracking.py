"""Per-node bookkeeping kept in a :class:`StateStore`.

- `CleanupCounters`: consecutive unreachable observations per peer node id
- `FollowBlocks`: time-limited suppression of resync attempts per node name
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..logger import get_logger

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger

    from ..core.clock import Clock
    from .base import StateStore

logger: BoundLogger = get_logger(__name__)


def _as_int(raw: str | None) -> int:
    try:
        return int(raw) if raw else 0
    except ValueError:
        return 0


def _as_float(raw: str | None) -> float | None:
    try:
        return float(raw) if raw else None
    except ValueError:
        return None


class CleanupCounters:
    def __init__(self, store: StateStore) -> None:
        self._store = store

    @staticmethod
    def _key(node_id: int) -> str:
        return f"cleanup_{node_id}"

    async def get(self, node_id: int) -> int:
        return _as_int(await self._store.get(self._key(node_id)))

    async def increment(self, node_id: int) -> int:
        count = await self.get(node_id) + 1
        await self._store.set(self._key(node_id), str(count))
        return count

    async def reset(self, node_id: int) -> None:
        await self._store.delete(self._key(node_id))


class FollowBlocks:
    """Resync suppression after a rewind and a clone both failed.

    A block expires ``cooldown`` seconds after it was set; expired blocks are
    removed when next checked.
    """

    def __init__(self, store: StateStore, clock: Clock, *, cooldown: float = 600.0) -> None:
        self._store = store
        self._clock = clock
        self._cooldown = cooldown

    @staticmethod
    def _key(node_name: str) -> str:
        return f"follow_block_{node_name}"

    async def block(self, node_name: str) -> None:
        await self._store.set(self._key(node_name), str(self._clock.now()))
        logger.warning("Follow attempts blocked", node=node_name, cooldown_s=self._cooldown)

    async def is_blocked(self, node_name: str) -> bool:
        since = _as_float(await self._store.get(self._key(node_name)))
        if since is None:
            return False
        if self._clock.now() - since < self._cooldown:
            return True
        await self._store.delete(self._key(node_name))
        logger.info("Follow block expired", node=node_name)
        return False

    async def clear(self, node_name: str) -> None:
        await self._store.delete(self._key(node_name))

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

from ..core.clock import Clock, SystemClock
from .parser import parse_compact_topology

if TYPE_CHECKING:
    from ..replication.manager import ReplicationManager
    from .domain import ClusterSnapshot


class TopologyProvider(Protocol):
    """Source of topology snapshots, one implementation per backing tool.

    ``host`` asks a specific node (normally the primary) for its view instead
    of the local one. Returns ``None`` when the response is empty or
    malformed; raises ``ToolUnavailableError``/``QueryTimeoutError`` when the
    tool cannot be run.
    """

    async def fetch(self, host: str | None = None) -> ClusterSnapshot | None: ...


class RepmgrTopologyProvider:
    def __init__(self, manager: ReplicationManager, clock: Clock | None = None) -> None:
        self._manager = manager
        self._clock = clock or SystemClock()

    async def fetch(self, host: str | None = None) -> ClusterSnapshot | None:
        output = await self._manager.show_topology(host)
        return parse_compact_topology(output, observed_at=datetime.fromtimestamp(self._clock.now(), UTC))

from __future__ import annotations

from typing import TYPE_CHECKING

from ..core.enums import PrimaryPolicy
from ..core.exceptions import QueryTimeoutError, ToolUnavailableError, TopologyAmbiguousError
from ..logger import get_logger

if TYPE_CHECKING:
    from .domain import ClusterSnapshot
    from .provider import TopologyProvider

logger = get_logger(__name__)


class ClusterStateOracle:
    """Answers "what does the cluster look like right now".

    Fails soft: an unavailable tool, a timeout, or an unusable response all
    yield ``None`` (unknown), never a partial snapshot. Primary resolution is
    a policy:

    - ``STRICT`` raises ``TopologyAmbiguousError`` when more than one node is
      a running primary, so nothing downstream acts on a guess.
    - ``FIRST_SEEN`` keeps the first running primary in report order and
      raises a critical split-brain alarm in the log.
    """

    def __init__(self, provider: TopologyProvider, policy: PrimaryPolicy = PrimaryPolicy.STRICT) -> None:
        self._provider = provider
        self._policy = policy

    async def observe(self, host: str | None = None) -> ClusterSnapshot | None:
        """Fetch a snapshot without resolving its primary."""
        try:
            snapshot = await self._provider.fetch(host)
        except (ToolUnavailableError, QueryTimeoutError) as e:
            logger.warning("Topology query failed; treating cluster state as unknown", host=host, error=str(e))
            return None

        if snapshot is None:
            logger.warning("Topology query returned no usable data", host=host)
        return snapshot

    async def get_snapshot(self, host: str | None = None) -> ClusterSnapshot | None:
        """Fetch a snapshot and resolve its authoritative primary.

        Raises
        ------
        TopologyAmbiguousError
            Under the strict policy, when several running primaries are reported.
        """
        snapshot = await self.observe(host)
        if snapshot is None:
            return None
        return snapshot.with_primary(self.resolve_primary(snapshot))

    def resolve_primary(self, snapshot: ClusterSnapshot) -> str | None:
        primaries = snapshot.authoritative_primaries
        if not primaries:
            return None
        if len(primaries) == 1:
            return primaries[0].name

        names = [p.name for p in primaries]
        if self._policy == PrimaryPolicy.STRICT:
            logger.critical("Split-brain alarm: multiple running primaries reported", primaries=names)
            raise TopologyAmbiguousError(names, snapshot)

        logger.critical(
            "Split-brain alarm: multiple running primaries reported; using first seen",
            primaries=names,
            chosen=names[0],
        )
        return names[0]

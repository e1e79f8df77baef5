from __future__ import annotations

from typing import TYPE_CHECKING

from .logger import get_logger

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger

    from .topology.domain import ClusterSnapshot
    from .topology.oracle import ClusterStateOracle

logger: BoundLogger = get_logger(__name__)

MIN_FAILOVER_VOTERS = 2


class QuorumValidator:
    """Relaxed failover quorum: running standbys plus running witnesses.

    In a two-node-plus-witness cluster, losing the primary leaves one standby
    and one witness, which a strict majority of all registered nodes would
    reject. When the topology cannot be read at all the validator fails open;
    promotion is still fenced by the gate's lock and split-brain check.
    """

    def __init__(self, oracle: ClusterStateOracle, *, min_voters: int = MIN_FAILOVER_VOTERS) -> None:
        self._oracle = oracle
        self._min_voters = min_voters

    async def allows_failover(self, snapshot: ClusterSnapshot | None = None) -> bool:
        if snapshot is None:
            snapshot = await self._oracle.observe()
        if snapshot is None:
            logger.warning("Cluster topology unavailable; allowing failover (quorum fails open)")
            return True

        standbys = len(snapshot.running_standbys)
        witnesses = len(snapshot.running_witnesses)
        allowed = standbys + witnesses >= self._min_voters
        log = logger.info if allowed else logger.warning
        log(
            "Quorum evaluated",
            running_standbys=standbys,
            running_witnesses=witnesses,
            required=self._min_voters,
            allowed=allowed,
        )
        return allowed

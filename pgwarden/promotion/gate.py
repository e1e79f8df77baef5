"""Promotion fencing gate.

Decides whether the local standby may become primary. Steps, in order:

1. A manual override marker, if present, is consumed and promotion proceeds
   without any of the checks below.
2. The cluster-wide promotion lease is acquired (bounded by a timeout).
3. The relaxed failover quorum must hold.
4. No other node reported as primary may answer a liveness probe.
5. The local database must be up and in recovery.
6. Among visible standbys, the local node must have the lowest replay lag.
7. Readiness is checked again right before the irreversible promote call.

The lease is released exactly once on every exit path.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from ..core.enums import RefusalReason, TieBreak
from ..core.exceptions import LagUnknownError, LockTimeoutError, SplitBrainDetectedError, TopologyAmbiguousError
from ..logger import get_logger
from .domain import Candidate, PromotionOutcome

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger

    from ..cluster_state import ClusterStateStore
    from ..config import PromotionSettings
    from ..quorum import QuorumValidator
    from ..replication.manager import ReplicationManager
    from ..replication.probe import DatabaseProbe
    from ..state.lease import LeaseManager
    from ..topology.domain import ClusterSnapshot
    from ..topology.oracle import ClusterStateOracle
    from .override import ManualOverride

logger: BoundLogger = get_logger(__name__)


class PromotionGate:
    def __init__(
        self,
        *,
        node_name: str,
        settings: PromotionSettings,
        oracle: ClusterStateOracle,
        quorum: QuorumValidator,
        probe: DatabaseProbe,
        manager: ReplicationManager,
        leases: LeaseManager,
        override: ManualOverride,
        store: ClusterStateStore | None = None,
        node_id: int | None = None,
    ) -> None:
        self._node_name = node_name
        self._node_id = node_id
        self._settings = settings
        self._oracle = oracle
        self._quorum = quorum
        self._probe = probe
        self._manager = manager
        self._leases = leases
        self._override = override
        self._store = store

    async def attempt_promotion(self) -> PromotionOutcome:
        """Run the fencing sequence for the local node.

        Returns
        -------
        PromotionOutcome
            ``Promoted`` when the promote call succeeded, otherwise
            ``Refused`` with the first failing check as the reason.
        """
        logger.info("Promotion requested", node=self._node_name)

        if self._override.consume():
            return await self._promote(overridden=True)

        try:
            async with self._leases.hold(self._settings.lock_resource, timeout=self._settings.lock_timeout):
                return await self._fenced_promotion()
        except LockTimeoutError as e:
            return self._refuse(RefusalReason.LOCK_TIMEOUT, str(e))

    async def _fenced_promotion(self) -> PromotionOutcome:
        if not await self._quorum.allows_failover():
            return self._refuse(RefusalReason.QUORUM_NOT_MET, "running standbys plus witnesses below 2")

        snapshot = await self._oracle.observe()

        try:
            await self._ensure_no_reachable_primary(snapshot)
        except SplitBrainDetectedError as e:
            return self._refuse(RefusalReason.EXISTING_PRIMARY_REACHABLE, str(e))

        if not await self._is_ready():
            return self._refuse(RefusalReason.NOT_READY, "local database down or not in recovery")

        try:
            refusal = await self._arbitrate(snapshot)
        except LagUnknownError as e:
            return self._refuse(RefusalReason.LAG_UNKNOWN, str(e))
        if refusal is not None:
            return refusal

        if not await self._is_ready():
            return self._refuse(RefusalReason.NOT_READY, "readiness changed during arbitration")

        return await self._promote()

    async def _ensure_no_reachable_primary(self, snapshot: ClusterSnapshot | None) -> None:
        if snapshot is None:
            logger.warning("Topology unavailable; no existing primary to check")
            return

        for record in snapshot.reported_primaries:
            if record.name == self._node_name:
                continue
            if await self._probe.is_alive(record.name):
                logger.critical("Existing primary is reachable; refusing promotion", primary=record.name)
                raise SplitBrainDetectedError(record.name)
            logger.info("Reported primary is unreachable", primary=record.name, status=record.status)

    async def _is_ready(self) -> bool:
        if not await self._probe.is_alive():
            logger.warning("Local database is not accepting connections", node=self._node_name)
            return False
        if await self._probe.is_in_recovery() is not True:
            logger.warning("Local database is not in recovery", node=self._node_name)
            return False
        return True

    def _visible_candidates(self, snapshot: ClusterSnapshot | None) -> list[Candidate]:
        candidates: list[Candidate] = []
        if snapshot is not None:
            order = {n.name: i for i, n in enumerate(snapshot.nodes)}
            candidates = [
                Candidate(name=n.name, node_id=n.id, order=order[n.name]) for n in snapshot.running_standbys
            ]

        if all(c.name != self._node_name for c in candidates):
            candidates.append(
                Candidate(
                    name=self._node_name,
                    node_id=self._node_id,
                    order=len(snapshot.nodes) if snapshot is not None else 0,
                )
            )
        return candidates

    def _rank(self, candidate: Candidate) -> tuple[float, ...]:
        lag = float(candidate.lag_seconds if candidate.lag_seconds is not None else math.inf)
        if self._settings.tie_break == TieBreak.LOWEST_NODE_ID:
            node_id = float(candidate.node_id) if candidate.node_id is not None else math.inf
            return (lag, node_id, float(candidate.order))
        return (lag, float(candidate.order))

    async def _arbitrate(self, snapshot: ClusterSnapshot | None) -> PromotionOutcome | None:
        candidates = self._visible_candidates(snapshot)
        names = [c.name for c in candidates]

        if len(candidates) < self._settings.min_visible_nodes:
            return self._refuse(
                RefusalReason.INSUFFICIENT_VISIBILITY,
                f"{len(candidates)} visible standbys, {self._settings.min_visible_nodes} required",
            )

        if len(candidates) == 1:
            logger.info("Only visible standby; no lag comparison needed", node=self._node_name)
            return None

        own_lag = await self._probe.replication_lag()
        if own_lag is None:
            raise LagUnknownError(self._node_name)

        measured: list[Candidate] = []
        for candidate in candidates:
            if candidate.name == self._node_name:
                lag: int | None = own_lag
            else:
                lag = await self._probe.replication_lag(candidate.name)
            if lag is None:
                logger.warning("Peer lag unknown; excluded from arbitration", peer=candidate.name)
                continue
            measured.append(candidate.model_copy(update={"lag_seconds": lag}))

        best = min(measured, key=self._rank)
        lags = {c.name: c.lag_seconds for c in measured}
        logger.info("Lag arbitration", candidates=names, lags=lags, best=best.name)

        if best.name != self._node_name:
            return self._refuse(
                RefusalReason.NOT_BEST_CANDIDATE,
                f"{best.name} has lower lag ({best.lag_seconds}s) than {self._node_name} ({own_lag}s)",
            )

        if own_lag > self._settings.max_lag_seconds:
            logger.warning(
                "Best candidate exceeds lag threshold; promoting anyway",
                node=self._node_name,
                lag_s=own_lag,
                threshold_s=self._settings.max_lag_seconds,
            )
        return None

    async def _promote(self, *, overridden: bool = False) -> PromotionOutcome:
        logger.warning("Promoting local node", node=self._node_name, overridden=overridden)
        if not await self._manager.promote():
            return self._refuse(RefusalReason.PROMOTE_FAILED, "promote operation reported failure")

        logger.info("Promotion completed", node=self._node_name)
        await self._publish()
        return PromotionOutcome.success(self._node_name, overridden=overridden)

    async def _publish(self) -> None:
        if self._store is None:
            return
        try:
            snapshot = await self._oracle.get_snapshot()
        except TopologyAmbiguousError as e:
            logger.critical("Not publishing cluster state after promotion", primaries=list(e.primaries))
            return
        if snapshot is None:
            logger.warning("Topology unavailable after promotion; cluster state not published")
            return
        try:
            self._store.publish(snapshot)
        except OSError as e:
            logger.error("Failed to publish cluster state", error=str(e))

    def _refuse(self, reason: RefusalReason, detail: str | None = None) -> PromotionOutcome:
        log = logger.critical if reason == RefusalReason.EXISTING_PRIMARY_REACHABLE else logger.warning
        log("Promotion refused", node=self._node_name, reason=str(reason), detail=detail)
        return PromotionOutcome.refused(self._node_name, reason, detail)

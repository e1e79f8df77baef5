"""Stale registration cleanup.

A peer that stays unreachable for ``threshold`` consecutive cleanup passes
has its registration removed through the primary, under the cluster-wide
cleanup lease. Before removing anything the topology is re-read from the
primary itself, so a local view that is merely stale never causes a removal.
A peer seen running at any poll has its counter reset immediately.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from ..core.enums import CleanupOutcome
from ..core.exceptions import CleanupFailedError, LockTimeoutError, TopologyAmbiguousError
from ..logger import get_logger
from ..resilience import Retry, log_before_sleep

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger

    from ..config import CleanupSettings
    from ..core.clock import Clock
    from ..replication.manager import ReplicationManager
    from ..resilience import RetryConfig
    from ..state.lease import LeaseManager
    from ..state.tracking import CleanupCounters
    from ..topology.domain import ClusterSnapshot, NodeRecord
    from ..topology.oracle import ClusterStateOracle

logger: BoundLogger = get_logger(__name__)


class _RemovalFailed(Exception):
    pass


class _PrimaryUnreadable(Exception):
    pass


class MetadataCleanupController:
    def __init__(
        self,
        *,
        node_name: str,
        settings: CleanupSettings,
        oracle: ClusterStateOracle,
        manager: ReplicationManager,
        counters: CleanupCounters,
        leases: LeaseManager,
        clock: Clock,
        primary_hint: str | None = None,
    ) -> None:
        self._node_name = node_name
        self._settings = settings
        self._oracle = oracle
        self._manager = manager
        self._counters = counters
        self._leases = leases
        self._clock = clock
        self._primary_hint = primary_hint
        self._last_attempt = -math.inf

    def is_due(self) -> bool:
        return self._clock.now() - self._last_attempt >= self._settings.interval

    def _candidates(self, snapshot: ClusterSnapshot) -> list[NodeRecord]:
        return [n for n in snapshot.nodes if n.name != self._node_name and not n.is_witness and n.status.is_down]

    async def reset_recovered(self, snapshot: ClusterSnapshot | None) -> list[int]:
        """Clear counters of every node currently observed running. Runs every poll."""
        if snapshot is None:
            return []
        reset: list[int] = []
        for record in snapshot.nodes:
            if record.is_running and await self._counters.get(record.id) > 0:
                await self._counters.reset(record.id)
                logger.info("Node recovered; cleanup counter reset", node=record.name, node_id=record.id)
                reset.append(record.id)
        return reset

    async def run(self, snapshot: ClusterSnapshot | None, *, force: bool = False) -> dict[int, CleanupOutcome]:
        """One cadence-gated cleanup pass.

        Returns the outcome per down peer; empty when the pass was not due or
        the topology is unknown.
        """
        if snapshot is None or not (force or self.is_due()):
            return {}
        self._last_attempt = self._clock.now()

        outcomes: dict[int, CleanupOutcome] = {}
        for record in self._candidates(snapshot):
            count = await self._counters.increment(record.id)
            if count < self._settings.threshold:
                logger.warning(
                    "Node unreachable",
                    node=record.name,
                    node_id=record.id,
                    status=str(record.status),
                    count=count,
                    threshold=self._settings.threshold,
                )
                outcomes[record.id] = CleanupOutcome.PENDING
                continue
            outcomes[record.id] = await self._cleanup(record, snapshot)
        return outcomes

    def _resolve_primary_host(self, snapshot: ClusterSnapshot) -> str | None:
        try:
            declared = snapshot.primary_name or self._oracle.resolve_primary(snapshot)
        except TopologyAmbiguousError:
            return None
        return declared or self._primary_hint

    async def _cleanup(self, record: NodeRecord, snapshot: ClusterSnapshot) -> CleanupOutcome:
        try:
            async with self._leases.hold(self._settings.lock_resource, timeout=self._settings.lock_timeout):
                return await self._cleanup_locked(record, snapshot)
        except LockTimeoutError:
            logger.info("Cleanup lease busy; another node is cleaning up", node=record.name, node_id=record.id)
            return CleanupOutcome.LOCK_BUSY

    async def _cleanup_locked(self, record: NodeRecord, snapshot: ClusterSnapshot) -> CleanupOutcome:
        primary = self._resolve_primary_host(snapshot)
        if primary is None:
            logger.error("Cannot determine primary for metadata cleanup", node=record.name, node_id=record.id)
            return CleanupOutcome.NO_PRIMARY

        try:
            primary_view = await self._fetch_from(primary)
        except _PrimaryUnreadable:
            logger.error("Failed to read topology from primary", primary=primary, node=record.name)
            return CleanupOutcome.PRIMARY_UNREADABLE

        seen = primary_view.node_by_id(record.id)
        if seen is not None and not seen.status.is_down:
            logger.info(
                "Primary reports node is not down; skipping cleanup",
                node=record.name,
                node_id=record.id,
                status=str(seen.status),
            )
            await self._counters.reset(record.id)
            return CleanupOutcome.RECOVERED

        logger.warning(
            "Node confirmed unreachable by primary; removing registration", node=record.name, primary=primary
        )
        attempts = self._settings.removal_retry.max_attempts
        try:
            await self._retry("cleanup-node", self._settings.removal_retry).acall(self._remove, record.id, primary)
        except _RemovalFailed:
            error = CleanupFailedError(record.id, record.name, attempts)
            logger.error(str(error), node=record.name, node_id=record.id, primary=primary)
            return CleanupOutcome.FAILED

        await self._counters.reset(record.id)
        logger.info("Metadata cleanup succeeded", node=record.name, node_id=record.id)
        return CleanupOutcome.REMOVED

    def _retry(self, operation: str, config: RetryConfig) -> Retry:
        return Retry(config, sleep=self._clock.sleep, before_sleep=log_before_sleep(operation))

    async def _fetch_from(self, primary: str) -> ClusterSnapshot:
        async def fetch() -> ClusterSnapshot:
            view = await self._oracle.observe(primary)
            if view is None:
                raise _PrimaryUnreadable(primary)
            return view

        return await self._retry("fetch-primary-topology", self._settings.fetch_retry).acall(fetch)

    async def _remove(self, node_id: int, primary: str) -> None:
        if not await self._manager.cleanup_node(node_id, primary):
            raise _RemovalFailed(node_id)

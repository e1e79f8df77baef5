"""Per-node control loop composing the coordination components.

One cooperative task per node. Each iteration:

1. skips (with backoff) when the local database is not accepting connections
2. takes a fresh topology snapshot
3. resets cleanup counters of nodes seen running
4. runs role alignment (may invoke the promotion gate)
5. runs the cadence-gated metadata cleanup pass
6. on their own cadences: primary-change refresh, event snapshot, health

A failing step is logged and the iteration carries on; nothing here stops
the loop except :meth:`NodeControlLoop.stop`.
"""

from __future__ import annotations

import hashlib
import math
import re
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from ..core.enums import HealthLevel
from ..core.exceptions import TopologyAmbiguousError
from ..logger import bind_context, get_logger
from ..topology.health import HealthReport

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger

    from ..alignment.engine import RoleAlignmentEngine
    from ..cleanup.controller import MetadataCleanupController
    from ..cluster_state import ClusterStateStore
    from ..config import ScheduleSettings
    from ..core.clock import Clock
    from ..replication.manager import ReplicationManager
    from ..replication.probe import DatabaseProbe
    from ..topology.domain import ClusterSnapshot
    from ..topology.oracle import ClusterStateOracle

logger: BoundLogger = get_logger(__name__)

_ROLE_CHANGE_EVENT = re.compile(r"promote|demote", re.IGNORECASE)


def describe_topology(snapshot: ClusterSnapshot | None) -> list[str]:
    if snapshot is None:
        return []
    return [f"{n.name}:{n.role}:{n.status}" for n in snapshot.nodes]


class NodeControlLoop:
    def __init__(
        self,
        *,
        node_name: str,
        schedule: ScheduleSettings,
        oracle: ClusterStateOracle,
        probe: DatabaseProbe,
        manager: ReplicationManager,
        alignment: RoleAlignmentEngine,
        cleanup: MetadataCleanupController,
        store: ClusterStateStore,
        clock: Clock,
    ) -> None:
        self._node_name = node_name
        self._schedule = schedule
        self._oracle = oracle
        self._probe = probe
        self._manager = manager
        self._alignment = alignment
        self._cleanup = cleanup
        self._store = store
        self._clock = clock

        self._stopping = False
        self._last_run: dict[str, float] = {}
        self._last_health: HealthLevel | None = None
        self._last_events_digest: str | None = None

    @property
    def last_health(self) -> HealthLevel | None:
        return self._last_health

    def stop(self) -> None:
        """Stop scheduling iterations; an in-flight iteration runs to completion."""
        self._stopping = True

    async def run(self, *, max_iterations: int | None = None) -> None:
        bind_context(node=self._node_name)
        logger.info("Node control loop starting", node=self._node_name)

        if not await self.wait_for_local_database():
            return
        await self.publish_initial_state()

        iterations = 0
        while not self._stopping:
            await self.run_once()
            iterations += 1
            if max_iterations is not None and iterations >= max_iterations:
                break
            await self._clock.sleep(self._schedule.tick)

        logger.info("Node control loop stopped", node=self._node_name, iterations=iterations)

    async def wait_for_local_database(self) -> bool:
        while not self._stopping:
            if await self._probe.is_alive():
                return True
            logger.info("Waiting for local database", node=self._node_name)
            await self._clock.sleep(self._schedule.down_backoff)
        return False

    async def publish_initial_state(self) -> bool:
        """Publish the first cluster state file once the cluster reports GREEN."""
        for check in range(1, self._schedule.cluster_ready_checks + 1):
            snapshot, ambiguous = await self._snapshot()
            level = HealthReport.from_snapshot(snapshot).level
            if snapshot is not None and not ambiguous and level == HealthLevel.GREEN:
                try:
                    self._store.publish(snapshot)
                except OSError as e:
                    logger.error("Failed to publish initial cluster state", path=str(self._store.path), error=str(e))
                    return False
                logger.info("Initial cluster state published", primary=snapshot.primary_name, check=check)
                return True
            logger.info("Waiting for cluster to become healthy", health=str(level), check=check)
            await self._clock.sleep(self._schedule.cluster_ready_interval)

        logger.warning("Cluster not healthy at startup; continuing without initial state file")
        return False

    async def run_once(self) -> None:
        if not await self._probe.is_alive():
            logger.error("Local database not responding; skipping iteration", node=self._node_name)
            await self._clock.sleep(self._schedule.down_backoff)
            return

        snapshot, ambiguous = await self._snapshot()

        await self._step("cleanup-reset", self._cleanup.reset_recovered, snapshot)
        if not ambiguous:
            await self._step("alignment", self._alignment.align, snapshot)
            await self._step("cleanup", self._cleanup.run, snapshot)
            if self._due("refresh", self._schedule.refresh_interval):
                await self._step("refresh", self._refresh, snapshot)

        if self._due("events", self._schedule.event_interval):
            await self._step("events", self._check_events, snapshot)
        if self._due("health", self._schedule.health_interval):
            await self._step("health", self._check_health, snapshot)

    async def _snapshot(self) -> tuple[ClusterSnapshot | None, bool]:
        try:
            return await self._oracle.get_snapshot(), False
        except TopologyAmbiguousError as e:
            logger.critical(
                "Ambiguous topology; alignment and publishing suspended",
                primaries=list(e.primaries),
                topology=describe_topology(e.snapshot),
            )
            return e.snapshot, True
        except Exception:
            logger.exception("Topology snapshot failed; treating cluster state as unknown")
            return None, False

    async def _step(self, name: str, func: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        try:
            return await func(*args)
        except Exception:
            logger.exception("Control loop step failed", step=name)
            return None

    def _due(self, name: str, interval: float) -> bool:
        now = self._clock.now()
        if now - self._last_run.get(name, -math.inf) < interval:
            return False
        self._last_run[name] = now
        return True

    async def _refresh(self, snapshot: ClusterSnapshot | None) -> None:
        if snapshot is None:
            return
        current = snapshot.primary_name
        published = self._store.get_published_primary()

        if published is None and current:
            logger.info("Initial primary detected", primary=current)
        elif current != published:
            logger.info("Primary changed", previous=published, current=current, topology=describe_topology(snapshot))

        self._store.publish_if_changed(snapshot)

    async def _check_events(self, snapshot: ClusterSnapshot | None) -> None:
        events = await self._manager.recent_events(10)
        if not events:
            return
        digest = hashlib.md5(events.encode(), usedforsecurity=False).hexdigest()
        if digest == self._last_events_digest:
            return

        previous, self._last_events_digest = self._last_events_digest, digest
        if previous is not None and _ROLE_CHANGE_EVENT.search(events):
            logger.info("Cluster role change event", topology=describe_topology(snapshot))

    async def _check_health(self, snapshot: ClusterSnapshot | None) -> None:
        report = HealthReport.from_snapshot(snapshot)

        if report.level != self._last_health:
            context = {
                "health": str(report.level),
                "online": report.online,
                "total": report.total,
                "topology": describe_topology(snapshot),
            }
            match report.level:
                case HealthLevel.GREEN:
                    logger.info("Cluster health changed", **context)
                case HealthLevel.YELLOW | HealthLevel.UNKNOWN:
                    logger.warning("Cluster health changed", **context)
                case HealthLevel.RED:
                    logger.error("Cluster health changed", **context)
                case HealthLevel.DISASTER:
                    logger.critical("Cluster health changed", **context)
            self._last_health = report.level

        if report.witnesses_total and report.witnesses_online < report.witnesses_total:
            logger.warning(
                "Witness not running; automatic failover may be impaired",
                witnesses_online=report.witnesses_online,
                witnesses_total=report.witnesses_total,
            )

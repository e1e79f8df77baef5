"""Wire the node agent's components from :class:`WardenSettings`."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..alignment.engine import RoleAlignmentEngine
from ..cleanup.controller import MetadataCleanupController
from ..cluster_state import ClusterStateStore
from ..core.clock import SystemClock
from ..promotion.gate import PromotionGate
from ..promotion.override import ManualOverride
from ..quorum import QuorumValidator
from ..replication.manager import RepmgrReplicationManager
from ..replication.probe import PostgresProbe
from ..state.filesystem import DirectoryLeaseBackend, FileStateStore
from ..state.lease import LeaseManager
from ..state.redis import RedisClient, RedisConfig, RedisLeaseBackend
from ..state.tracking import CleanupCounters, FollowBlocks
from ..topology.oracle import ClusterStateOracle
from ..topology.provider import RepmgrTopologyProvider
from .loop import NodeControlLoop

if TYPE_CHECKING:
    from ..config import WardenSettings
    from ..core.clock import Clock
    from ..state.base import LeaseBackend


@dataclass(frozen=True)
class Components:
    oracle: ClusterStateOracle
    quorum: QuorumValidator
    gate: PromotionGate
    store: ClusterStateStore
    loop: NodeControlLoop


@asynccontextmanager
async def build_components(settings: WardenSettings, *, clock: Clock | None = None) -> AsyncIterator[Components]:
    """Build every component for the local node; closes the Redis client (if any) on exit."""
    clock = clock or SystemClock()
    node_name = settings.node.name

    probe = PostgresProbe(settings.postgres)
    manager = RepmgrReplicationManager(settings.repmgr, settings.postgres, node_name, probe, clock=clock)
    oracle = ClusterStateOracle(RepmgrTopologyProvider(manager, clock), settings.promotion.primary_policy)
    quorum = QuorumValidator(oracle)
    store = ClusterStateStore(settings.state.cluster_state_file, oracle, clock)
    state_store = FileStateStore(settings.state.state_dir)

    redis_client: RedisClient | None = None
    backend: LeaseBackend
    if settings.state.backend == "redis":
        redis_client = RedisClient(settings.state.redis or RedisConfig())
        await redis_client.connect()
        backend = RedisLeaseBackend(redis_client, clock)
    else:
        backend = DirectoryLeaseBackend(settings.state.lock_dir, clock)

    promotion = settings.promotion
    leases = LeaseManager(
        backend,
        node_name,
        clock,
        ttl=promotion.lock_ttl,
        timeout=promotion.lock_timeout,
        retry_interval=promotion.lock_retry_interval,
    )

    gate = PromotionGate(
        node_name=node_name,
        node_id=settings.node.id,
        settings=promotion,
        oracle=oracle,
        quorum=quorum,
        probe=probe,
        manager=manager,
        leases=leases,
        override=ManualOverride(promotion.override_marker),
        store=store,
    )
    alignment = RoleAlignmentEngine(
        node_name=node_name,
        oracle=oracle,
        probe=probe,
        manager=manager,
        gate=gate,
        follow_blocks=FollowBlocks(state_store, clock, cooldown=settings.alignment.follow_cooldown),
    )
    cleanup = MetadataCleanupController(
        node_name=node_name,
        settings=settings.cleanup,
        oracle=oracle,
        manager=manager,
        counters=CleanupCounters(state_store),
        leases=leases,
        clock=clock,
        primary_hint=settings.primary_hint_host,
    )
    loop = NodeControlLoop(
        node_name=node_name,
        schedule=settings.schedule,
        oracle=oracle,
        probe=probe,
        manager=manager,
        alignment=alignment,
        cleanup=cleanup,
        store=store,
        clock=clock,
    )

    try:
        yield Components(oracle=oracle, quorum=quorum, gate=gate, store=store, loop=loop)
    finally:
        if redis_client is not None:
            await redis_client.close()

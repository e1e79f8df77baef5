"""Role alignment: keep this standby following the declared primary.

Per cycle the engine resolves to exactly one state:

- ``IS_PRIMARY``: local node is (or is acting as) primary; nothing to do.
- ``NO_PRIMARY``: no primary declared; a standby asks the promotion gate.
- ``FOLLOWING_CORRECT_PRIMARY``: streaming from the declared primary.
- ``BLOCKED``: a previous resync failed and its cooldown has not expired.
- ``RECOVERING``: a resync or re-point was carried out this cycle.
- ``TIMELINE_CONFLICT``: rewind and clone both failed; follow attempts are
  blocked and an operator must intervene.
- ``MISALIGNED``: a re-point step failed; retried on the next cycle.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..core.enums import AlignmentState, NodeRole
from ..core.exceptions import ResyncFailedError
from ..logger import get_logger
from .domain import AlignmentResult

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger

    from ..promotion.gate import PromotionGate
    from ..replication.manager import ReplicationManager
    from ..replication.probe import DatabaseProbe
    from ..state.tracking import FollowBlocks
    from ..topology.domain import ClusterSnapshot
    from ..topology.oracle import ClusterStateOracle

logger: BoundLogger = get_logger(__name__)


class RoleAlignmentEngine:
    def __init__(
        self,
        *,
        node_name: str,
        oracle: ClusterStateOracle,
        probe: DatabaseProbe,
        manager: ReplicationManager,
        gate: PromotionGate,
        follow_blocks: FollowBlocks,
    ) -> None:
        self._node_name = node_name
        self._oracle = oracle
        self._probe = probe
        self._manager = manager
        self._gate = gate
        self._follow_blocks = follow_blocks

    async def align(self, snapshot: ClusterSnapshot | None) -> AlignmentResult | None:
        """Run one alignment cycle against ``snapshot``.

        Returns ``None`` when the topology is unknown; nothing is decided on
        an unknown view.

        Raises
        ------
        TopologyAmbiguousError
            When the snapshot reports several running primaries under the
            strict policy.
        """
        if snapshot is None:
            logger.debug("Topology unknown; skipping role alignment")
            return None

        role = await self._manager.local_role()
        if role == NodeRole.PRIMARY:
            return AlignmentResult(state=AlignmentState.IS_PRIMARY, declared_primary=self._node_name)

        in_recovery = await self._probe.is_in_recovery()
        if in_recovery is False:
            logger.warning(
                "Local database is writable but not registered as primary; not correcting",
                node=self._node_name,
                registered_role=str(role),
            )
            return AlignmentResult(state=AlignmentState.IS_PRIMARY, detail="writable, not registered primary")

        declared = snapshot.primary_name or self._oracle.resolve_primary(snapshot)
        if declared is None:
            return await self._handle_missing_primary(role)

        if declared == self._node_name:
            logger.warning("Cluster declares this node primary but it is in recovery", node=self._node_name)
            return AlignmentResult(state=AlignmentState.IS_PRIMARY, declared_primary=declared)

        upstream = await self._probe.upstream_host()
        if upstream == declared:
            return AlignmentResult(
                state=AlignmentState.FOLLOWING_CORRECT_PRIMARY, declared_primary=declared, upstream=upstream
            )

        if await self._follow_blocks.is_blocked(self._node_name):
            logger.info("Follow attempts blocked; skipping this cycle", node=self._node_name, primary=declared)
            return AlignmentResult(state=AlignmentState.BLOCKED, declared_primary=declared, upstream=upstream)

        logger.warning(
            "Standby is following the wrong upstream", node=self._node_name, upstream=upstream, primary=declared
        )

        if await self._has_timeline_conflict(declared):
            return await self._resync(declared, upstream)
        return await self._repoint(declared, upstream)

    async def _handle_missing_primary(self, role: NodeRole) -> AlignmentResult:
        if role != NodeRole.STANDBY:
            logger.warning("No primary declared and local role is not standby", node=self._node_name, role=str(role))
            return AlignmentResult(state=AlignmentState.NO_PRIMARY)

        logger.warning("No primary declared; requesting promotion through the fencing gate", node=self._node_name)
        outcome = await self._gate.attempt_promotion()
        return AlignmentResult(state=AlignmentState.NO_PRIMARY, promotion=outcome, detail=str(outcome))

    async def _has_timeline_conflict(self, declared: str) -> bool:
        local = await self._probe.timeline_id()
        remote = await self._probe.timeline_id(declared)
        if local is None or remote is None:
            logger.info(
                "Timeline unknown; assuming no conflict", local=local, primary=declared, primary_timeline=remote
            )
            return False
        if local != remote:
            logger.warning("Timeline conflict", local_timeline=local, primary=declared, primary_timeline=remote)
            return True
        return False

    async def _resync(self, declared: str, upstream: str | None) -> AlignmentResult:
        if await self._manager.rewind(declared):
            return AlignmentResult(
                state=AlignmentState.RECOVERING, declared_primary=declared, upstream=upstream, detail="rewind"
            )

        logger.warning("Incremental resynchronization failed; falling back to full clone", primary=declared)
        if await self._manager.clone(declared):
            return AlignmentResult(
                state=AlignmentState.RECOVERING, declared_primary=declared, upstream=upstream, detail="clone"
            )

        await self._follow_blocks.block(self._node_name)
        error = ResyncFailedError(self._node_name, declared)
        logger.error(str(error), node=self._node_name, primary=declared)
        return AlignmentResult(
            state=AlignmentState.TIMELINE_CONFLICT,
            declared_primary=declared,
            upstream=upstream,
            requires_intervention=True,
            detail=str(error),
        )

    async def _repoint(self, declared: str, upstream: str | None) -> AlignmentResult:
        steps = (
            ("stop", self._manager.stop_database),
            ("point-upstream", lambda: self._manager.point_upstream_at(declared)),
            ("start", self._manager.start_database),
            ("register", lambda: self._manager.register_standby(force=True)),
        )
        for step, action in steps:
            if not await action():
                logger.error("Re-point step failed; retrying next cycle", step=step, primary=declared)
                return AlignmentResult(
                    state=AlignmentState.MISALIGNED, declared_primary=declared, upstream=upstream, detail=step
                )

        logger.info("Standby re-pointed at declared primary", node=self._node_name, primary=declared)
        return AlignmentResult(state=AlignmentState.RECOVERING, declared_primary=declared, upstream=upstream)

"""Unit tests for RoleAlignmentEngine."""

from __future__ import annotations

import pytest

from pgwarden.alignment.engine import RoleAlignmentEngine
from pgwarden.core.enums import AlignmentState, NodeRole, RefusalReason
from pgwarden.core.exceptions import TopologyAmbiguousError
from pgwarden.promotion.domain import PromotionOutcome
from pgwarden.state.memory import InMemoryStateStore
from pgwarden.state.tracking import FollowBlocks
from pgwarden.topology.oracle import ClusterStateOracle
from tests.unit.fakes import FakeProbe, FakeReplicationManager, FakeTopologyProvider, ManualClock, make_snapshot

HEALTHY = make_snapshot(
    (1, "pg-1", "primary", "running"),
    (2, "pg-2", "standby", "running"),
    (3, "pg-3", "standby", "running"),
    primary_name="pg-1",
)

NO_PRIMARY = make_snapshot(
    (1, "pg-1", "primary", "failed"),
    (2, "pg-2", "standby", "running"),
    (3, "pg-3", "standby", "running"),
)


class FakeGate:
    def __init__(self, outcome: PromotionOutcome) -> None:
        self.outcome = outcome
        self.attempts = 0

    async def attempt_promotion(self) -> PromotionOutcome:
        self.attempts += 1
        return self.outcome


class EngineHarness:
    def __init__(
        self,
        clock: ManualClock,
        *,
        role: NodeRole = NodeRole.STANDBY,
        upstream: str | None = "pg-3",
        timelines: dict[str, int | None] | None = None,
        in_recovery: bool | None = True,
    ) -> None:
        self.state = InMemoryStateStore()
        self.blocks = FollowBlocks(self.state, clock, cooldown=600)
        self.manager = FakeReplicationManager(role=role)
        self.probe = FakeProbe("pg-2", upstream=upstream, timelines=timelines, in_recovery=in_recovery)
        self.gate = FakeGate(PromotionOutcome.refused("pg-2", RefusalReason.NOT_BEST_CANDIDATE))
        self.engine = RoleAlignmentEngine(
            node_name="pg-2",
            oracle=ClusterStateOracle(FakeTopologyProvider()),
            probe=self.probe,
            manager=self.manager,
            gate=self.gate,  # type: ignore[arg-type]
            follow_blocks=self.blocks,
        )


class TestSteadyState:
    """Tests for cycles where no corrective action is needed."""

    async def test_unknown_topology_decides_nothing(self, clock: ManualClock) -> None:
        """Test a missing snapshot yields no result and no manager calls."""
        h = EngineHarness(clock)

        assert await h.engine.align(None) is None
        assert h.manager.calls == []

    async def test_registered_primary(self, clock: ManualClock) -> None:
        """Test a node registered as primary reports IS_PRIMARY."""
        h = EngineHarness(clock, role=NodeRole.PRIMARY)

        result = await h.engine.align(HEALTHY)

        assert result is not None
        assert result.state == AlignmentState.IS_PRIMARY

    async def test_writable_standby_is_not_corrected(self, clock: ManualClock) -> None:
        """Test a registered standby that is writable is reported, never demoted."""
        h = EngineHarness(clock, in_recovery=False)

        result = await h.engine.align(HEALTHY)

        assert result is not None
        assert result.state == AlignmentState.IS_PRIMARY
        assert h.manager.calls == []

    async def test_following_declared_primary(self, clock: ManualClock) -> None:
        """Test a standby streaming from the declared primary is left alone."""
        h = EngineHarness(clock, upstream="pg-1")

        result = await h.engine.align(HEALTHY)

        assert result is not None
        assert result.state == AlignmentState.FOLLOWING_CORRECT_PRIMARY
        assert result.acted is False
        assert h.manager.calls == []

    async def test_ambiguous_primary_propagates(self, clock: ManualClock) -> None:
        """Test two running primaries raise instead of picking a side."""
        snapshot = make_snapshot(
            (1, "pg-1", "primary", "running"),
            (2, "pg-2", "standby", "running"),
            (3, "pg-3", "standby", "running_as_primary"),
        )

        with pytest.raises(TopologyAmbiguousError):
            await EngineHarness(clock).engine.align(snapshot)


class TestRepoint:
    """Tests for re-pointing a standby at the declared primary."""

    async def test_repoint_sequence(self, clock: ManualClock) -> None:
        """Verify a misaligned standby is stopped, re-pointed, started and re-registered.

        Arrange
        -------
        - pg-2 streams from pg-3 while pg-1 is the declared primary
        - Timelines unknown, so no conflict is assumed

        Act
        ---
        - Align once

        Assert
        ------
        - Steps run in order against pg-1; state RECOVERING
        """
        h = EngineHarness(clock)

        result = await h.engine.align(HEALTHY)

        assert result is not None
        assert result.state == AlignmentState.RECOVERING
        assert h.manager.calls == [("stop", None), ("point-upstream", "pg-1"), ("start", None), ("register", True)]

    async def test_failed_step_stops_sequence(self, clock: ManualClock) -> None:
        """Test a failing step reports MISALIGNED naming the step and runs nothing after it."""
        h = EngineHarness(clock)
        h.manager.failing.add("start")

        result = await h.engine.align(HEALTHY)

        assert result is not None
        assert result.state == AlignmentState.MISALIGNED
        assert result.detail == "start"
        assert h.manager.called("register") == []

    async def test_same_timeline_repoints(self, clock: ManualClock) -> None:
        """Test matching timelines take the re-point path, not a resync."""
        h = EngineHarness(clock, timelines={"pg-2": 3, "pg-1": 3})

        await h.engine.align(HEALTHY)

        assert h.manager.called("rewind") == []
        assert h.manager.called("point-upstream") == ["pg-1"]


class TestTimelineConflict:
    """Tests for resynchronizing a diverged standby."""

    CONFLICT = {"pg-2": 2, "pg-1": 3}

    async def test_rewind_first(self, clock: ManualClock) -> None:
        """Test a timeline conflict is resolved by an incremental rewind from the primary."""
        h = EngineHarness(clock, timelines=self.CONFLICT)

        result = await h.engine.align(HEALTHY)

        assert result is not None
        assert result.state == AlignmentState.RECOVERING
        assert result.detail == "rewind"
        assert h.manager.called("rewind") == ["pg-1"]
        assert h.manager.called("clone") == []

    async def test_clone_after_failed_rewind(self, clock: ManualClock) -> None:
        """Test a failed rewind falls back to a full clone."""
        h = EngineHarness(clock, timelines=self.CONFLICT)
        h.manager.failing.add("rewind")

        result = await h.engine.align(HEALTHY)

        assert result is not None
        assert result.state == AlignmentState.RECOVERING
        assert result.detail == "clone"

    async def test_both_failing_blocks_follow(self, clock: ManualClock) -> None:
        """Verify a failed rewind and clone set a follow block honoured on the next cycle.

        Arrange
        -------
        - Timelines differ; rewind and clone both fail

        Act
        ---
        - Align twice, then once more after the cooldown

        Assert
        ------
        - First: TIMELINE_CONFLICT requiring intervention
        - Second: BLOCKED without touching the manager
        - After the cooldown: resync is attempted again
        """
        h = EngineHarness(clock, timelines=self.CONFLICT)
        h.manager.failing.update({"rewind", "clone"})

        first = await h.engine.align(HEALTHY)
        calls_after_first = len(h.manager.calls)
        second = await h.engine.align(HEALTHY)

        assert first is not None and second is not None
        assert first.state == AlignmentState.TIMELINE_CONFLICT
        assert first.requires_intervention is True
        assert second.state == AlignmentState.BLOCKED
        assert len(h.manager.calls) == calls_after_first

        clock.advance(600)
        await h.engine.align(HEALTHY)

        assert h.manager.called("rewind") == ["pg-1", "pg-1"]


class TestMissingPrimary:
    """Tests for cycles where no primary is declared."""

    async def test_standby_asks_gate(self, clock: ManualClock) -> None:
        """Test a standby with no declared primary defers to the promotion gate."""
        h = EngineHarness(clock)

        result = await h.engine.align(NO_PRIMARY)

        assert result is not None
        assert result.state == AlignmentState.NO_PRIMARY
        assert result.promotion == h.gate.outcome
        assert h.gate.attempts == 1

    @pytest.mark.parametrize("role", [NodeRole.WITNESS, NodeRole.UNKNOWN])
    async def test_non_standby_does_not_ask_gate(self, clock: ManualClock, role: NodeRole) -> None:
        """Test only standbys may request promotion."""
        h = EngineHarness(clock, role=role)

        result = await h.engine.align(NO_PRIMARY)

        assert result is not None
        assert result.state == AlignmentState.NO_PRIMARY
        assert h.gate.attempts == 0

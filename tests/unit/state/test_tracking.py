"""Unit tests for per-node state: stores, cleanup counters and follow blocks."""

from __future__ import annotations

from pathlib import Path

import pytest

from pgwarden.state.filesystem import FileStateStore
from pgwarden.state.memory import InMemoryStateStore
from pgwarden.state.tracking import CleanupCounters, FollowBlocks
from tests.unit.fakes import ManualClock


class TestFileStateStore:
    """Tests for the one-file-per-key store."""

    async def test_round_trip_and_delete(self, tmp_path: Path) -> None:
        """Test set/get/delete against files in the state directory."""
        store = FileStateStore(tmp_path / "state")

        await store.set("cleanup_3", "2")
        assert await store.get("cleanup_3") == "2"
        assert (tmp_path / "state" / "cleanup_3").stat().st_mode & 0o777 == 0o600

        await store.delete("cleanup_3")
        assert await store.get("cleanup_3") is None

    async def test_delete_missing_key_is_noop(self, tmp_path: Path) -> None:
        """Test deleting an absent key does not raise."""
        await FileStateStore(tmp_path).delete("follow_block_pg-2")

    @pytest.mark.parametrize("key", ["", "../escape", ".hidden"])
    async def test_rejects_unsafe_keys(self, tmp_path: Path, key: str) -> None:
        """Test keys that could escape the state directory are rejected."""
        with pytest.raises(ValueError):
            await FileStateStore(tmp_path).set(key, "1")


class TestCleanupCounters:
    """Tests for consecutive-unreachable counters."""

    async def test_increment_and_reset(self, state_store: InMemoryStateStore) -> None:
        """Test counters increment per call and reset to absent."""
        counters = CleanupCounters(state_store)

        assert [await counters.increment(3) for _ in range(3)] == [1, 2, 3]
        assert state_store.keys() == ["cleanup_3"]

        await counters.reset(3)
        assert await counters.get(3) == 0
        assert state_store.keys() == []

    async def test_corrupt_value_reads_as_zero(self, state_store: InMemoryStateStore) -> None:
        """Test a non-numeric stored counter is treated as zero."""
        await state_store.set("cleanup_3", "garbage")

        assert await CleanupCounters(state_store).increment(3) == 1


class TestFollowBlocks:
    """Tests for resync suppression with a cooldown."""

    async def test_blocked_within_cooldown(self, state_store: InMemoryStateStore, clock: ManualClock) -> None:
        """Test a block holds until the cooldown has elapsed."""
        blocks = FollowBlocks(state_store, clock, cooldown=600)
        await blocks.block("pg-2")

        clock.advance(599)
        assert await blocks.is_blocked("pg-2") is True

    async def test_expired_block_is_removed(self, state_store: InMemoryStateStore, clock: ManualClock) -> None:
        """Verify an expired block stops blocking and is deleted from the store.

        Arrange
        -------
        - Block pg-2 with a 600 second cooldown

        Act
        ---
        - Advance 600 seconds and check

        Assert
        ------
        - Not blocked; the key is gone
        """
        blocks = FollowBlocks(state_store, clock, cooldown=600)
        await blocks.block("pg-2")

        clock.advance(600)

        assert await blocks.is_blocked("pg-2") is False
        assert state_store.keys() == []

    async def test_unblocked_by_default(self, state_store: InMemoryStateStore, clock: ManualClock) -> None:
        """Test a node that was never blocked is not blocked."""
        assert await FollowBlocks(state_store, clock).is_blocked("pg-3") is False

from __future__ import annotations

from pathlib import Path

import pytest

from pgwarden.config import AlignmentSettings, CleanupSettings, PromotionSettings, ScheduleSettings
from pgwarden.resilience import RetryConfig
from pgwarden.state.memory import InMemoryLeaseBackend, InMemoryStateStore
from tests.unit.fakes import ManualClock


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def lease_backend(clock: ManualClock) -> InMemoryLeaseBackend:
    return InMemoryLeaseBackend(clock)


@pytest.fixture
def state_store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def promotion_settings(tmp_path: Path) -> PromotionSettings:
    return PromotionSettings(override_marker=tmp_path / "force_promote_override")


@pytest.fixture
def alignment_settings() -> AlignmentSettings:
    return AlignmentSettings(follow_cooldown=600)


@pytest.fixture
def cleanup_settings() -> CleanupSettings:
    backoff = RetryConfig(max_attempts=3, wait_base=2.0)
    return CleanupSettings(interval=1800, threshold=3, lock_timeout=10, fetch_retry=backoff, removal_retry=backoff)


@pytest.fixture
def schedule_settings() -> ScheduleSettings:
    return ScheduleSettings(
        tick=1,
        down_backoff=5,
        event_interval=15,
        health_interval=15,
        refresh_interval=5,
        cluster_ready_checks=3,
        cluster_ready_interval=2,
    )

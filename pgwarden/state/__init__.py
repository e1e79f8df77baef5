"""Leases and small persistent state.

- `LeaseManager`: acquire/hold/release cluster-wide leases
- Lease backends: in-memory, shared lock directory, Redis
- `CleanupCounters` / `FollowBlocks`: per-node bookkeeping
"""

from __future__ import annotations

from .base import Lease, LeaseBackend, StateStore
from .filesystem import DirectoryLeaseBackend, FileStateStore
from .lease import LeaseManager
from .memory import InMemoryLeaseBackend, InMemoryStateStore
from .redis import RedisClient, RedisConfig, RedisLeaseBackend
from .tracking import CleanupCounters, FollowBlocks

__all__ = [
    "CleanupCounters",
    "DirectoryLeaseBackend",
    "FileStateStore",
    "FollowBlocks",
    "InMemoryLeaseBackend",
    "InMemoryStateStore",
    "Lease",
    "LeaseBackend",
    "LeaseManager",
    "RedisClient",
    "RedisConfig",
    "RedisLeaseBackend",
    "StateStore",
]

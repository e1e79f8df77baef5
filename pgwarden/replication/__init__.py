"""Adapters for the external replication manager and database engine."""

from __future__ import annotations

from .manager import ReplicationManager, RepmgrReplicationManager
from .probe import DatabaseProbe, PostgresProbe
from .runner import CommandResult, CommandRunner

__all__ = [
    "CommandResult",
    "CommandRunner",
    "DatabaseProbe",
    "PostgresProbe",
    "ReplicationManager",
    "RepmgrReplicationManager",
]

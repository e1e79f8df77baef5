from __future__ import annotations

from enum import StrEnum


class NodeRole(StrEnum):
    PRIMARY = "primary"
    STANDBY = "standby"
    WITNESS = "witness"
    UNKNOWN = "unknown"


class NodeStatus(StrEnum):
    RUNNING = "running"
    RUNNING_AS_PRIMARY = "running_as_primary"
    UNREACHABLE = "unreachable"
    FAILED = "failed"
    UNKNOWN = "unknown"

    @property
    def is_running(self) -> bool:
        return self in (NodeStatus.RUNNING, NodeStatus.RUNNING_AS_PRIMARY)

    @property
    def is_down(self) -> bool:
        return self in (NodeStatus.UNREACHABLE, NodeStatus.FAILED)


class HealthLevel(StrEnum):
    GREEN = "GREEN"
    YELLOW = "YELLOW"
    RED = "RED"
    DISASTER = "DISASTER"
    UNKNOWN = "UNKNOWN"


class AlignmentState(StrEnum):
    IS_PRIMARY = "is_primary"
    FOLLOWING_CORRECT_PRIMARY = "following_correct_primary"
    MISALIGNED = "misaligned"
    TIMELINE_CONFLICT = "timeline_conflict"
    RECOVERING = "recovering"
    BLOCKED = "blocked"
    NO_PRIMARY = "no_primary"


class RefusalReason(StrEnum):
    LOCK_TIMEOUT = "lock-timeout"
    QUORUM_NOT_MET = "quorum-not-met"
    EXISTING_PRIMARY_REACHABLE = "existing-primary-reachable"
    NOT_READY = "not-ready"
    INSUFFICIENT_VISIBILITY = "insufficient-visibility"
    NOT_BEST_CANDIDATE = "not-best-candidate"
    LAG_UNKNOWN = "lag-unknown"
    PROMOTE_FAILED = "promote-failed"


class PrimaryPolicy(StrEnum):
    """How the Oracle resolves more than one authoritative primary."""

    STRICT = "strict"
    FIRST_SEEN = "first_seen"


class TieBreak(StrEnum):
    """How lag arbitration orders candidates that report the same lag."""

    LOWEST_NODE_ID = "lowest_node_id"
    FIRST_SEEN = "first_seen"


class CleanupOutcome(StrEnum):
    PENDING = "pending"
    REMOVED = "removed"
    RECOVERED = "recovered"
    FAILED = "failed"
    LOCK_BUSY = "lock_busy"
    NO_PRIMARY = "no_primary"
    PRIMARY_UNREADABLE = "primary_unreadable"

"""Error taxonomy for the coordination control plane.

Transient, environmental failures (``ToolUnavailableError``,
``QueryTimeoutError``, ``LockTimeoutError``, ``CleanupFailedError``) are
recovered by retrying on a later poll. Integrity-risking conditions
(``TopologyAmbiguousError``, ``SplitBrainDetectedError``) block the risky
action and are surfaced at elevated severity; they are never auto-resolved.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..topology.domain import ClusterSnapshot


class WardenError(Exception):
    """Base class for all pgwarden errors."""


class ToolUnavailableError(WardenError):
    """The replication manager (or another external tool) could not be run or reached."""

    def __init__(self, tool: str, detail: str = "") -> None:
        self.tool = tool
        self.detail = detail
        super().__init__(f"{tool} unavailable" + (f": {detail}" if detail else ""))


class QueryTimeoutError(WardenError):
    """An external call did not complete within its timeout."""

    def __init__(self, operation: str, timeout: float) -> None:
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"{operation} timed out after {timeout:.1f}s")


class TopologyAmbiguousError(WardenError):
    """More than one node is reported as a running primary."""

    def __init__(self, primaries: Sequence[str], snapshot: ClusterSnapshot | None = None) -> None:
        self.primaries = tuple(primaries)
        self.snapshot = snapshot
        super().__init__(f"Ambiguous topology: multiple running primaries reported {list(self.primaries)}")


class LeaseBusyError(WardenError):
    """A lease is currently held by another owner and has not expired."""

    def __init__(self, resource: str, holder: str | None = None) -> None:
        self.resource = resource
        self.holder = holder
        super().__init__(f"Lease {resource!r} is held by {holder or 'another owner'}")


class LockTimeoutError(WardenError):
    """A lease could not be acquired before the configured timeout."""

    def __init__(self, resource: str, timeout: float) -> None:
        self.resource = resource
        self.timeout = timeout
        super().__init__(f"Could not acquire lease {resource!r} within {timeout:.0f}s")


class SplitBrainDetectedError(WardenError):
    """A reachable primary already exists; promoting would create a second one."""

    def __init__(self, primary: str) -> None:
        self.primary = primary
        super().__init__(f"Existing primary {primary!r} is reachable")


class LagUnknownError(WardenError):
    """Replication lag could not be determined for the promotion candidate."""

    def __init__(self, node: str) -> None:
        self.node = node
        super().__init__(f"Unable to determine replication lag for {node!r}")


class ResyncFailedError(WardenError):
    """Both incremental and full resynchronization failed."""

    def __init__(self, node: str, source: str) -> None:
        self.node = node
        self.source = source
        super().__init__(f"Resynchronization of {node!r} from {source!r} failed; manual intervention required")


class CleanupFailedError(WardenError):
    """Removing a stale node registration failed after all retries."""

    def __init__(self, node_id: int, node_name: str, attempts: int) -> None:
        self.node_id = node_id
        self.node_name = node_name
        self.attempts = attempts
        super().__init__(
            f"Metadata cleanup failed for {node_name} (ID:{node_id}) after {attempts} attempts; "
            "manual intervention required"
        )

"""Parsers for replication-manager command output.

``repmgr cluster show --compact`` prints pipe-delimited rows::

     ID | Name | Role    | Status               | Upstream | ...
    ----+------+---------+----------------------+----------+----
     1  | pg-1 | primary | * running            |          | ...
     2  | pg-2 | standby |   running            | pg-1     | ...
     3  | pg-3 | witness | * running            | pg-1     | ...

The header row is recognized by the literal ``Role`` column and rows whose
id is not an integer are skipped. A response with no data rows, or with a
data row missing its name, is treated as unknown rather than partially
parsed.
"""

from __future__ import annotations

from datetime import datetime

from ..core.enums import NodeRole, NodeStatus
from ..logger import get_logger
from .domain import ClusterSnapshot, NodeRecord

logger = get_logger(__name__)

_HEADER_ROLE = "role"
_NOT_APPLICABLE = {"", "null", "none", "n/a", "-"}


class MalformedTopologyError(ValueError):
    """A data row could not be parsed."""


def parse_role(raw: str) -> NodeRole:
    try:
        return NodeRole(raw.strip().lower())
    except ValueError:
        return NodeRole.UNKNOWN


def parse_status(raw: str) -> NodeStatus:
    text = raw.strip().lower()
    if "running as primary" in text:
        return NodeStatus.RUNNING_AS_PRIMARY
    if "running" in text:
        return NodeStatus.RUNNING
    if "unreachable" in text:
        return NodeStatus.UNREACHABLE
    if "failed" in text:
        return NodeStatus.FAILED
    return NodeStatus.UNKNOWN


def _parse_row(line: str) -> NodeRecord | None:
    columns = [column.strip() for column in line.split("|")]
    if len(columns) > 2 and columns[2].lower() == _HEADER_ROLE:
        return None
    if not columns[0].isdigit():
        return None
    if len(columns) < 4 or not columns[1]:
        raise MalformedTopologyError(f"Incomplete topology row: {line!r}")

    return NodeRecord(
        id=int(columns[0]),
        name=columns[1],
        role=parse_role(columns[2]),
        status=parse_status(columns[3]),
    )


def parse_compact_topology(output: str, *, observed_at: datetime | None = None) -> ClusterSnapshot | None:
    """Parse compact topology output into a snapshot, or ``None`` if unusable."""
    if not output or not output.strip():
        return None

    nodes: list[NodeRecord] = []
    try:
        for line in output.splitlines():
            if "|" not in line:
                continue
            record = _parse_row(line)
            if record is not None:
                nodes.append(record)
    except MalformedTopologyError as e:
        logger.warning("Discarding malformed topology response", error=str(e))
        return None

    if not nodes:
        logger.warning("Topology response contained no node rows")
        return None

    if observed_at is None:
        return ClusterSnapshot(nodes=tuple(nodes))
    return ClusterSnapshot(nodes=tuple(nodes), observed_at=observed_at)


def parse_lag(output: str | None) -> int | None:
    """Parse a lag query result; the NULL sentinel means not applicable."""
    if output is None:
        return None
    text = output.strip()
    if text.lower() in _NOT_APPLICABLE:
        return None
    try:
        return max(int(float(text)), 0)
    except ValueError:
        logger.warning("Unparseable lag value", raw=text)
        return None


def parse_node_status_role(output: str) -> NodeRole:
    """Extract the ``Role:`` line from ``repmgr node status`` output."""
    for line in output.splitlines():
        key, sep, value = line.partition(":")
        if sep and key.strip().lower() == _HEADER_ROLE:
            return parse_role(value)
    return NodeRole.UNKNOWN


def parse_conninfo_host(conninfo: str | None) -> str | None:
    """Return the ``host=`` value of a libpq keyword/value connection string."""
    if not conninfo:
        return None
    for token in conninfo.split():
        key, sep, value = token.partition("=")
        if sep and key == "host" and value:
            return value.strip("'")
    return None

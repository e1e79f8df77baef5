"""Durable cluster state file consumed by other processes on the node.

The file holds a reduced view of the last significant snapshot::

    {
      "primary": "pg-1",
      "nodes": [{"id": 1, "name": "pg-1", "role": "primary", "status": "running"}],
      "updated": 1700000000
    }

Writes go through a temp file in the same directory followed by an atomic
rename and a directory fsync, with ``0600`` permissions. Reads are tolerant:
a missing or unparseable file reads as nothing published.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Self

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .logger import get_logger
from .state.filesystem import write_atomic

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger

    from .core.clock import Clock
    from .topology.domain import ClusterSnapshot
    from .topology.oracle import ClusterStateOracle

logger: BoundLogger = get_logger(__name__)


class PublishedNode(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: int
    name: str
    role: str
    status: str


class ClusterStateFile(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    primary: str = Field(default="", description="Resolved primary name, empty when none")
    nodes: tuple[PublishedNode, ...] = Field(default_factory=tuple)
    updated: int = Field(default=0, description="Unix seconds of the write")

    @classmethod
    def from_snapshot(cls: type[Self], snapshot: ClusterSnapshot, primary: str | None, updated: int) -> Self:
        return cls(
            primary=primary or "",
            nodes=tuple(
                PublishedNode(id=n.id, name=n.name, role=n.role.value, status=n.status.value) for n in snapshot.nodes
            ),
            updated=updated,
        )

    def same_content(self, other: ClusterStateFile | None) -> bool:
        """Equality ignoring the ``updated`` timestamp."""
        if other is None:
            return False
        return self.model_dump(exclude={"updated"}) == other.model_dump(exclude={"updated"})


class ClusterStateStore:
    """Single writer of the cluster state file for this node."""

    def __init__(self, path: Path, oracle: ClusterStateOracle, clock: Clock) -> None:
        self._path = path
        self._oracle = oracle
        self._clock = clock

    @property
    def path(self) -> Path:
        return self._path

    def _render(self, snapshot: ClusterSnapshot) -> ClusterStateFile:
        # raises TopologyAmbiguousError under the strict policy; never publish a guess
        primary = snapshot.primary_name or self._oracle.resolve_primary(snapshot)
        return ClusterStateFile.from_snapshot(snapshot, primary, int(self._clock.now()))

    def _write(self, state: ClusterStateFile) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        write_atomic(self._path, state.model_dump_json(indent=2) + "\n", mode=0o600)
        logger.info(
            "Cluster state published", path=str(self._path), primary=state.primary or None, nodes=len(state.nodes)
        )

    def publish(self, snapshot: ClusterSnapshot) -> ClusterStateFile:
        state = self._render(snapshot)
        self._write(state)
        return state

    def publish_if_changed(self, snapshot: ClusterSnapshot) -> bool:
        """Publish only when content (ignoring ``updated``) differs from what is on disk."""
        state = self._render(snapshot)
        if state.same_content(self.read()):
            return False
        self._write(state)
        return True

    def read(self) -> ClusterStateFile | None:
        try:
            return ClusterStateFile.model_validate_json(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValidationError) as e:
            logger.warning("Unreadable cluster state file", path=str(self._path), error=str(e))
            return None

    def get_published_primary(self) -> str | None:
        state = self.read()
        return state.primary if state and state.primary else None

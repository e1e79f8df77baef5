from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field

from ..core.enums import NodeRole, NodeStatus


class NodeRecord(BaseModel):
    """One registered node as reported by the replication manager.

    Produced fresh on every topology query and never mutated.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: int = Field(ge=0, description="Registered node id")
    name: str = Field(min_length=1, description="Registered node name (also its host)")
    role: NodeRole = Field(default=NodeRole.UNKNOWN)
    status: NodeStatus = Field(default=NodeStatus.UNKNOWN)
    lag_seconds: int | None = Field(default=None, ge=0, description="Replication lag, when known")

    @property
    def is_running(self) -> bool:
        return self.status.is_running

    @property
    def is_witness(self) -> bool:
        return self.role == NodeRole.WITNESS

    @property
    def is_authoritative_primary(self) -> bool:
        """Registered primary that is running, or any node running as primary."""
        if self.status == NodeStatus.RUNNING_AS_PRIMARY:
            return True
        return self.role == NodeRole.PRIMARY and self.status.is_running


class ClusterSnapshot(BaseModel):
    """Topology as observed at one instant.

    ``nodes`` keeps report order, which matters for first-seen policies.
    ``primary_name`` is filled by the Oracle after primary resolution.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    nodes: tuple[NodeRecord, ...] = Field(default_factory=tuple)
    primary_name: str | None = Field(default=None)
    observed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def node_by_id(self, node_id: int) -> NodeRecord | None:
        return next((n for n in self.nodes if n.id == node_id), None)

    @property
    def authoritative_primaries(self) -> tuple[NodeRecord, ...]:
        return tuple(n for n in self.nodes if n.is_authoritative_primary)

    @property
    def reported_primaries(self) -> tuple[NodeRecord, ...]:
        """Every node registered or running as primary, regardless of liveness."""
        return tuple(
            n for n in self.nodes if n.role == NodeRole.PRIMARY or n.status == NodeStatus.RUNNING_AS_PRIMARY
        )

    @property
    def data_nodes(self) -> tuple[NodeRecord, ...]:
        return tuple(n for n in self.nodes if not n.is_witness)

    @property
    def running_standbys(self) -> tuple[NodeRecord, ...]:
        return tuple(n for n in self.nodes if n.role == NodeRole.STANDBY and n.is_running)

    @property
    def witnesses(self) -> tuple[NodeRecord, ...]:
        return tuple(n for n in self.nodes if n.is_witness)

    @property
    def running_witnesses(self) -> tuple[NodeRecord, ...]:
        return tuple(n for n in self.witnesses if n.is_running)

    def with_primary(self, primary_name: str | None) -> ClusterSnapshot:
        return self.model_copy(update={"primary_name": primary_name})

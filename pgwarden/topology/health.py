from __future__ import annotations

from typing import Self

from pydantic import BaseModel, ConfigDict, computed_field

from ..core.enums import HealthLevel
from .domain import ClusterSnapshot


class HealthReport(BaseModel):
    """Coarse cluster health derived from one snapshot.

    Counts exclude witnesses: ``total`` is every data node, ``online`` those
    with a running-type status.
    """

    model_config = ConfigDict(frozen=True)

    level: HealthLevel
    total: int = 0
    online: int = 0
    witnesses_online: int = 0
    witnesses_total: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def offline(self) -> int:
        return self.total - self.online

    @classmethod
    def unknown(cls: type[Self]) -> Self:
        return cls(level=HealthLevel.UNKNOWN)

    @classmethod
    def from_snapshot(cls: type[Self], snapshot: ClusterSnapshot | None) -> Self:
        if snapshot is None:
            return cls.unknown()

        data_nodes = snapshot.data_nodes
        total = len(data_nodes)
        online = sum(1 for n in data_nodes if n.is_running)
        return cls(
            level=_level(total, online),
            total=total,
            online=online,
            witnesses_online=len(snapshot.running_witnesses),
            witnesses_total=len(snapshot.witnesses),
        )


def _level(total: int, online: int) -> HealthLevel:
    if total == 0:
        return HealthLevel.UNKNOWN
    if online == total:
        return HealthLevel.GREEN
    if online >= total // 2 + 1:
        return HealthLevel.YELLOW
    if online == 1:
        return HealthLevel.DISASTER
    return HealthLevel.RED


def classify(snapshot: ClusterSnapshot | None) -> HealthLevel:
    """Pure, deterministic health level of a snapshot (``UNKNOWN`` for no snapshot)."""
    return HealthReport.from_snapshot(snapshot).level

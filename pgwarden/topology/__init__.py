"""Cluster topology: snapshots, parsing, primary resolution and health.

- `ClusterStateOracle`: fetches snapshots through a `TopologyProvider`
- `classify` / `HealthReport`: coarse health level of a snapshot
"""

from __future__ import annotations

from .domain import ClusterSnapshot, NodeRecord
from .health import HealthReport, classify
from .oracle import ClusterStateOracle
from .parser import parse_compact_topology, parse_lag, parse_status
from .provider import RepmgrTopologyProvider, TopologyProvider

__all__ = [
    "ClusterSnapshot",
    "ClusterStateOracle",
    "HealthReport",
    "NodeRecord",
    "RepmgrTopologyProvider",
    "TopologyProvider",
    "classify",
    "parse_compact_topology",
    "parse_lag",
    "parse_status",
]

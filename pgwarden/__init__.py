"""pgwarden: coordination control plane for a repmgr-managed PostgreSQL cluster.

- `topology`: snapshots of the cluster, primary resolution and health
- `promotion`: the fencing gate deciding whether this standby may promote
- `alignment`: keeps this standby following the declared primary
- `cleanup`: removes registrations of persistently unreachable nodes
- `agent`: the per-node control loop wiring everything together
"""

from __future__ import annotations

__version__ = "0.1.0"

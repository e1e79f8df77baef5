"""Configuration for the pgwarden node agent.

All settings load from the environment with the ``PGWARDEN_`` prefix and
``__`` as the nested delimiter, e.g.::

    PGWARDEN_NODE__NAME=pg-2
    PGWARDEN_PROMOTION__LOCK_TIMEOUT=60
    PGWARDEN_CLEANUP__THRESHOLD=3
    PGWARDEN_PRIMARY_HINT=pg-1:5432

- `PromotionSettings`: fencing gate (lock, lag, visibility, override marker)
- `AlignmentSettings`: role alignment (follow-block cooldown)
- `CleanupSettings`: stale metadata cleanup cadence and backoff
- `ScheduleSettings`: poll cadences of the control loop
- `RepmgrSettings`: replication manager and database binaries
- `PostgresProbeSettings`: asyncpg connections used for probes
- `StateSettings`: where leases, counters and the cluster state file live
"""

from __future__ import annotations

import socket
from pathlib import Path
from typing import Literal
from urllib.parse import quote_plus

from pydantic import BaseModel, ConfigDict, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.enums import PrimaryPolicy, TieBreak
from .resilience.config import RetryConfig
from .state.redis import RedisConfig


class NodeSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(default_factory=socket.gethostname, min_length=1, description="Registered node name")
    id: int | None = Field(default=None, ge=1, description="Registered node id, if known")


class PromotionSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    max_lag_seconds: int = Field(default=30, ge=0, description="Advisory lag threshold for the winning candidate")
    lock_timeout: float = Field(default=60.0, gt=0, description="Max seconds to wait for the promotion lock")
    lock_ttl: float = Field(default=300.0, gt=0, description="Age after which a held lock is reclaimable")
    lock_retry_interval: float = Field(default=2.0, gt=0, description="Wait between lock acquisition attempts")
    lock_resource: str = Field(default="promotion", min_length=1)
    min_visible_nodes: int = Field(default=1, ge=1, description="Running standbys that must be visible")
    override_marker: Path = Field(default=Path("/tmp/force_promote_override"))
    tie_break: TieBreak = Field(default=TieBreak.LOWEST_NODE_ID)
    primary_policy: PrimaryPolicy = Field(default=PrimaryPolicy.STRICT)


class AlignmentSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    follow_cooldown: float = Field(default=600.0, ge=0, description="Seconds a failed resync suppresses retries")


class CleanupSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    interval: float = Field(default=1800.0, ge=0, description="Seconds between cleanup passes")
    threshold: int = Field(default=3, ge=1, description="Consecutive unreachable passes before removal")
    lock_resource: str = Field(default="cleanup", min_length=1)
    lock_timeout: float = Field(default=10.0, gt=0)
    fetch_retry: RetryConfig = Field(default_factory=lambda: RetryConfig(max_attempts=3, wait_base=2.0))
    removal_retry: RetryConfig = Field(default_factory=lambda: RetryConfig(max_attempts=3, wait_base=2.0))


class ScheduleSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    tick: float = Field(default=1.0, gt=0, description="Sleep between control loop iterations")
    down_backoff: float = Field(default=5.0, ge=0, description="Sleep when the local database is not responding")
    event_interval: float = Field(default=15.0, ge=0)
    health_interval: float = Field(default=15.0, ge=0)
    refresh_interval: float = Field(default=5.0, ge=0)
    cluster_ready_checks: int = Field(default=30, ge=0, description="Health polls before the initial state write")
    cluster_ready_interval: float = Field(default=2.0, ge=0)


class RepmgrSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    binary: str = Field(default="repmgr")
    config_file: Path = Field(default=Path("/etc/repmgr/repmgr.conf"))
    pg_ctl: str = Field(default="pg_ctl")
    pg_rewind: str = Field(default="pg_rewind")
    pgdata: Path = Field(default=Path("/var/lib/postgresql/data"))
    run_as: tuple[str, ...] = Field(default=(), description="Command prefix, e.g. ('gosu', 'postgres')")
    command_timeout: float = Field(default=60.0, gt=0)
    resync_timeout: float = Field(default=3600.0, gt=0, description="Timeout for rewind and clone")


class PostgresProbeSettings(BaseModel):
    """Connection settings for liveness, lag, timeline and upstream probes."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    local_host: str = Field(default="localhost")
    port: int = Field(default=5432, ge=1, le=65535)
    database: str = Field(default="postgres")
    user: str = Field(default="postgres")
    password: SecretStr | None = Field(default=None)
    replication_user: str = Field(default="repmgr", description="User written into primary_conninfo")
    replication_database: str = Field(default="repmgr")
    timeout: float = Field(default=5.0, gt=0, description="Connect and command timeout in seconds")

    def dsn(self, host: str, *, port: int | None = None) -> str:
        password = self.password.get_secret_value() if self.password else ""
        escaped_user = quote_plus(self.user)
        auth = f"{escaped_user}:{quote_plus(password)}@" if password else f"{escaped_user}@"
        return f"postgresql://{auth}{host}:{port or self.port}/{self.database}"

    def replication_conninfo(self, host: str, application_name: str, *, port: int | None = None) -> str:
        """libpq keyword string used by rewind/clone sources and primary_conninfo."""
        parts = [
            f"user={self.replication_user}",
            f"dbname={self.replication_database}",
            f"host={host}",
            f"port={port or self.port}",
            f"connect_timeout={int(self.timeout)}",
            f"application_name={application_name}",
        ]
        if self.password:
            escaped = self.password.get_secret_value().replace("\\", "\\\\").replace("'", "\\'")
            parts.insert(1, f"password='{escaped}'")
        return " ".join(parts)


class StateSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    backend: Literal["filesystem", "redis"] = Field(default="filesystem", description="Backing store for leases")
    state_dir: Path = Field(default=Path("/var/lib/postgresql/cleanup"), description="Per-node counters and blocks")
    lock_dir: Path = Field(default=Path("/var/lib/postgresql/locks"), description="Shared lease directory")
    cluster_state_file: Path = Field(default=Path("/var/lib/postgresql/data/cluster_state.json"))
    redis: RedisConfig | None = Field(default=None)


class WardenSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PGWARDEN_",
        env_nested_delimiter="__",
        extra="ignore",
        frozen=True,
    )

    node: NodeSettings = Field(default_factory=NodeSettings)
    promotion: PromotionSettings = Field(default_factory=PromotionSettings)
    alignment: AlignmentSettings = Field(default_factory=AlignmentSettings)
    cleanup: CleanupSettings = Field(default_factory=CleanupSettings)
    schedule: ScheduleSettings = Field(default_factory=ScheduleSettings)
    repmgr: RepmgrSettings = Field(default_factory=RepmgrSettings)
    postgres: PostgresProbeSettings = Field(default_factory=PostgresProbeSettings)
    state: StateSettings = Field(default_factory=StateSettings)
    primary_hint: str | None = Field(default=None, description="Fallback primary as host[:port]")

    @property
    def primary_hint_host(self) -> str | None:
        if not self.primary_hint:
            return None
        host = self.primary_hint.rsplit(":", 1)[0] if ":" in self.primary_hint else self.primary_hint
        return host or None

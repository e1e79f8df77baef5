"""Database-level probes over asyncpg.

Every probe opens a short-lived connection bounded by the configured timeout
and answers ``None`` (or ``False`` for liveness) when the node cannot be
queried, so callers treat "unknown" explicitly instead of handling driver
exceptions.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

import asyncpg

from ..logger import get_logger
from ..topology.parser import parse_conninfo_host, parse_lag

if TYPE_CHECKING:
    from ..config import PostgresProbeSettings

logger = get_logger(__name__)

LAG_QUERY = """
SELECT CASE
    WHEN pg_is_in_recovery() THEN
        EXTRACT(EPOCH FROM (now() - pg_last_xact_replay_timestamp()))::int
    ELSE
        NULL
END AS lag_seconds
"""
TIMELINE_QUERY = "SELECT timeline_id FROM pg_control_checkpoint()"
UPSTREAM_QUERY = "SELECT conninfo FROM pg_stat_wal_receiver LIMIT 1"
RECOVERY_QUERY = "SELECT pg_is_in_recovery()"


class DatabaseProbe(Protocol):
    """Read-only questions asked of a database node. ``host=None`` means the local node."""

    async def is_alive(self, host: str | None = None) -> bool: ...

    async def is_in_recovery(self, host: str | None = None) -> bool | None: ...

    async def replication_lag(self, host: str | None = None) -> int | None: ...

    async def timeline_id(self, host: str | None = None) -> int | None: ...

    async def upstream_host(self) -> str | None: ...


class PostgresProbe:
    def __init__(self, settings: PostgresProbeSettings) -> None:
        self._settings = settings

    def _host(self, host: str | None) -> str:
        return host or self._settings.local_host

    async def _fetchval(self, host: str | None, query: str) -> Any:
        target = self._host(host)
        conn = await asyncpg.connect(
            dsn=self._settings.dsn(target),
            timeout=self._settings.timeout,
            command_timeout=self._settings.timeout,
        )
        try:
            return await conn.fetchval(query)
        finally:
            await conn.close(timeout=self._settings.timeout)

    async def _try_fetchval(self, host: str | None, query: str, probe: str) -> Any:
        try:
            return await self._fetchval(host, query)
        except (OSError, TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            logger.debug("Probe failed", probe=probe, host=self._host(host), error=str(e))
            return None

    async def is_alive(self, host: str | None = None) -> bool:
        return await self._try_fetchval(host, "SELECT 1", "liveness") == 1

    async def is_in_recovery(self, host: str | None = None) -> bool | None:
        value = await self._try_fetchval(host, RECOVERY_QUERY, "recovery")
        return None if value is None else bool(value)

    async def replication_lag(self, host: str | None = None) -> int | None:
        value = await self._try_fetchval(host, LAG_QUERY, "lag")
        return parse_lag(None if value is None else str(value))

    async def timeline_id(self, host: str | None = None) -> int | None:
        value = await self._try_fetchval(host, TIMELINE_QUERY, "timeline")
        return None if value is None else int(value)

    async def upstream_host(self) -> str | None:
        return parse_conninfo_host(await self._try_fetchval(None, UPSTREAM_QUERY, "upstream"))
